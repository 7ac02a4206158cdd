"""
Stock Ledger service: the only writer of product stock levels.

Every adjustment updates ``Product.stock_quantity`` and appends exactly one
``StockLog`` row in the same unit of work, so the log always reconciles
with the stored quantity.
"""
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Union

from sqlalchemy import desc, func, update
from sqlalchemy.orm import Session
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from tillpoint.core.concurrency import run_with_retry
from tillpoint.core.config import Settings
from tillpoint.core.database import Database, after_commit, lock_for_update
from tillpoint.core.exceptions import (
    ConcurrencyConflictError,
    InsufficientStockError,
    NotFoundError,
    ValidationError,
)
from tillpoint.core.redis_client import CacheManager
from tillpoint.core.time_utils import utcnow
from tillpoint.models.inventory import Product, StockLog, StockLogReason
from tillpoint.services.alert_dispatcher import AlertDispatcher

logger = logging.getLogger(__name__)


def stock_status(product: Product) -> str:
    """Classify a product's stock level."""
    if product.stock_quantity <= 0:
        return "out_of_stock"
    if product.stock_quantity <= product.min_stock_level:
        return "low_stock"
    return "normal"


class StockLedger:
    """Service owning product stock quantities and their audit trail."""

    def __init__(
        self,
        database: Database,
        settings: Settings,
        cache: Optional[CacheManager] = None,
        alert_dispatcher: Optional[AlertDispatcher] = None,
    ):
        self.database = database
        self.settings = settings
        self.cache = cache
        self.alert_dispatcher = alert_dispatcher

    def adjust_stock(
        self,
        product_id: int,
        change_amount: int,
        reason: Union[StockLogReason, str],
        user_id: Optional[str] = None,
        notes: Optional[str] = None,
        *,
        reference_type: Optional[str] = None,
        reference_id: Optional[str] = None,
        session: Optional[Session] = None,
    ) -> StockLog:
        """
        Change a product's stock by ``change_amount`` and log it.

        With ``session`` the adjustment joins the caller's unit of work and a
        lost race propagates as ConcurrencyConflictError for the caller to
        retry. Without it the ledger runs its own unit of work and retries
        internally.
        """
        if isinstance(change_amount, bool) or not isinstance(change_amount, int):
            raise ValidationError("Change amount must be a whole number")
        if change_amount == 0:
            raise ValidationError("Change amount cannot be zero")
        reason = self._coerce_reason(reason)

        kwargs = dict(
            product_id=product_id,
            change_amount=change_amount,
            reason=reason,
            user_id=user_id,
            notes=notes,
            reference_type=reference_type,
            reference_id=reference_id,
        )

        if session is not None:
            return self._apply(session, **kwargs)

        def _op() -> StockLog:
            with self.database.unit_of_work() as db:
                return self._apply(db, **kwargs)

        try:
            return run_with_retry(
                _op,
                attempts=self.settings.concurrency_retries,
                backoff_base=self.settings.retry_backoff_base,
                retry_on=(ConcurrencyConflictError, OperationalError, StaleDataError),
                operation=f"adjust_stock(product={product_id})",
            )
        except ConcurrencyConflictError:
            if change_amount > 0:
                raise
            raise InsufficientStockError(
                product_id,
                requested=-change_amount,
                message=f"Stock for product {product_id} kept changing; adjustment not applied",
            )

    def restock(
        self,
        product_id: int,
        quantity: int,
        user_id: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> StockLog:
        """Add ``quantity`` units received from a supplier."""
        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
            raise ValidationError("A valid positive quantity is required")
        return self.adjust_stock(product_id, quantity, StockLogReason.RESTOCK, user_id=user_id, notes=notes)

    def _apply(
        self,
        db: Session,
        product_id: int,
        change_amount: int,
        reason: StockLogReason,
        user_id: Optional[str],
        notes: Optional[str],
        reference_type: Optional[str],
        reference_id: Optional[str],
    ) -> StockLog:
        product = (
            lock_for_update(db.query(Product).filter(Product.id == product_id))
            .populate_existing()
            .first()
        )
        if not product:
            raise NotFoundError(f"Product {product_id} not found")

        previous_quantity = product.stock_quantity
        new_quantity = previous_quantity + change_amount
        if new_quantity < 0:
            raise InsufficientStockError(
                product.id,
                product.name,
                requested=-change_amount,
                available=previous_quantity,
            )

        # Compare-and-swap on the quantity we just read
        result = db.execute(
            update(Product)
            .where(Product.id == product_id, Product.stock_quantity == previous_quantity)
            .values(stock_quantity=new_quantity, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise ConcurrencyConflictError(
                f"Stock for product {product_id} changed during adjustment",
                product_id=product_id,
            )
        db.refresh(product)

        stock_log = StockLog(
            product_id=product.id,
            change_amount=change_amount,
            reason=reason,
            previous_quantity=previous_quantity,
            new_quantity=new_quantity,
            reference_type=reference_type,
            reference_id=reference_id,
            user_id=user_id,
            notes=notes,
        )
        db.add(stock_log)
        db.flush()

        if self.alert_dispatcher is not None:
            self.alert_dispatcher.check_stock_levels(db, product, previous_quantity)

        snapshot = {
            "product_id": product.id,
            "stock_quantity": new_quantity,
            "status": stock_status(product),
            "updated_at": utcnow().isoformat(),
        }
        after_commit(db, lambda: self._cache_stock(snapshot))

        logger.info(
            f"Stock {reason.value} for product {product.id}: "
            f"{previous_quantity} -> {new_quantity} ({change_amount:+d}) by {stock_log.performed_by}"
        )
        return stock_log

    def _coerce_reason(self, reason: Union[StockLogReason, str]) -> StockLogReason:
        if isinstance(reason, StockLogReason):
            return reason
        try:
            return StockLogReason(reason)
        except ValueError:
            valid = ", ".join(r.value for r in StockLogReason)
            raise ValidationError(f"Invalid stock change reason: {reason}. Expected one of: {valid}")

    def _cache_stock(self, snapshot: Dict[str, Any]) -> None:
        if self.cache is None:
            return
        self.cache.set(f"stock:{snapshot['product_id']}", snapshot, ttl=self.settings.cache_ttl)

    def reconcile(self, product_id: int) -> bool:
        """Check that the product's log history sums to its stored quantity."""
        with self.database.unit_of_work() as db:
            product = db.get(Product, product_id)
            if not product:
                raise NotFoundError(f"Product {product_id} not found")

            logged_total = db.query(
                func.coalesce(func.sum(StockLog.change_amount), 0)
            ).filter(StockLog.product_id == product_id).scalar()

            matches = int(logged_total) == product.stock_quantity
            if not matches:
                logger.warning(
                    f"Stock mismatch for product {product_id}: "
                    f"stored {product.stock_quantity}, logged {logged_total}"
                )
            return matches

    def reconcile_all(self) -> List[int]:
        """Return ids of every product whose log history disagrees with its stock."""
        with self.database.unit_of_work() as db:
            logged = (
                db.query(
                    StockLog.product_id.label("product_id"),
                    func.sum(StockLog.change_amount).label("total"),
                )
                .group_by(StockLog.product_id)
                .subquery()
            )
            rows = (
                db.query(Product.id, Product.stock_quantity, func.coalesce(logged.c.total, 0))
                .outerjoin(logged, logged.c.product_id == Product.id)
                .order_by(Product.id)
                .all()
            )

        mismatched = [product_id for product_id, stored, total in rows if int(total) != stored]
        if mismatched:
            logger.warning(f"Stock reconciliation found {len(mismatched)} mismatched products: {mismatched}")
        return mismatched

    def get_stock_movements(
        self,
        product_id: Optional[int] = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        limit: int = 100,
    ) -> List[Dict[str, Any]]:
        """Get stock movement history, newest first."""
        with self.database.unit_of_work() as db:
            query = db.query(StockLog, Product.name).join(Product, StockLog.product_id == Product.id)

            if product_id:
                query = query.filter(StockLog.product_id == product_id)
            if start_date:
                query = query.filter(StockLog.created_at >= start_date)
            if end_date:
                query = query.filter(StockLog.created_at <= end_date)

            movements = query.order_by(desc(StockLog.created_at), desc(StockLog.id)).limit(limit).all()

            return [
                {
                    "id": log.id,
                    "product_id": log.product_id,
                    "product_name": product_name,
                    "change_amount": log.change_amount,
                    "reason": log.reason.value,
                    "previous_quantity": log.previous_quantity,
                    "new_quantity": log.new_quantity,
                    "reference_type": log.reference_type,
                    "reference_id": log.reference_id,
                    "performed_by": log.performed_by,
                    "notes": log.notes,
                    "created_at": log.created_at.isoformat(),
                }
                for log, product_name in movements
            ]

    def get_low_stock_products(self, threshold: Optional[int] = None) -> List[Dict[str, Any]]:
        """Get active products at or below their minimum (or the given threshold)."""
        with self.database.unit_of_work() as db:
            query = db.query(Product).filter(Product.is_active == True)  # noqa: E712
            if threshold is not None:
                query = query.filter(Product.stock_quantity <= threshold)
            else:
                query = query.filter(Product.stock_quantity <= Product.min_stock_level)

            products = query.order_by(Product.stock_quantity, Product.id).all()

            return [
                {
                    "product_id": product.id,
                    "barcode": product.barcode,
                    "name": product.name,
                    "stock_quantity": product.stock_quantity,
                    "min_stock_level": product.min_stock_level,
                    "status": stock_status(product),
                }
                for product in products
            ]

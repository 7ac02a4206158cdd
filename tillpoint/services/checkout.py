"""
Checkout engine: turns a cart into a transaction and records its payment.

A checkout validates every line against freshly read products, writes the
transaction, its items and one stock decrement per line in a single unit of
work. A sale that loses a stock race is rolled back completely and retried
from a fresh read; if the stock is gone by then the caller gets
InsufficientStockError.
"""
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union

from sqlalchemy import desc
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from tillpoint.core.concurrency import is_unique_violation, run_with_retry
from tillpoint.core.config import Settings
from tillpoint.core.database import Database, lock_for_update
from tillpoint.core.exceptions import (
    ConcurrencyConflictError,
    InsufficientStockError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from tillpoint.core.money import ZERO, to_money, to_optional_money
from tillpoint.core.time_utils import utcnow
from tillpoint.models.inventory import Product, StockLogReason
from tillpoint.models.sales import PaymentMethod, Transaction, TransactionItem, TransactionStatus
from tillpoint.services.stock_ledger import StockLedger

logger = logging.getLogger(__name__)

# Methods settled at the counter; the rest wait for confirmation
IMMEDIATE_METHODS = (PaymentMethod.CASH, PaymentMethod.CARD)


@dataclass
class CartLine:
    """A product and quantity submitted by the cashier."""
    product_id: int
    quantity: int
    discount_amount: Decimal = ZERO


@dataclass
class PaymentInfo:
    """Payment details supplied with a checkout."""
    method: Union[PaymentMethod, str]
    amount_paid: Optional[Decimal] = None
    customer_name: Optional[str] = None
    customer_phone: Optional[str] = None
    discount_amount: Decimal = ZERO
    notes: Optional[str] = None
    momo_phone: Optional[str] = None
    momo_transaction_id: Optional[str] = None


@dataclass
class Totals:
    subtotal: Decimal
    tax_amount: Decimal
    discount_amount: Decimal
    total_amount: Decimal


@dataclass
class _PricedLine:
    product: Product
    quantity: int
    unit_price: Decimal
    discount_amount: Decimal
    total_price: Decimal


@dataclass
class _PaymentState:
    status: TransactionStatus
    amount_paid: Decimal
    change_amount: Decimal
    completed_at: Optional[datetime] = field(default=None)


def generate_transaction_number() -> str:
    return f"TXN-{utcnow().strftime('%Y%m%d')}-{uuid.uuid4().hex[:8].upper()}"


def coerce_payment_method(method: Union[PaymentMethod, str]) -> PaymentMethod:
    if isinstance(method, PaymentMethod):
        return method
    try:
        return PaymentMethod(str(method).lower())
    except ValueError:
        valid = ", ".join(m.value for m in PaymentMethod)
        raise ValidationError(f"Invalid payment method: {method}. Expected one of: {valid}")


class CheckoutEngine:
    """Service creating transactions and driving their payment state."""

    def __init__(self, database: Database, stock_ledger: StockLedger, settings: Settings):
        self.database = database
        self.stock_ledger = stock_ledger
        self.settings = settings

    # Checkout

    def create_transaction(
        self,
        cart_lines: Iterable[CartLine],
        payment: PaymentInfo,
        created_by: Optional[str] = None,
    ) -> Transaction:
        """
        Create a transaction for ``cart_lines`` and decrement stock.

        Prices come from the product records, never from the client. The
        returned transaction is ``completed`` for cash tendered at the
        counter and for card, ``pending`` otherwise.
        """
        lines = self._normalize_cart(cart_lines)
        method = coerce_payment_method(payment.method)
        order_discount = to_money(payment.discount_amount or ZERO, "discount_amount")
        if order_discount < ZERO:
            raise ValidationError("Discount cannot be negative")
        amount_paid = to_optional_money(payment.amount_paid, "amount_paid")
        if amount_paid is not None and amount_paid < ZERO:
            raise ValidationError("Amount paid cannot be negative")

        def _op() -> Transaction:
            with self.database.unit_of_work() as db:
                return self._create(db, lines, payment, method, order_discount, amount_paid, created_by)

        try:
            transaction = run_with_retry(
                _op,
                attempts=self.settings.concurrency_retries,
                backoff_base=self.settings.retry_backoff_base,
                operation="create_transaction",
            )
        except ConcurrencyConflictError as exc:
            product_id = exc.extra.get("product_id")
            if product_id is None:
                raise
            raise InsufficientStockError(
                product_id,
                message=f"Stock for product {product_id} changed during checkout; please retry",
            )

        logger.info(
            f"Transaction {transaction.transaction_number} created: "
            f"{len(transaction.items)} item(s), total {transaction.total_amount}, "
            f"{transaction.payment_method.value}, {transaction.status.value}"
        )
        return transaction

    def _normalize_cart(self, cart_lines: Iterable[CartLine]) -> List[CartLine]:
        """Validate quantities and merge repeated products into one line."""
        merged: Dict[int, CartLine] = {}
        for line in cart_lines:
            quantity = line.quantity
            if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
                raise ValidationError(f"Quantity for product {line.product_id} must be a positive whole number")
            discount = to_money(line.discount_amount or ZERO, "discount_amount")
            if discount < ZERO:
                raise ValidationError(f"Discount for product {line.product_id} cannot be negative")

            if line.product_id in merged:
                existing = merged[line.product_id]
                existing.quantity += quantity
                existing.discount_amount += discount
            else:
                merged[line.product_id] = CartLine(line.product_id, quantity, discount)

        if not merged:
            raise ValidationError("At least one item is required")
        return list(merged.values())

    def _load_products(self, db: Session, product_ids: List[int]) -> Dict[int, Product]:
        # Lock in id order so two checkouts never wait on each other in a cycle
        products = (
            lock_for_update(db.query(Product).filter(Product.id.in_(product_ids)))
            .order_by(Product.id)
            .all()
        )
        return {product.id: product for product in products}

    def _create(
        self,
        db: Session,
        lines: List[CartLine],
        payment: PaymentInfo,
        method: PaymentMethod,
        order_discount: Decimal,
        amount_paid: Optional[Decimal],
        created_by: Optional[str],
    ) -> Transaction:
        products = self._load_products(db, [line.product_id for line in lines])

        priced: List[_PricedLine] = []
        for line in lines:
            product = products.get(line.product_id)
            if product is None:
                raise NotFoundError(f"Product {line.product_id} not found")
            if not product.is_active:
                raise InsufficientStockError(
                    product.id,
                    product.name,
                    requested=line.quantity,
                    available=0,
                    message=f"{product.name} is no longer available for sale",
                )
            if line.quantity > product.stock_quantity:
                raise InsufficientStockError(
                    product.id,
                    product.name,
                    requested=line.quantity,
                    available=product.stock_quantity,
                )

            unit_price = to_money(product.price)
            gross = unit_price * line.quantity
            if line.discount_amount > gross:
                raise ValidationError(f"Discount for {product.name} exceeds the line amount")
            priced.append(_PricedLine(
                product=product,
                quantity=line.quantity,
                unit_price=unit_price,
                discount_amount=line.discount_amount,
                total_price=to_money(gross - line.discount_amount),
            ))

        totals = self.calculate_totals([line.total_price for line in priced], order_discount)
        state = self._initial_payment_state(method, amount_paid, totals.total_amount)

        transaction = Transaction(
            transaction_number=generate_transaction_number(),
            status=state.status,
            payment_method=method,
            subtotal=totals.subtotal,
            tax_amount=totals.tax_amount,
            discount_amount=totals.discount_amount,
            total_amount=totals.total_amount,
            amount_paid=state.amount_paid,
            change_amount=state.change_amount,
            completed_at=state.completed_at,
            customer_name=payment.customer_name,
            customer_phone=payment.customer_phone,
            momo_phone=payment.momo_phone if method == PaymentMethod.MOMO else None,
            momo_transaction_id=payment.momo_transaction_id if method == PaymentMethod.MOMO else None,
            notes=payment.notes,
            created_by=created_by,
        )
        transaction.items = [
            TransactionItem(
                product_id=line.product.id,
                barcode=line.product.barcode,
                product_name=line.product.name,
                product_image=line.product.image_url,
                quantity=line.quantity,
                unit_price=line.unit_price,
                discount_amount=line.discount_amount,
                total_price=line.total_price,
            )
            for line in priced
        ]
        db.add(transaction)
        try:
            db.flush()
        except IntegrityError as exc:
            if is_unique_violation(exc):
                raise ConcurrencyConflictError("Transaction number collision") from exc
            raise

        for line in priced:
            self.stock_ledger.adjust_stock(
                line.product.id,
                -line.quantity,
                StockLogReason.SALE,
                user_id=created_by,
                reference_type="transaction",
                reference_id=transaction.transaction_number,
                session=db,
            )

        return transaction

    def calculate_totals(self, line_totals: List[Decimal], order_discount: Decimal = ZERO) -> Totals:
        """Subtotal of line totals, tax on the subtotal, then the order discount."""
        subtotal = to_money(sum(line_totals, ZERO))
        tax_amount = to_money(subtotal * self.settings.tax_rate)
        discount = to_money(order_discount)
        if discount > subtotal + tax_amount:
            raise ValidationError("Discount cannot exceed the transaction amount")
        return Totals(
            subtotal=subtotal,
            tax_amount=tax_amount,
            discount_amount=discount,
            total_amount=subtotal + tax_amount - discount,
        )

    def _initial_payment_state(
        self, method: PaymentMethod, amount_paid: Optional[Decimal], total: Decimal
    ) -> _PaymentState:
        # Cash completes at the counter only once the tender covers the total;
        # a short tender leaves the sale pending for finalize_payment.
        if method == PaymentMethod.CASH and amount_paid is not None and amount_paid >= total:
            return _PaymentState(
                status=TransactionStatus.COMPLETED,
                amount_paid=amount_paid,
                change_amount=amount_paid - total,
                completed_at=utcnow(),
            )
        if method == PaymentMethod.CARD:
            return _PaymentState(
                status=TransactionStatus.COMPLETED,
                amount_paid=total,
                change_amount=ZERO,
                completed_at=utcnow(),
            )
        return _PaymentState(status=TransactionStatus.PENDING, amount_paid=ZERO, change_amount=ZERO)

    # Payment state

    def finalize_payment(
        self,
        transaction_id: int,
        method: Union[PaymentMethod, str],
        amount_paid: Any,
        meta: Optional[Dict[str, Any]] = None,
    ) -> Transaction:
        """
        Record a confirmed payment and complete a pending transaction.

        The amount is recorded as reported; change is never negative.
        Stock is not touched; it was decremented when the sale was created.
        """
        method = coerce_payment_method(method)
        amount_paid = to_money(amount_paid, "amount_paid")
        if amount_paid < ZERO:
            raise ValidationError("Amount paid cannot be negative")
        meta = meta or {}

        def _op() -> Transaction:
            with self.database.unit_of_work() as db:
                transaction = self._get_pending(db, transaction_id, "finalize payment for")

                total = to_money(transaction.total_amount)
                transaction.payment_method = method
                transaction.amount_paid = amount_paid
                transaction.change_amount = max(ZERO, amount_paid - total) if method == PaymentMethod.CASH else ZERO
                transaction.status = TransactionStatus.COMPLETED
                transaction.completed_at = utcnow()
                for key in ("customer_name", "customer_phone", "notes", "momo_phone", "momo_transaction_id"):
                    if meta.get(key):
                        setattr(transaction, key, meta[key])
                db.flush()
                return transaction

        transaction = self._run_state_change(_op, "finalize_payment")
        logger.info(
            f"Payment finalized for {transaction.transaction_number}: "
            f"{method.value} {amount_paid}, change {transaction.change_amount}"
        )
        return transaction

    def cancel_transaction(self, transaction_id: int, reason: str, user_id: Optional[str] = None) -> Transaction:
        """Cancel a pending transaction and return its items to stock."""
        return self._close_pending(transaction_id, TransactionStatus.CANCELLED, reason, user_id)

    def fail_payment(self, transaction_id: int, reason: str) -> Transaction:
        """Mark a pending payment as failed and return its items to stock."""
        return self._close_pending(transaction_id, TransactionStatus.FAILED, reason, None)

    def _close_pending(
        self,
        transaction_id: int,
        status: TransactionStatus,
        reason: str,
        user_id: Optional[str],
    ) -> Transaction:
        verb = "cancel" if status == TransactionStatus.CANCELLED else "fail"

        def _op() -> Transaction:
            with self.database.unit_of_work() as db:
                transaction = self._get_pending(db, transaction_id, verb)

                for item in transaction.items:
                    self.stock_ledger.adjust_stock(
                        item.product_id,
                        item.quantity,
                        StockLogReason.RETURN,
                        user_id=user_id,
                        notes=f"{status.value.capitalize()} {transaction.transaction_number}: {reason}",
                        reference_type="transaction",
                        reference_id=transaction.transaction_number,
                        session=db,
                    )

                transaction.status = status
                transaction.status_reason = reason
                db.flush()
                return transaction

        transaction = self._run_state_change(_op, f"{verb}_transaction")
        logger.info(f"Transaction {transaction.transaction_number} {status.value}: {reason}")
        return transaction

    def _get_pending(self, db: Session, transaction_id: int, verb: str) -> Transaction:
        transaction = lock_for_update(db.query(Transaction).filter(Transaction.id == transaction_id)).first()
        if not transaction:
            raise NotFoundError(f"Transaction {transaction_id} not found")
        if transaction.status.is_terminal:
            raise InvalidStateError(
                f"Cannot {verb} transaction {transaction.transaction_number}: "
                f"it is already {transaction.status.value}"
            )
        return transaction

    def _run_state_change(self, func, operation: str) -> Transaction:
        # A concurrent status change shows up as StaleDataError; the retry
        # re-reads the row and reports the terminal state it finds.
        return run_with_retry(
            func,
            attempts=self.settings.concurrency_retries,
            backoff_base=self.settings.retry_backoff_base,
            retry_on=(StaleDataError, OperationalError, ConcurrencyConflictError),
            operation=operation,
        )

    def expire_stale_pending(self, older_than_minutes: Optional[int] = None) -> List[str]:
        """Cancel pending transactions whose payment never arrived."""
        minutes = older_than_minutes or self.settings.pending_timeout_minutes
        cutoff = utcnow() - timedelta(minutes=minutes)

        with self.database.unit_of_work() as db:
            stale_ids = [
                row.id
                for row in db.query(Transaction.id).filter(
                    Transaction.status == TransactionStatus.PENDING,
                    Transaction.created_at < cutoff,
                ).order_by(Transaction.id)
            ]

        cancelled = []
        for transaction_id in stale_ids:
            try:
                transaction = self.cancel_transaction(
                    transaction_id, f"Payment not confirmed within {minutes} minutes"
                )
            except InvalidStateError:
                logger.info(f"Transaction {transaction_id} settled before it could be expired")
                continue
            cancelled.append(transaction.transaction_number)
        return cancelled

    # Reads

    def get_transaction(self, transaction_id: int) -> Transaction:
        with self.database.unit_of_work() as db:
            transaction = db.get(Transaction, transaction_id)
            if not transaction:
                raise NotFoundError(f"Transaction {transaction_id} not found")
            return transaction

    def get_by_number(self, transaction_number: str) -> Transaction:
        with self.database.unit_of_work() as db:
            transaction = db.query(Transaction).filter(
                Transaction.transaction_number == transaction_number
            ).first()
            if not transaction:
                raise NotFoundError(f"Transaction {transaction_number} not found")
            return transaction

    def list_transactions(
        self,
        status: Optional[TransactionStatus] = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        page: int = 1,
        limit: int = 20,
    ) -> Tuple[List[Transaction], int]:
        """Page through transactions, newest first. Returns (rows, total)."""
        page = max(page, 1)
        limit = min(max(limit, 1), 100)

        with self.database.unit_of_work() as db:
            query = db.query(Transaction)
            if status:
                query = query.filter(Transaction.status == status)
            if start_date:
                query = query.filter(Transaction.created_at >= start_date)
            if end_date:
                query = query.filter(Transaction.created_at <= end_date)

            total = query.count()
            rows = (
                query.order_by(desc(Transaction.created_at), desc(Transaction.id))
                .offset((page - 1) * limit)
                .limit(limit)
                .all()
            )
            return rows, total

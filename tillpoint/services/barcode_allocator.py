"""
Barcode Allocator service managing the pre-generated barcode pool.
"""
import logging
from dataclasses import dataclass
from typing import List, Optional, Tuple

from sqlalchemy import func, update
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session

from tillpoint.core.concurrency import is_unique_violation, run_with_retry
from tillpoint.core.config import Settings
from tillpoint.core.database import Database, after_commit, lock_for_update
from tillpoint.core.exceptions import (
    ConcurrencyConflictError,
    ExhaustedPoolError,
    NotFoundError,
    ValidationError,
)
from tillpoint.core.redis_client import CacheManager
from tillpoint.core.time_utils import utcnow
from tillpoint.models.barcodes import Barcode, BarcodeStatus
from tillpoint.services.alert_dispatcher import AlertDispatcher

logger = logging.getLogger(__name__)

POOL_STATUS_CACHE_KEY = "barcodes:pool_status"


@dataclass
class PoolStatus:
    available_count: int
    next_available: Optional[Barcode]
    warning_level: bool
    critical_level: bool


class BarcodeAllocator:
    """Service generating barcode batches and handing them out in order."""

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

    def format_barcode(self, barcode_id: int) -> str:
        """Zero-padded fixed-width text for a barcode id."""
        value = str(barcode_id).zfill(self.settings.barcode_width)
        if len(value) > self.settings.barcode_width:
            raise ValidationError(
                f"Barcode id {barcode_id} does not fit in {self.settings.barcode_width} digits"
            )
        return value

    def generate_batch(self, count: int) -> List[Barcode]:
        """
        Append ``count`` available barcodes after the current highest id.

        The batch is written in one unit of work. A concurrent batch that
        claims the same ids makes this one fail on the primary key; it is
        rolled back and retried from the new maximum.
        """
        low, high = self.settings.barcode_batch_min, self.settings.barcode_batch_max
        if isinstance(count, bool) or not isinstance(count, int) or not low <= count <= high:
            raise ValidationError(f"Count must be between {low} and {high}")

        def _op() -> List[Barcode]:
            with self.database.unit_of_work() as db:
                start = (db.query(func.max(Barcode.barcode_id)).scalar() or 0) + 1
                barcodes = [
                    Barcode(
                        barcode_id=barcode_id,
                        barcode=self.format_barcode(barcode_id),
                        status=BarcodeStatus.AVAILABLE,
                    )
                    for barcode_id in range(start, start + count)
                ]
                db.add_all(barcodes)
                try:
                    db.flush()
                except IntegrityError as exc:
                    if is_unique_violation(exc):
                        raise ConcurrencyConflictError("Barcode ids claimed by a concurrent batch") from exc
                    raise
                after_commit(db, self._invalidate_pool_cache)
                return barcodes

        barcodes = run_with_retry(
            _op,
            attempts=self.settings.concurrency_retries,
            backoff_base=self.settings.retry_backoff_base,
            retry_on=(ConcurrencyConflictError, OperationalError),
            operation="generate_batch",
        )
        logger.info(
            f"Generated {count} barcode(s): {barcodes[0].barcode_id}..{barcodes[-1].barcode_id}"
        )
        return barcodes

    def allocate_next(self, product_id: Optional[int] = None, *, session: Optional[Session] = None) -> Barcode:
        """
        Assign the available barcode with the smallest id.

        With ``session`` the allocation joins the caller's unit of work and a
        lost race propagates as ConcurrencyConflictError.
        """
        if session is not None:
            return self._allocate(session, product_id)

        def _op() -> Barcode:
            with self.database.unit_of_work() as db:
                return self._allocate(db, product_id)

        try:
            return run_with_retry(
                _op,
                attempts=self.settings.concurrency_retries,
                backoff_base=self.settings.retry_backoff_base,
                retry_on=(ConcurrencyConflictError, OperationalError),
                operation="allocate_next",
            )
        except ConcurrencyConflictError:
            raise ExhaustedPoolError("Could not reserve a barcode; the pool is under heavy contention. Try again.")

    def _allocate(self, db: Session, product_id: Optional[int]) -> Barcode:
        candidate = lock_for_update(
            db.query(Barcode)
            .filter(Barcode.status == BarcodeStatus.AVAILABLE)
            .order_by(Barcode.barcode_id),
            skip_locked=True,
        ).first()
        if candidate is None:
            # SKIP LOCKED hides rows other allocations hold; those may still be released
            if self._count_available(db):
                raise ConcurrencyConflictError("Every available barcode is locked by a concurrent allocation")
            raise ExhaustedPoolError()

        self._assign(db, candidate, product_id)
        logger.info(f"Allocated barcode {candidate.barcode} (id {candidate.barcode_id})")
        return candidate

    def claim_supplied(self, db: Session, value: str) -> Optional[Barcode]:
        """
        Take a pool barcode that was typed in rather than allocated.

        Returns None when ``value`` is not a pool barcode. An available one is
        assigned exactly as ``allocate_next`` would, so the pool never hands it
        out again. One that was allocated but never attached is returned as is.
        """
        found = lock_for_update(db.query(Barcode).filter(Barcode.barcode == value)).first()
        if found is None:
            return None
        if found.status == BarcodeStatus.AVAILABLE:
            self._assign(db, found, None)
            logger.info(f"Claimed supplied barcode {found.barcode} from the pool")
        elif found.product_id is not None:
            raise ValidationError(f"Barcode {value} is already assigned to another product")
        return found

    def _assign(self, db: Session, candidate: Barcode, product_id: Optional[int]) -> None:
        # Flip status only if nobody else did since we read it
        result = db.execute(
            update(Barcode)
            .where(
                Barcode.barcode_id == candidate.barcode_id,
                Barcode.status == BarcodeStatus.AVAILABLE,
            )
            .values(status=BarcodeStatus.ASSIGNED, assigned_at=utcnow(), product_id=product_id)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise ConcurrencyConflictError(f"Barcode {candidate.barcode} was taken by a concurrent allocation")
        db.refresh(candidate)
        after_commit(db, self._after_allocation)

    @staticmethod
    def _count_available(db: Session) -> int:
        return db.query(func.count(Barcode.barcode_id)).filter(
            Barcode.status == BarcodeStatus.AVAILABLE
        ).scalar()

    def attach_to_product(self, db: Session, barcode: Barcode, product_id: int) -> None:
        """Record which product an assigned barcode went to."""
        if barcode.status != BarcodeStatus.ASSIGNED:
            raise ValidationError(f"Barcode {barcode.barcode} has not been allocated")
        barcode.product_id = product_id
        db.flush()

    def available_count(self) -> int:
        with self.database.unit_of_work() as db:
            return self._count_available(db)

    def pool_status(self) -> PoolStatus:
        """Available count, next barcode in line and the alerting levels."""
        with self.database.unit_of_work() as db:
            count = self._count_available(db)
            next_available = (
                db.query(Barcode)
                .filter(Barcode.status == BarcodeStatus.AVAILABLE)
                .order_by(Barcode.barcode_id)
                .first()
            )

        status = PoolStatus(
            available_count=count,
            next_available=next_available,
            warning_level=count < self.settings.barcode_warning_threshold,
            critical_level=count < self.settings.barcode_critical_threshold,
        )
        if self.cache is not None:
            self.cache.set(POOL_STATUS_CACHE_KEY, {
                "available_count": status.available_count,
                "warning_level": status.warning_level,
                "critical_level": status.critical_level,
            }, ttl=self.settings.cache_ttl)
        return status

    def lookup(self, barcode: str) -> Barcode:
        with self.database.unit_of_work() as db:
            found = db.query(Barcode).filter(Barcode.barcode == barcode).first()
            if not found:
                raise NotFoundError(f"Barcode {barcode} not found")
            return found

    def list_barcodes(
        self,
        status: Optional[BarcodeStatus] = None,
        page: int = 1,
        limit: int = 50,
    ) -> Tuple[List[Barcode], int]:
        page = max(page, 1)
        limit = min(max(limit, 1), 200)
        with self.database.unit_of_work() as db:
            query = db.query(Barcode)
            if status:
                query = query.filter(Barcode.status == status)
            total = query.count()
            rows = query.order_by(Barcode.barcode_id).offset((page - 1) * limit).limit(limit).all()
            return rows, total

    def _invalidate_pool_cache(self) -> None:
        if self.cache is not None:
            self.cache.delete(POOL_STATUS_CACHE_KEY)

    def _after_allocation(self) -> None:
        self._invalidate_pool_cache()
        if self.alert_dispatcher is None:
            return
        status = self.pool_status()
        self.alert_dispatcher.check_barcode_pool(
            status.available_count, status.warning_level, status.critical_level
        )

"""
Product catalog service: product creation with pooled barcodes and
opening stock, scanner lookups and soft deactivation.
"""
import logging
from typing import Any, Dict, Optional

from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session

from tillpoint.core.concurrency import is_unique_violation, run_with_retry
from tillpoint.core.config import Settings
from tillpoint.core.database import Database
from tillpoint.core.exceptions import (
    ConcurrencyConflictError,
    ExhaustedPoolError,
    NotFoundError,
    ValidationError,
)
from tillpoint.core.money import ZERO, to_money, to_optional_money
from tillpoint.models.barcodes import Barcode
from tillpoint.models.inventory import Category, Product, StockLogReason
from tillpoint.services.barcode_allocator import BarcodeAllocator
from tillpoint.services.stock_ledger import StockLedger

logger = logging.getLogger(__name__)

UPDATABLE_FIELDS = ("name", "description", "price", "cost_price", "image_url", "category_id", "min_stock_level", "is_active")
REQUIRED_FIELDS = ("name", "price", "min_stock_level", "is_active")


class ProductCatalog:
    """Service for creating and maintaining products."""

    def __init__(
        self,
        database: Database,
        stock_ledger: StockLedger,
        barcode_allocator: BarcodeAllocator,
        settings: Settings,
    ):
        self.database = database
        self.stock_ledger = stock_ledger
        self.barcode_allocator = barcode_allocator
        self.settings = settings

    def create_product(self, data: Dict[str, Any], user_id: Optional[str] = None) -> Product:
        """
        Create a product, taking a barcode from the pool unless one is given.

        The product starts at zero stock; any opening quantity is written
        through the stock ledger so the audit log covers it.
        """
        name = (data.get("name") or "").strip()
        if not name:
            raise ValidationError("Product name is required")
        price = to_money(data.get("price", ZERO), "price")
        if price < ZERO:
            raise ValidationError("Price cannot be negative")
        cost_price = to_optional_money(data.get("cost_price"), "cost_price")
        opening_stock = self._non_negative_int(data.get("stock_quantity", 0), "stock_quantity")
        min_stock_level = self._non_negative_int(
            data.get("min_stock_level", self.settings.low_stock_default), "min_stock_level"
        )
        supplied_barcode = (data.get("barcode") or "").strip() or None

        def _op() -> Product:
            with self.database.unit_of_work() as db:
                category_id = data.get("category_id")
                if category_id is not None and not db.get(Category, category_id):
                    raise NotFoundError(f"Category {category_id} not found")

                if supplied_barcode:
                    if self._barcode_holder(db, supplied_barcode) is not None:
                        raise ValidationError(f"Barcode {supplied_barcode} is already in use")
                    pooled = self.barcode_allocator.claim_supplied(db, supplied_barcode)
                    barcode = supplied_barcode
                else:
                    pooled = self._allocate_unused(db)
                    barcode = pooled.barcode

                product = Product(
                    barcode=barcode,
                    name=name,
                    description=data.get("description"),
                    image_url=data.get("image_url"),
                    category_id=category_id,
                    price=price,
                    cost_price=cost_price,
                    stock_quantity=0,
                    min_stock_level=min_stock_level,
                    is_active=True,
                )
                db.add(product)
                try:
                    db.flush()
                except IntegrityError as exc:
                    if not is_unique_violation(exc):
                        raise
                    if supplied_barcode:
                        raise ValidationError(f"Barcode {supplied_barcode} is already in use") from exc
                    raise ConcurrencyConflictError(f"Barcode {barcode} was taken by a concurrent create") from exc

                if pooled is not None:
                    self.barcode_allocator.attach_to_product(db, pooled, product.id)

                if opening_stock:
                    self.stock_ledger.adjust_stock(
                        product.id,
                        opening_stock,
                        StockLogReason.RESTOCK,
                        user_id=user_id,
                        notes="Opening stock",
                        reference_type="product",
                        reference_id=str(product.id),
                        session=db,
                    )
                return product

        try:
            product = run_with_retry(
                _op,
                attempts=self.settings.concurrency_retries,
                backoff_base=self.settings.retry_backoff_base,
                retry_on=(ConcurrencyConflictError, OperationalError),
                operation="create_product",
            )
        except ConcurrencyConflictError:
            raise ExhaustedPoolError("Could not reserve a barcode for the new product. Try again.")

        logger.info(f"Product {product.id} created: {product.name} ({product.barcode})")
        return product

    def _allocate_unused(self, db: Session) -> Barcode:
        """
        Allocate the next pool barcode no product is already using.

        A product created with a typed-in barcode before the pool reached that
        value still holds it; the pool row is attached to that product and
        skipped.
        """
        while True:
            pooled = self.barcode_allocator.allocate_next(session=db)
            holder = self._barcode_holder(db, pooled.barcode)
            if holder is None:
                return pooled
            self.barcode_allocator.attach_to_product(db, pooled, holder)
            logger.warning(f"Pool barcode {pooled.barcode} was already used by product {holder}; skipped")

    @staticmethod
    def _barcode_holder(db: Session, barcode: str) -> Optional[int]:
        return db.query(Product.id).filter(Product.barcode == barcode).scalar()

    def get_product(self, product_id: int) -> Product:
        with self.database.unit_of_work() as db:
            product = db.get(Product, product_id)
            if not product:
                raise NotFoundError(f"Product {product_id} not found")
            return product

    def get_by_barcode(self, barcode: str) -> Product:
        """Scanner lookup; only active products can be sold."""
        with self.database.unit_of_work() as db:
            product = db.query(Product).filter(
                Product.barcode == barcode,
                Product.is_active == True,  # noqa: E712
            ).first()
            if not product:
                raise NotFoundError(f"No active product with barcode {barcode}")
            return product

    def update_product(self, product_id: int, data: Dict[str, Any]) -> Product:
        """Update descriptive fields. Stock only moves through the ledger."""
        if "stock_quantity" in data:
            raise ValidationError("Stock can only change through stock adjustments")
        unknown = set(data) - set(UPDATABLE_FIELDS)
        if unknown:
            raise ValidationError(f"Unknown product fields: {', '.join(sorted(unknown))}")

        with self.database.unit_of_work() as db:
            product = db.get(Product, product_id)
            if not product:
                raise NotFoundError(f"Product {product_id} not found")

            for key, value in data.items():
                if value is None and key in REQUIRED_FIELDS:
                    raise ValidationError(f"{key} cannot be empty")
                if key == "price":
                    value = to_money(value, "price")
                    if value < ZERO:
                        raise ValidationError("Price cannot be negative")
                elif key == "cost_price":
                    value = to_optional_money(value, "cost_price")
                elif key == "min_stock_level":
                    value = self._non_negative_int(value, "min_stock_level")
                elif key == "name":
                    value = (value or "").strip()
                    if not value:
                        raise ValidationError("Product name is required")
                elif key == "category_id" and value is not None and not db.get(Category, value):
                    raise NotFoundError(f"Category {value} not found")
                setattr(product, key, value)

            db.flush()
            return product

    def deactivate_product(self, product_id: int) -> Product:
        """Soft-disable a product; its sales and stock history stay intact."""
        product = self.update_product(product_id, {"is_active": False})
        logger.info(f"Product {product_id} deactivated")
        return product

    def create_category(self, name: str, description: Optional[str] = None) -> Category:
        name = (name or "").strip()
        if not name:
            raise ValidationError("Category name is required")
        with self.database.unit_of_work() as db:
            if db.query(Category.id).filter(Category.name == name).first():
                raise ValidationError(f"Category {name} already exists")
            category = Category(name=name, description=description)
            db.add(category)
            db.flush()
            return category

    @staticmethod
    def _non_negative_int(value: Any, field: str) -> int:
        if isinstance(value, bool):
            raise ValidationError(f"{field} must be a whole number")
        try:
            number = int(value)
        except (TypeError, ValueError):
            raise ValidationError(f"{field} must be a whole number")
        if number != value and str(number) != str(value).strip():
            raise ValidationError(f"{field} must be a whole number")
        if number < 0:
            raise ValidationError(f"{field} cannot be negative")
        return number

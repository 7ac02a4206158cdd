"""
Inventory models for products, categories and the stock audit log.
"""
import enum

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
)
from sqlalchemy.orm import relationship

from tillpoint.core.database import Base
from tillpoint.core.time_utils import utcnow


class StockLogReason(enum.Enum):
    """Why a product's stock changed."""
    SALE = "sale"
    RESTOCK = "restock"
    CORRECTION = "correction"
    RETURN = "return"
    DAMAGE = "damage"


class Category(Base):
    """Model for product categories."""
    __tablename__ = "categories"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), unique=True, nullable=False)
    description = Column(Text, nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    products = relationship("Product", back_populates="category")

    def __repr__(self):
        return f"<Category(id={self.id}, name='{self.name}')>"


class Product(Base):
    """Model for products."""
    __tablename__ = "products"
    __table_args__ = (
        CheckConstraint("stock_quantity >= 0", name="ck_products_stock_non_negative"),
        CheckConstraint("min_stock_level >= 0", name="ck_products_min_stock_non_negative"),
        CheckConstraint("price >= 0", name="ck_products_price_non_negative"),
    )

    id = Column(Integer, primary_key=True, index=True)
    barcode = Column(String(100), unique=True, index=True, nullable=False)
    name = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    image_url = Column(String(500), nullable=True)
    category_id = Column(Integer, ForeignKey("categories.id"), nullable=True)

    # Pricing
    price = Column(Numeric(10, 2), nullable=False)
    cost_price = Column(Numeric(10, 2), nullable=True)

    # Stock; written only through the stock ledger
    stock_quantity = Column(Integer, default=0, nullable=False)
    min_stock_level = Column(Integer, default=5, nullable=False)

    # Soft disable instead of deleting products referenced by history
    is_active = Column(Boolean, default=True, nullable=False)

    # Timestamps
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)

    # Relationships
    category = relationship("Category", back_populates="products")
    stock_logs = relationship("StockLog", back_populates="product", passive_deletes="all")

    def __repr__(self):
        return f"<Product(id={self.id}, barcode='{self.barcode}', name='{self.name}')>"


class StockLog(Base):
    """Append-only record of one stock-affecting event."""
    __tablename__ = "stock_logs"

    id = Column(Integer, primary_key=True, index=True)
    product_id = Column(Integer, ForeignKey("products.id", ondelete="RESTRICT"), index=True, nullable=False)

    # Positive for additions, negative for reductions
    change_amount = Column(Integer, nullable=False)
    reason = Column(Enum(StockLogReason), nullable=False)
    previous_quantity = Column(Integer, nullable=False)
    new_quantity = Column(Integer, nullable=False)

    # Reference information
    reference_type = Column(String(50), nullable=True)  # "transaction", "product"
    reference_id = Column(String(50), nullable=True)

    # None means the system made the change
    user_id = Column(String(50), nullable=True)
    notes = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    product = relationship("Product", back_populates="stock_logs")

    @property
    def performed_by(self) -> str:
        return self.user_id or "System"

    def __repr__(self):
        return f"<StockLog(id={self.id}, product_id={self.product_id}, reason={self.reason}, change={self.change_amount})>"

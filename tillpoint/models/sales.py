"""
Sales models for POS transactions and their line items.
"""
import enum

from sqlalchemy import (
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


class PaymentMethod(enum.Enum):
    """Payment method enumeration."""
    CASH = "cash"
    MOMO = "momo"
    CARD = "card"
    BANK = "bank"


class TransactionStatus(enum.Enum):
    """Transaction status enumeration."""
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self is not TransactionStatus.PENDING


class Transaction(Base):
    """Model for sales transactions."""
    __tablename__ = "transactions"
    __table_args__ = (
        CheckConstraint("total_amount >= 0", name="ck_transactions_total_non_negative"),
    )

    id = Column(Integer, primary_key=True, index=True)
    transaction_number = Column(String(50), unique=True, index=True, nullable=False)
    status = Column(Enum(TransactionStatus), default=TransactionStatus.PENDING, index=True, nullable=False)
    status_reason = Column(Text, nullable=True)

    # Customer
    customer_name = Column(String(200), nullable=True)
    customer_phone = Column(String(20), nullable=True)

    # Amounts
    subtotal = Column(Numeric(10, 2), nullable=False)
    tax_amount = Column(Numeric(10, 2), nullable=False, default=0)
    discount_amount = Column(Numeric(10, 2), nullable=False, default=0)
    total_amount = Column(Numeric(10, 2), nullable=False)

    # Payment
    payment_method = Column(Enum(PaymentMethod), nullable=False)
    amount_paid = Column(Numeric(10, 2), nullable=False, default=0)
    change_amount = Column(Numeric(10, 2), nullable=False, default=0)
    momo_phone = Column(String(20), nullable=True)
    momo_transaction_id = Column(String(100), nullable=True)

    notes = Column(Text, nullable=True)
    created_by = Column(String(50), nullable=True)  # Staff user id

    # Timestamps
    created_at = Column(DateTime(timezone=True), default=utcnow, index=True, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)
    completed_at = Column(DateTime(timezone=True), nullable=True)

    # Optimistic lock; a concurrent status change raises StaleDataError on flush
    version_id = Column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version_id}

    # Relationships
    items = relationship(
        "TransactionItem",
        back_populates="transaction",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="TransactionItem.id",
    )

    def __repr__(self):
        return f"<Transaction(id={self.id}, number='{self.transaction_number}', status={self.status}, total={self.total_amount})>"


class TransactionItem(Base):
    """Model for individual items in a transaction."""
    __tablename__ = "transaction_items"
    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_transaction_items_quantity_positive"),
    )

    id = Column(Integer, primary_key=True, index=True)
    transaction_id = Column(Integer, ForeignKey("transactions.id", ondelete="CASCADE"), index=True, nullable=False)
    product_id = Column(Integer, ForeignKey("products.id", ondelete="RESTRICT"), index=True, nullable=False)

    # Snapshot of the product at sale time
    barcode = Column(String(100), nullable=False)
    product_name = Column(String(200), nullable=False)
    product_image = Column(String(500), nullable=True)

    quantity = Column(Integer, nullable=False)
    unit_price = Column(Numeric(10, 2), nullable=False)
    discount_amount = Column(Numeric(10, 2), nullable=False, default=0)
    total_price = Column(Numeric(10, 2), nullable=False)

    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    # Relationships
    transaction = relationship("Transaction", back_populates="items")
    product = relationship("Product")

    def __repr__(self):
        return f"<TransactionItem(id={self.id}, product='{self.product_name}', quantity={self.quantity})>"

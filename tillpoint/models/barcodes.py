"""
Barcode pool model.
"""
import enum

from sqlalchemy import Column, DateTime, Enum, ForeignKey, Integer, String

from tillpoint.core.database import Base
from tillpoint.core.time_utils import utcnow


class BarcodeStatus(enum.Enum):
    """Barcode status; a barcode moves from available to assigned once."""
    AVAILABLE = "available"
    ASSIGNED = "assigned"


class Barcode(Base):
    """A pre-generated barcode waiting for, or assigned to, a product."""
    __tablename__ = "barcodes"

    # Allocation sequence; assigned in contiguous batches, never autoincremented
    barcode_id = Column(Integer, primary_key=True, autoincrement=False)
    barcode = Column(String(50), unique=True, nullable=False)
    status = Column(Enum(BarcodeStatus), default=BarcodeStatus.AVAILABLE, index=True, nullable=False)

    product_id = Column(Integer, ForeignKey("products.id", ondelete="SET NULL"), nullable=True)

    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    assigned_at = Column(DateTime(timezone=True), nullable=True)

    def __repr__(self):
        return f"<Barcode(barcode_id={self.barcode_id}, barcode='{self.barcode}', status={self.status})>"

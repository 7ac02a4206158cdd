"""
Alert models for stock and barcode pool notifications.
"""
import enum

from sqlalchemy import Boolean, Column, DateTime, Enum, ForeignKey, Integer, String, Text
from sqlalchemy.orm import relationship

from tillpoint.core.database import Base
from tillpoint.core.time_utils import utcnow


class AlertType(enum.Enum):
    """Alert type enumeration."""
    LOW_STOCK = "low_stock"
    OUT_OF_STOCK = "out_of_stock"
    BARCODE_POOL_LOW = "barcode_pool_low"


class AlertSeverity(enum.Enum):
    """Alert severity enumeration."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class AlertStatus(enum.Enum):
    """Alert status enumeration."""
    ACTIVE = "active"
    ACKNOWLEDGED = "acknowledged"
    RESOLVED = "resolved"


class Alert(Base):
    """Model for operational alerts."""
    __tablename__ = "alerts"

    id = Column(Integer, primary_key=True, index=True)

    # Alert details
    alert_type = Column(Enum(AlertType), nullable=False)
    severity = Column(Enum(AlertSeverity), nullable=False)
    status = Column(Enum(AlertStatus), default=AlertStatus.ACTIVE, nullable=False)

    # Alert content
    title = Column(String(200), nullable=False)
    message = Column(Text, nullable=False)
    details = Column(Text, nullable=True)  # JSON string for additional data

    product_id = Column(Integer, ForeignKey("products.id", ondelete="SET NULL"), nullable=True)

    # User tracking
    acknowledged_by = Column(String(50), nullable=True)
    resolved_by = Column(String(50), nullable=True)

    # Timestamps
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    acknowledged_at = Column(DateTime(timezone=True), nullable=True)
    resolved_at = Column(DateTime(timezone=True), nullable=True)

    # Expiration
    expires_at = Column(DateTime(timezone=True), nullable=True)
    is_expired = Column(Boolean, default=False, nullable=False)

    product = relationship("Product")

    def __repr__(self):
        return f"<Alert(id={self.id}, type={self.alert_type}, severity={self.severity}, status={self.status})>"

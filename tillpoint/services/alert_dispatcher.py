"""
Alert Dispatcher service for low-stock and barcode pool notifications.
"""
import json
import logging
from datetime import timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy import and_, desc
from sqlalchemy.orm import Session

from tillpoint.core.database import Database, after_commit
from tillpoint.core.redis_client import CacheManager
from tillpoint.core.time_utils import utcnow
from tillpoint.models.alerts import Alert, AlertSeverity, AlertStatus, AlertType
from tillpoint.models.inventory import Product

logger = logging.getLogger(__name__)


class AlertDispatcher:
    """Service for creating alerts and fanning them out to channels."""

    def __init__(self, database: Database, cache: Optional[CacheManager] = None):
        self.database = database
        self.cache = cache
        # channel name -> sender method, looked up on each dispatch
        self._alert_channels: Dict[str, str] = {
            "log": "_send_log_alert",
            "dashboard": "_send_dashboard_alert",
        }

    def create_alert(
        self,
        db: Session,
        alert_type: AlertType,
        severity: AlertSeverity,
        title: str,
        message: str,
        product_id: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None,
        expires_in_hours: int = 24,
    ) -> Alert:
        """
        Create an alert inside the caller's unit of work.

        An active alert of the same type for the same product is reused
        rather than duplicated. Channels are notified once the unit of work
        commits.
        """
        existing = db.query(Alert).filter(
            and_(
                Alert.alert_type == alert_type,
                Alert.product_id == product_id,
                Alert.status == AlertStatus.ACTIVE,
                Alert.is_expired == False,  # noqa: E712
            )
        ).first()
        if existing:
            return existing

        alert = Alert(
            alert_type=alert_type,
            severity=severity,
            title=title,
            message=message,
            product_id=product_id,
            details=json.dumps(details) if details else None,
            expires_at=utcnow() + timedelta(hours=expires_in_hours),
        )
        db.add(alert)
        db.flush()

        after_commit(db, lambda: self._dispatch_alert(alert))
        return alert

    def check_stock_levels(self, db: Session, product: Product, previous_quantity: int) -> Optional[Alert]:
        """Raise an alert when a stock change crosses zero or the minimum level."""
        current = product.stock_quantity

        if current <= 0 < previous_quantity:
            return self.create_alert(
                db,
                alert_type=AlertType.OUT_OF_STOCK,
                severity=AlertSeverity.HIGH,
                title=f"Product Out of Stock: {product.name}",
                message=f"Product {product.name} (barcode {product.barcode}) is now out of stock.",
                product_id=product.id,
                details={"barcode": product.barcode, "previous_quantity": previous_quantity},
            )

        if 0 < current <= product.min_stock_level < previous_quantity:
            return self.create_alert(
                db,
                alert_type=AlertType.LOW_STOCK,
                severity=AlertSeverity.MEDIUM,
                title=f"Low Stock Alert: {product.name}",
                message=(
                    f"Product {product.name} (barcode {product.barcode}) is running low. "
                    f"Current: {current}, Min: {product.min_stock_level}"
                ),
                product_id=product.id,
                details={
                    "barcode": product.barcode,
                    "current_quantity": current,
                    "min_stock_level": product.min_stock_level,
                },
            )

        return None

    def check_barcode_pool(self, available_count: int, warning_level: bool, critical_level: bool) -> Optional[Alert]:
        """Raise a pool alert when available barcodes run low."""
        if not warning_level:
            return None

        severity = AlertSeverity.CRITICAL if critical_level else AlertSeverity.MEDIUM
        with self.database.unit_of_work() as db:
            return self.create_alert(
                db,
                alert_type=AlertType.BARCODE_POOL_LOW,
                severity=severity,
                title="Barcode pool running low",
                message=f"Only {available_count} barcode(s) left. Generate a new batch.",
                details={"available_count": available_count},
            )

    def _dispatch_alert(self, alert: Alert) -> None:
        """Dispatch alert to the channels its severity calls for."""
        for channel_name in self._get_channels_for_severity(alert.severity):
            try:
                getattr(self, self._alert_channels[channel_name])(alert)
            except Exception as e:
                logger.error(f"Failed to send alert to {channel_name}: {e}")

        self._cache_alert(alert)

    def _get_channels_for_severity(self, severity: AlertSeverity) -> List[str]:
        if severity in (AlertSeverity.CRITICAL, AlertSeverity.HIGH):
            return ["log", "dashboard"]
        return ["dashboard"]

    def _send_log_alert(self, alert: Alert) -> None:
        logger.warning(f"ALERT [{alert.severity.value}] {alert.title}: {alert.message}")

    def _send_dashboard_alert(self, alert: Alert) -> None:
        logger.info(f"Dashboard alert queued: {alert.title}")

    def _cache_alert(self, alert: Alert) -> None:
        if self.cache is None:
            return
        self.cache.set(f"alert:{alert.id}", {
            "id": alert.id,
            "type": alert.alert_type.value,
            "severity": alert.severity.value,
            "title": alert.title,
            "message": alert.message,
            "created_at": alert.created_at.isoformat(),
        }, ttl=3600)

    def get_active_alerts(
        self,
        alert_type: Optional[AlertType] = None,
        severity: Optional[AlertSeverity] = None,
        limit: int = 50,
    ) -> List[Dict[str, Any]]:
        """Get active, unexpired alerts, newest first."""
        with self.database.unit_of_work() as db:
            query = db.query(Alert).filter(
                Alert.status == AlertStatus.ACTIVE,
                Alert.is_expired == False,  # noqa: E712
            )
            if alert_type:
                query = query.filter(Alert.alert_type == alert_type)
            if severity:
                query = query.filter(Alert.severity == severity)

            alerts = query.order_by(desc(Alert.created_at), desc(Alert.id)).limit(limit).all()

            return [
                {
                    "id": alert.id,
                    "type": alert.alert_type.value,
                    "severity": alert.severity.value,
                    "title": alert.title,
                    "message": alert.message,
                    "product_id": alert.product_id,
                    "details": json.loads(alert.details) if alert.details else None,
                    "created_at": alert.created_at.isoformat(),
                    "expires_at": alert.expires_at.isoformat() if alert.expires_at else None,
                }
                for alert in alerts
            ]

    def acknowledge_alert(self, alert_id: int, user_id: str) -> bool:
        """Acknowledge an alert. Returns False if it does not exist."""
        return self._set_status(alert_id, user_id, AlertStatus.ACKNOWLEDGED)

    def resolve_alert(self, alert_id: int, user_id: str) -> bool:
        """Resolve an alert. Returns False if it does not exist."""
        return self._set_status(alert_id, user_id, AlertStatus.RESOLVED)

    def _set_status(self, alert_id: int, user_id: str, status: AlertStatus) -> bool:
        with self.database.unit_of_work() as db:
            alert = db.get(Alert, alert_id)
            if not alert:
                return False

            alert.status = status
            if status == AlertStatus.RESOLVED:
                alert.resolved_by = user_id
                alert.resolved_at = utcnow()
            else:
                alert.acknowledged_by = user_id
                alert.acknowledged_at = utcnow()

        if self.cache is not None:
            self.cache.delete(f"alert:{alert_id}")
        logger.info(f"Alert {alert_id} {status.value} by {user_id}")
        return True

    def cleanup_expired_alerts(self) -> int:
        """Mark active alerts past their expiry as expired."""
        with self.database.unit_of_work() as db:
            expired_count = db.query(Alert).filter(
                and_(
                    Alert.status == AlertStatus.ACTIVE,
                    Alert.is_expired == False,  # noqa: E712
                    Alert.expires_at <= utcnow(),
                )
            ).update({Alert.is_expired: True}, synchronize_session=False)

        logger.info(f"Marked {expired_count} alerts as expired")
        return expired_count

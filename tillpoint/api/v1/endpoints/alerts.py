"""
Alert API endpoints.
"""
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException

from tillpoint.api.deps import get_current_user_id, get_services
from tillpoint.models.alerts import AlertSeverity, AlertType
from tillpoint.services.container import ServiceContainer

router = APIRouter()


@router.get("")
def get_active_alerts(
    alert_type: Optional[AlertType] = None,
    severity: Optional[AlertSeverity] = None,
    limit: int = 50,
    services: ServiceContainer = Depends(get_services),
):
    """Get active alerts, newest first."""
    alerts = services.alerts.get_active_alerts(alert_type, severity, min(limit, 200))
    return {"alerts": alerts, "count": len(alerts)}


@router.post("/{alert_id}/acknowledge")
def acknowledge_alert(
    alert_id: int,
    services: ServiceContainer = Depends(get_services),
    user_id: Optional[str] = Depends(get_current_user_id),
):
    if not services.alerts.acknowledge_alert(alert_id, user_id or "system"):
        raise HTTPException(status_code=404, detail="Alert not found")
    return {"message": "Alert acknowledged successfully"}


@router.post("/{alert_id}/resolve")
def resolve_alert(
    alert_id: int,
    services: ServiceContainer = Depends(get_services),
    user_id: Optional[str] = Depends(get_current_user_id),
):
    if not services.alerts.resolve_alert(alert_id, user_id or "system"):
        raise HTTPException(status_code=404, detail="Alert not found")
    return {"message": "Alert resolved successfully"}

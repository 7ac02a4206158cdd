"""
Inventory API endpoints for stock adjustments and stock history.
"""
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict, Field

from tillpoint.api.deps import get_current_user_id, get_services
from tillpoint.models.inventory import StockLogReason
from tillpoint.services.container import ServiceContainer

router = APIRouter()


class StockAdjustmentRequest(BaseModel):
    """Request model for a manual stock adjustment."""
    product_id: int = Field(..., description="Product ID")
    change_amount: int = Field(..., description="Units to add (positive) or remove (negative)")
    reason: StockLogReason = Field(..., description="restock, correction, return, damage or sale")
    notes: Optional[str] = Field(None, description="Additional notes")


class RestockRequest(BaseModel):
    quantity: int = Field(..., gt=0, description="Units received")
    notes: Optional[str] = None


class StockLogRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    product_id: int
    change_amount: int
    reason: StockLogReason
    previous_quantity: int
    new_quantity: int
    reference_type: Optional[str] = None
    reference_id: Optional[str] = None
    performed_by: str
    notes: Optional[str] = None
    created_at: datetime


@router.post("/adjust", response_model=StockLogRead, status_code=201)
def adjust_stock(
    adjustment: StockAdjustmentRequest,
    services: ServiceContainer = Depends(get_services),
    user_id: Optional[str] = Depends(get_current_user_id),
):
    """
    Adjust stock for a product.

    Updates the stock level and writes the matching stock log entry together.
    Removing more than is on hand is refused.
    """
    stock_log = services.stock_ledger.adjust_stock(
        adjustment.product_id,
        adjustment.change_amount,
        adjustment.reason,
        user_id=user_id,
        notes=adjustment.notes,
    )
    return StockLogRead.model_validate(stock_log)


@router.post("/products/{product_id}/restock", response_model=StockLogRead, status_code=201)
def restock_product(
    product_id: int,
    restock: RestockRequest,
    services: ServiceContainer = Depends(get_services),
    user_id: Optional[str] = Depends(get_current_user_id),
):
    """Record stock received for a product."""
    stock_log = services.stock_ledger.restock(product_id, restock.quantity, user_id, restock.notes)
    return StockLogRead.model_validate(stock_log)


@router.get("/products/{product_id}/reconcile")
def reconcile_product(
    product_id: int,
    services: ServiceContainer = Depends(get_services),
):
    """Check a product's stock against its full adjustment history."""
    return {
        "product_id": product_id,
        "consistent": services.stock_ledger.reconcile(product_id),
    }


@router.get("/movements")
def get_stock_movements(
    product_id: Optional[int] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    limit: int = 100,
    services: ServiceContainer = Depends(get_services),
):
    """
    Get stock movement history.

    Returns historical stock movements for tracking inventory changes.
    """
    if limit > 500:
        limit = 500  # Cap for performance

    movements = services.stock_ledger.get_stock_movements(
        product_id=product_id,
        start_date=start_date,
        end_date=end_date,
        limit=limit,
    )
    return {"movements": movements, "count": len(movements)}


@router.get("/low-stock")
def get_low_stock_products(
    threshold: Optional[int] = None,
    services: ServiceContainer = Depends(get_services),
):
    """
    Get products with low stock levels.

    Returns products that are running low on stock and may need restocking.
    """
    products = services.stock_ledger.get_low_stock_products(threshold)
    return {"products": products, "count": len(products)}

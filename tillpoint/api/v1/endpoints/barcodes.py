"""
Barcode pool API endpoints.
"""
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict, Field

from tillpoint.api.deps import get_services
from tillpoint.models.barcodes import BarcodeStatus
from tillpoint.services.container import ServiceContainer

router = APIRouter()


class GenerateBatchRequest(BaseModel):
    count: int = Field(..., description="How many barcodes to generate")


class BarcodeRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    barcode_id: int
    barcode: str
    status: BarcodeStatus
    product_id: Optional[int] = None
    created_at: datetime
    assigned_at: Optional[datetime] = None


@router.post("/generate", status_code=201)
def generate_barcodes(
    request: GenerateBatchRequest,
    services: ServiceContainer = Depends(get_services),
):
    """
    Generate a batch of sequential barcodes.

    The batch size must fall within the configured bounds.
    """
    barcodes = services.barcodes.generate_batch(request.count)
    return {
        "success": True,
        "message": f"Successfully generated {len(barcodes)} barcode(s)",
        "data": [BarcodeRead.model_validate(barcode) for barcode in barcodes],
    }


@router.post("/allocate", response_model=BarcodeRead)
def allocate_barcode(services: ServiceContainer = Depends(get_services)):
    """Take the next available barcode off the pool."""
    return BarcodeRead.model_validate(services.barcodes.allocate_next())


@router.get("/available")
def get_available(services: ServiceContainer = Depends(get_services)):
    """Available count, the next barcode in line and the alerting levels."""
    status = services.barcodes.pool_status()
    next_barcode = status.next_available
    return {
        "available_count": status.available_count,
        "next_available_barcode": (
            {"id": next_barcode.barcode_id, "barcode": next_barcode.barcode} if next_barcode else None
        ),
        "warning_level": status.warning_level,
        "critical_level": status.critical_level,
    }


@router.get("")
def list_barcodes(
    status: Optional[BarcodeStatus] = None,
    page: int = 1,
    limit: int = 50,
    services: ServiceContainer = Depends(get_services),
):
    rows, total = services.barcodes.list_barcodes(status, page, limit)
    barcodes: List[BarcodeRead] = [BarcodeRead.model_validate(row) for row in rows]
    return {"barcodes": barcodes, "total": total, "page": max(page, 1)}


@router.get("/{barcode}", response_model=BarcodeRead)
def get_barcode(barcode: str, services: ServiceContainer = Depends(get_services)):
    return BarcodeRead.model_validate(services.barcodes.lookup(barcode))

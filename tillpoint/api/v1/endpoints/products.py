"""
Product API endpoints for the catalog and scanner lookups.
"""
from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict, Field

from tillpoint.api.deps import get_current_user_id, get_services
from tillpoint.services.container import ServiceContainer

router = APIRouter()


class ProductCreateRequest(BaseModel):
    """Request model for a new product. The barcode comes from the pool when omitted."""
    name: str = Field(..., min_length=1, max_length=200)
    price: Decimal = Field(..., ge=0)
    cost_price: Optional[Decimal] = Field(None, ge=0)
    description: Optional[str] = None
    image_url: Optional[str] = Field(None, max_length=500)
    category_id: Optional[int] = None
    stock_quantity: int = Field(0, ge=0, description="Opening stock")
    min_stock_level: Optional[int] = Field(None, ge=0)
    barcode: Optional[str] = Field(None, max_length=100)


class ProductUpdateRequest(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    price: Optional[Decimal] = Field(None, ge=0)
    cost_price: Optional[Decimal] = Field(None, ge=0)
    description: Optional[str] = None
    image_url: Optional[str] = Field(None, max_length=500)
    category_id: Optional[int] = None
    min_stock_level: Optional[int] = Field(None, ge=0)
    is_active: Optional[bool] = None


class CategoryCreateRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = None


class ProductRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    barcode: str
    name: str
    description: Optional[str] = None
    image_url: Optional[str] = None
    category_id: Optional[int] = None
    price: Decimal
    cost_price: Optional[Decimal] = None
    stock_quantity: int
    min_stock_level: int
    is_active: bool


class CategoryRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    description: Optional[str] = None


@router.post("", response_model=ProductRead, status_code=201)
def create_product(
    request: ProductCreateRequest,
    services: ServiceContainer = Depends(get_services),
    user_id: Optional[str] = Depends(get_current_user_id),
):
    """Create a product, assigning the next pooled barcode if none is given."""
    data = request.model_dump(exclude_none=True)
    return ProductRead.model_validate(services.catalog.create_product(data, user_id))


@router.post("/categories", response_model=CategoryRead, status_code=201)
def create_category(
    request: CategoryCreateRequest,
    services: ServiceContainer = Depends(get_services),
):
    return CategoryRead.model_validate(services.catalog.create_category(request.name, request.description))


@router.get("/barcode/{barcode}", response_model=ProductRead)
def get_product_by_barcode(
    barcode: str,
    services: ServiceContainer = Depends(get_services),
):
    """Scanner lookup of an active product."""
    return ProductRead.model_validate(services.catalog.get_by_barcode(barcode))


@router.get("/{product_id}", response_model=ProductRead)
def get_product(
    product_id: int,
    services: ServiceContainer = Depends(get_services),
):
    return ProductRead.model_validate(services.catalog.get_product(product_id))


@router.patch("/{product_id}", response_model=ProductRead)
def update_product(
    product_id: int,
    request: ProductUpdateRequest,
    services: ServiceContainer = Depends(get_services),
):
    """Update descriptive fields; stock changes go through the inventory endpoints."""
    data = request.model_dump(exclude_unset=True)
    return ProductRead.model_validate(services.catalog.update_product(product_id, data))


@router.delete("/{product_id}", response_model=ProductRead)
def deactivate_product(
    product_id: int,
    services: ServiceContainer = Depends(get_services),
):
    """Deactivate a product. Its history is kept."""
    return ProductRead.model_validate(services.catalog.deactivate_product(product_id))

"""
Transaction API endpoints for checkout and receipts.
"""
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict, Field

from tillpoint.api.deps import get_current_user_id, get_services
from tillpoint.models.sales import PaymentMethod, TransactionStatus
from tillpoint.services.checkout import CartLine, PaymentInfo
from tillpoint.services.container import ServiceContainer

router = APIRouter()


class CartItemRequest(BaseModel):
    """Request model for a cart line. Prices are taken from the catalog."""
    product_id: int = Field(..., description="Product ID")
    quantity: int = Field(..., gt=0, description="Quantity sold")
    discount_amount: Decimal = Field(Decimal("0"), ge=0, description="Line discount")


class CheckoutRequest(BaseModel):
    """Request model for a checkout."""
    items: List[CartItemRequest] = Field(..., min_length=1, description="Cart lines")
    payment_method: PaymentMethod = Field(..., description="cash, momo, card or bank")
    amount_paid: Optional[Decimal] = Field(None, ge=0, description="Cash tendered")
    discount_amount: Decimal = Field(Decimal("0"), ge=0, description="Order-level discount")
    customer_name: Optional[str] = Field(None, max_length=200)
    customer_phone: Optional[str] = Field(None, max_length=20)
    momo_phone: Optional[str] = Field(None, max_length=20)
    momo_transaction_id: Optional[str] = Field(None, max_length=100)
    notes: Optional[str] = None


class CancelRequest(BaseModel):
    reason: str = Field(..., min_length=1, description="Why the sale is cancelled")


class TransactionItemRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    product_id: int
    barcode: str
    product_name: str
    product_image: Optional[str] = None
    quantity: int
    unit_price: Decimal
    discount_amount: Decimal
    total_price: Decimal


class TransactionRead(BaseModel):
    """Receipt view of a transaction."""
    model_config = ConfigDict(from_attributes=True)

    id: int
    transaction_number: str
    status: TransactionStatus
    status_reason: Optional[str] = None
    payment_method: PaymentMethod
    subtotal: Decimal
    tax_amount: Decimal
    discount_amount: Decimal
    total_amount: Decimal
    amount_paid: Decimal
    change_amount: Decimal
    customer_name: Optional[str] = None
    customer_phone: Optional[str] = None
    momo_phone: Optional[str] = None
    momo_transaction_id: Optional[str] = None
    notes: Optional[str] = None
    created_by: Optional[str] = None
    created_at: datetime
    completed_at: Optional[datetime] = None
    items: List[TransactionItemRead]


class TransactionPage(BaseModel):
    transactions: List[TransactionRead]
    page: int
    limit: int
    total: int


@router.post("", response_model=TransactionRead, status_code=201)
def create_transaction(
    checkout: CheckoutRequest,
    services: ServiceContainer = Depends(get_services),
    user_id: Optional[str] = Depends(get_current_user_id),
):
    """
    Check out a cart.

    Validates stock for every line, records the transaction and its items
    and decrements stock in one step. Cash with an amount tendered and card
    payments complete immediately; mobile money and bank transfers stay
    pending until their payment is confirmed.
    """
    transaction = services.checkout.create_transaction(
        [CartLine(item.product_id, item.quantity, item.discount_amount) for item in checkout.items],
        PaymentInfo(
            method=checkout.payment_method,
            amount_paid=checkout.amount_paid,
            customer_name=checkout.customer_name,
            customer_phone=checkout.customer_phone,
            discount_amount=checkout.discount_amount,
            notes=checkout.notes,
            momo_phone=checkout.momo_phone,
            momo_transaction_id=checkout.momo_transaction_id,
        ),
        created_by=user_id,
    )
    return TransactionRead.model_validate(transaction)


@router.get("", response_model=TransactionPage)
def list_transactions(
    status: Optional[TransactionStatus] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    page: int = 1,
    limit: int = 20,
    services: ServiceContainer = Depends(get_services),
):
    """List transactions, newest first."""
    rows, total = services.checkout.list_transactions(status, start_date, end_date, page, limit)
    return TransactionPage(
        transactions=[TransactionRead.model_validate(row) for row in rows],
        page=max(page, 1),
        limit=min(max(limit, 1), 100),
        total=total,
    )


@router.get("/number/{transaction_number}", response_model=TransactionRead)
def get_transaction_by_number(
    transaction_number: str,
    services: ServiceContainer = Depends(get_services),
):
    """Look up a receipt by its printed transaction number."""
    return TransactionRead.model_validate(services.checkout.get_by_number(transaction_number))


@router.get("/{transaction_id}", response_model=TransactionRead)
def get_transaction(
    transaction_id: int,
    services: ServiceContainer = Depends(get_services),
):
    return TransactionRead.model_validate(services.checkout.get_transaction(transaction_id))


@router.post("/{transaction_id}/cancel", response_model=TransactionRead)
def cancel_transaction(
    transaction_id: int,
    request: CancelRequest,
    services: ServiceContainer = Depends(get_services),
    user_id: Optional[str] = Depends(get_current_user_id),
):
    """Cancel a pending transaction and put its items back in stock."""
    transaction = services.checkout.cancel_transaction(transaction_id, request.reason, user_id)
    return TransactionRead.model_validate(transaction)

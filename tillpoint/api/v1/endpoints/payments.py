"""
Payment API endpoints for settling pending transactions.
"""
import logging
from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from tillpoint.api.deps import get_services
from tillpoint.api.v1.endpoints.transactions import TransactionRead
from tillpoint.models.sales import PaymentMethod
from tillpoint.services.container import ServiceContainer

logger = logging.getLogger(__name__)

router = APIRouter()


class FinalizePaymentRequest(BaseModel):
    """Request model for confirming a payment."""
    transaction_id: int = Field(..., description="Transaction ID")
    payment_method: PaymentMethod = Field(..., description="How the customer paid")
    amount_paid: Decimal = Field(..., ge=0, description="Amount received")
    customer_name: Optional[str] = Field(None, max_length=200)
    customer_phone: Optional[str] = Field(None, max_length=20)
    momo_phone: Optional[str] = Field(None, max_length=20)
    momo_transaction_id: Optional[str] = Field(None, max_length=100)
    notes: Optional[str] = None


class CashPaymentRequest(BaseModel):
    """Request model for cash tendered against a pending transaction."""
    transaction_id: int
    amount_paid: Decimal = Field(..., ge=0)
    customer_name: Optional[str] = Field(None, max_length=200)
    customer_phone: Optional[str] = Field(None, max_length=20)
    notes: Optional[str] = None


class MomoCallbackRequest(BaseModel):
    """Mobile-money status notification for a transaction we initiated."""
    external_id: int = Field(..., description="Our transaction ID")
    status: str = Field(..., description="SUCCESSFUL or FAILED")
    amount: Optional[Decimal] = Field(None, ge=0)
    financial_transaction_id: Optional[str] = Field(None, max_length=100)
    payer_phone: Optional[str] = Field(None, max_length=20)
    reason: Optional[str] = None


@router.post("/finalize", response_model=TransactionRead)
def finalize_payment(
    request: FinalizePaymentRequest,
    services: ServiceContainer = Depends(get_services),
):
    """
    Record a confirmed payment for a pending transaction.

    Change is computed for cash only. Stock is not touched here.
    """
    meta = request.model_dump(
        include={"customer_name", "customer_phone", "momo_phone", "momo_transaction_id", "notes"},
        exclude_none=True,
    )
    transaction = services.checkout.finalize_payment(
        request.transaction_id, request.payment_method, request.amount_paid, meta
    )
    return TransactionRead.model_validate(transaction)


@router.post("/cash", response_model=TransactionRead)
def cash_payment(
    request: CashPaymentRequest,
    services: ServiceContainer = Depends(get_services),
):
    """Settle a pending transaction with cash and return the change due."""
    meta = request.model_dump(include={"customer_name", "customer_phone", "notes"}, exclude_none=True)
    transaction = services.checkout.finalize_payment(
        request.transaction_id, PaymentMethod.CASH, request.amount_paid, meta
    )
    return TransactionRead.model_validate(transaction)


@router.post("/momo/callback")
def momo_callback(
    callback: MomoCallbackRequest,
    services: ServiceContainer = Depends(get_services),
):
    """
    Apply a mobile-money status notification.

    SUCCESSFUL completes the transaction for the notified amount (or the
    transaction total when the provider omits it); FAILED marks it failed and
    returns its items to stock.
    """
    logger.info(f"MoMo callback received for transaction {callback.external_id}: {callback.status}")
    status = callback.status.upper()

    if status == "SUCCESSFUL":
        amount = callback.amount
        if amount is None:
            amount = services.checkout.get_transaction(callback.external_id).total_amount
        meta = {"momo_transaction_id": callback.financial_transaction_id, "momo_phone": callback.payer_phone}
        transaction = services.checkout.finalize_payment(callback.external_id, PaymentMethod.MOMO, amount, meta)
    elif status == "FAILED":
        transaction = services.checkout.fail_payment(
            callback.external_id, callback.reason or "Mobile money payment failed"
        )
    else:
        return {"success": True, "message": f"Status {callback.status} ignored"}

    return {
        "success": True,
        "message": "Callback processed",
        "transaction_number": transaction.transaction_number,
        "status": transaction.status.value,
    }

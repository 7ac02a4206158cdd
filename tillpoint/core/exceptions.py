"""
Error taxonomy for checkout, stock and barcode operations.

Every error is scoped to the single operation that raised it. The API layer
turns them into responses using ``status_code`` and ``to_dict()``.
"""
from typing import Any, Dict, Optional


class TillpointError(Exception):
    """Base class for domain errors."""

    status_code = 400
    code = "error"

    def __init__(self, message: str, **extra: Any):
        super().__init__(message)
        self.message = message
        self.extra = extra

    def to_dict(self) -> Dict[str, Any]:
        payload = {"detail": self.message, "error": self.code}
        payload.update(self.extra)
        return payload


class ValidationError(TillpointError):
    """Malformed or out-of-range input."""

    status_code = 400
    code = "validation_error"


class NotFoundError(TillpointError):
    """A referenced product, transaction or barcode does not exist."""

    status_code = 404
    code = "not_found"


class InsufficientStockError(TillpointError):
    """Requested quantity exceeds the stock on hand."""

    status_code = 409
    code = "insufficient_stock"

    def __init__(
        self,
        product_id: int,
        product_name: Optional[str] = None,
        requested: Optional[int] = None,
        available: Optional[int] = None,
        message: Optional[str] = None,
    ):
        if message is None:
            label = product_name or f"product {product_id}"
            message = f"Insufficient stock for {label}: requested {requested}, available {available}"
        super().__init__(
            message,
            product_id=product_id,
            product_name=product_name,
            requested=requested,
            available=available,
        )
        self.product_id = product_id
        self.product_name = product_name
        self.requested = requested
        self.available = available


class InvalidStateError(TillpointError):
    """Operation attempted on a transaction in a terminal state."""

    status_code = 409
    code = "invalid_state"


class ExhaustedPoolError(TillpointError):
    """No available barcode left to allocate."""

    status_code = 409
    code = "barcode_pool_exhausted"

    def __init__(self, message: str = "No available barcodes. Generate a new batch."):
        super().__init__(message)


class ConcurrencyConflictError(TillpointError):
    """A guarded write lost a race. Retried internally before surfacing."""

    status_code = 409
    code = "concurrency_conflict"

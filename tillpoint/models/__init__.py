"""
Database models for Tillpoint application.
"""

from .inventory import Category, Product, StockLog, StockLogReason
from .sales import PaymentMethod, Transaction, TransactionItem, TransactionStatus
from .barcodes import Barcode, BarcodeStatus
from .alerts import Alert, AlertSeverity, AlertStatus, AlertType

__all__ = [
    "Category", "Product", "StockLog", "StockLogReason",
    "Transaction", "TransactionItem", "TransactionStatus", "PaymentMethod",
    "Barcode", "BarcodeStatus",
    "Alert", "AlertType", "AlertSeverity", "AlertStatus",
]

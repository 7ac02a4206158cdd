"""
Business logic services for Tillpoint application.
"""

from .alert_dispatcher import AlertDispatcher
from .stock_ledger import StockLedger
from .checkout import CartLine, CheckoutEngine, PaymentInfo
from .barcode_allocator import BarcodeAllocator, PoolStatus
from .product_catalog import ProductCatalog
from .container import ServiceContainer, build_services

__all__ = [
    "AlertDispatcher",
    "StockLedger",
    "CheckoutEngine", "CartLine", "PaymentInfo",
    "BarcodeAllocator", "PoolStatus",
    "ProductCatalog",
    "ServiceContainer", "build_services",
]

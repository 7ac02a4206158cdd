"""
Wiring of services around one Database and cache.
"""
from dataclasses import dataclass
from typing import Optional

from tillpoint.core.config import Settings
from tillpoint.core.database import Database
from tillpoint.core.redis_client import CacheManager
from tillpoint.services.alert_dispatcher import AlertDispatcher
from tillpoint.services.barcode_allocator import BarcodeAllocator
from tillpoint.services.checkout import CheckoutEngine
from tillpoint.services.product_catalog import ProductCatalog
from tillpoint.services.stock_ledger import StockLedger


@dataclass
class ServiceContainer:
    settings: Settings
    database: Database
    cache: Optional[CacheManager]
    alerts: AlertDispatcher
    stock_ledger: StockLedger
    checkout: CheckoutEngine
    barcodes: BarcodeAllocator
    catalog: ProductCatalog


def build_services(settings: Settings, database: Database, cache: Optional[CacheManager] = None) -> ServiceContainer:
    """Construct every service sharing the given database and cache."""
    alerts = AlertDispatcher(database, cache)
    stock_ledger = StockLedger(database, settings, cache=cache, alert_dispatcher=alerts)
    barcodes = BarcodeAllocator(database, settings, cache=cache, alert_dispatcher=alerts)
    return ServiceContainer(
        settings=settings,
        database=database,
        cache=cache,
        alerts=alerts,
        stock_ledger=stock_ledger,
        checkout=CheckoutEngine(database, stock_ledger, settings),
        barcodes=barcodes,
        catalog=ProductCatalog(database, stock_ledger, barcodes, settings),
    )

"""
Main API router for v1 endpoints.
"""
from fastapi import APIRouter

from tillpoint.api.v1.endpoints import alerts, barcodes, inventory, payments, products, transactions

api_router = APIRouter()

# Include all endpoint routers
api_router.include_router(transactions.router, prefix="/transactions", tags=["transactions"])
api_router.include_router(payments.router, prefix="/payments", tags=["payments"])
api_router.include_router(inventory.router, prefix="/inventory", tags=["inventory"])
api_router.include_router(products.router, prefix="/products", tags=["products"])
api_router.include_router(barcodes.router, prefix="/barcodes", tags=["barcodes"])
api_router.include_router(alerts.router, prefix="/alerts", tags=["alerts"])

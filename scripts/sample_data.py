#!/usr/bin/env python3
"""
Sample data population script for Tillpoint.
Fills the barcode pool, creates a small catalog with opening stock and rings
up a few days of sales through the regular checkout path.
"""
import sys
import os
import random
from decimal import ROUND_CEILING, Decimal

# Add the project root to Python path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from tillpoint.core.config import get_settings
from tillpoint.core.database import Database
from tillpoint.core.exceptions import InsufficientStockError, ValidationError
from tillpoint.core.logging import configure_logging
from tillpoint.models.inventory import Product
from tillpoint.models.sales import PaymentMethod, TransactionStatus
from tillpoint.services.checkout import CartLine, PaymentInfo
from tillpoint.services.container import ServiceContainer, build_services

SAMPLE_CATEGORIES = ["Groceries", "Beverages", "Household"]

SAMPLE_PRODUCTS = [
    {"name": "Fresh Whole Milk 1L", "category": "Groceries", "price": "900", "cost_price": "650", "stock_quantity": 40},
    {"name": "Sourdough Bread", "category": "Groceries", "price": "1500", "cost_price": "900", "stock_quantity": 25},
    {"name": "Rice 5kg", "category": "Groceries", "price": "7500", "cost_price": "6000", "stock_quantity": 15},
    {"name": "Arabica Coffee 250g", "category": "Beverages", "price": "4500", "cost_price": "3000", "stock_quantity": 12},
    {"name": "Mineral Water 500ml", "category": "Beverages", "price": "400", "cost_price": "250", "stock_quantity": 120},
    {"name": "Hand Soap", "category": "Household", "price": "1200", "cost_price": "700", "stock_quantity": 30},
    {"name": "Dish Sponge 3-pack", "category": "Household", "price": "800", "cost_price": "400", "stock_quantity": 8,
     "min_stock_level": 10},
]


def create_sample_catalog(services: ServiceContainer):
    """Create categories and products, each taking a barcode from the pool."""
    with services.database.unit_of_work() as db:
        if db.query(Product).count():
            print("Products already exist, skipping catalog...")
            return

    pool = services.barcodes.pool_status()
    if pool.available_count < len(SAMPLE_PRODUCTS):
        services.barcodes.generate_batch(max(len(SAMPLE_PRODUCTS), 20))

    categories = {name: services.catalog.create_category(name) for name in SAMPLE_CATEGORIES}

    for product_data in SAMPLE_PRODUCTS:
        data = dict(product_data)
        data["category_id"] = categories[data.pop("category")].id
        product = services.catalog.create_product(data, user_id="seed")
        print(f"Created product: {product.name} ({product.barcode}) - Initial stock: {product.stock_quantity}")

    print(f"✅ Created {len(SAMPLE_PRODUCTS)} sample products")


def create_sample_sales(services: ServiceContainer, count: int = 40):
    """Ring up random carts; some mobile-money sales are left pending."""
    with services.database.unit_of_work() as db:
        products = db.query(Product).filter(Product.is_active == True).all()  # noqa: E712
    if not products:
        print("❌ No products found. Please create products first.")
        return

    created = 0
    for _ in range(count):
        selected = random.sample(products, random.randint(1, min(3, len(products))))
        lines = [CartLine(product.id, random.randint(1, 3)) for product in selected]
        method = random.choice([PaymentMethod.CASH, PaymentMethod.CASH, PaymentMethod.MOMO, PaymentMethod.CARD])

        try:
            transaction = services.checkout.create_transaction(
                lines,
                PaymentInfo(method=method, momo_phone="0788000000" if method == PaymentMethod.MOMO else None),
                created_by=random.choice(["cashier_1", "cashier_2"]),
            )
            if transaction.status == TransactionStatus.PENDING and random.random() < 0.7:
                # settle most cash and momo sales the way the counter would
                tendered = (transaction.total_amount / Decimal("1000")).to_integral_value(rounding=ROUND_CEILING)
                services.checkout.finalize_payment(transaction.id, transaction.payment_method, tendered * 1000)
            created += 1
        except (InsufficientStockError, ValidationError) as e:
            print(f"Skipped sale: {e}")
            continue

    print(f"✅ Created {created} sample sales")


def main():
    print("🎯 Tillpoint Sample Data Population")
    print("=" * 50)

    settings = get_settings()
    configure_logging(settings)
    database = Database.from_settings(settings)
    database.create_all()
    services = build_services(settings, database)

    create_sample_catalog(services)
    create_sample_sales(services)

    mismatched = services.stock_ledger.reconcile_all()
    print(f"Ledger check: {'consistent' if not mismatched else mismatched}")
    print("🎉 Sample data population complete")


if __name__ == "__main__":
    main()

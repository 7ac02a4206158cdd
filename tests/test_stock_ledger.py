"""
Tests for the Stock Ledger service.
"""
import random

from unittest.mock import patch

import pytest

from tillpoint.core.exceptions import (
    ConcurrencyConflictError,
    InsufficientStockError,
    NotFoundError,
    ValidationError,
)
from tillpoint.models.alerts import Alert, AlertType
from tillpoint.models.inventory import Product, StockLog, StockLogReason
from tillpoint.services.stock_ledger import stock_status


class TestAdjustStock:
    """Adjustments move stock and write exactly one log row."""

    def test_sale_down_to_zero_then_refused(self, services, make_product, database):
        product = make_product(stock=5)
        ledger = services.stock_ledger

        log = ledger.adjust_stock(product.id, -5, StockLogReason.SALE, user_id="cashier_1")

        assert log.previous_quantity == 5
        assert log.new_quantity == 0
        assert log.change_amount == -5
        assert log.performed_by == "cashier_1"

        with pytest.raises(InsufficientStockError) as exc_info:
            ledger.adjust_stock(product.id, -1, StockLogReason.SALE)
        assert exc_info.value.product_id == product.id
        assert exc_info.value.requested == 1
        assert exc_info.value.available == 0

        with database.unit_of_work() as db:
            assert db.get(Product, product.id).stock_quantity == 0
            # opening stock + one sale; the refused sale left nothing behind
            assert db.query(StockLog).filter(StockLog.product_id == product.id).count() == 2

    def test_reason_accepts_plain_string(self, services, make_product):
        product = make_product(stock=3)
        log = services.stock_ledger.adjust_stock(product.id, -1, "damage", notes="dropped")
        assert log.reason == StockLogReason.DAMAGE
        assert log.performed_by == "System"

    def test_invalid_reason(self, services, make_product):
        product = make_product(stock=3)
        with pytest.raises(ValidationError):
            services.stock_ledger.adjust_stock(product.id, 1, "gift")

    @pytest.mark.parametrize("change", [0, 1.5, True, "3"])
    def test_change_must_be_nonzero_integer(self, services, make_product, change):
        product = make_product(stock=3)
        with pytest.raises(ValidationError):
            services.stock_ledger.adjust_stock(product.id, change, StockLogReason.CORRECTION)

    def test_unknown_product(self, services):
        with pytest.raises(NotFoundError):
            services.stock_ledger.adjust_stock(999, 1, StockLogReason.RESTOCK)

    def test_caches_stock_snapshot_after_commit(self, services, make_product, cache):
        product = make_product(stock=4)
        cache.set.reset_mock()

        services.stock_ledger.adjust_stock(product.id, -1, StockLogReason.SALE)

        keys = [call.args[0] for call in cache.set.call_args_list]
        assert f"stock:{product.id}" in keys


class TestRetryExhaustion:
    """A write that keeps losing its race surfaces once the retries run out."""

    @pytest.fixture
    def product(self, make_product):
        return make_product(stock=2)

    @pytest.fixture
    def always_conflicting(self, services, product):
        def _lose(db, **kwargs):
            raise ConcurrencyConflictError("stock moved", product_id=kwargs["product_id"])

        with patch.object(services.stock_ledger, "_apply", side_effect=_lose) as apply:
            yield apply

    def test_restock_keeps_conflict_error(self, services, product, always_conflicting, settings):
        with pytest.raises(ConcurrencyConflictError):
            services.stock_ledger.restock(product.id, 5)
        assert always_conflicting.call_count == settings.concurrency_retries

    def test_removal_reports_insufficient_stock(self, services, product, always_conflicting):
        with pytest.raises(InsufficientStockError) as exc_info:
            services.stock_ledger.adjust_stock(product.id, -1, StockLogReason.DAMAGE)
        assert exc_info.value.product_id == product.id
        assert exc_info.value.requested == 1


class TestRestock:

    def test_restock_adds_units(self, services, make_product):
        product = make_product(stock=2)
        log = services.stock_ledger.restock(product.id, 8, user_id="manager")
        assert log.reason == StockLogReason.RESTOCK
        assert log.new_quantity == 10

    @pytest.mark.parametrize("quantity", [0, -3, 2.5])
    def test_restock_requires_positive_quantity(self, services, make_product, quantity):
        product = make_product(stock=2)
        with pytest.raises(ValidationError):
            services.stock_ledger.restock(product.id, quantity)


class TestReconcile:

    def test_random_sequences_reconcile(self, services, make_product):
        rng = random.Random(42)
        products = [make_product(stock=rng.randint(0, 20)) for _ in range(3)]
        reasons = [StockLogReason.RESTOCK, StockLogReason.CORRECTION, StockLogReason.DAMAGE, StockLogReason.RETURN]

        for _ in range(60):
            product = rng.choice(products)
            change = rng.choice([-3, -2, -1, 1, 2, 5])
            try:
                services.stock_ledger.adjust_stock(product.id, change, rng.choice(reasons))
            except InsufficientStockError:
                pass

        for product in products:
            assert services.stock_ledger.reconcile(product.id)
        assert services.stock_ledger.reconcile_all() == []

    def test_detects_out_of_band_write(self, services, make_product, database):
        good = make_product(stock=5)
        tampered = make_product(stock=5)
        with database.unit_of_work() as db:
            db.get(Product, tampered.id).stock_quantity = 7

        assert services.stock_ledger.reconcile(good.id)
        assert not services.stock_ledger.reconcile(tampered.id)
        assert services.stock_ledger.reconcile_all() == [tampered.id]

    def test_reconcile_unknown_product(self, services):
        with pytest.raises(NotFoundError):
            services.stock_ledger.reconcile(404)


class TestQueries:

    def test_movements_newest_first(self, services, make_product):
        product = make_product(stock=5)
        services.stock_ledger.adjust_stock(product.id, -2, StockLogReason.SALE)
        services.stock_ledger.restock(product.id, 4)

        movements = services.stock_ledger.get_stock_movements(product_id=product.id)

        assert [m["change_amount"] for m in movements] == [4, -2, 5]
        assert movements[-1]["notes"] == "Opening stock"
        assert movements[0]["product_name"] == product.name

    def test_low_stock_products(self, services, make_product):
        make_product(name="Plenty", stock=50, min_stock_level=5)
        low = make_product(name="Low", stock=3, min_stock_level=5)
        empty = make_product(name="Empty", stock=0, min_stock_level=5)

        rows = services.stock_ledger.get_low_stock_products()

        assert [row["product_id"] for row in rows] == [empty.id, low.id]
        assert rows[0]["status"] == "out_of_stock"
        assert rows[1]["status"] == "low_stock"
        assert len(services.stock_ledger.get_low_stock_products(threshold=100)) == 3

    def test_stock_status(self):
        assert stock_status(Product(stock_quantity=0, min_stock_level=2)) == "out_of_stock"
        assert stock_status(Product(stock_quantity=2, min_stock_level=2)) == "low_stock"
        assert stock_status(Product(stock_quantity=3, min_stock_level=2)) == "normal"


class TestStockAlerts:

    def test_crossing_minimum_and_zero_raise_alerts(self, services, make_product, database):
        product = make_product(stock=5, min_stock_level=2)

        services.stock_ledger.adjust_stock(product.id, -3, StockLogReason.SALE)
        services.stock_ledger.adjust_stock(product.id, -2, StockLogReason.SALE)

        with database.unit_of_work() as db:
            types = sorted(a.alert_type.value for a in db.query(Alert).filter(Alert.product_id == product.id))
        assert types == [AlertType.LOW_STOCK.value, AlertType.OUT_OF_STOCK.value]

    def test_no_alert_above_minimum(self, services, make_product, database):
        product = make_product(stock=10, min_stock_level=2)
        services.stock_ledger.adjust_stock(product.id, -1, StockLogReason.SALE)
        with database.unit_of_work() as db:
            assert db.query(Alert).count() == 0

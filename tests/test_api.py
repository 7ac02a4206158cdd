"""
Tests for the HTTP API through FastAPI's TestClient.
"""
from decimal import Decimal

import pytest

API = "/api/v1"
CASHIER = {"X-User-Id": "cashier_7"}


@pytest.fixture
def product(client):
    response = client.post(
        f"{API}/products",
        json={"name": "Soap", "price": "1000", "stock_quantity": 5, "barcode": "SOAP01"},
        headers=CASHIER,
    )
    assert response.status_code == 201
    return response.json()


class TestHealth:

    def test_root(self, client):
        assert client.get("/").json()["status"] == "running"

    def test_health(self, client):
        body = client.get("/health").json()
        assert body["status"] == "healthy"
        assert body["database"] == "connected"


class TestCheckoutRoutes:

    def test_checkout_and_receipt(self, client, product):
        response = client.post(
            f"{API}/transactions",
            json={
                "items": [{"product_id": product["id"], "quantity": 3}],
                "payment_method": "cash",
                "amount_paid": "3500",
            },
            headers=CASHIER,
        )
        assert response.status_code == 201
        receipt = response.json()
        assert receipt["status"] == "completed"
        assert Decimal(receipt["total_amount"]) == Decimal("3000")
        assert Decimal(receipt["change_amount"]) == Decimal("500")
        assert receipt["created_by"] == "cashier_7"

        fetched = client.get(f"{API}/transactions/{receipt['id']}").json()
        assert fetched["transaction_number"] == receipt["transaction_number"]
        by_number = client.get(f"{API}/transactions/number/{receipt['transaction_number']}")
        assert by_number.json()["id"] == receipt["id"]
        assert client.get(f"{API}/products/{product['id']}").json()["stock_quantity"] == 2

    def test_insufficient_stock_is_409(self, client, product):
        response = client.post(
            f"{API}/transactions",
            json={"items": [{"product_id": product["id"], "quantity": 6}], "payment_method": "card"},
        )
        assert response.status_code == 409
        body = response.json()
        assert body["error"] == "insufficient_stock"
        assert body["product_id"] == product["id"]
        assert body["available"] == 5

    def test_empty_cart_is_rejected(self, client):
        response = client.post(f"{API}/transactions", json={"items": [], "payment_method": "card"})
        assert response.status_code == 422

    def test_unknown_transaction_is_404(self, client):
        response = client.get(f"{API}/transactions/999")
        assert response.status_code == 404
        assert response.json()["error"] == "not_found"

    def test_cancel_pending(self, client, product):
        created = client.post(
            f"{API}/transactions",
            json={"items": [{"product_id": product["id"], "quantity": 2}], "payment_method": "momo"},
        ).json()
        assert created["status"] == "pending"

        response = client.post(f"{API}/transactions/{created['id']}/cancel", json={"reason": "Customer left"})
        assert response.status_code == 200
        assert response.json()["status"] == "cancelled"

        again = client.post(f"{API}/transactions/{created['id']}/cancel", json={"reason": "twice"})
        assert again.status_code == 409
        assert again.json()["error"] == "invalid_state"

    def test_list_transactions(self, client, product):
        client.post(
            f"{API}/transactions",
            json={"items": [{"product_id": product["id"], "quantity": 1}], "payment_method": "card"},
        )
        body = client.get(f"{API}/transactions", params={"status": "completed"}).json()
        assert body["total"] == 1
        assert len(body["transactions"]) == 1


class TestPaymentRoutes:

    @pytest.fixture
    def pending(self, client, product):
        return client.post(
            f"{API}/transactions",
            json={"items": [{"product_id": product["id"], "quantity": 2}], "payment_method": "momo"},
        ).json()

    def test_cash_payment(self, client, pending):
        response = client.post(f"{API}/payments/cash", json={"transaction_id": pending["id"], "amount_paid": "2500"})
        assert response.status_code == 200
        assert Decimal(response.json()["change_amount"]) == Decimal("500")

    def test_finalize_short_payment_completes(self, client, pending):
        response = client.post(
            f"{API}/payments/finalize",
            json={"transaction_id": pending["id"], "payment_method": "momo", "amount_paid": "10"},
        )
        assert response.status_code == 200
        assert response.json()["status"] == "completed"
        assert Decimal(response.json()["change_amount"]) == Decimal("0")

    def test_momo_successful_callback(self, client, pending):
        response = client.post(
            f"{API}/payments/momo/callback",
            json={"external_id": pending["id"], "status": "SUCCESSFUL", "financial_transaction_id": "MTN-99"},
        )
        assert response.json()["status"] == "completed"
        assert client.get(f"{API}/transactions/{pending['id']}").json()["momo_transaction_id"] == "MTN-99"

    def test_momo_failed_callback_returns_stock(self, client, pending, product):
        response = client.post(
            f"{API}/payments/momo/callback",
            json={"external_id": pending["id"], "status": "FAILED", "reason": "Timeout"},
        )
        assert response.json()["status"] == "failed"
        assert client.get(f"{API}/products/{product['id']}").json()["stock_quantity"] == 5

    def test_momo_other_status_ignored(self, client, pending):
        response = client.post(
            f"{API}/payments/momo/callback", json={"external_id": pending["id"], "status": "PENDING"}
        )
        assert response.json()["success"] is True
        assert client.get(f"{API}/transactions/{pending['id']}").json()["status"] == "pending"


class TestInventoryRoutes:

    def test_adjust_restock_and_reconcile(self, client, product):
        adjusted = client.post(
            f"{API}/inventory/adjust",
            json={"product_id": product["id"], "change_amount": -2, "reason": "damage"},
            headers=CASHIER,
        )
        assert adjusted.status_code == 201
        assert adjusted.json()["new_quantity"] == 3
        assert adjusted.json()["performed_by"] == "cashier_7"

        restocked = client.post(f"{API}/inventory/products/{product['id']}/restock", json={"quantity": 10})
        assert restocked.json()["new_quantity"] == 13

        reconcile = client.get(f"{API}/inventory/products/{product['id']}/reconcile").json()
        assert reconcile == {"product_id": product["id"], "consistent": True}

        movements = client.get(f"{API}/inventory/movements", params={"product_id": product["id"]}).json()
        assert movements["count"] == 3

    def test_adjust_below_zero_is_409(self, client, product):
        response = client.post(
            f"{API}/inventory/adjust",
            json={"product_id": product["id"], "change_amount": -6, "reason": "correction"},
        )
        assert response.status_code == 409

    def test_low_stock(self, client, product):
        body = client.get(f"{API}/inventory/low-stock", params={"threshold": 5}).json()
        assert body["count"] == 1
        assert body["products"][0]["barcode"] == "SOAP01"


class TestBarcodeAndProductRoutes:

    def test_generate_allocate_available(self, client):
        generated = client.post(f"{API}/barcodes/generate", json={"count": 5})
        assert generated.status_code == 201
        assert [b["barcode"] for b in generated.json()["data"]][:2] == ["0000000001", "0000000002"]

        allocated = client.post(f"{API}/barcodes/allocate").json()
        assert allocated["barcode_id"] == 1
        assert allocated["status"] == "assigned"

        available = client.get(f"{API}/barcodes/available").json()
        assert available["available_count"] == 4
        assert available["next_available_barcode"] == {"id": 2, "barcode": "0000000002"}
        assert available["warning_level"] is True

        listing = client.get(f"{API}/barcodes", params={"status": "available"}).json()
        assert listing["total"] == 4

    def test_generate_out_of_range(self, client):
        response = client.post(f"{API}/barcodes/generate", json={"count": 100})
        assert response.status_code == 400

    def test_allocate_from_empty_pool(self, client):
        response = client.post(f"{API}/barcodes/allocate")
        assert response.status_code == 409
        assert response.json()["error"] == "barcode_pool_exhausted"

    def test_product_lifecycle(self, client):
        client.post(f"{API}/barcodes/generate", json={"count": 2})
        category = client.post(f"{API}/products/categories", json={"name": "Bakery"}).json()

        created = client.post(
            f"{API}/products",
            json={"name": "Bread", "price": "800", "category_id": category["id"]},
        ).json()
        assert created["barcode"] == "0000000001"

        scanned = client.get(f"{API}/products/barcode/0000000001").json()
        assert scanned["id"] == created["id"]

        patched = client.patch(f"{API}/products/{created['id']}", json={"price": "850"}).json()
        assert Decimal(patched["price"]) == Decimal("850")

        removed = client.delete(f"{API}/products/{created['id']}").json()
        assert removed["is_active"] is False
        assert client.get(f"{API}/products/barcode/0000000001").status_code == 404


class TestAlertRoutes:

    def test_acknowledge_flow(self, client, product):
        client.post(
            f"{API}/inventory/adjust",
            json={"product_id": product["id"], "change_amount": -5, "reason": "damage"},
        )
        alerts = client.get(f"{API}/alerts").json()
        assert alerts["count"] == 1
        alert_id = alerts["alerts"][0]["id"]

        assert client.post(f"{API}/alerts/{alert_id}/acknowledge", headers=CASHIER).status_code == 200
        assert client.get(f"{API}/alerts").json()["count"] == 0
        assert client.post(f"{API}/alerts/{alert_id}/resolve").status_code == 200
        assert client.post(f"{API}/alerts/999/resolve").status_code == 404

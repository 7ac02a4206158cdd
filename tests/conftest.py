"""
Shared fixtures: a file-backed SQLite database per test and the services
wired around it.
"""
from decimal import Decimal
from unittest.mock import Mock

import pytest

from tillpoint.core.config import Settings
from tillpoint.core.database import Database
from tillpoint.services.container import build_services


@pytest.fixture
def settings(tmp_path):
    """Settings pointing at a throwaway database."""
    return Settings(
        database_url=f"sqlite:///{tmp_path}/tillpoint.db",
        retry_backoff_base=0.0,
        log_format="console",
    )


@pytest.fixture
def database(settings):
    db = Database(settings.database_url)
    db.create_all()
    yield db
    db.dispose()


@pytest.fixture
def cache():
    """Mocked CacheManager that always misses."""
    cache = Mock()
    cache.get.return_value = None
    cache.check_connection.return_value = True
    return cache


@pytest.fixture
def services(settings, database, cache):
    return build_services(settings, database, cache)


@pytest.fixture
def make_product(services):
    """Factory creating products with a fixed barcode and opening stock."""
    counter = {"n": 0}

    def _make(name=None, price="1000", stock=10, min_stock_level=2, **extra):
        counter["n"] += 1
        data = {
            "name": name or f"Product {counter['n']}",
            "price": Decimal(price),
            "stock_quantity": stock,
            "min_stock_level": min_stock_level,
            "barcode": extra.pop("barcode", f"TEST{counter['n']:06d}"),
        }
        data.update(extra)
        return services.catalog.create_product(data, user_id="tester")

    return _make


@pytest.fixture
def client(settings, database, cache):
    from fastapi.testclient import TestClient

    from tillpoint.main import create_app

    app = create_app(settings=settings, database=database, cache=cache)
    with TestClient(app) as test_client:
        yield test_client

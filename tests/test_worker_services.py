"""
Tests for how a worker process builds its services.
"""
from unittest.mock import patch

import pytest

from tillpoint.worker import tasks


@pytest.fixture
def wiring(monkeypatch, settings):
    monkeypatch.setattr(tasks, "_services", None)
    with patch.object(tasks, "get_settings", return_value=settings), \
            patch.object(tasks, "configure_logging"), \
            patch.object(tasks, "Database") as database, \
            patch.object(tasks, "CacheManager") as cache, \
            patch.object(tasks, "build_services") as build:
        yield build, database, cache


class TestWorkerServices:

    def test_built_once_per_process(self, wiring):
        build, database, cache = wiring

        first = tasks.get_worker_services()
        second = tasks.get_worker_services()

        assert first is second
        build.assert_called_once()
        database.from_settings.assert_called_once()
        cache.from_settings.assert_called_once()

    def test_process_init_rebuilds_inherited_services(self, wiring, monkeypatch):
        build, _, _ = wiring
        inherited = object()
        monkeypatch.setattr(tasks, "_services", inherited)

        tasks.init_worker_services(sender=None)

        build.assert_called_once()
        assert tasks._services is build.return_value
        assert tasks._services is not inherited

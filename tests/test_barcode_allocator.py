"""
Tests for the Barcode Allocator service.
"""
from unittest.mock import patch

import pytest
from sqlalchemy import update

from tillpoint.core.exceptions import ExhaustedPoolError, ValidationError
from tillpoint.models.alerts import Alert, AlertSeverity, AlertType
from tillpoint.models.barcodes import Barcode, BarcodeStatus
from tillpoint.services import barcode_allocator as allocator_module
from tillpoint.services.barcode_allocator import POOL_STATUS_CACHE_KEY


class TestGenerateBatch:

    def test_first_batch_starts_at_one(self, services):
        barcodes = services.barcodes.generate_batch(5)

        assert [b.barcode_id for b in barcodes] == [1, 2, 3, 4, 5]
        assert barcodes[0].barcode == "0000000001"
        assert barcodes[-1].barcode == "0000000005"
        assert all(b.status == BarcodeStatus.AVAILABLE for b in barcodes)

    def test_batches_are_contiguous(self, services):
        services.barcodes.generate_batch(3)
        second = services.barcodes.generate_batch(4)
        assert [b.barcode_id for b in second] == [4, 5, 6, 7]

    @pytest.mark.parametrize("count", [0, 51, -1, 2.0, True])
    def test_count_outside_bounds(self, services, database, count):
        with pytest.raises(ValidationError, match="between 1 and 50"):
            services.barcodes.generate_batch(count)
        with database.unit_of_work() as db:
            assert db.query(Barcode).count() == 0

    def test_bounds_at_limits(self, services):
        assert len(services.barcodes.generate_batch(1)) == 1
        assert len(services.barcodes.generate_batch(50)) == 50

    def test_generation_invalidates_cached_pool_status(self, services, cache):
        services.barcodes.generate_batch(2)
        cache.delete.assert_any_call(POOL_STATUS_CACHE_KEY)

    def test_format_overflow(self, services, settings):
        narrow = allocator_module.BarcodeAllocator(
            services.database, settings.model_copy(update={"barcode_width": 2})
        )
        assert narrow.format_barcode(7) == "07"
        with pytest.raises(ValidationError):
            narrow.format_barcode(100)

    def test_concurrent_batch_collision_retries_from_new_max(self, services, database):
        real_format = services.barcodes.format_barcode
        competed = []

        def racing_format(barcode_id):
            if not competed:
                competed.append(barcode_id)
                # another terminal commits its batch after this one read the max id
                with database.unit_of_work() as other:
                    other.add_all([
                        Barcode(barcode_id=i, barcode=real_format(i), status=BarcodeStatus.AVAILABLE)
                        for i in (1, 2)
                    ])
            return real_format(barcode_id)

        with patch.object(services.barcodes, "format_barcode", side_effect=racing_format):
            barcodes = services.barcodes.generate_batch(3)

        assert competed == [1]
        assert [b.barcode_id for b in barcodes] == [3, 4, 5]
        with database.unit_of_work() as db:
            assert [row.barcode_id for row in db.query(Barcode).order_by(Barcode.barcode_id)] == [1, 2, 3, 4, 5]


class TestAllocate:

    def test_allocates_in_id_order_until_exhausted(self, services):
        services.barcodes.generate_batch(3)

        allocated = [services.barcodes.allocate_next().barcode_id for _ in range(3)]

        assert allocated == [1, 2, 3]
        with pytest.raises(ExhaustedPoolError):
            services.barcodes.allocate_next()

    def test_empty_pool(self, services):
        with pytest.raises(ExhaustedPoolError, match="Generate a new batch"):
            services.barcodes.allocate_next()

    def test_allocated_barcode_is_marked_assigned(self, services):
        services.barcodes.generate_batch(2)
        barcode = services.barcodes.allocate_next()

        found = services.barcodes.lookup(barcode.barcode)
        assert found.status == BarcodeStatus.ASSIGNED
        assert found.assigned_at is not None
        assert services.barcodes.available_count() == 1

    def test_lost_race_moves_to_next_barcode(self, services, database, monkeypatch):
        services.barcodes.generate_batch(3)
        real_lock = allocator_module.lock_for_update
        raced = []

        class RacingQuery:
            def __init__(self, query):
                self.query = query

            def first(self):
                candidate = self.query.first()
                if not raced:
                    raced.append(candidate.barcode_id)
                    # a second till claims the same barcode before this one writes
                    with database.unit_of_work() as other:
                        other.execute(
                            update(Barcode)
                            .where(Barcode.barcode_id == candidate.barcode_id)
                            .values(status=BarcodeStatus.ASSIGNED)
                        )
                return candidate

        monkeypatch.setattr(
            allocator_module,
            "lock_for_update",
            lambda query, skip_locked=False: RacingQuery(real_lock(query, skip_locked=skip_locked)),
        )

        barcode = services.barcodes.allocate_next()

        assert raced == [1]
        assert barcode.barcode_id == 2
        assert services.barcodes.available_count() == 1

    def test_rows_hidden_by_other_locks_are_retried(self, services, monkeypatch):
        services.barcodes.generate_batch(2)
        real_lock = allocator_module.lock_for_update
        hidden = []

        class LockedOutQuery:
            def __init__(self, query):
                self.query = query

            def first(self):
                if not hidden:
                    # every available row is held by another allocation this time
                    hidden.append(True)
                    return None
                return self.query.first()

        monkeypatch.setattr(
            allocator_module,
            "lock_for_update",
            lambda query, skip_locked=False: LockedOutQuery(real_lock(query, skip_locked=skip_locked)),
        )

        barcode = services.barcodes.allocate_next()

        assert hidden == [True]
        assert barcode.barcode_id == 1

    def test_rows_locked_on_every_attempt_is_contention_not_exhaustion(self, services, monkeypatch):
        services.barcodes.generate_batch(2)

        class AlwaysLockedQuery:
            def __init__(self, query):
                self.query = query

            def first(self):
                return None

        monkeypatch.setattr(
            allocator_module, "lock_for_update", lambda query, skip_locked=False: AlwaysLockedQuery(query)
        )

        with pytest.raises(ExhaustedPoolError, match="contention"):
            services.barcodes.allocate_next()
        assert services.barcodes.available_count() == 2


class TestPoolStatus:

    def test_levels(self, services, settings):
        services.barcodes.generate_batch(12)
        status = services.barcodes.pool_status()
        assert status.available_count == 12
        assert status.next_available.barcode_id == 1
        assert not status.warning_level
        assert not status.critical_level

        for _ in range(3):
            services.barcodes.allocate_next()
        status = services.barcodes.pool_status()
        assert status.available_count == 9
        assert status.next_available.barcode_id == 4
        assert status.warning_level
        assert not status.critical_level

        for _ in range(7):
            services.barcodes.allocate_next()
        status = services.barcodes.pool_status()
        assert status.available_count == 2
        assert status.critical_level

    def test_empty_pool_status(self, services):
        status = services.barcodes.pool_status()
        assert status.available_count == 0
        assert status.next_available is None
        assert status.critical_level

    def test_low_pool_raises_single_alert(self, services, database):
        services.barcodes.generate_batch(4)
        services.barcodes.allocate_next()
        services.barcodes.allocate_next()

        with database.unit_of_work() as db:
            alerts = db.query(Alert).filter(Alert.alert_type == AlertType.BARCODE_POOL_LOW).all()
        # the open alert is reused while it stays active
        assert len(alerts) == 1
        assert alerts[0].severity == AlertSeverity.MEDIUM
        assert alerts[0].product_id is None

    def test_list_barcodes(self, services):
        services.barcodes.generate_batch(5)
        services.barcodes.allocate_next()

        rows, total = services.barcodes.list_barcodes(status=BarcodeStatus.AVAILABLE, limit=2)
        assert total == 4
        assert [row.barcode_id for row in rows] == [2, 3]

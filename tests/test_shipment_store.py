"""
Shipment Store tests
"""
from datetime import datetime, timedelta, timezone

import pytest

from shipment_engine.models import Shipment, ShipmentStatus
from shipment_engine.services.shipment_store import ShipmentStore, parse_provider_timestamp


class TestParseProviderTimestamp:
    def test_iso_with_zulu(self):
        assert parse_provider_timestamp("2026-01-02T10:00:00Z") == datetime(2026, 1, 2, 10, 0, 0)

    def test_offset_is_normalized_to_utc(self):
        assert parse_provider_timestamp("2026-01-02T12:00:00+02:00") == datetime(2026, 1, 2, 10, 0, 0)

    def test_epoch_seconds_and_millis(self):
        assert parse_provider_timestamp(1767225600) == datetime(2026, 1, 1)
        assert parse_provider_timestamp(1767225600000) == datetime(2026, 1, 1)

    def test_aware_datetime(self):
        aware = datetime(2026, 1, 1, 5, tzinfo=timezone(timedelta(hours=5)))
        assert parse_provider_timestamp(aware) == datetime(2026, 1, 1, 0)

    @pytest.mark.parametrize("value", [None, "", "yesterday", ["2026"]])
    def test_unparseable(self, value):
        assert parse_provider_timestamp(value) is None

    @pytest.mark.parametrize("value", [1e20, -1e20, float("inf"), float("nan")])
    def test_out_of_range_epoch_is_unparseable(self, value):
        assert parse_provider_timestamp(value) is None


class TestStore:
    @pytest.fixture
    def store(self, db_session):
        return ShipmentStore(db_session)

    @pytest.fixture
    def shipment(self, db_session, test_order):
        shipment = Shipment(
            order_id=test_order.id,
            tracking_number="TRK-S",
            status=ShipmentStatus.IN_TRANSIT,
            oto_order_id="100",
            oto_shipment_id="200",
        )
        db_session.add(shipment)
        db_session.commit()
        return shipment

    def test_find_by_provider_ids_precedence(self, store, shipment):
        assert store.find_by_provider_ids(oto_order_id=100).id == shipment.id
        assert store.find_by_provider_ids(oto_order_id="x", oto_shipment_id="200").id == shipment.id
        assert store.find_by_provider_ids(tracking_number="TRK-S").id == shipment.id
        assert store.find_by_provider_ids() is None

    def test_append_tracking_event_dedups(self, store, shipment):
        ts = datetime(2026, 1, 1, 9)
        assert store.append_tracking_event(shipment.id, status="inTransit", timestamp=ts) is not None
        assert store.append_tracking_event(shipment.id, status="inTransit", timestamp=ts) is None
        assert store.append_tracking_event(shipment.id, status="outForDelivery", timestamp=ts) is not None
        assert len(store.list_tracking_events(shipment.id)) == 2

    def test_merge_metadata_keeps_existing_keys(self, store, shipment):
        store.merge_metadata(shipment, a=1)
        store.merge_metadata(shipment, b=2)
        assert shipment.meta == {"a": 1, "b": 2}

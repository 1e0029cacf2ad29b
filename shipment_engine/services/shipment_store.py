"""
Shipment Store: shipments, their append-only tracking events, boxes and pickup locations.
Methods flush but never commit; the orchestrator / reconciler owns the transaction.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Iterable, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from shipment_engine.models import PickupLocation, Shipment, ShipmentBox, TrackingEvent

logger = logging.getLogger(__name__)


def parse_provider_timestamp(value: Any) -> Optional[datetime]:
    """
    Normalize a provider timestamp (ISO string, epoch seconds/ms, datetime) to naive UTC,
    the form stored in DateTime columns and compared in the de-dup key. None if unparseable.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, (int, float)):
        seconds = value / 1000 if value > 1e12 else value
        try:
            dt = datetime.fromtimestamp(seconds, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            logger.warning("Out-of-range provider timestamp: %r", value)
            return None
    elif isinstance(value, str):
        try:
            dt = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
        except ValueError:
            logger.warning("Unparseable provider timestamp: %r", value)
            return None
    else:
        return None
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


class ShipmentStore:
    def __init__(self, db: Session):
        self.db = db

    # Lookups

    def find_by_id(self, shipment_id: str) -> Optional[Shipment]:
        return self.db.query(Shipment).filter(Shipment.id == shipment_id).first()

    def find_by_order_id(self, order_id: str) -> Optional[Shipment]:
        return self.db.query(Shipment).filter(Shipment.order_id == order_id).first()

    def find_by_tracking_number(self, tracking_number: str) -> Optional[Shipment]:
        return self.db.query(Shipment).filter(Shipment.tracking_number == tracking_number).first()

    def find_by_provider_ids(
        self,
        oto_order_id: Optional[str] = None,
        oto_shipment_id: Optional[str] = None,
        tracking_number: Optional[str] = None,
    ) -> Optional[Shipment]:
        """First match by OTO order id, then OTO shipment id, then tracking number. Absent ids are skipped."""
        if oto_order_id:
            found = self.db.query(Shipment).filter(Shipment.oto_order_id == str(oto_order_id)).first()
            if found:
                return found
        if oto_shipment_id:
            found = self.db.query(Shipment).filter(Shipment.oto_shipment_id == str(oto_shipment_id)).first()
            if found:
                return found
        if tracking_number:
            return self.find_by_tracking_number(str(tracking_number))
        return None

    def find_many_with_provider_order(self, shipment_ids: Iterable[str]) -> list[Shipment]:
        ids = [s for s in shipment_ids if s]
        if not ids:
            return []
        return (
            self.db.query(Shipment)
            .filter(Shipment.id.in_(ids), Shipment.oto_order_id.isnot(None))
            .all()
        )

    # Writes

    def create(self, **fields: Any) -> Shipment:
        shipment = Shipment(**fields)
        self.db.add(shipment)
        self.db.flush()
        return shipment

    def update(self, shipment: Shipment, **fields: Any) -> Shipment:
        for key, value in fields.items():
            setattr(shipment, key, value)
        self.db.flush()
        return shipment

    def merge_metadata(self, shipment: Shipment, **entries: Any) -> Shipment:
        shipment.meta = {**(shipment.meta or {}), **entries}
        self.db.flush()
        return shipment

    def create_boxes(self, shipment_id: str, boxes: list[dict]) -> list[ShipmentBox]:
        rows = [
            ShipmentBox(
                shipment_id=shipment_id,
                box_name=box.get("boxName") or f"Box {index + 1}",
                weight=float(box.get("weight") or 0),
                height=box.get("height"),
                width=box.get("width"),
                length=box.get("length"),
                dimension_unit=box.get("dimensionUnit") or "cm",
            )
            for index, box in enumerate(boxes)
        ]
        self.db.add_all(rows)
        self.db.flush()
        return rows

    # Tracking events (append-only, de-duplicated on status + provider timestamp)

    def find_tracking_event(self, shipment_id: str, status: str, timestamp: datetime) -> Optional[TrackingEvent]:
        return (
            self.db.query(TrackingEvent)
            .filter(
                TrackingEvent.shipment_id == shipment_id,
                TrackingEvent.status == status,
                TrackingEvent.timestamp == timestamp,
            )
            .first()
        )

    def append_tracking_event(
        self,
        shipment_id: str,
        *,
        status: str,
        timestamp: datetime,
        stage: Optional[str] = None,
        description: Optional[str] = None,
        location: Optional[str] = None,
        raw_payload: Optional[dict] = None,
    ) -> Optional[TrackingEvent]:
        """Append an event; returns None when (status, timestamp) is already recorded."""
        if self.find_tracking_event(shipment_id, status, timestamp):
            return None
        event = TrackingEvent(
            shipment_id=shipment_id,
            status=status,
            stage=stage,
            description=description,
            location=location,
            timestamp=timestamp,
            raw_payload=raw_payload,
        )
        self.db.add(event)
        self.db.flush()
        return event

    def latest_tracking_event(self, shipment_id: str) -> Optional[TrackingEvent]:
        return (
            self.db.query(TrackingEvent)
            .filter(TrackingEvent.shipment_id == shipment_id)
            .order_by(TrackingEvent.timestamp.desc(), TrackingEvent.created_at.desc())
            .first()
        )

    def list_tracking_events(self, shipment_id: str, order_desc: bool = True) -> list[TrackingEvent]:
        order_by = TrackingEvent.timestamp.desc() if order_desc else TrackingEvent.timestamp.asc()
        return (
            self.db.query(TrackingEvent)
            .filter(TrackingEvent.shipment_id == shipment_id)
            .order_by(order_by)
            .all()
        )

    # Reporting

    def statistics(self, start: Optional[datetime] = None, end: Optional[datetime] = None) -> dict:
        query = self.db.query(Shipment).filter(Shipment.oto_order_id.isnot(None))
        if start:
            query = query.filter(Shipment.created_at >= start)
        if end:
            query = query.filter(Shipment.created_at <= end)
        total = query.count()
        by_status = {
            (status.value if hasattr(status, "value") else str(status)): count
            for status, count in query.with_entities(Shipment.status, func.count(Shipment.id))
            .group_by(Shipment.status)
            .all()
        }
        recent = query.order_by(Shipment.created_at.desc()).limit(10).all()
        return {"total": total, "byStatus": by_status, "recent": recent}


class PickupLocationStore:
    def __init__(self, db: Session):
        self.db = db

    def list_locations(self, city: Optional[str] = None, is_active: Optional[bool] = None) -> list[PickupLocation]:
        query = self.db.query(PickupLocation)
        if city:
            query = query.filter(PickupLocation.city == city)
        if is_active is not None:
            query = query.filter(PickupLocation.is_active == is_active)
        return query.order_by(PickupLocation.name.asc()).all()

    def find_by_id(self, location_id: str) -> Optional[PickupLocation]:
        return self.db.query(PickupLocation).filter(PickupLocation.id == location_id).first()

    def find_by_code(self, code: str) -> Optional[PickupLocation]:
        return self.db.query(PickupLocation).filter(PickupLocation.code == code).first()

    def create(self, **fields: Any) -> PickupLocation:
        location = PickupLocation(**fields)
        self.db.add(location)
        self.db.flush()
        return location

    def update(self, location: PickupLocation, **fields: Any) -> PickupLocation:
        for key, value in fields.items():
            setattr(location, key, value)
        self.db.flush()
        return location

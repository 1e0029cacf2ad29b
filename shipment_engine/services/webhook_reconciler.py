"""
OTO webhook reconciler.

Only a bad signature is surfaced to the sender (401). Everything after the
signature check (unknown event, lookup miss, duplicate, store failure) is
acknowledged so OTO never retry-storms the endpoint; the outcome is returned
and recorded in webhook_events instead.
"""
import base64
import hashlib
import hmac
import json
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional

from sqlalchemy.orm import Session

from shipment_engine.config import settings
from shipment_engine.errors import InvalidSignature
from shipment_engine.models import OrderStatus, Shipment, ShipmentStatus, TrackingEvent, WebhookEvent
from shipment_engine.services.order_store import OrderStore
from shipment_engine.services.shipment_store import ShipmentStore, parse_provider_timestamp, utcnow
from shipment_engine.services.status_translator import translate

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "X-OTO-Signature"

STATUS_EVENTS = {"shipment.created", "shipment.updated", "shipment.status_changed"}
DELIVERED_EVENT = "shipment.delivered"
FAILED_EVENT = "shipment.failed"
RETURNED_EVENT = "shipment.returned"

# Status recorded for terminal events that arrive without one
DEFAULT_EVENT_STATUS = {
    DELIVERED_EVENT: "delivered",
    FAILED_EVENT: "undeliveredAttempt",
    RETURNED_EVENT: "returned",
}


def verify_oto_signature(payload: bytes, signature: Optional[str], secret: Optional[str]) -> bool:
    """
    HMAC-SHA256 of the raw body keyed with the shared secret. Accepts the digest
    base64- or hex-encoded; comparison is constant time.
    """
    if not secret or not signature or not payload:
        return False
    digest = hmac.new(secret.encode("utf-8"), payload, hashlib.sha256).digest()
    candidate = signature.strip()
    if candidate.lower().startswith("sha256="):
        candidate = candidate[len("sha256="):]
    return hmac.compare_digest(base64.b64encode(digest).decode("utf-8"), candidate) or hmac.compare_digest(
        digest.hex(), candidate.lower()
    )


@dataclass
class WebhookOutcome:
    event: Optional[str]
    outcome: str  # applied | duplicate | unmatched | ignored | invalid_payload | error
    shipment_id: Optional[str] = None
    error: Optional[str] = None

    @property
    def acknowledged(self) -> bool:
        return True

    def to_dict(self) -> dict:
        return {
            "success": self.outcome != "error",
            "received": True,
            "event": self.event,
            "outcome": self.outcome,
            "error": self.error,
        }


def _location_text(location: Any) -> Optional[str]:
    if location is None or isinstance(location, str):
        return location
    return json.dumps(location, default=str)


def apply_provider_event(
    shipment_store: ShipmentStore,
    shipment: Shipment,
    *,
    status: str,
    timestamp: datetime,
    data: dict,
) -> Optional[TrackingEvent]:
    """
    Append a tracking event and move the shipment to the translated status.
    Returns None (and writes nothing) when (status, timestamp) is already recorded.
    Last write wins: no monotonic ordering is enforced between events.
    """
    event = shipment_store.append_tracking_event(
        shipment.id,
        status=status,
        timestamp=timestamp,
        stage=data.get("stage"),
        description=data.get("description"),
        location=_location_text(data.get("location")),
        raw_payload=data,
    )
    if event is None:
        return None
    shipment_store.update(shipment, status=translate(status), oto_status=status)
    return event


class WebhookReconciler:
    def __init__(
        self,
        db: Session,
        *,
        secret: Optional[str] = None,
        shipment_store: Optional[ShipmentStore] = None,
        order_store: Optional[OrderStore] = None,
    ):
        self.db = db
        self.secret = secret if secret is not None else settings.OTO_WEBHOOK_SECRET
        self.shipments = shipment_store or ShipmentStore(db)
        self.orders = order_store or OrderStore(db)

    async def handle(self, signature: Optional[str], raw_body: bytes) -> WebhookOutcome:
        if not verify_oto_signature(raw_body, signature, self.secret):
            if not self.secret:
                logger.warning("OTO webhook secret not configured; rejecting webhook")
            else:
                logger.warning("OTO webhook signature mismatch")
            raise InvalidSignature("Invalid webhook signature")

        event_name: Optional[str] = None
        try:
            payload = json.loads(raw_body)
            if not isinstance(payload, dict):
                raise ValueError("webhook body is not a JSON object")
            event_name = payload.get("event")
            logger.info("OTO webhook received: %s", event_name)
            outcome = self._dispatch(event_name, payload.get("data"))
            self.db.commit()
        except Exception as e:
            # Acknowledged regardless; see module docstring
            self.db.rollback()
            logger.exception("OTO webhook processing error (event=%s): %s", event_name, e)
            outcome = WebhookOutcome(event=event_name, outcome="error", error=str(e))

        self._record(raw_body, outcome)
        return outcome

    def _dispatch(self, event: Optional[str], data: Any) -> WebhookOutcome:
        if event not in STATUS_EVENTS and event not in DEFAULT_EVENT_STATUS:
            logger.info("Unhandled OTO webhook event: %s", event)
            return WebhookOutcome(event=event, outcome="ignored")
        if not isinstance(data, dict):
            logger.warning("OTO webhook %s without data object", event)
            return WebhookOutcome(event=event, outcome="invalid_payload")

        shipment = self.shipments.find_by_provider_ids(
            oto_order_id=data.get("orderId"),
            oto_shipment_id=data.get("shipmentId"),
            tracking_number=data.get("trackingNumber"),
        )
        if not shipment:
            logger.warning(
                "Shipment not found for webhook update: orderId=%s shipmentId=%s trackingNumber=%s",
                data.get("orderId"),
                data.get("shipmentId"),
                data.get("trackingNumber"),
            )
            return WebhookOutcome(event=event, outcome="unmatched")

        status = data.get("status") or DEFAULT_EVENT_STATUS.get(event)
        if not status:
            logger.warning("OTO webhook %s for shipment %s has no status", event, shipment.id)
            return WebhookOutcome(event=event, outcome="invalid_payload", shipment_id=shipment.id)

        delivered_at = parse_provider_timestamp(data.get("deliveredAt"))
        timestamp = parse_provider_timestamp(data.get("timestamp"))
        if timestamp is None and event == DELIVERED_EVENT:
            timestamp = delivered_at
        if timestamp is None:
            # No provider time to key on: an identical payload for the latest status is a redelivery
            latest = self.shipments.latest_tracking_event(shipment.id)
            if latest is not None and latest.status == status and latest.raw_payload == data:
                logger.info("Redelivered OTO event %s for shipment %s skipped", status, shipment.id)
                return WebhookOutcome(event=event, outcome="duplicate", shipment_id=shipment.id)
            timestamp = utcnow()

        if apply_provider_event(self.shipments, shipment, status=status, timestamp=timestamp, data=data) is None:
            logger.info("Duplicate OTO event %s/%s for shipment %s skipped", status, timestamp, shipment.id)
            return WebhookOutcome(event=event, outcome="duplicate", shipment_id=shipment.id)

        if event == DELIVERED_EVENT:
            self.shipments.update(
                shipment,
                status=ShipmentStatus.DELIVERED,
                actual_delivery=delivered_at or timestamp,
            )
            self.orders.update_order_status(shipment.order_id, OrderStatus.DELIVERED)
        elif event in (FAILED_EVENT, RETURNED_EVENT):
            returned = event == RETURNED_EVENT or status == "returned"
            self.shipments.update(
                shipment,
                status=ShipmentStatus.RETURNED if returned else ShipmentStatus.FAILED_DELIVERY,
            )
            self.orders.update_order_status(
                shipment.order_id,
                OrderStatus.RETURNED if returned else OrderStatus.DELIVERY_FAILED,
            )

        logger.info("Shipment %s updated from %s: %s -> %s", shipment.id, event, status, shipment.status.value)
        return WebhookOutcome(event=event, outcome="applied", shipment_id=shipment.id)

    def _record(self, raw_body: bytes, outcome: WebhookOutcome) -> None:
        try:
            self.db.add(
                WebhookEvent(
                    source="oto",
                    topic=outcome.event or "unknown",
                    payload_summary=raw_body[:500].decode("utf-8", errors="replace"),
                    outcome=outcome.outcome,
                    processed_at=utcnow(),
                    error=outcome.error,
                )
            )
            self.db.commit()
        except Exception as e:
            self.db.rollback()
            logger.error("Failed to record OTO webhook event: %s", e)

"""
Shipment use cases on top of OTOClient and the Order/Shipment stores:
create (at most one OTO order per order), track (live enrichment, degrades to
local data), label, AWB, returns, cancel, driver assignment, fee checks,
pickup locations, statistics.
"""
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from shipment_engine.config import settings
from shipment_engine.errors import (
    NoProviderOrder,
    NoProviderShipment,
    NoValidShipments,
    OrderNotFound,
    PickupLocationExists,
    PickupLocationNotFound,
    ShipmentAlreadyExists,
    ShipmentNotFound,
    ShippingError,
)
from shipment_engine.models import Order, OrderStatus, PickupLocation, Shipment, ShipmentStatus, TrackingEvent
from shipment_engine.services.oto_client import OTOClient, ShippingLabel
from shipment_engine.services.order_store import OrderStore
from shipment_engine.services.shipment_store import (
    PickupLocationStore,
    ShipmentStore,
    parse_provider_timestamp,
    utcnow,
)
from shipment_engine.services.status_translator import CANCELED_STATUS, is_terminal, translate
from shipment_engine.services.webhook_reconciler import apply_provider_event

logger = logging.getLogger(__name__)

DEFAULT_BOX_DIMENSIONS = {"height": 20, "width": 30, "length": 40, "dimensionUnit": "cm"}


def item_weight(item: Any, default_weight: float) -> float:
    weight = getattr(item, "weight", None)
    return float(weight) if weight else default_weight


def synthesize_boxes(items: list[Any], default_weight: float, box_name: str = "Box 1") -> list[dict]:
    """One box carrying every item: weight = Σ(quantity × unit weight), default 20×30×40 cm."""
    total = sum(int(it.quantity or 0) * item_weight(it, default_weight) for it in items)
    return [{"boxName": box_name, "weight": total, **DEFAULT_BOX_DIMENSIONS}]


def build_oto_order_payload(
    order: Order,
    *,
    pickup_location_code: Optional[str] = None,
    delivery_company_code: Optional[str] = None,
    boxes: Optional[list[dict]] = None,
    cod_amount: Optional[float] = None,
    special_instructions: Optional[str] = None,
    who_pays: str = "recipient",
    default_weight: Optional[float] = None,
) -> dict:
    """
    Build the OTO /createOrder payload from an Order and its items.
    Sender comes from settings; recipient is snapshotted from the order.
    """
    unit_weight = default_weight if default_weight is not None else settings.OTO_DEFAULT_ITEM_WEIGHT_KG
    items = list(order.items or [])
    price = float(order.price or 0)
    full_name = f"{order.customer_first_name or ''} {order.customer_last_name or ''}".strip()
    return {
        "orderId": order.order_number,
        "referenceId": order.id,
        "sender": {
            "name": settings.OTO_SENDER_NAME,
            "phone": settings.OTO_SENDER_PHONE,
            "email": settings.OTO_SENDER_EMAIL,
            "pickupLocationCode": pickup_location_code or settings.OTO_DEFAULT_PICKUP_LOCATION,
        },
        "recipient": {
            "name": full_name or "Customer",
            "phone": order.customer_phone,
            "email": order.customer_email,
            "address": {
                "building": order.shipping_building or "",
                "street": order.shipping_street or "",
                "city": order.shipping_city,
                "country": order.shipping_country,
                "postcode": order.shipping_postcode or "",
            },
        },
        "items": [
            {
                "name": it.product_name or f"Product {index + 1}",
                "quantity": it.quantity,
                "price": float(it.total_price or 0),
                "sku": it.product_id or f"SKU-{index + 1}",
                "weight": item_weight(it, unit_weight),
            }
            for index, it in enumerate(items)
        ],
        "boxes": boxes or synthesize_boxes(items, unit_weight),
        "payment": {
            "amount": price,
            "currency": order.currency,
            "codAmount": cod_amount if cod_amount is not None else price,
            "whoPays": who_pays,
        },
        "deliveryCompanyCode": delivery_company_code,
        "specialInstructions": special_instructions or "",
    }


@dataclass
class CreateShipmentResult:
    shipment: Shipment
    oto_response: dict


@dataclass
class TrackingResult:
    """Local shipment + events, optionally enriched by live OTO tracking.
    degraded=True means the live call failed and only local data is returned."""

    shipment: Shipment
    events: list[TrackingEvent]
    live_tracking: Optional[dict] = None
    degraded: bool = False
    degraded_reason: Optional[str] = None
    new_event: Optional[TrackingEvent] = field(default=None, repr=False)


class ShipmentOrchestrator:
    def __init__(
        self,
        db: Session,
        client: OTOClient,
        *,
        order_store: Optional[OrderStore] = None,
        shipment_store: Optional[ShipmentStore] = None,
        pickup_store: Optional[PickupLocationStore] = None,
    ):
        self.db = db
        self.client = client
        self.orders = order_store or OrderStore(db)
        self.shipments = shipment_store or ShipmentStore(db)
        self.pickups = pickup_store or PickupLocationStore(db)

    # Create

    async def create_shipment(
        self,
        order_id: str,
        *,
        delivery_company_code: Optional[str] = None,
        pickup_location_code: Optional[str] = None,
        boxes: Optional[list[dict]] = None,
        cod_amount: Optional[float] = None,
        special_instructions: Optional[str] = None,
        who_pays: str = "recipient",
        extra_metadata: Optional[dict] = None,
    ) -> CreateShipmentResult:
        order = self.orders.get_order(order_id)
        if not order:
            raise OrderNotFound("Order not found")

        existing = self.shipments.find_by_order_id(order_id)
        if existing and existing.oto_order_id:
            raise ShipmentAlreadyExists("OTO shipment already exists for this order")

        payload = build_oto_order_payload(
            order,
            pickup_location_code=pickup_location_code,
            delivery_company_code=delivery_company_code,
            boxes=boxes,
            cod_amount=cod_amount,
            special_instructions=special_instructions,
            who_pays=who_pays,
        )
        # Provider errors propagate before any local write; the caller may retry.
        oto_data = await self.client.create_order(payload)
        oto_data = oto_data if isinstance(oto_data, dict) else {}

        raw_status = oto_data.get("status")
        status = translate(raw_status)
        if status == ShipmentStatus.PENDING:
            status = ShipmentStatus.LABEL_CREATED
        final_boxes = payload["boxes"]
        fields = {
            "tracking_number": oto_data.get("trackingNumber") or f"TRK{int(time.time() * 1000)}",
            "status": status,
            "sender_info": payload["sender"],
            "recipient_info": payload["recipient"],
            "oto_order_id": str(oto_data["orderId"]) if oto_data.get("orderId") is not None else None,
            "oto_shipment_id": str(oto_data["shipmentId"]) if oto_data.get("shipmentId") is not None else None,
            "oto_status": raw_status,
            "delivery_company": delivery_company_code,
            "package_weight": sum(float(b.get("weight") or 0) for b in final_boxes),
            "package_count": len(final_boxes),
            "cod_amount": Decimal(str(payload["payment"]["codAmount"])),
            "estimated_delivery": parse_provider_timestamp(oto_data.get("estimatedDelivery")),
            "meta": {
                **(extra_metadata or {}),
                "otoResponse": oto_data,
                "createdAt": utcnow().isoformat(),
            },
        }
        try:
            if existing:
                shipment = self.shipments.update(existing, **fields)
            else:
                shipment = self.shipments.create(order_id=order.id, **fields)
            self.shipments.create_boxes(shipment.id, final_boxes)
            self.orders.update_order_status(order.id, OrderStatus.SHIPPED, tracking_number=shipment.tracking_number)
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            logger.error(
                "OTO order %s created for order %s but local write failed",
                fields["oto_order_id"],
                order_id,
            )
            raise

        logger.info("Created OTO shipment %s for order %s (tracking %s)", shipment.id, order_id, shipment.tracking_number)
        return CreateShipmentResult(shipment=shipment, oto_response=oto_data)

    # Track

    async def track_shipment(self, tracking_number: str) -> TrackingResult:
        shipment = self.shipments.find_by_tracking_number(tracking_number)
        if not shipment:
            raise ShipmentNotFound("Shipment not found")

        result = TrackingResult(shipment=shipment, events=[])
        if shipment.oto_order_id:
            try:
                live = await self.client.track_shipment(shipment.oto_order_id)
                result.live_tracking = live
                result.new_event = self._apply_latest_event(shipment, live)
                self.db.commit()
            except (ShippingError, SQLAlchemyError) as e:
                # Live tracking is best effort: fall back to what is stored locally
                self.db.rollback()
                result.degraded = True
                result.degraded_reason = getattr(e, "message", None) or str(e)
                logger.warning("Error fetching OTO tracking for %s: %s", tracking_number, result.degraded_reason)

        result.events = self.shipments.list_tracking_events(shipment.id, order_desc=True)
        return result

    def _apply_latest_event(self, shipment: Shipment, live: Any) -> Optional[TrackingEvent]:
        events = live.get("events") if isinstance(live, dict) else None
        if not isinstance(events, list) or not events or not isinstance(events[0], dict):
            return None
        latest = events[0]
        status = latest.get("status")
        timestamp = parse_provider_timestamp(latest.get("timestamp"))
        if not status or timestamp is None:
            return None
        stored = self.shipments.list_tracking_events(shipment.id, order_desc=True)
        if stored and stored[0].timestamp > timestamp:
            return None
        return apply_provider_event(self.shipments, shipment, status=status, timestamp=timestamp, data=latest)

    # Label

    async def get_label(self, shipment_id: str, fmt: str = "pdf") -> tuple[Shipment, ShippingLabel]:
        shipment = self.shipments.find_by_id(shipment_id)
        if not shipment:
            raise ShipmentNotFound("Shipment not found")
        if not shipment.oto_shipment_id:
            raise NoProviderShipment("No OTO shipment ID found for this shipping")
        label = await self.client.get_shipping_label(shipment.oto_shipment_id, fmt)
        return shipment, label

    # Cancel

    async def cancel_shipment(self, shipment_id: str, reason: Optional[str] = None) -> dict:
        shipment = self.shipments.find_by_id(shipment_id)
        if not shipment:
            raise ShipmentNotFound("Shipment not found")
        if not shipment.oto_order_id:
            raise NoProviderOrder("No OTO order ID found for this shipping")

        oto_order_id = shipment.oto_order_id
        oto_data = await self.client.cancel_order(oto_order_id)
        try:
            self.shipments.update(shipment, status=ShipmentStatus.FAILED_DELIVERY, oto_status=CANCELED_STATUS)
            self.shipments.merge_metadata(
                shipment,
                cancelReason=reason,
                canceledAt=utcnow().isoformat(),
                otoResponse=oto_data,
            )
            self.orders.update_order_status(shipment.order_id, OrderStatus.CANCELLED)
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            logger.error(
                "OTO order %s cancelled for shipment %s but local write failed",
                oto_order_id,
                shipment_id,
            )
            raise
        logger.info("Cancelled OTO order %s (shipment %s)", shipment.oto_order_id, shipment.id)
        return oto_data

    # AWB and returns

    async def print_awb(self, shipment_id: str) -> dict:
        shipment = self.shipments.find_by_id(shipment_id)
        if not shipment:
            raise ShipmentNotFound("Shipment not found")
        if not shipment.oto_order_id:
            raise NoProviderOrder("No OTO order ID found for this shipping")
        return await self.client.print_awb(shipment.oto_order_id)

    async def create_return_shipment(self, shipment_id: str, return_data: Optional[dict] = None) -> dict:
        """Ask OTO for a reverse pickup of a shipped order; the request is noted in shipment metadata."""
        shipment = self.shipments.find_by_id(shipment_id)
        if not shipment:
            raise ShipmentNotFound("Shipment not found")
        if not shipment.oto_order_id:
            raise NoProviderOrder("No OTO order ID found for this shipping")

        oto_data = await self.client.create_return_shipment({**(return_data or {}), "orderId": shipment.oto_order_id})
        try:
            self.shipments.merge_metadata(
                shipment,
                returnRequestedAt=utcnow().isoformat(),
                returnResponse=oto_data,
            )
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            logger.error("OTO return requested for order %s but local write failed", shipment.oto_order_id)
            raise
        logger.info("Requested OTO return for order %s (shipment %s)", shipment.oto_order_id, shipment.id)
        return oto_data

    # Driver assignment (OTO Flex)

    async def assign_driver(self, shipment_ids: list[str], driver_id: Any) -> dict:
        oto_order_ids = []
        dispatched = []
        for s in self.shipments.find_many_with_provider_order(shipment_ids):
            try:
                oto_order_ids.append(int(s.oto_order_id))
            except (TypeError, ValueError):
                logger.warning("Shipment %s has non-numeric OTO order id %r; skipped", s.id, s.oto_order_id)
                continue
            dispatched.append(s)
        if not oto_order_ids:
            raise NoValidShipments("No valid OTO shipments found")
        if len(dispatched) < len(set(shipment_ids)):
            logger.info("Driver assignment: %s of %s shipments sent to OTO", len(dispatched), len(set(shipment_ids)))

        oto_data = await self.client.assign_driver(oto_order_ids, driver_id)
        assigned_at = utcnow().isoformat()
        for s in dispatched:
            self.shipments.merge_metadata(s, assignedDriver=driver_id, assignedAt=assigned_at)
        self.db.commit()
        return {
            "assignedShipments": len(dispatched),
            "driverID": driver_id,
            "otoResponse": oto_data,
        }

    # Fees

    async def check_delivery_fee(self, fee_data: dict, *, contract_rates: bool = False) -> dict:
        """OTO-rate quote by default; contract_rates=True quotes with the merchant's own contracts."""
        if contract_rates:
            return await self.client.check_delivery_fee(fee_data)
        return await self.client.check_oto_delivery_fee(fee_data)

    # Pickup locations

    def list_pickup_locations(self, city: Optional[str] = None, is_active: Optional[bool] = None) -> list[PickupLocation]:
        return self.pickups.list_locations(city=city, is_active=is_active)

    async def create_pickup_location(self, fields: dict, *, sync: bool = False) -> PickupLocation:
        if self.pickups.find_by_code(fields["code"]):
            raise PickupLocationExists("Pickup location with this code already exists")
        if sync:
            oto_data = await self.client.create_pickup_location(_pickup_payload(fields))
            oto_data = oto_data if isinstance(oto_data, dict) else {}
            oto_id = oto_data.get("id") or oto_data.get("pickupLocationId")
            if oto_id is not None:
                fields = {**fields, "oto_location_id": str(oto_id)}
        try:
            location = self.pickups.create(**fields)
            self.db.commit()
        except IntegrityError as e:
            self.db.rollback()
            raise PickupLocationExists("Pickup location with this code already exists") from e
        return location

    async def update_pickup_location(self, location_id: str, fields: dict, *, sync: bool = False) -> PickupLocation:
        location = self.pickups.find_by_id(location_id)
        if not location:
            raise PickupLocationNotFound("Pickup location not found")
        if sync and location.oto_location_id:
            await self.client.update_pickup_location(location.oto_location_id, _pickup_payload(fields))
        try:
            self.pickups.update(location, **fields)
            self.db.commit()
        except IntegrityError as e:
            self.db.rollback()
            raise PickupLocationExists("Pickup location with this code already exists") from e
        return location

    # Reporting

    def statistics(self, start: Optional[datetime] = None, end: Optional[datetime] = None) -> dict:
        stats = self.shipments.statistics(start=start, end=end)
        stats["active"] = sum(
            count for status, count in stats["byStatus"].items() if not is_terminal(ShipmentStatus(status))
        )
        return stats


def _pickup_payload(fields: dict) -> dict:
    mapping = {
        "code": "code",
        "name": "name",
        "city": "city",
        "address": "address",
        "contact_name": "contactName",
        "contact_phone": "mobile",
    }
    return {oto_key: fields[key] for key, oto_key in mapping.items() if fields.get(key) is not None}

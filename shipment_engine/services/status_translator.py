"""
OTO status vocabulary → internal ShipmentStatus.
Unknown statuses map to PENDING so an unmapped value never blocks processing;
callers keep the raw string next to the translated value (Shipment.oto_status).
"""
from typing import Optional

from shipment_engine.models import ShipmentStatus

CANCELED_STATUS = "shipmentCanceled"

OTO_TO_INTERNAL = {
    # Creation stages
    "new": ShipmentStatus.PENDING,
    "searchingDriver": ShipmentStatus.PENDING,
    "shipmentCreated": ShipmentStatus.LABEL_CREATED,
    "goingToPickup": ShipmentStatus.LABEL_CREATED,
    "arrivedPickup": ShipmentStatus.LABEL_CREATED,
    # Pickup
    "pickedUp": ShipmentStatus.PICKED_UP,
    # Transit
    "inTransit": ShipmentStatus.IN_TRANSIT,
    "arrivedTerminal": ShipmentStatus.IN_TRANSIT,
    "departedTerminal": ShipmentStatus.IN_TRANSIT,
    "arrivedOriginTerminal": ShipmentStatus.IN_TRANSIT,
    "arrivedDestinationTerminal": ShipmentStatus.IN_TRANSIT,
    "outForDelivery": ShipmentStatus.OUT_FOR_DELIVERY,
    "arrivedDestination": ShipmentStatus.OUT_FOR_DELIVERY,
    # Delivery
    "delivered": ShipmentStatus.DELIVERED,
    # Failed / return
    "undeliveredAttempt": ShipmentStatus.FAILED_DELIVERY,
    "returned": ShipmentStatus.RETURNED,
    "returnProcessing": ShipmentStatus.RETURNED,
    "returnShipmentProcessing": ShipmentStatus.RETURNED,
    # Other
    CANCELED_STATUS: ShipmentStatus.FAILED_DELIVERY,
    "lostOrDamaged": ShipmentStatus.FAILED_DELIVERY,
    "destroyed": ShipmentStatus.FAILED_DELIVERY,
}

TERMINAL_STATUSES = frozenset(
    {ShipmentStatus.DELIVERED, ShipmentStatus.FAILED_DELIVERY, ShipmentStatus.RETURNED}
)


def translate(oto_status: Optional[str]) -> ShipmentStatus:
    """Map an OTO status to ShipmentStatus. Total: never raises."""
    if not oto_status or not isinstance(oto_status, str):
        return ShipmentStatus.PENDING
    return OTO_TO_INTERNAL.get(oto_status.strip(), ShipmentStatus.PENDING)


def is_terminal(status: ShipmentStatus) -> bool:
    return status in TERMINAL_STATUSES

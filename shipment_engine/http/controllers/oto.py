"""
OTO shipping routes, mounted under /api/oto.

ShippingError subclasses propagate to the exception handler in main.py, which
renders {"error": {...}} with the status the error carries.
"""
import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response, status
from sqlalchemy.orm import Session

from shipment_engine.database import get_db
from shipment_engine.errors import OrderNotFound
from shipment_engine.models import PickupLocation, Shipment, TrackingEvent
from shipment_engine.http.requests.schemas import (
    ActivateDeliveryCompanyRequest,
    AssignDriverRequest,
    AutoShipRequest,
    BuyCreditRequest,
    CancelShipmentRequest,
    CreateShipmentRequest,
    PickupLocationCreateRequest,
    PickupLocationUpdateRequest,
    ReturnShipmentRequest,
    UpdateProviderOrderRequest,
    WebhookSubscriptionRequest,
)
from shipment_engine.services.auto_shipment import AutoShipmentService
from shipment_engine.services.oto_client import OTOClient
from shipment_engine.services.shipment_orchestrator import ShipmentOrchestrator
from shipment_engine.services.shipping_cost import calculate_order_shipping_cost, validate_city
from shipment_engine.services.webhook_reconciler import SIGNATURE_HEADER, WebhookReconciler

logger = logging.getLogger(__name__)

router = APIRouter()


def get_oto_client(request: Request) -> OTOClient:
    return request.app.state.oto_client


def get_orchestrator(
    db: Session = Depends(get_db),
    client: OTOClient = Depends(get_oto_client),
) -> ShipmentOrchestrator:
    return ShipmentOrchestrator(db, client)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def serialize_shipment(s: Shipment) -> dict:
    return {
        "id": s.id,
        "orderId": s.order_id,
        "trackingNumber": s.tracking_number,
        "status": s.status.value if s.status else None,
        "otoOrderId": s.oto_order_id,
        "otoShipmentId": s.oto_shipment_id,
        "otoStatus": s.oto_status,
        "deliveryCompany": s.delivery_company,
        "packageWeight": s.package_weight,
        "packageCount": s.package_count,
        "codAmount": float(s.cod_amount) if s.cod_amount is not None else None,
        "estimatedDelivery": _iso(s.estimated_delivery),
        "actualDelivery": _iso(s.actual_delivery),
        "metadata": s.meta,
        "createdAt": _iso(s.created_at),
        "updatedAt": _iso(s.updated_at),
    }


def serialize_event(e: TrackingEvent) -> dict:
    return {
        "id": e.id,
        "status": e.status,
        "stage": e.stage,
        "description": e.description,
        "location": e.location,
        "timestamp": _iso(e.timestamp),
    }


def serialize_pickup_location(p: PickupLocation) -> dict:
    return {
        "id": p.id,
        "code": p.code,
        "name": p.name,
        "city": p.city,
        "address": p.address,
        "contactName": p.contact_name,
        "contactPhone": p.contact_phone,
        "isActive": p.is_active,
        "otoLocationId": p.oto_location_id,
    }


# Public

@router.get("/health")
async def oto_health(client: OTOClient = Depends(get_oto_client)):
    """Provider reachability + credential check."""
    data = await client.health_check()
    return {"success": True, "message": "OTO API is healthy", "data": data}


@router.post("/webhook")
async def oto_webhook(request: Request, db: Session = Depends(get_db)):
    """
    OTO webhook receiver. 401 on a bad X-OTO-Signature; 200 for everything else,
    with the processing outcome in the body.
    """
    raw_body = await request.body()
    signature = request.headers.get(SIGNATURE_HEADER)
    outcome = await WebhookReconciler(db).handle(signature, raw_body)
    return outcome.to_dict()


@router.get("/track/{tracking_number}")
async def track_shipment(tracking_number: str, orchestrator: ShipmentOrchestrator = Depends(get_orchestrator)):
    result = await orchestrator.track_shipment(tracking_number)
    return {
        "success": True,
        "data": {
            "shipping": serialize_shipment(result.shipment),
            "trackingEvents": [serialize_event(e) for e in result.events],
            "liveTracking": result.live_tracking,
            "degraded": result.degraded,
            "degradedReason": result.degraded_reason,
        },
    }


# Shipments

@router.post("/shipments/create/{order_id}", status_code=status.HTTP_201_CREATED)
async def create_shipment(
    order_id: str,
    body: CreateShipmentRequest,
    orchestrator: ShipmentOrchestrator = Depends(get_orchestrator),
):
    result = await orchestrator.create_shipment(
        order_id,
        delivery_company_code=body.deliveryCompanyCode,
        pickup_location_code=body.pickupLocationCode,
        boxes=body.box_dicts(),
        cod_amount=body.codAmount,
        special_instructions=body.specialInstructions,
    )
    return {
        "success": True,
        "data": {
            "shipping": serialize_shipment(result.shipment),
            "otoResponse": result.oto_response,
        },
    }


@router.get("/shipments/{shipment_id}/label")
async def get_shipping_label(
    shipment_id: str,
    format: str = Query("pdf"),
    orchestrator: ShipmentOrchestrator = Depends(get_orchestrator),
):
    shipment, label = await orchestrator.get_label(shipment_id, format)
    return Response(
        content=label.content,
        media_type=label.content_type,
        headers={"Content-Disposition": f'attachment; filename="label-{shipment.tracking_number}.{format}"'},
    )


@router.post("/shipments/{shipment_id}/cancel")
async def cancel_shipment(
    shipment_id: str,
    body: Optional[CancelShipmentRequest] = None,
    orchestrator: ShipmentOrchestrator = Depends(get_orchestrator),
):
    data = await orchestrator.cancel_shipment(shipment_id, reason=body.reason if body else None)
    return {"success": True, "message": "Shipment cancelled successfully", "data": data}


@router.post("/drivers/assign")
async def assign_driver(body: AssignDriverRequest, orchestrator: ShipmentOrchestrator = Depends(get_orchestrator)):
    data = await orchestrator.assign_driver(body.shipmentIds, body.driverId)
    return {"success": True, "message": "Driver assigned successfully", "data": data}


@router.post("/orders/{order_id}/auto-ship")
async def auto_ship_order(
    order_id: str,
    body: Optional[AutoShipRequest] = None,
    db: Session = Depends(get_db),
    client: OTOClient = Depends(get_oto_client),
):
    """Create the OTO shipment for a paid order; data is null when the order was skipped or creation failed."""
    body = body or AutoShipRequest()
    shipment = await AutoShipmentService(db, client).create_for_order(
        order_id,
        pickup_location_code=body.pickupLocationCode,
        delivery_company_code=body.deliveryCompanyCode,
        special_instructions=body.specialInstructions,
    )
    return {"success": shipment is not None, "data": serialize_shipment(shipment) if shipment else None}


@router.post("/orders/retry-shipments")
async def bulk_retry_shipments(db: Session = Depends(get_db), client: OTOClient = Depends(get_oto_client)):
    """Retry every order parked as NOT_ENOUGH_CREDIT."""
    data = await AutoShipmentService(db, client).retry_not_enough_credit()
    return {
        "success": True,
        "message": f"Processed {data['processed']} orders. {data['succeeded']} successful, {data['failed']} failed.",
        "data": data,
    }


@router.post("/orders/{order_id}/retry-shipment")
async def retry_shipment_creation(
    order_id: str,
    db: Session = Depends(get_db),
    client: OTOClient = Depends(get_oto_client),
):
    service = AutoShipmentService(db, client)
    shipment = await service.retry(order_id)
    if shipment is None:
        details = service.failure_details(order_id)
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"message": "Shipment was not created", **details},
        )
    return {"success": True, "message": "Shipment created successfully", "data": serialize_shipment(shipment)}


@router.get("/orders/{order_id}/shipping-cost")
async def get_order_shipping_cost(order_id: str, orchestrator: ShipmentOrchestrator = Depends(get_orchestrator)):
    order = orchestrator.orders.get_order(order_id)
    if not order:
        raise OrderNotFound("Order not found")
    return {"success": True, "data": await calculate_order_shipping_cost(orchestrator.client, order)}


@router.get("/credit-summary")
async def get_credit_summary(db: Session = Depends(get_db), client: OTOClient = Depends(get_oto_client)):
    return {"success": True, "data": await AutoShipmentService(db, client).credit_summary()}


@router.get("/shipments/{shipment_id}/awb")
async def print_awb(shipment_id: str, orchestrator: ShipmentOrchestrator = Depends(get_orchestrator)):
    return {"success": True, "data": await orchestrator.print_awb(shipment_id)}


@router.post("/shipments/{shipment_id}/return")
async def create_return_shipment(
    shipment_id: str,
    body: Optional[ReturnShipmentRequest] = None,
    orchestrator: ShipmentOrchestrator = Depends(get_orchestrator),
):
    data = await orchestrator.create_return_shipment(shipment_id, body.return_data() if body else None)
    return {"success": True, "message": "Return shipment requested", "data": data}


# Pickup locations

@router.get("/pickup-locations")
async def list_pickup_locations(
    city: Optional[str] = None,
    isActive: Optional[bool] = None,
    orchestrator: ShipmentOrchestrator = Depends(get_orchestrator),
):
    locations = orchestrator.list_pickup_locations(city=city, is_active=isActive)
    return {"success": True, "data": [serialize_pickup_location(p) for p in locations]}


@router.post("/pickup-locations", status_code=status.HTTP_201_CREATED)
async def create_pickup_location(
    body: PickupLocationCreateRequest,
    orchestrator: ShipmentOrchestrator = Depends(get_orchestrator),
):
    location = await orchestrator.create_pickup_location(body.fields(), sync=body.syncWithOto)
    return {"success": True, "data": serialize_pickup_location(location)}


@router.put("/pickup-locations/{location_id}")
async def update_pickup_location(
    location_id: str,
    body: PickupLocationUpdateRequest,
    orchestrator: ShipmentOrchestrator = Depends(get_orchestrator),
):
    location = await orchestrator.update_pickup_location(location_id, body.fields(), sync=body.syncWithOto)
    return {"success": True, "data": serialize_pickup_location(location)}


# Fees

@router.post("/check-oto-fee")
async def check_oto_fee(fee_data: dict, orchestrator: ShipmentOrchestrator = Depends(get_orchestrator)):
    return {"success": True, "data": await orchestrator.check_delivery_fee(fee_data)}


@router.post("/check-delivery-fee")
async def check_delivery_fee(fee_data: dict, orchestrator: ShipmentOrchestrator = Depends(get_orchestrator)):
    return {"success": True, "data": await orchestrator.check_delivery_fee(fee_data, contract_rates=True)}


# Provider pass-throughs

@router.get("/order-status/{oto_order_id}")
async def get_order_status(oto_order_id: str, client: OTOClient = Depends(get_oto_client)):
    return {"success": True, "data": await client.get_order_status(oto_order_id)}


@router.get("/order-history/{oto_order_id}")
async def get_order_history(oto_order_id: str, client: OTOClient = Depends(get_oto_client)):
    return {"success": True, "data": await client.get_order_history(oto_order_id)}


@router.get("/delivery-companies")
async def get_delivery_companies(client: OTOClient = Depends(get_oto_client)):
    return {"success": True, "data": await client.get_delivery_company_list()}


@router.get("/delivery-company-config")
async def get_delivery_company_config(companyCode: str, client: OTOClient = Depends(get_oto_client)):
    return {"success": True, "data": await client.get_delivery_company_config(companyCode)}


@router.post("/activate-delivery-company")
async def activate_delivery_company(body: ActivateDeliveryCompanyRequest, client: OTOClient = Depends(get_oto_client)):
    data = await client.activate_delivery_company({"companyCode": body.companyCode, **body.settings})
    return {"success": True, "data": data}


@router.get("/wallet/balance")
async def get_wallet_balance(client: OTOClient = Depends(get_oto_client)):
    return {"success": True, "data": await client.get_wallet_balance()}


@router.post("/buy-credit")
async def buy_credit(body: BuyCreditRequest, client: OTOClient = Depends(get_oto_client)):
    credit_data = {"amount": body.amount}
    if body.paymentMethod:
        credit_data["paymentMethod"] = body.paymentMethod
    return {"success": True, "data": await client.buy_credit(credit_data)}


@router.get("/available-cities")
async def get_available_cities(country: Optional[str] = None, client: OTOClient = Depends(get_oto_client)):
    return {"success": True, "data": await client.get_available_cities({"country": country} if country else None)}


@router.get("/delivery-options")
async def get_delivery_options(city: str, client: OTOClient = Depends(get_oto_client)):
    return {"success": True, "data": await client.get_delivery_options(city)}


@router.get("/validate-city")
async def check_city(city: str = Query(..., min_length=1), client: OTOClient = Depends(get_oto_client)):
    return {"success": True, "data": await validate_city(client, city)}


@router.get("/provider-orders/{oto_order_id}")
async def get_provider_order(oto_order_id: str, client: OTOClient = Depends(get_oto_client)):
    return {"success": True, "data": await client.get_order(oto_order_id)}


@router.post("/provider-orders/update")
async def update_provider_order(body: UpdateProviderOrderRequest, client: OTOClient = Depends(get_oto_client)):
    data = await client.update_order({**body.changes, "orderId": body.orderId})
    return {"success": True, "data": data}


@router.get("/provider-shipments/{oto_shipment_id}")
async def get_provider_shipment(oto_shipment_id: str, client: OTOClient = Depends(get_oto_client)):
    return {"success": True, "data": await client.get_shipment(oto_shipment_id)}


@router.get("/provider-pickup-locations")
async def get_provider_pickup_locations(city: Optional[str] = None, client: OTOClient = Depends(get_oto_client)):
    return {"success": True, "data": await client.get_pickup_locations({"city": city} if city else None)}


# Webhook subscriptions

@router.get("/webhook-subscriptions")
async def list_webhook_subscriptions(client: OTOClient = Depends(get_oto_client)):
    return {"success": True, "data": await client.get_webhooks()}


@router.post("/webhook-subscriptions", status_code=status.HTTP_201_CREATED)
async def register_webhook_subscription(body: WebhookSubscriptionRequest, client: OTOClient = Depends(get_oto_client)):
    return {"success": True, "data": await client.register_webhook(body.payload())}


@router.delete("/webhook-subscriptions/{webhook_id}")
async def delete_webhook_subscription(webhook_id: str, client: OTOClient = Depends(get_oto_client)):
    return {"success": True, "data": await client.delete_webhook(webhook_id)}


# Reporting

@router.get("/statistics")
async def get_statistics(
    startDate: Optional[datetime] = None,
    endDate: Optional[datetime] = None,
    orchestrator: ShipmentOrchestrator = Depends(get_orchestrator),
):
    stats = orchestrator.statistics(start=startDate, end=endDate)
    return {
        "success": True,
        "data": {
            "total": stats["total"],
            "active": stats["active"],
            "byStatus": stats["byStatus"],
            "recent": [serialize_shipment(s) for s in stats["recent"]],
        },
    }

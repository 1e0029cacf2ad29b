"""
Automatic OTO shipment creation for paid orders.
Never raises for business or provider failures: returns None and records
the failure on the order so it can be retried. An order the OTO wallet
cannot pay for is parked as NOT_ENOUGH_CREDIT with the shortfall in its metadata.
"""
import logging
from typing import Any, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from shipment_engine.config import settings
from shipment_engine.errors import ProviderHTTPError, ShippingError
from shipment_engine.models import Order, OrderStatus, Shipment
from shipment_engine.services.oto_client import OTOClient
from shipment_engine.services.order_store import OrderStore
from shipment_engine.services.shipment_orchestrator import (
    DEFAULT_BOX_DIMENSIONS,
    ShipmentOrchestrator,
    item_weight,
)
from shipment_engine.services.shipment_store import ShipmentStore, utcnow
from shipment_engine.services.shipping_cost import calculate_order_shipping_cost, is_cod_order

logger = logging.getLogger(__name__)

SHIPPABLE_STATUSES = {OrderStatus.PAID, OrderStatus.NOT_ENOUGH_CREDIT}


def calculate_boxes(items: list[Any], default_weight: Optional[float] = None) -> list[dict]:
    """Single package sized for the whole order; weight falls back to 1 kg when items carry none."""
    unit_weight = default_weight if default_weight is not None else settings.OTO_DEFAULT_ITEM_WEIGHT_KG
    total = sum(int(it.quantity or 0) * item_weight(it, unit_weight) for it in items)
    return [{"boxName": "Package 1", "weight": total or 1, **DEFAULT_BOX_DIMENSIONS}]


def should_create_shipment(order: Order) -> bool:
    if order.status not in SHIPPABLE_STATUSES:
        return False
    if order.tracking_number:
        return False
    if not order.shipping_city or not order.shipping_country:
        return False
    return True


class AutoShipmentService:
    def __init__(
        self,
        db: Session,
        client: OTOClient,
        orchestrator: Optional[ShipmentOrchestrator] = None,
        *,
        check_credit: Optional[bool] = None,
    ):
        self.db = db
        self.client = client
        self.orders = OrderStore(db)
        self.shipments = ShipmentStore(db)
        self.orchestrator = orchestrator or ShipmentOrchestrator(
            db, client, order_store=self.orders, shipment_store=self.shipments
        )
        self.check_credit = settings.OTO_CHECK_CREDIT if check_credit is None else check_credit

    async def create_for_order(
        self,
        order_id: str,
        *,
        pickup_location_code: Optional[str] = None,
        delivery_company_code: Optional[str] = None,
        boxes: Optional[list[dict]] = None,
        cod_amount: Optional[float] = None,
        special_instructions: Optional[str] = None,
    ) -> Optional[Shipment]:
        logger.info("Auto-shipment: checking order %s", order_id)
        order = self.orders.get_order(order_id)
        if not order:
            logger.error("Auto-shipment: order %s not found", order_id)
            return None

        existing = self.shipments.find_by_order_id(order_id)
        if existing:
            logger.info("Auto-shipment: shipment already exists for order %s", order_id)
            return existing

        if not should_create_shipment(order):
            logger.info(
                "Auto-shipment: order %s not eligible (status: %s, tracking: %s, city: %s)",
                order_id,
                order.status,
                order.tracking_number,
                order.shipping_city,
            )
            return None
        if not order.customer_phone:
            logger.warning("Auto-shipment: order %s missing customer phone number", order_id)
            return None

        if self.check_credit and not await self._has_enough_credit(order):
            return None

        cod = is_cod_order(order, cod_amount)
        try:
            result = await self.orchestrator.create_shipment(
                order_id,
                pickup_location_code=pickup_location_code,
                delivery_company_code=delivery_company_code or settings.OTO_DEFAULT_DELIVERY_COMPANY,
                boxes=boxes or calculate_boxes(list(order.items or [])),
                cod_amount=float(order.price or 0) if cod else 0,
                special_instructions=special_instructions,
                who_pays="recipient" if cod else "sender",
                extra_metadata={"autoCreated": True},
            )
        except (ShippingError, SQLAlchemyError) as e:
            logger.error("Auto-shipment: failed to create shipment for order %s: %s", order_id, e)
            self._record_failure(order_id, e)
            return None

        logger.info(
            "Auto-shipment: created shipment %s for order %s (tracking %s)",
            result.shipment.id,
            order_id,
            result.shipment.tracking_number,
        )
        return result.shipment

    async def retry(self, order_id: str) -> Optional[Shipment]:
        logger.info("Retrying shipment creation for order %s", order_id)
        return await self.create_for_order(order_id)

    async def retry_not_enough_credit(self) -> dict:
        """Retry every order parked as NOT_ENOUGH_CREDIT, one at a time."""
        pending = [(o.id, o.order_number) for o in self.orders.list_by_status(OrderStatus.NOT_ENOUGH_CREDIT)]
        results = []
        for order_id, order_number in pending:
            shipment = await self.retry(order_id)
            entry = {"orderId": order_id, "orderNumber": order_number, "success": shipment is not None}
            if shipment is not None:
                entry["trackingNumber"] = shipment.tracking_number
            else:
                entry.update(self.failure_details(order_id))
            results.append(entry)

        succeeded = sum(1 for r in results if r["success"])
        logger.info("Bulk shipment retry: %s processed, %s succeeded", len(results), succeeded)
        return {
            "processed": len(results),
            "succeeded": succeeded,
            "failed": len(results) - succeeded,
            "results": results,
        }

    async def credit_summary(self) -> dict:
        orders = self.orders.list_by_status(OrderStatus.NOT_ENOUGH_CREDIT)
        rows = [
            {
                "id": o.id,
                "orderNumber": o.order_number,
                "requiredAmount": float((o.meta or {}).get("otoCreditRequired") or 0),
                "customerName": f"{o.customer_first_name or ''} {o.customer_last_name or ''}".strip(),
                "customerEmail": o.customer_email,
                "createdAt": o.created_at.isoformat() if o.created_at else None,
            }
            for o in orders
        ]
        total_required = sum(r["requiredAmount"] for r in rows)
        wallet = await self.client.get_wallet_balance()
        balance = float(wallet.get("balance") or 0)
        return {
            "totalOrders": len(rows),
            "totalRequired": total_required,
            "currentBalance": balance,
            "currency": wallet.get("currency"),
            "shortfall": max(0.0, total_required - balance),
            "orders": rows,
        }

    def failure_details(self, order_id: str) -> dict:
        order = self.orders.get_order(order_id)
        if not order:
            return {"reason": "ORDER_NOT_FOUND"}
        meta = order.meta or {}
        if order.status == OrderStatus.NOT_ENOUGH_CREDIT:
            return {
                "reason": "NOT_ENOUGH_CREDIT",
                "requiredAmount": meta.get("otoCreditRequired"),
                "currentBalance": meta.get("otoCurrentBalance"),
                "shortfall": meta.get("otoCreditShortfall"),
            }
        error = meta.get("shipmentCreationError")
        if error:
            return {"reason": "SHIPMENT_CREATION_FAILED", "error": error}
        return {"reason": "NOT_ELIGIBLE"}

    async def _has_enough_credit(self, order: Order) -> bool:
        order_id = order.id
        try:
            quote = await calculate_order_shipping_cost(self.client, order)
            wallet = await self.client.get_wallet_balance()
        except ShippingError as e:
            logger.error("Auto-shipment: credit check failed for order %s: %s", order_id, e.message)
            self._record_failure(order_id, e)
            return False

        required = quote["shippingCost"]
        balance = float(wallet.get("balance") or 0)
        logger.info("Credit check for order %s: required %s, available %s", order_id, required, balance)
        if balance >= required:
            return True

        logger.warning("Not enough OTO credit for order %s: required %s, available %s", order_id, required, balance)
        try:
            self.orders.update_order_status(order_id, OrderStatus.NOT_ENOUGH_CREDIT)
            self.orders.merge_metadata(
                order_id,
                otoCreditRequired=required,
                otoCurrentBalance=balance,
                otoCreditShortfall=required - balance,
                lastCreditCheck=utcnow().isoformat(),
            )
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error("Failed to park order %s as NOT_ENOUGH_CREDIT: %s", order_id, e)
        return False

    def _record_failure(self, order_id: str, error: Exception) -> None:
        oto_error = None
        if isinstance(error, ProviderHTTPError):
            oto_error = {"code": error.provider_code, "status": error.status, "details": error.details}
        try:
            self.orders.record_metadata(
                order_id,
                "shipmentCreationError",
                {
                    "message": getattr(error, "message", None) or str(error),
                    "timestamp": utcnow().isoformat(),
                    "otoError": oto_error,
                },
            )
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error("Failed to save shipment error to order %s metadata: %s", order_id, e)

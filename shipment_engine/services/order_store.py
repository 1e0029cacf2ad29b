"""
Order Store: the engine's only view of orders. Reads an order with its items and
writes status / tracking number / metadata. Flushes only; the calling use case commits.
"""
import logging
from typing import Any, Optional

from sqlalchemy.orm import Session, selectinload

from shipment_engine.models import Order, OrderStatus

logger = logging.getLogger(__name__)


class OrderStore:
    def __init__(self, db: Session):
        self.db = db

    def get_order(self, order_id: str) -> Optional[Order]:
        return (
            self.db.query(Order)
            .options(selectinload(Order.items))
            .filter(Order.id == order_id)
            .first()
        )

    def update_order_status(
        self,
        order_id: str,
        status: OrderStatus,
        tracking_number: Optional[str] = None,
    ) -> Optional[Order]:
        order = self.db.query(Order).filter(Order.id == order_id).first()
        if not order:
            logger.warning("Order %s not found for status update to %s", order_id, status.value)
            return None
        order.status = status
        if tracking_number:
            order.tracking_number = tracking_number
        self.db.flush()
        return order

    def list_by_status(self, status: OrderStatus) -> list[Order]:
        return self.db.query(Order).filter(Order.status == status).order_by(Order.created_at.asc()).all()

    def record_metadata(self, order_id: str, key: str, value: Any) -> None:
        self.merge_metadata(order_id, **{key: value})

    def merge_metadata(self, order_id: str, **entries: Any) -> None:
        order = self.db.query(Order).filter(Order.id == order_id).first()
        if not order:
            return
        # Reassign so the JSON column is marked dirty
        order.meta = {**(order.meta or {}), **entries}
        self.db.flush()

"""
SQLAlchemy models for orders, OTO shipments and their audit trail.
All model and enum definitions live here for simplicity and to avoid circular imports.
"""
from sqlalchemy import Column, String, Integer, Boolean, DateTime, ForeignKey, Numeric, Float, Enum as SQLEnum, JSON, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from shipment_engine.database import Base
import enum
import uuid

# Enums
class OrderStatus(str, enum.Enum):
    PENDING = "PENDING"
    PAID = "PAID"
    NOT_ENOUGH_CREDIT = "NOT_ENOUGH_CREDIT"
    SHIPPED = "SHIPPED"
    DELIVERED = "DELIVERED"
    DELIVERY_FAILED = "DELIVERY_FAILED"
    CANCELLED = "CANCELLED"
    RETURNED = "RETURNED"

class ShipmentStatus(str, enum.Enum):
    PENDING = "PENDING"
    LABEL_CREATED = "LABEL_CREATED"
    PICKED_UP = "PICKED_UP"
    IN_TRANSIT = "IN_TRANSIT"
    OUT_FOR_DELIVERY = "OUT_FOR_DELIVERY"
    DELIVERED = "DELIVERED"
    FAILED_DELIVERY = "FAILED_DELIVERY"
    RETURNED = "RETURNED"

# Models
class Order(Base):
    __tablename__ = "orders"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    order_number = Column("order_number", String, unique=True, nullable=False)
    customer_first_name = Column("customer_first_name", String, nullable=True)
    customer_last_name = Column("customer_last_name", String, nullable=True)
    customer_email = Column("customer_email", String, nullable=True)
    customer_phone = Column("customer_phone", String, nullable=True)
    shipping_building = Column("shipping_building", String, nullable=True)
    shipping_street = Column("shipping_street", String, nullable=True)
    shipping_city = Column("shipping_city", String, nullable=True)
    shipping_country = Column("shipping_country", String, nullable=True)
    shipping_postcode = Column("shipping_postcode", String, nullable=True)
    price = Column("price", Numeric(10, 2), nullable=False, default=0)
    currency = Column("currency", String(3), nullable=False, default="EGP")
    payment_method = Column("payment_method", String, nullable=True)
    status = Column(SQLEnum(OrderStatus), default=OrderStatus.PENDING)
    tracking_number = Column("tracking_number", String, nullable=True)
    meta = Column("metadata", JSON, nullable=True)
    created_at = Column("created_at", DateTime, server_default=func.now())
    updated_at = Column("updated_at", DateTime, server_default=func.now(), onupdate=func.now())

    items = relationship("OrderItem", back_populates="order", cascade="all, delete-orphan")
    shipment = relationship("Shipment", back_populates="order", uselist=False)

class OrderItem(Base):
    __tablename__ = "order_items"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    order_id = Column("order_id", String, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    product_id = Column("product_id", String, nullable=True)
    product_name = Column("product_name", String, nullable=True)
    quantity = Column(Integer, nullable=False)
    total_price = Column("total_price", Numeric(10, 2), nullable=False)
    weight = Column("weight", Float, nullable=True)  # kg per unit

    order = relationship("Order", back_populates="items")

class Shipment(Base):
    __tablename__ = "shipments"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    order_id = Column("order_id", String, ForeignKey("orders.id", ondelete="CASCADE"), unique=True, nullable=False)
    tracking_number = Column("tracking_number", String, unique=True, nullable=False)
    status = Column(SQLEnum(ShipmentStatus), default=ShipmentStatus.PENDING, nullable=False)
    oto_order_id = Column("oto_order_id", String, nullable=True, index=True)
    oto_shipment_id = Column("oto_shipment_id", String, nullable=True, index=True)
    oto_status = Column("oto_status", String, nullable=True)  # raw provider string, never translated in place
    delivery_company = Column("delivery_company", String, nullable=True)
    sender_info = Column("sender_info", JSON, nullable=True)
    recipient_info = Column("recipient_info", JSON, nullable=True)
    package_weight = Column("package_weight", Float, nullable=True)
    package_count = Column("package_count", Integer, nullable=True)
    cod_amount = Column("cod_amount", Numeric(10, 2), nullable=True)
    estimated_delivery = Column("estimated_delivery", DateTime, nullable=True)
    actual_delivery = Column("actual_delivery", DateTime, nullable=True)
    meta = Column("metadata", JSON, nullable=True)
    created_at = Column("created_at", DateTime, server_default=func.now())
    updated_at = Column("updated_at", DateTime, server_default=func.now(), onupdate=func.now())

    order = relationship("Order", back_populates="shipment")
    events = relationship("TrackingEvent", back_populates="shipment", cascade="all, delete-orphan")
    boxes = relationship("ShipmentBox", back_populates="shipment", cascade="all, delete-orphan")

class TrackingEvent(Base):
    __tablename__ = "shipment_tracking_events"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    shipment_id = Column("shipment_id", String, ForeignKey("shipments.id", ondelete="CASCADE"), nullable=False, index=True)
    status = Column("status", String, nullable=False)
    stage = Column("stage", String, nullable=True)
    description = Column("description", String, nullable=True)
    location = Column("location", String, nullable=True)
    timestamp = Column("timestamp", DateTime, nullable=False)
    raw_payload = Column("raw_payload", JSON, nullable=True)
    created_at = Column("created_at", DateTime, server_default=func.now())

    shipment = relationship("Shipment", back_populates="events")

    __table_args__ = (
        UniqueConstraint("shipment_id", "status", "timestamp", name="uq_tracking_event_shipment_status_ts"),
    )

class ShipmentBox(Base):
    __tablename__ = "shipment_boxes"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    shipment_id = Column("shipment_id", String, ForeignKey("shipments.id", ondelete="CASCADE"), nullable=False, index=True)
    box_name = Column("box_name", String, nullable=False)
    weight = Column("weight", Float, nullable=False)
    height = Column("height", Float, nullable=True)
    width = Column("width", Float, nullable=True)
    length = Column("length", Float, nullable=True)
    dimension_unit = Column("dimension_unit", String, default="cm", nullable=False)
    created_at = Column("created_at", DateTime, server_default=func.now())

    shipment = relationship("Shipment", back_populates="boxes")

class PickupLocation(Base):
    __tablename__ = "pickup_locations"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    code = Column("code", String, unique=True, nullable=False)
    name = Column("name", String, nullable=False)
    city = Column("city", String, nullable=True, index=True)
    address = Column("address", String, nullable=True)
    contact_name = Column("contact_name", String, nullable=True)
    contact_phone = Column("contact_phone", String, nullable=True)
    is_active = Column("is_active", Boolean, default=True)
    oto_location_id = Column("oto_location_id", String, nullable=True)
    created_at = Column("created_at", DateTime, server_default=func.now())
    updated_at = Column("updated_at", DateTime, server_default=func.now(), onupdate=func.now())


class ProviderCredential(Base):
    __tablename__ = "provider_credentials"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    provider_id = Column("provider_id", String, unique=True, nullable=False, index=True)
    value_encrypted = Column("value_encrypted", String, nullable=True)
    created_at = Column("created_at", DateTime, server_default=func.now())
    updated_at = Column("updated_at", DateTime, server_default=func.now(), onupdate=func.now())


class WebhookEvent(Base):
    __tablename__ = "webhook_events"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    source = Column("source", String, nullable=False, index=True)
    topic = Column("topic", String, nullable=False, index=True)
    payload_summary = Column("payload_summary", String, nullable=True)
    outcome = Column("outcome", String, nullable=True)
    processed_at = Column("processed_at", DateTime, nullable=True)
    error = Column("error", String, nullable=True)
    created_at = Column("created_at", DateTime, server_default=func.now())

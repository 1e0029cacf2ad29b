"""initial OTO shipment engine schema

Revision ID: initial_oto_schema
Revises:
Create Date: 2026-10-18

"""
from alembic import op
import sqlalchemy as sa


revision = "initial_oto_schema"
down_revision = None
branch_labels = None
depends_on = None


ORDER_STATUS = sa.Enum(
    "PENDING", "PAID", "NOT_ENOUGH_CREDIT", "SHIPPED", "DELIVERED", "DELIVERY_FAILED", "CANCELLED", "RETURNED",
    name="orderstatus",
)
SHIPMENT_STATUS = sa.Enum(
    "PENDING", "LABEL_CREATED", "PICKED_UP", "IN_TRANSIT", "OUT_FOR_DELIVERY",
    "DELIVERED", "FAILED_DELIVERY", "RETURNED",
    name="shipmentstatus",
)


def upgrade() -> None:
    op.create_table(
        "orders",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("order_number", sa.String(), nullable=False),
        sa.Column("customer_first_name", sa.String(), nullable=True),
        sa.Column("customer_last_name", sa.String(), nullable=True),
        sa.Column("customer_email", sa.String(), nullable=True),
        sa.Column("customer_phone", sa.String(), nullable=True),
        sa.Column("shipping_building", sa.String(), nullable=True),
        sa.Column("shipping_street", sa.String(), nullable=True),
        sa.Column("shipping_city", sa.String(), nullable=True),
        sa.Column("shipping_country", sa.String(), nullable=True),
        sa.Column("shipping_postcode", sa.String(), nullable=True),
        sa.Column("price", sa.Numeric(10, 2), nullable=False),
        sa.Column("currency", sa.String(3), nullable=False),
        sa.Column("payment_method", sa.String(), nullable=True),
        sa.Column("status", ORDER_STATUS, nullable=True),
        sa.Column("tracking_number", sa.String(), nullable=True),
        sa.Column("metadata", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(), server_default=sa.func.now()),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("order_number"),
    )

    op.create_table(
        "order_items",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("order_id", sa.String(), sa.ForeignKey("orders.id", ondelete="CASCADE"), nullable=False),
        sa.Column("product_id", sa.String(), nullable=True),
        sa.Column("product_name", sa.String(), nullable=True),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("total_price", sa.Numeric(10, 2), nullable=False),
        sa.Column("weight", sa.Float(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_order_items_order_id", "order_items", ["order_id"])

    op.create_table(
        "shipments",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("order_id", sa.String(), sa.ForeignKey("orders.id", ondelete="CASCADE"), nullable=False),
        sa.Column("tracking_number", sa.String(), nullable=False),
        sa.Column("status", SHIPMENT_STATUS, nullable=False),
        sa.Column("oto_order_id", sa.String(), nullable=True),
        sa.Column("oto_shipment_id", sa.String(), nullable=True),
        sa.Column("oto_status", sa.String(), nullable=True),
        sa.Column("delivery_company", sa.String(), nullable=True),
        sa.Column("sender_info", sa.JSON(), nullable=True),
        sa.Column("recipient_info", sa.JSON(), nullable=True),
        sa.Column("package_weight", sa.Float(), nullable=True),
        sa.Column("package_count", sa.Integer(), nullable=True),
        sa.Column("cod_amount", sa.Numeric(10, 2), nullable=True),
        sa.Column("estimated_delivery", sa.DateTime(), nullable=True),
        sa.Column("actual_delivery", sa.DateTime(), nullable=True),
        sa.Column("metadata", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(), server_default=sa.func.now()),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("order_id"),
        sa.UniqueConstraint("tracking_number"),
    )
    op.create_index("ix_shipments_oto_order_id", "shipments", ["oto_order_id"])
    op.create_index("ix_shipments_oto_shipment_id", "shipments", ["oto_shipment_id"])

    op.create_table(
        "shipment_tracking_events",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("shipment_id", sa.String(), sa.ForeignKey("shipments.id", ondelete="CASCADE"), nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("stage", sa.String(), nullable=True),
        sa.Column("description", sa.String(), nullable=True),
        sa.Column("location", sa.String(), nullable=True),
        sa.Column("timestamp", sa.DateTime(), nullable=False),
        sa.Column("raw_payload", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("shipment_id", "status", "timestamp", name="uq_tracking_event_shipment_status_ts"),
    )
    op.create_index("ix_shipment_tracking_events_shipment_id", "shipment_tracking_events", ["shipment_id"])

    op.create_table(
        "shipment_boxes",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("shipment_id", sa.String(), sa.ForeignKey("shipments.id", ondelete="CASCADE"), nullable=False),
        sa.Column("box_name", sa.String(), nullable=False),
        sa.Column("weight", sa.Float(), nullable=False),
        sa.Column("height", sa.Float(), nullable=True),
        sa.Column("width", sa.Float(), nullable=True),
        sa.Column("length", sa.Float(), nullable=True),
        sa.Column("dimension_unit", sa.String(), nullable=False),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_shipment_boxes_shipment_id", "shipment_boxes", ["shipment_id"])

    op.create_table(
        "pickup_locations",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("code", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("city", sa.String(), nullable=True),
        sa.Column("address", sa.String(), nullable=True),
        sa.Column("contact_name", sa.String(), nullable=True),
        sa.Column("contact_phone", sa.String(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=True),
        sa.Column("oto_location_id", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(), server_default=sa.func.now()),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("code"),
    )
    op.create_index("ix_pickup_locations_city", "pickup_locations", ["city"])

    op.create_table(
        "provider_credentials",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("provider_id", sa.String(), nullable=False),
        sa.Column("value_encrypted", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(), server_default=sa.func.now()),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_provider_credentials_provider_id", "provider_credentials", ["provider_id"], unique=True)

    op.create_table(
        "webhook_events",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("source", sa.String(), nullable=False),
        sa.Column("topic", sa.String(), nullable=False),
        sa.Column("payload_summary", sa.String(), nullable=True),
        sa.Column("outcome", sa.String(), nullable=True),
        sa.Column("processed_at", sa.DateTime(), nullable=True),
        sa.Column("error", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_webhook_events_source", "webhook_events", ["source"])
    op.create_index("ix_webhook_events_topic", "webhook_events", ["topic"])


def downgrade() -> None:
    op.drop_table("webhook_events")
    op.drop_table("provider_credentials")
    op.drop_table("pickup_locations")
    op.drop_table("shipment_boxes")
    op.drop_table("shipment_tracking_events")
    op.drop_table("shipments")
    op.drop_table("order_items")
    op.drop_table("orders")
    SHIPMENT_STATUS.drop(op.get_bind(), checkfirst=True)
    ORDER_STATUS.drop(op.get_bind(), checkfirst=True)

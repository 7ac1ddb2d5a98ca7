"""Create orders table

Revision ID: 001
Revises:
Create Date: 2026-10-19 00:00:00.000000

"""
from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

JSON_DOCUMENT = sa.JSON().with_variant(postgresql.JSONB(astext_type=sa.Text()), "postgresql")


def upgrade() -> None:
    """Upgrade database schema."""
    op.create_table(
        "orders",
        sa.Column("order_id", sa.String(length=64), nullable=False),
        sa.Column("payment_method", sa.String(length=20), nullable=False),
        sa.Column("payment_status", sa.String(length=20), nullable=False),
        sa.Column("order_status", sa.String(length=20), nullable=False),
        sa.Column("total", sa.Numeric(precision=12, scale=2), nullable=False),
        sa.Column("customer", JSON_DOCUMENT, nullable=False),
        sa.Column("shipping_address", JSON_DOCUMENT, nullable=False),
        sa.Column("gst_details", JSON_DOCUMENT, nullable=True),
        sa.Column("items", JSON_DOCUMENT, nullable=False),
        sa.Column("shipping_method", JSON_DOCUMENT, nullable=False),
        sa.Column("coupon", JSON_DOCUMENT, nullable=False),
        sa.Column("gateway_order_id", sa.String(length=64), nullable=True),
        sa.Column("gateway_payment_id", sa.String(length=64), nullable=True),
        sa.Column("gateway_instrument", sa.String(length=50), nullable=True),
        sa.Column("email_sent", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column(
            "delivery_email_sent", sa.Boolean(), nullable=False, server_default=sa.false()
        ),
        sa.Column(
            "cancellation_email_sent", sa.Boolean(), nullable=False, server_default=sa.false()
        ),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint("total >= 1", name="minimum_total"),
        sa.CheckConstraint("payment_method IN ('COD', 'Gateway')", name="valid_payment_method"),
        sa.CheckConstraint(
            "payment_status IN ('Pending', 'Success', 'Failed')", name="valid_payment_status"
        ),
        sa.CheckConstraint(
            "order_status IN ('Pending', 'Confirmed', 'Delivered', 'Cancelled')",
            name="valid_order_status",
        ),
        sa.PrimaryKeyConstraint("order_id"),
        sa.UniqueConstraint("gateway_payment_id"),
    )
    op.create_index(
        op.f("ix_orders_gateway_order_id"), "orders", ["gateway_order_id"], unique=False
    )
    op.create_index(
        "idx_orders_status_created", "orders", ["payment_status", "created_at"], unique=False
    )
    op.create_index(
        "idx_orders_pending_gateway",
        "orders",
        ["payment_method", "payment_status", "created_at"],
        unique=False,
    )


def downgrade() -> None:
    """Downgrade database schema."""
    op.drop_index("idx_orders_pending_gateway", table_name="orders")
    op.drop_index("idx_orders_status_created", table_name="orders")
    op.drop_index(op.f("ix_orders_gateway_order_id"), table_name="orders")
    op.drop_table("orders")

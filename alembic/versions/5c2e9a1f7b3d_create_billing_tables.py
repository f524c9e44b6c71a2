"""create billing tables

Revision ID: 5c2e9a1f7b3d
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import ENUM, UUID


# revision identifiers, used by Alembic.
revision: str = "5c2e9a1f7b3d"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

duration_unit = ENUM("DAY", "WEEK", "MONTH", "YEAR", name="durationunit", create_type=False)
subscription_status = ENUM(
    "PENDING_PAYMENT", "ACTIVE", "INACTIVE", name="subscriptionstatus", create_type=False
)
dispatch_source = ENUM("scheduler", "event", name="dispatchsource", create_type=False)
dispatch_status = ENUM(
    "pending", "delivered", "failed", name="dispatchstatus", create_type=False
)


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    ]


def upgrade() -> None:
    bind = op.get_bind()
    for enum_type in (duration_unit, subscription_status, dispatch_source, dispatch_status):
        enum_type.create(bind, checkfirst=True)

    op.create_table(
        "subscribers",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("email", sa.String(255), nullable=False, unique=True),
        sa.Column("first_name", sa.String(80), nullable=False),
        sa.Column("last_name", sa.String(80), nullable=False),
        sa.Column("is_active", sa.Boolean, nullable=False, server_default=sa.true()),
        *_timestamps(),
    )
    op.create_table(
        "billing_addresses",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("subscriber_id", UUID(as_uuid=True), sa.ForeignKey("subscribers.id"), nullable=False),
        sa.Column("address", sa.String(160), nullable=False),
        sa.Column("address2", sa.String(160), nullable=True),
        sa.Column("postal_code", sa.String(20), nullable=False),
        sa.Column("city", sa.String(80), nullable=False),
        sa.Column("country", sa.String(80), nullable=False),
        *_timestamps(),
    )
    op.create_index(
        "ix_billing_addresses_subscriber_id", "billing_addresses", ["subscriber_id"]
    )
    op.create_table(
        "plans",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("name", sa.String(120), nullable=False),
        sa.Column("duration", sa.Integer, nullable=False),
        sa.Column("duration_unit", duration_unit, nullable=False),
        sa.Column("billing_frequency", sa.Integer, nullable=False),
        sa.Column("billing_frequency_unit", duration_unit, nullable=False),
        sa.Column("price", sa.Numeric(12, 2), nullable=False),
        sa.Column("currency", sa.String(3), nullable=False, server_default="EUR"),
        *_timestamps(),
        sa.CheckConstraint("billing_frequency > 0", name="ck_plans_billing_frequency"),
    )
    op.create_table(
        "subscriptions",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("subscriber_id", UUID(as_uuid=True), sa.ForeignKey("subscribers.id"), nullable=False),
        sa.Column("plan_id", UUID(as_uuid=True), sa.ForeignKey("plans.id"), nullable=False),
        sa.Column("contract_start_date", sa.Date, nullable=False),
        sa.Column("duration", sa.Integer, nullable=False),
        sa.Column("duration_unit", duration_unit, nullable=False),
        sa.Column("billing_frequency", sa.Integer, nullable=False),
        sa.Column("billing_frequency_unit", duration_unit, nullable=False),
        sa.Column("price", sa.Numeric(12, 2), nullable=False),
        sa.Column("currency", sa.String(3), nullable=False, server_default="EUR"),
        sa.Column("product_code", sa.String(60), nullable=False),
        sa.Column("status", subscription_status, nullable=False),
        sa.Column("billed_cycles", sa.Integer, nullable=False, server_default="0"),
        sa.Column("next_billing_date", sa.Date, nullable=True),
        *_timestamps(),
        sa.CheckConstraint(
            "billing_frequency > 0", name="ck_subscriptions_billing_frequency"
        ),
        sa.CheckConstraint(
            "billed_cycles >= 0 AND billed_cycles <= billing_frequency",
            name="ck_subscriptions_billed_cycles",
        ),
    )
    op.create_index("ix_subscriptions_subscriber_id", "subscriptions", ["subscriber_id"])
    op.create_index(
        "ix_subscriptions_next_billing_date", "subscriptions", ["next_billing_date"]
    )
    op.create_table(
        "invoice_dispatches",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("subscription_id", UUID(as_uuid=True), sa.ForeignKey("subscriptions.id"), nullable=False),
        sa.Column("billing_cycle", sa.Integer, nullable=False),
        sa.Column("source", dispatch_source, nullable=False),
        sa.Column("status", dispatch_status, nullable=False),
        sa.Column("artifact_id", sa.String(64), nullable=True),
        sa.Column("error", sa.Text, nullable=True),
        *_timestamps(),
        sa.UniqueConstraint(
            "subscription_id", "billing_cycle", name="uq_invoice_dispatches_cycle"
        ),
    )
    op.create_index("ix_invoice_dispatches_status", "invoice_dispatches", ["status"])
    op.create_table(
        "failed_invoices",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("subscription_id", UUID(as_uuid=True), sa.ForeignKey("subscriptions.id"), nullable=False),
        sa.Column("billing_cycle", sa.Integer, nullable=False),
        sa.Column("invoice_id", sa.String(64), nullable=True),
        sa.Column("invoice_date", sa.Date, nullable=False),
        sa.Column("email_retry", sa.Integer, nullable=False, server_default="1"),
        sa.Column("last_error", sa.Text, nullable=True),
        *_timestamps(),
        sa.UniqueConstraint(
            "subscription_id", "billing_cycle", name="uq_failed_invoices_cycle"
        ),
    )
    op.create_index("ix_failed_invoices_invoice_id", "failed_invoices", ["invoice_id"])


def downgrade() -> None:
    op.drop_index("ix_failed_invoices_invoice_id", table_name="failed_invoices")
    op.drop_table("failed_invoices")
    op.drop_index("ix_invoice_dispatches_status", table_name="invoice_dispatches")
    op.drop_table("invoice_dispatches")
    op.drop_index("ix_subscriptions_next_billing_date", table_name="subscriptions")
    op.drop_index("ix_subscriptions_subscriber_id", table_name="subscriptions")
    op.drop_table("subscriptions")
    op.drop_table("plans")
    op.drop_index("ix_billing_addresses_subscriber_id", table_name="billing_addresses")
    op.drop_table("billing_addresses")
    op.drop_table("subscribers")
    bind = op.get_bind()
    for enum_type in (dispatch_status, dispatch_source, subscription_status, duration_unit):
        enum_type.drop(bind, checkfirst=True)

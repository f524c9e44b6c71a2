"""Invoice dispatch ledger and failed invoice records.

An ``InvoiceDispatch`` row claims one billing cycle of a subscription. The
unique (subscription_id, billing_cycle) key is what keeps the scheduler and
the signup event path from invoicing the same cycle twice.

A ``FailedInvoice`` row tracks an invoice whose render or email failed so the
retry job can reprocess it.
"""

import enum
import uuid
from datetime import UTC, date, datetime

from sqlalchemy import (
    Date,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db import Base


class DispatchSource(enum.Enum):
    scheduler = "scheduler"
    event = "event"


class DispatchStatus(enum.Enum):
    pending = "pending"
    delivered = "delivered"
    failed = "failed"


class InvoiceDispatch(Base):
    __tablename__ = "invoice_dispatches"
    __table_args__ = (
        UniqueConstraint(
            "subscription_id", "billing_cycle", name="uq_invoice_dispatches_cycle"
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    subscription_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("subscriptions.id"), nullable=False
    )
    billing_cycle: Mapped[int] = mapped_column(Integer, nullable=False)
    source: Mapped[DispatchSource] = mapped_column(Enum(DispatchSource), nullable=False)
    status: Mapped[DispatchStatus] = mapped_column(
        Enum(DispatchStatus), default=DispatchStatus.pending, index=True
    )
    artifact_id: Mapped[str | None] = mapped_column(String(64))
    error: Mapped[str | None] = mapped_column(Text)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(UTC)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
    )

    subscription = relationship("Subscription", back_populates="dispatches")


class FailedInvoice(Base):
    __tablename__ = "failed_invoices"
    __table_args__ = (
        UniqueConstraint(
            "subscription_id", "billing_cycle", name="uq_failed_invoices_cycle"
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    subscription_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("subscriptions.id"), nullable=False
    )
    billing_cycle: Mapped[int] = mapped_column(Integer, nullable=False)
    # Empty when rendering itself failed.
    invoice_id: Mapped[str | None] = mapped_column(String(64), index=True)
    invoice_date: Mapped[date] = mapped_column(Date, nullable=False)
    email_retry: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    last_error: Mapped[str | None] = mapped_column(Text)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(UTC)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
    )

    subscription = relationship("Subscription")

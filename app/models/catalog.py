import enum
import uuid
from datetime import UTC, date, datetime
from decimal import Decimal

from sqlalchemy import (
    CheckConstraint,
    Date,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    Numeric,
    String,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db import Base


class DurationUnit(enum.Enum):
    day = "DAY"
    week = "WEEK"
    month = "MONTH"
    year = "YEAR"


class SubscriptionStatus(enum.Enum):
    pending_payment = "PENDING_PAYMENT"
    active = "ACTIVE"
    inactive = "INACTIVE"


class Plan(Base):
    __tablename__ = "plans"
    __table_args__ = (
        CheckConstraint("billing_frequency > 0", name="ck_plans_billing_frequency"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    duration: Mapped[int] = mapped_column(Integer, nullable=False)
    duration_unit: Mapped[DurationUnit] = mapped_column(
        Enum(DurationUnit, values_callable=lambda x: [e.value for e in x]),
        default=DurationUnit.month,
    )
    billing_frequency: Mapped[int] = mapped_column(Integer, nullable=False)
    billing_frequency_unit: Mapped[DurationUnit] = mapped_column(
        Enum(DurationUnit, values_callable=lambda x: [e.value for e in x]),
        default=DurationUnit.month,
    )
    price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), default="EUR")

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(UTC)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
    )

    subscriptions = relationship("Subscription", back_populates="plan")


class Subscription(Base):
    __tablename__ = "subscriptions"
    __table_args__ = (
        CheckConstraint(
            "billing_frequency > 0", name="ck_subscriptions_billing_frequency"
        ),
        CheckConstraint(
            "billed_cycles >= 0 AND billed_cycles <= billing_frequency",
            name="ck_subscriptions_billed_cycles",
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    subscriber_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("subscribers.id"), nullable=False, index=True
    )
    plan_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("plans.id"), nullable=False
    )
    contract_start_date: Mapped[date] = mapped_column(Date, nullable=False)
    duration: Mapped[int] = mapped_column(Integer, nullable=False)
    duration_unit: Mapped[DurationUnit] = mapped_column(
        Enum(DurationUnit, values_callable=lambda x: [e.value for e in x]),
        default=DurationUnit.month,
    )
    billing_frequency: Mapped[int] = mapped_column(Integer, nullable=False)
    billing_frequency_unit: Mapped[DurationUnit] = mapped_column(
        Enum(DurationUnit, values_callable=lambda x: [e.value for e in x]),
        default=DurationUnit.month,
    )
    price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), default="EUR")
    product_code: Mapped[str] = mapped_column(String(60), nullable=False)
    status: Mapped[SubscriptionStatus] = mapped_column(
        Enum(SubscriptionStatus, values_callable=lambda x: [e.value for e in x]),
        default=SubscriptionStatus.pending_payment,
    )
    # Mutated only by the billing pipeline when a cycle is claimed.
    billed_cycles: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    next_billing_date: Mapped[date | None] = mapped_column(Date, index=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(UTC)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
    )

    subscriber = relationship("Subscriber", back_populates="subscriptions")
    plan = relationship("Plan", back_populates="subscriptions")
    dispatches = relationship("InvoiceDispatch", back_populates="subscription")

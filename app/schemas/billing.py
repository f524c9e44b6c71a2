from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from app.models.catalog import DurationUnit, SubscriptionStatus


class _Snapshot(BaseModel):
    model_config = ConfigDict(from_attributes=True, frozen=True)


class UserSnapshot(_Snapshot):
    id: UUID
    email: str
    first_name: str
    last_name: str


class AddressSnapshot(_Snapshot):
    address: str
    address2: str | None = None
    postal_code: str
    city: str
    country: str


class PlanSnapshot(_Snapshot):
    id: UUID
    name: str
    duration: int
    duration_unit: DurationUnit
    billing_frequency: int
    billing_frequency_unit: DurationUnit
    price: Decimal
    currency: str


class SubscriptionSnapshot(_Snapshot):
    id: UUID
    subscriber_id: UUID
    plan_id: UUID
    contract_start_date: date
    duration: int
    duration_unit: DurationUnit
    billing_frequency: int
    billing_frequency_unit: DurationUnit
    price: Decimal
    currency: str
    product_code: str
    status: SubscriptionStatus
    billed_cycles: int
    next_billing_date: date | None = None


class InvoicePayload(BaseModel):
    """Point-in-time copy of everything needed to invoice one billing cycle.

    Taken after the cycle is claimed, so ``subscription.billed_cycles`` is the
    number of the cycle being invoiced. Serialized with the capitalised
    aliases used on the wire.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    user: UserSnapshot = Field(alias="User")
    billing_address: AddressSnapshot = Field(alias="BillingAddress")
    subscription: SubscriptionSnapshot = Field(alias="Subscription")
    plan: PlanSnapshot = Field(alias="Plan")

    @property
    def billing_cycle(self) -> int:
        return self.subscription.billed_cycles


class BillingEvent(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str = Field(min_length=1)
    data: dict[str, Any] = Field(default_factory=dict)


class SubscriptionRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    subscriber_id: UUID
    plan_id: UUID
    contract_start_date: date
    billing_frequency: int
    billing_frequency_unit: DurationUnit
    price: Decimal
    currency: str
    product_code: str
    status: SubscriptionStatus
    billed_cycles: int
    next_billing_date: date | None = None


class FailedInvoiceRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    subscription_id: UUID
    billing_cycle: int
    invoice_id: str | None = None
    invoice_date: date
    email_retry: int
    last_error: str | None = None
    created_at: datetime
    updated_at: datetime


class FailedInvoiceUpdate(BaseModel):
    email_retry: int = Field(ge=1)

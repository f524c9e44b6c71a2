from __future__ import annotations

from datetime import date
from uuid import UUID

from pydantic import BaseModel, EmailStr, Field


class BillingAddressCreate(BaseModel):
    address: str = Field(min_length=1, max_length=160)
    address2: str | None = Field(default=None, max_length=160)
    postal_code: str = Field(min_length=1, max_length=20)
    city: str = Field(min_length=1, max_length=80)
    country: str = Field(min_length=1, max_length=80)


class SignupRequest(BaseModel):
    email: EmailStr
    first_name: str = Field(min_length=1, max_length=80)
    last_name: str = Field(min_length=1, max_length=80)
    plan_id: UUID
    product_code: str = Field(min_length=1, max_length=60)
    contract_start_date: date
    billing_address: BillingAddressCreate


class SignupResponse(BaseModel):
    subscriber_id: UUID
    subscription_id: UUID
    # Empty once every cycle has been billed.
    next_billing_date: date | None = None
    # True when the first invoice was handed to the event channel.
    invoice_published: bool

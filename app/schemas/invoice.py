from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field


class InvoiceLineItem(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    unit_cost: Decimal
    quantity: int = 1
    tax: Decimal = Decimal("0.00")
    discount: Decimal = Decimal("0.00")

    @property
    def amount(self) -> Decimal:
        return self.unit_cost * self.quantity - self.discount + self.tax


class InvoiceParty(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    reference: str | None = None
    address: str
    address2: str | None = None
    postal_code: str
    city: str
    country: str


class InvoiceDocument(BaseModel):
    """Structured invoice handed to the renderer."""

    model_config = ConfigDict(frozen=True)

    issuer: InvoiceParty
    customer: InvoiceParty
    invoice_date: datetime
    payment_term: datetime
    currency: str
    description: str = "Invoice Description"
    items: list[InvoiceLineItem] = Field(default_factory=list)

    @property
    def total(self) -> Decimal:
        return sum((item.amount for item in self.items), Decimal("0.00"))

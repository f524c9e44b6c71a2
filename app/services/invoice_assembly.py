"""Build, render and email the invoice for one billing cycle.

``assemble`` is shared by the daily scheduler, the retry job and the event
consumer. Given an existing artifact id it skips rendering and only
re-delivers, so retries never produce a second PDF for the same cycle.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime, timedelta
from decimal import Decimal
from typing import Protocol

from app.config import settings
from app.schemas.billing import InvoicePayload
from app.schemas.invoice import InvoiceDocument, InvoiceLineItem, InvoiceParty
from app.services.common import round_money

logger = logging.getLogger(__name__)


class InvoiceRenderer(Protocol):
    def render(self, document: InvoiceDocument) -> str:
        ...


class InvoiceNotifier(Protocol):
    def send(self, to_email: str, subject: str, artifact_id: str) -> None:
        ...


class InvoiceAssemblyError(Exception):
    artifact_id: str | None = None


class InvoiceRenderError(InvoiceAssemblyError):
    pass


class InvoiceDeliveryError(InvoiceAssemblyError):
    def __init__(self, message: str, artifact_id: str):
        super().__init__(message)
        self.artifact_id = artifact_id


def invoice_subject() -> str:
    return f"Invoice For {settings.company_name} Subscription"


def unit_cost(price: Decimal, billing_frequency: int) -> Decimal:
    if billing_frequency <= 0:
        raise ValueError(f"billing_frequency must be positive, got {billing_frequency}")
    return round_money(Decimal(price) / Decimal(billing_frequency))


def _issuer() -> InvoiceParty:
    return InvoiceParty(
        name=settings.company_name,
        reference=settings.company_reference,
        address=settings.company_address,
        address2=settings.company_address2,
        postal_code=settings.company_postal_code,
        city=settings.company_city,
        country=settings.company_country,
    )


def build_invoice(payload: InvoicePayload, now: datetime | None = None) -> InvoiceDocument:
    now = now or datetime.now(UTC)
    subscription = payload.subscription
    address = payload.billing_address
    item = InvoiceLineItem(
        name=f"{subscription.product_code} {payload.plan.name}",
        unit_cost=unit_cost(subscription.price, subscription.billing_frequency),
        quantity=1,
    )
    return InvoiceDocument(
        issuer=_issuer(),
        customer=InvoiceParty(
            name=f"{payload.user.first_name} {payload.user.last_name}".strip(),
            address=address.address,
            address2=address.address2,
            postal_code=address.postal_code,
            city=address.city,
            country=address.country,
        ),
        invoice_date=now,
        payment_term=now + timedelta(days=settings.payment_term_days),
        currency=subscription.currency,
        items=[item],
    )


def assemble(
    payload: InvoicePayload,
    existing_artifact_id: str | None = None,
    *,
    renderer: InvoiceRenderer,
    notifier: InvoiceNotifier,
    now: datetime | None = None,
) -> str:
    """Render (unless already rendered) and email the invoice for ``payload``.

    Returns the artifact id that was delivered.

    Raises:
        InvoiceRenderError: rendering failed; nothing was sent.
        InvoiceDeliveryError: the email failed; ``artifact_id`` names the
            rendered artifact so a retry can reuse it.
    """
    artifact_id = existing_artifact_id
    if not artifact_id:
        document = build_invoice(payload, now=now)
        try:
            artifact_id = renderer.render(document)
        except Exception as exc:
            raise InvoiceRenderError(str(exc)) from exc

    try:
        notifier.send(payload.user.email, invoice_subject(), artifact_id)
    except Exception as exc:
        raise InvoiceDeliveryError(str(exc), artifact_id=artifact_id) from exc

    logger.info(
        f"Delivered invoice {artifact_id} for subscription {payload.subscription.id} "
        f"cycle {payload.billing_cycle} to {payload.user.email}"
    )
    return artifact_id

"""Subscriber signup and the first-invoice decision.

A new subscription starts ``ACTIVE`` with ``next_billing_date`` on its
contract start. If that is today, the first cycle is claimed in the signup
transaction and an invoice event is published after commit; otherwise the
daily scheduler bills it on the start date. The claim advances the billing
date, so only one of the two paths can ever invoice cycle 1.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import UTC, date, datetime

from fastapi import HTTPException
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.models.billing import DispatchSource
from app.models.catalog import Plan, Subscription, SubscriptionStatus
from app.models.subscriber import BillingAddress, Subscriber
from app.schemas.billing import InvoicePayload
from app.schemas.signup import SignupRequest
from app.services.billing_automation import build_payload
from app.services.common import get_or_404
from app.services.events.channel import ChannelUnavailableError, EventPublisher
from app.services.events.types import invoice_event
from app.services.invoice_dispatch import claim_cycle
from app.services.subscriptions import is_due

logger = logging.getLogger(__name__)


@dataclass
class SignupResult:
    subscriber: Subscriber
    subscription: Subscription
    invoice_published: bool


def _validate(db: Session, payload: SignupRequest, today: date) -> Plan:
    existing = (
        db.query(Subscriber)
        .filter(Subscriber.email == str(payload.email).lower())
        .first()
    )
    if existing:
        raise HTTPException(status_code=409, detail="Email already registered")
    plan = get_or_404(db, Plan, payload.plan_id, detail="Plan not found")
    if payload.contract_start_date < today:
        raise HTTPException(
            status_code=400, detail="Contract start date cannot be in the past"
        )
    return plan


def signup(
    db: Session,
    payload: SignupRequest,
    publisher: EventPublisher | None,
    today: date | None = None,
) -> SignupResult:
    today = today or datetime.now(UTC).date()
    plan = _validate(db, payload, today)

    subscriber = Subscriber(
        email=str(payload.email).lower(),
        first_name=payload.first_name,
        last_name=payload.last_name,
    )
    db.add(subscriber)
    db.flush()
    address = BillingAddress(
        subscriber_id=subscriber.id,
        **payload.billing_address.model_dump(),
    )
    subscription = Subscription(
        subscriber_id=subscriber.id,
        plan_id=plan.id,
        contract_start_date=payload.contract_start_date,
        duration=plan.duration,
        duration_unit=plan.duration_unit,
        billing_frequency=plan.billing_frequency,
        billing_frequency_unit=plan.billing_frequency_unit,
        price=plan.price,
        currency=plan.currency,
        product_code=payload.product_code,
        status=SubscriptionStatus.active,
        billed_cycles=0,
        next_billing_date=payload.contract_start_date,
    )
    db.add_all([address, subscription])
    db.flush()

    event_payload: InvoicePayload | None = None
    if is_due(subscription, today):
        claim_cycle(db, subscription, DispatchSource.event)
        event_payload = build_payload(subscription, plan, subscriber, address)

    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise HTTPException(status_code=409, detail="Email already registered") from exc
    db.refresh(subscriber)
    db.refresh(subscription)
    logger.info(
        f"Signed up subscriber {subscriber.id} with subscription {subscription.id} "
        f"starting {subscription.contract_start_date}"
    )

    published = False
    if event_payload is not None:
        published = _publish_first_invoice(publisher, event_payload)
    return SignupResult(subscriber=subscriber, subscription=subscription, invoice_published=published)


def _publish_first_invoice(publisher: EventPublisher | None, payload: InvoicePayload) -> bool:
    if publisher is None:
        logger.error(
            f"No event channel; first invoice of subscription {payload.subscription.id} "
            "left for the retry job"
        )
        return False
    try:
        publisher.publish(invoice_event(payload))
    except ChannelUnavailableError as exc:
        logger.error(
            f"Publishing first invoice of subscription {payload.subscription.id} "
            f"failed; left for the retry job: {exc}"
        )
        return False
    return True

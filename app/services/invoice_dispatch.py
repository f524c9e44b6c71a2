from __future__ import annotations

import logging
from datetime import UTC, datetime, timedelta

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.models.billing import DispatchSource, DispatchStatus, InvoiceDispatch
from app.models.catalog import Subscription
from app.services.common import coerce_uuid
from app.services.subscriptions import billing_date

logger = logging.getLogger(__name__)


class CycleAlreadyClaimedError(Exception):
    def __init__(self, subscription_id, billing_cycle: int):
        self.subscription_id = subscription_id
        self.billing_cycle = billing_cycle
        super().__init__(
            f"Billing cycle {billing_cycle} of subscription {subscription_id} "
            "is already claimed"
        )


def claim_cycle(
    db: Session, subscription: Subscription, source: DispatchSource
) -> InvoiceDispatch:
    """Reserve the next billing cycle and advance the subscription past it.

    The dispatch row and the advanced ``billed_cycles``/``next_billing_date``
    are flushed together; the caller commits. A unique-key conflict rolls the
    session back, so the caller must call ``rollback()`` before reusing it.

    Raises:
        CycleAlreadyClaimedError: another dispatch already holds this cycle.
    """
    subscription_id = subscription.id
    cycle = subscription.billed_cycles + 1
    dispatch = InvoiceDispatch(
        subscription_id=subscription_id,
        billing_cycle=cycle,
        source=source,
        status=DispatchStatus.pending,
    )
    db.add(dispatch)
    subscription.billed_cycles = cycle
    subscription.next_billing_date = billing_date(subscription, cycle)
    try:
        db.flush()
    except IntegrityError as exc:
        raise CycleAlreadyClaimedError(subscription_id, cycle) from exc
    logger.info(
        f"Claimed cycle {cycle}/{subscription.billing_frequency} of subscription "
        f"{subscription.id} via {source.value}; next billing date "
        f"{subscription.next_billing_date}"
    )
    return dispatch


def get_for_cycle(db: Session, subscription_id, billing_cycle: int) -> InvoiceDispatch | None:
    return (
        db.query(InvoiceDispatch)
        .filter(InvoiceDispatch.subscription_id == coerce_uuid(subscription_id))
        .filter(InvoiceDispatch.billing_cycle == billing_cycle)
        .one_or_none()
    )


def mark_delivered(dispatch: InvoiceDispatch, artifact_id: str) -> None:
    dispatch.status = DispatchStatus.delivered
    dispatch.artifact_id = artifact_id
    dispatch.error = None


def mark_failed(dispatch: InvoiceDispatch, artifact_id: str | None, error: str) -> None:
    dispatch.status = DispatchStatus.failed
    if artifact_id:
        dispatch.artifact_id = artifact_id
    dispatch.error = error


def list_stale(db: Session, stale_minutes: int, now: datetime | None = None) -> list[InvoiceDispatch]:
    now = now or datetime.now(UTC)
    cutoff = now - timedelta(minutes=stale_minutes)
    return (
        db.query(InvoiceDispatch)
        .filter(InvoiceDispatch.status == DispatchStatus.pending)
        .filter(InvoiceDispatch.updated_at < cutoff)
        .all()
    )

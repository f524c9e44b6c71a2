"""Billing calendar and the "due today" predicate.

``is_due`` and ``due_filter`` express the same rule, once for loaded rows and
once as SQL, so the signup path and the daily scheduler can never disagree
about whether a subscription should be billed on a given day.
"""

from __future__ import annotations

import logging
from calendar import monthrange
from datetime import date, timedelta

from sqlalchemy import and_
from sqlalchemy.orm import Session

from app.models.catalog import DurationUnit, Subscription, SubscriptionStatus
from app.services.common import apply_pagination, coerce_uuid

logger = logging.getLogger(__name__)


def _add_months(value: date, months: int) -> date:
    total = value.month - 1 + months
    year = value.year + total // 12
    month = total % 12 + 1
    day = min(value.day, monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


def add_units(start: date, count: int, unit: DurationUnit) -> date:
    if unit == DurationUnit.day:
        return start + timedelta(days=count)
    if unit == DurationUnit.week:
        return start + timedelta(weeks=count)
    if unit == DurationUnit.month:
        return _add_months(start, count)
    if unit == DurationUnit.year:
        return _add_months(start, count * 12)
    raise ValueError(f"Unsupported billing unit: {unit}")


def billing_date(subscription: Subscription, billed_cycles: int) -> date | None:
    """Date on which the cycle after ``billed_cycles`` falls due.

    Counted from the contract start rather than the previous billing date so
    month-end clamping does not drift (Jan 31, Feb 28, Mar 31). Returns None
    once every cycle has been billed.
    """
    if billed_cycles >= subscription.billing_frequency:
        return None
    return add_units(
        subscription.contract_start_date,
        billed_cycles,
        subscription.billing_frequency_unit or DurationUnit.month,
    )


def is_due(subscription: Subscription, today: date) -> bool:
    return (
        subscription.status == SubscriptionStatus.active
        and subscription.billed_cycles < subscription.billing_frequency
        and subscription.next_billing_date == today
    )


def due_filter(today: date):
    return and_(
        Subscription.status == SubscriptionStatus.active,
        Subscription.billed_cycles < Subscription.billing_frequency,
        Subscription.next_billing_date == today,
    )


class Subscriptions:
    @staticmethod
    def get(db: Session, subscription_id) -> Subscription | None:
        return db.get(Subscription, coerce_uuid(subscription_id))

    @staticmethod
    def get_for_update(db: Session, subscription_id) -> Subscription | None:
        return (
            db.query(Subscription)
            .filter(Subscription.id == coerce_uuid(subscription_id))
            .with_for_update()
            .one_or_none()
        )

    @staticmethod
    def list_due(
        db: Session, today: date, limit: int | None = None, offset: int = 0
    ) -> list[Subscription]:
        query = (
            db.query(Subscription)
            .filter(due_filter(today))
            .order_by(Subscription.created_at.asc(), Subscription.id.asc())
        )
        if limit is not None:
            query = apply_pagination(query, limit, offset)
        return query.all()

    @staticmethod
    def due_ids(db: Session, today: date) -> list:
        rows = db.query(Subscription.id).filter(due_filter(today)).all()
        return [row[0] for row in rows]

    @staticmethod
    def deactivate(db: Session, subscription: Subscription) -> None:
        if subscription.status != SubscriptionStatus.inactive:
            logger.warning(f"Deactivating subscription {subscription.id}")
            subscription.status = SubscriptionStatus.inactive

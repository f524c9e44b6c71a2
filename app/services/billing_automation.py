"""Daily due-billing and failed-invoice retry jobs.

Both jobs list their work in one short session and fan the units out to a
``BoundedExecutor``. Every unit opens its own session from the supplied
session factory, so one subscription's failure never touches another's
transaction.
"""

from __future__ import annotations

import contextvars
import logging
import threading
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from datetime import UTC, date, datetime
from typing import Any

from sqlalchemy.orm import Session

from app.config import settings
from app.db import SessionLocal
from app.metrics import INVOICE_RETRIES_EXHAUSTED, INVOICES_DELIVERED, INVOICES_FAILED
from app.models.billing import DispatchSource, InvoiceDispatch
from app.models.catalog import Plan, Subscription
from app.models.subscriber import BillingAddress, Subscriber
from app.schemas.billing import (
    AddressSnapshot,
    InvoicePayload,
    PlanSnapshot,
    SubscriptionSnapshot,
    UserSnapshot,
)
from app.services import invoice_dispatch
from app.services.email import SmtpNotifier
from app.services.failed_invoices import (
    FailedInvoices,
    record_failure,
    recover_stale_dispatches,
)
from app.services.invoice_assembly import (
    InvoiceAssemblyError,
    InvoiceNotifier,
    InvoiceRenderError,
    InvoiceRenderer,
    assemble,
)
from app.services.invoice_dispatch import CycleAlreadyClaimedError, claim_cycle
from app.services.invoice_renderer import PdfInvoiceRenderer
from app.services.subscriptions import Subscriptions, is_due

logger = logging.getLogger(__name__)

SessionFactory = Callable[[], Session]


class BillingLookupError(Exception):
    pass


class BoundedExecutor:
    """Thread pool whose ``submit`` blocks once ``max_workers + queue_size``
    units are in flight."""

    def __init__(self, max_workers: int, queue_size: int):
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="billing"
        )
        self._slots = threading.BoundedSemaphore(max_workers + queue_size)

    def submit(self, fn, *args, **kwargs) -> Future:
        self._slots.acquire()
        try:
            # Units log under the submitting job's correlation id.
            context = contextvars.copy_context()
            future = self._executor.submit(context.run, fn, *args, **kwargs)
        except Exception:
            self._slots.release()
            raise
        future.add_done_callback(lambda _: self._slots.release())
        return future

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.shutdown(wait=True)


def default_executor() -> BoundedExecutor:
    return BoundedExecutor(settings.billing_workers, settings.billing_queue_size)


def resolve_parties(
    db: Session, subscription: Subscription
) -> tuple[Plan, Subscriber, BillingAddress]:
    plan = db.get(Plan, subscription.plan_id)
    if plan is None:
        raise BillingLookupError(f"Plan {subscription.plan_id} not found")
    subscriber = db.get(Subscriber, subscription.subscriber_id)
    if subscriber is None:
        raise BillingLookupError(f"Subscriber {subscription.subscriber_id} not found")
    address = (
        db.query(BillingAddress)
        .filter(BillingAddress.subscriber_id == subscriber.id)
        .order_by(BillingAddress.created_at.asc())
        .first()
    )
    if address is None:
        raise BillingLookupError(f"No billing address for subscriber {subscriber.id}")
    return plan, subscriber, address


def build_payload(
    subscription: Subscription,
    plan: Plan,
    subscriber: Subscriber,
    address: BillingAddress,
    billing_cycle: int | None = None,
) -> InvoicePayload:
    subscription_snapshot = SubscriptionSnapshot.model_validate(subscription)
    if billing_cycle is not None:
        subscription_snapshot = subscription_snapshot.model_copy(
            update={"billed_cycles": billing_cycle}
        )
    return InvoicePayload(
        user=UserSnapshot.model_validate(subscriber),
        billing_address=AddressSnapshot.model_validate(address),
        subscription=subscription_snapshot,
        plan=PlanSnapshot.model_validate(plan),
    )


def deliver_dispatch(
    db: Session,
    dispatch: InvoiceDispatch,
    payload: InvoicePayload,
    *,
    renderer: InvoiceRenderer,
    notifier: InvoiceNotifier,
    path: str,
) -> str:
    """Assemble the invoice for a claimed cycle and commit the outcome.

    A render or delivery failure becomes a failed invoice record that the
    retry job picks up.
    """
    try:
        artifact_id = assemble(
            payload, dispatch.artifact_id, renderer=renderer, notifier=notifier
        )
    except InvoiceAssemblyError as exc:
        stage = "render" if isinstance(exc, InvoiceRenderError) else "delivery"
        logger.warning(
            f"Invoice {stage} failed for subscription {dispatch.subscription_id} "
            f"cycle {dispatch.billing_cycle}: {exc}"
        )
        record_failure(db, dispatch, exc.artifact_id, str(exc))
        db.commit()
        INVOICES_FAILED.labels(path=path, stage=stage).inc()
        return "failed"
    invoice_dispatch.mark_delivered(dispatch, artifact_id)
    db.commit()
    INVOICES_DELIVERED.labels(path=path).inc()
    return "delivered"


def bill_subscription(
    session_factory: SessionFactory,
    subscription_id,
    today: date,
    renderer: InvoiceRenderer,
    notifier: InvoiceNotifier,
) -> str:
    """Bill one due subscription. Returns the outcome name."""
    db = session_factory()
    try:
        subscription = Subscriptions.get_for_update(db, subscription_id)
        if subscription is None or not is_due(subscription, today):
            db.rollback()
            return "skipped"
        try:
            plan, subscriber, address = resolve_parties(db, subscription)
        except BillingLookupError as exc:
            logger.error(f"Skipping subscription {subscription_id}: {exc}")
            db.rollback()
            return "lookup_failed"
        try:
            dispatch = claim_cycle(db, subscription, DispatchSource.scheduler)
        except CycleAlreadyClaimedError as exc:
            logger.info(str(exc))
            db.rollback()
            return "duplicate"
        payload = build_payload(subscription, plan, subscriber, address)
        db.commit()
        return deliver_dispatch(
            db, dispatch, payload, renderer=renderer, notifier=notifier, path="scheduler"
        )
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def run_invoice_cycle(
    session_factory: SessionFactory | None = None,
    today: date | None = None,
    renderer: InvoiceRenderer | None = None,
    notifier: InvoiceNotifier | None = None,
    executor: BoundedExecutor | None = None,
) -> dict[str, Any]:
    """Invoice every subscription due on ``today`` (defaults to the UTC date).

    Returns a summary of unit outcomes.
    """
    session_factory = session_factory or SessionLocal
    today = today or datetime.now(UTC).date()
    renderer = renderer or PdfInvoiceRenderer()
    notifier = notifier or SmtpNotifier()

    db = session_factory()
    try:
        subscription_ids = Subscriptions.due_ids(db, today)
    finally:
        db.close()

    summary: dict[str, Any] = {
        "run_date": today.isoformat(),
        "scanned": len(subscription_ids),
        "delivered": 0,
        "failed": 0,
        "skipped": 0,
        "duplicate": 0,
        "lookup_failed": 0,
        "errors": 0,
    }
    with executor or default_executor() as pool:
        futures = {
            pool.submit(
                bill_subscription, session_factory, subscription_id, today, renderer, notifier
            ): subscription_id
            for subscription_id in subscription_ids
        }
        for future in as_completed(futures):
            try:
                outcome = future.result()
            except Exception:
                logger.exception(f"Billing unit for subscription {futures[future]} crashed")
                summary["errors"] += 1
                continue
            summary[outcome] += 1

    logger.info(f"Invoice cycle for {today} complete: {summary}")
    return summary


def _escalate(db: Session, subscription: Subscription, record) -> None:
    logger.error(
        f"Invoice for subscription {subscription.id} cycle {record.billing_cycle} "
        f"failed {record.email_retry} times; giving up: {record.last_error}"
    )
    INVOICE_RETRIES_EXHAUSTED.inc()
    if settings.deactivate_on_retry_exhaustion:
        Subscriptions.deactivate(db, subscription)


def retry_failed_invoice(
    session_factory: SessionFactory,
    record_id,
    renderer: InvoiceRenderer,
    notifier: InvoiceNotifier,
) -> str:
    """Reprocess one failed invoice record. Returns the outcome name."""
    max_retries = settings.max_email_retries
    db = session_factory()
    try:
        record = FailedInvoices.get(db, record_id)
        if record is None or record.email_retry >= max_retries:
            return "skipped"
        subscription = Subscriptions.get(db, record.subscription_id)
        if subscription is None:
            logger.error(f"Failed invoice {record.id}: subscription {record.subscription_id} not found")
            return "lookup_failed"
        try:
            plan, subscriber, address = resolve_parties(db, subscription)
        except BillingLookupError as exc:
            logger.error(f"Failed invoice {record.id}: {exc}")
            return "lookup_failed"
        payload = build_payload(
            subscription, plan, subscriber, address, billing_cycle=record.billing_cycle
        )
        dispatch = invoice_dispatch.get_for_cycle(db, subscription.id, record.billing_cycle)

        try:
            artifact_id = assemble(
                payload, record.invoice_id, renderer=renderer, notifier=notifier
            )
        except InvoiceAssemblyError as exc:
            stage = "render" if isinstance(exc, InvoiceRenderError) else "delivery"
            if exc.artifact_id and not record.invoice_id:
                record.invoice_id = exc.artifact_id
            record.email_retry = record.email_retry + 1
            record.last_error = str(exc)
            INVOICES_FAILED.labels(path="retry", stage=stage).inc()
            outcome = "failed"
            if record.email_retry >= max_retries:
                _escalate(db, subscription, record)
                outcome = "exhausted"
            else:
                logger.warning(
                    f"Retry {record.email_retry - 1} of invoice for subscription "
                    f"{subscription.id} cycle {record.billing_cycle} failed: {exc}"
                )
            db.commit()
            return outcome

        db.delete(record)
        if dispatch is not None:
            invoice_dispatch.mark_delivered(dispatch, artifact_id)
        db.commit()
        INVOICES_DELIVERED.labels(path="retry").inc()
        return "delivered"
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def retry_failed_invoices(
    session_factory: SessionFactory | None = None,
    renderer: InvoiceRenderer | None = None,
    notifier: InvoiceNotifier | None = None,
    executor: BoundedExecutor | None = None,
    now: datetime | None = None,
) -> dict[str, Any]:
    """Recover stale dispatches, then retry every failed invoice under the cap."""
    session_factory = session_factory or SessionLocal
    renderer = renderer or PdfInvoiceRenderer()
    notifier = notifier or SmtpNotifier()

    db = session_factory()
    try:
        recovered = recover_stale_dispatches(db, settings.dispatch_stale_minutes, now=now)
        record_ids = [
            record.id
            for record in FailedInvoices.list_retryable(db, settings.max_email_retries)
        ]
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()

    summary: dict[str, Any] = {
        "recovered_stale": recovered,
        "scanned": len(record_ids),
        "delivered": 0,
        "failed": 0,
        "exhausted": 0,
        "skipped": 0,
        "lookup_failed": 0,
        "errors": 0,
    }
    with executor or default_executor() as pool:
        futures = {
            pool.submit(retry_failed_invoice, session_factory, record_id, renderer, notifier): record_id
            for record_id in record_ids
        }
        for future in as_completed(futures):
            try:
                outcome = future.result()
            except Exception:
                logger.exception(f"Retry unit for failed invoice {futures[future]} crashed")
                summary["errors"] += 1
                continue
            summary[outcome] += 1

    logger.info(f"Failed invoice retry complete: {summary}")
    return summary

"""Failed invoice records: invoices whose render or email failed.

Records are keyed by artifact id (``invoice_id``) for the retry counter
update and delete operations, and unique per (subscription, billing cycle).
"""

from __future__ import annotations

import logging
from datetime import UTC, date, datetime

from fastapi import HTTPException
from sqlalchemy.orm import Session

from app.models.billing import FailedInvoice, InvoiceDispatch
from app.services.common import apply_pagination, coerce_uuid
from app.services import invoice_dispatch

logger = logging.getLogger(__name__)


class FailedInvoices:
    @staticmethod
    def add(
        db: Session,
        subscription_id,
        billing_cycle: int,
        invoice_id: str | None,
        invoice_date: date,
        error: str | None = None,
    ) -> FailedInvoice:
        record = FailedInvoice(
            subscription_id=coerce_uuid(subscription_id),
            billing_cycle=billing_cycle,
            invoice_id=invoice_id or None,
            invoice_date=invoice_date,
            email_retry=1,
            last_error=error,
        )
        db.add(record)
        db.flush()
        return record

    @staticmethod
    def list(db: Session, limit: int = 100, offset: int = 0) -> list[FailedInvoice]:
        query = db.query(FailedInvoice).order_by(FailedInvoice.created_at.asc())
        return apply_pagination(query, limit, offset).all()

    @staticmethod
    def list_retryable(db: Session, max_retries: int) -> list[FailedInvoice]:
        return (
            db.query(FailedInvoice)
            .filter(FailedInvoice.email_retry < max_retries)
            .order_by(FailedInvoice.created_at.asc())
            .all()
        )

    @staticmethod
    def get(db: Session, record_id) -> FailedInvoice | None:
        return db.get(FailedInvoice, coerce_uuid(record_id))

    @staticmethod
    def get_for_cycle(db: Session, subscription_id, billing_cycle: int) -> FailedInvoice | None:
        return (
            db.query(FailedInvoice)
            .filter(FailedInvoice.subscription_id == coerce_uuid(subscription_id))
            .filter(FailedInvoice.billing_cycle == billing_cycle)
            .one_or_none()
        )

    @staticmethod
    def get_by_invoice_id(db: Session, invoice_id: str) -> FailedInvoice:
        record = (
            db.query(FailedInvoice)
            .filter(FailedInvoice.invoice_id == invoice_id)
            .one_or_none()
        )
        if not record:
            raise HTTPException(status_code=404, detail="Failed invoice not found")
        return record

    @staticmethod
    def update_retry(db: Session, invoice_id: str, email_retry: int) -> FailedInvoice:
        record = FailedInvoices.get_by_invoice_id(db, invoice_id)
        record.email_retry = email_retry
        db.commit()
        db.refresh(record)
        return record

    @staticmethod
    def delete(db: Session, invoice_id: str) -> None:
        record = FailedInvoices.get_by_invoice_id(db, invoice_id)
        db.delete(record)
        db.commit()


def record_failure(
    db: Session,
    dispatch: InvoiceDispatch,
    invoice_id: str | None,
    error: str,
    invoice_date: date | None = None,
) -> FailedInvoice:
    """Mark the dispatch failed and make sure its cycle has a failure record.

    A cycle that already has a record (a redelivered event, a stale sweep
    racing a late failure) keeps its counter; only the artifact id and error
    are refreshed. The caller commits.
    """
    invoice_dispatch.mark_failed(dispatch, invoice_id, error)
    record = FailedInvoices.get_for_cycle(db, dispatch.subscription_id, dispatch.billing_cycle)
    if record:
        if invoice_id and not record.invoice_id:
            record.invoice_id = invoice_id
        record.last_error = error
        return record
    return FailedInvoices.add(
        db,
        subscription_id=dispatch.subscription_id,
        billing_cycle=dispatch.billing_cycle,
        invoice_id=invoice_id,
        invoice_date=invoice_date or datetime.now(UTC).date(),
        error=error,
    )


def recover_stale_dispatches(
    db: Session, stale_minutes: int, now: datetime | None = None
) -> int:
    """Hand pending dispatches that never reported an outcome to the retry job."""
    recovered = 0
    for dispatch in invoice_dispatch.list_stale(db, stale_minutes, now=now):
        logger.warning(
            f"Recovering stale dispatch {dispatch.id} for subscription "
            f"{dispatch.subscription_id} cycle {dispatch.billing_cycle}"
        )
        record_failure(
            db,
            dispatch,
            dispatch.artifact_id,
            "dispatch did not complete",
            invoice_date=(now or datetime.now(UTC)).date(),
        )
        recovered += 1
    if recovered:
        db.commit()
    return recovered

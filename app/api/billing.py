from datetime import UTC, date, datetime

from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.orm import Session

from app.api.deps import get_db
from app.schemas.billing import FailedInvoiceRead, FailedInvoiceUpdate, SubscriptionRead
from app.services.common import list_response
from app.services.failed_invoices import FailedInvoices
from app.services.subscriptions import Subscriptions

router = APIRouter()


@router.get(
    "/subscriptions/due",
    response_model=list[SubscriptionRead],
    tags=["billing"],
)
def list_due_subscriptions(
    on: date | None = Query(default=None),
    limit: int = Query(default=100, ge=1, le=1000),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
):
    today = on or datetime.now(UTC).date()
    return Subscriptions.list_due(db, today, limit=limit, offset=offset)


@router.get("/failed-invoices", tags=["billing"])
def list_failed_invoices(
    limit: int = Query(default=100, ge=1, le=1000),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
):
    items = [
        FailedInvoiceRead.model_validate(record)
        for record in FailedInvoices.list(db, limit=limit, offset=offset)
    ]
    return list_response(items, limit, offset)


@router.get(
    "/failed-invoices/{invoice_id}",
    response_model=FailedInvoiceRead,
    tags=["billing"],
)
def get_failed_invoice(invoice_id: str, db: Session = Depends(get_db)):
    return FailedInvoices.get_by_invoice_id(db, invoice_id)


@router.patch(
    "/failed-invoices/{invoice_id}",
    response_model=FailedInvoiceRead,
    tags=["billing"],
)
def update_failed_invoice(
    invoice_id: str, payload: FailedInvoiceUpdate, db: Session = Depends(get_db)
):
    return FailedInvoices.update_retry(db, invoice_id, payload.email_retry)


@router.delete(
    "/failed-invoices/{invoice_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    tags=["billing"],
)
def delete_failed_invoice(invoice_id: str, db: Session = Depends(get_db)):
    FailedInvoices.delete(db, invoice_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)

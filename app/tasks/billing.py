import logging
import time

from app.celery_app import celery_app
from app.db import SessionLocal
from app.logging import new_correlation_id
from app.metrics import observe_job
from app.services import billing_automation as billing_automation_service

logger = logging.getLogger(__name__)


@celery_app.task(name="app.tasks.billing.run_invoice_cycle")
def run_invoice_cycle():
    run_id = new_correlation_id()
    logger.info(f"Starting invoice cycle run {run_id}")
    start = time.monotonic()
    status = "success"
    try:
        return billing_automation_service.run_invoice_cycle(SessionLocal)
    except Exception:
        status = "error"
        logger.exception("Invoice cycle run failed")
        raise
    finally:
        observe_job("run_invoice_cycle", status, time.monotonic() - start)


@celery_app.task(name="app.tasks.billing.retry_failed_invoices")
def retry_failed_invoices():
    run_id = new_correlation_id()
    logger.info(f"Starting failed invoice retry run {run_id}")
    start = time.monotonic()
    status = "success"
    try:
        return billing_automation_service.retry_failed_invoices(SessionLocal)
    except Exception:
        status = "error"
        logger.exception("Failed invoice retry run failed")
        raise
    finally:
        observe_job("retry_failed_invoices", status, time.monotonic() - start)

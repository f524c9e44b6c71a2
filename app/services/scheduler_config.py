import logging

from celery.schedules import crontab

from app.config import settings

logger = logging.getLogger(__name__)

RUN_INVOICE_CYCLE_TASK = "app.tasks.billing.run_invoice_cycle"
RETRY_FAILED_INVOICES_TASK = "app.tasks.billing.retry_failed_invoices"


def _clamp(value: int, low: int, high: int) -> int:
    return max(low, min(value, high))


def get_celery_config() -> dict:
    broker = settings.celery_broker_url or settings.amqp_url
    backend = settings.celery_result_backend or "rpc://"
    config: dict[str, object] = {
        "broker_url": broker,
        "result_backend": backend,
        "timezone": settings.celery_timezone or "UTC",
        "enable_utc": True,
        "task_acks_late": True,
        "worker_prefetch_multiplier": 1,
    }
    return config


def build_beat_schedule() -> dict:
    schedule: dict[str, dict] = {}
    if settings.billing_enabled:
        schedule["invoice_cycle"] = {
            "task": RUN_INVOICE_CYCLE_TASK,
            "schedule": crontab(
                hour=_clamp(settings.billing_run_hour, 0, 23),
                minute=_clamp(settings.billing_run_minute, 0, 59),
            ),
        }
    else:
        logger.info("Daily invoice cycle disabled")
    if settings.invoice_retry_enabled:
        schedule["failed_invoice_retry"] = {
            "task": RETRY_FAILED_INVOICES_TASK,
            "schedule": crontab(
                hour=_clamp(settings.invoice_retry_hour, 0, 23),
                minute=_clamp(settings.invoice_retry_minute, 0, 59),
            ),
        }
    else:
        logger.info("Failed invoice retry disabled")
    return schedule

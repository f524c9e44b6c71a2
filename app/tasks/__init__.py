from app.tasks.billing import retry_failed_invoices, run_invoice_cycle

__all__ = [
    "run_invoice_cycle",
    "retry_failed_invoices",
]

from prometheus_client import Counter, Histogram

REQUEST_COUNT = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "path", "status"],
)
REQUEST_LATENCY = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency",
    ["method", "path", "status"],
)

JOB_DURATION = Histogram(
    "job_duration_seconds",
    "Background job duration",
    ["task", "status"],
)

# path: scheduler | retry | event
INVOICES_DELIVERED = Counter(
    "invoices_delivered_total",
    "Invoices rendered and emailed successfully",
    ["path"],
)
INVOICES_FAILED = Counter(
    "invoices_failed_total",
    "Invoice render or delivery failures",
    ["path", "stage"],
)
INVOICE_RETRIES_EXHAUSTED = Counter(
    "invoice_retries_exhausted_total",
    "Failed invoices that reached the retry cap",
)
EVENTS_CONSUMED = Counter(
    "billing_events_consumed_total",
    "Billing events received from the channel",
    ["name", "outcome"],
)


def observe_job(task_name: str, status: str, duration: float) -> None:
    JOB_DURATION.labels(task=task_name, status=status).observe(duration)

import logging
import uuid
from time import monotonic

from fastapi import FastAPI, Request
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from starlette.responses import Response

from app.api.billing import router as billing_router
from app.api.signup import router as signup_router
from app.config import settings
from app.errors import register_error_handlers
from app.logging import configure_logging, set_correlation_id
from app.metrics import REQUEST_COUNT, REQUEST_LATENCY
from app.services.events.channel import EventPublisher, connect

app = FastAPI(title="Subscription Billing API")
logger = logging.getLogger(__name__)
configure_logging()
register_error_handlers(app)

app.include_router(signup_router)
app.include_router(billing_router)


@app.middleware("http")
async def observability_middleware(request: Request, call_next):
    request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex
    request.state.request_id = request_id
    set_correlation_id(request_id)
    started = monotonic()
    status_code = 500
    try:
        response = await call_next(request)
        status_code = response.status_code
        response.headers["X-Request-ID"] = request_id
        return response
    finally:
        route = request.scope.get("route")
        path = getattr(route, "path", request.url.path)
        labels = {"method": request.method, "path": path, "status": str(status_code)}
        REQUEST_COUNT.labels(**labels).inc()
        REQUEST_LATENCY.labels(**labels).observe(monotonic() - started)
        set_correlation_id(None)


@app.get("/health")
def health_check():
    return {"status": "ok"}


@app.get("/metrics")
def metrics():
    data = generate_latest()
    return Response(content=data, media_type=CONTENT_TYPE_LATEST)


@app.on_event("startup")
def _connect_event_channel():
    # Fails startup when the broker stays unreachable.
    app.state.publisher = EventPublisher(connect(settings.amqp_url))


@app.on_event("shutdown")
def _close_event_channel():
    publisher = getattr(app.state, "publisher", None)
    if publisher is not None:
        publisher.close()

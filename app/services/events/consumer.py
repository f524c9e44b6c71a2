"""Invoice event consumer.

Messages are acknowledged manually on the consumer thread once their
outcome is known:

- undecodable envelope or payload: rejected without requeue (dead-lettered)
- unknown event name: logged and acked
- invoice event: processed on the worker pool; acked when handled, requeued
  on a first ledger error, rejected if the redelivery fails again
"""

from __future__ import annotations

import logging
import queue
from collections.abc import Callable
from concurrent.futures import Future
from functools import partial

from kombu import Connection, Queue
from kombu.mixins import ConsumerMixin
from sqlalchemy.orm import Session

from app.db import SessionLocal
from app.logging import set_correlation_id
from app.metrics import EVENTS_CONSUMED
from app.models.billing import DispatchStatus
from app.schemas.billing import InvoicePayload
from app.services import invoice_dispatch
from app.services.billing_automation import (
    BoundedExecutor,
    default_executor,
    deliver_dispatch,
)
from app.services.email import SmtpNotifier
from app.services.events.channel import invoice_queue
from app.services.events.types import (
    EventDecodeError,
    EventName,
    decode_event,
    decode_invoice_payload,
)
from app.services.invoice_assembly import InvoiceNotifier, InvoiceRenderer
from app.services.invoice_renderer import PdfInvoiceRenderer

logger = logging.getLogger(__name__)


def process_invoice_event(
    payload: InvoicePayload,
    session_factory: Callable[[], Session] = SessionLocal,
    renderer: InvoiceRenderer | None = None,
    notifier: InvoiceNotifier | None = None,
) -> str:
    """Deliver the invoice announced by an ``invoice`` event.

    Only a pending claim is processed. A delivered cycle is a duplicate
    delivery of the event, a failed one belongs to the retry job, and a
    missing claim means the publishing transaction never committed.
    """
    renderer = renderer or PdfInvoiceRenderer()
    notifier = notifier or SmtpNotifier()
    subscription_id = payload.subscription.id
    cycle = payload.billing_cycle
    set_correlation_id(f"{subscription_id}:{cycle}")
    db = session_factory()
    try:
        dispatch = invoice_dispatch.get_for_cycle(db, subscription_id, cycle)
        if dispatch is None:
            logger.warning(
                f"No claim for subscription {subscription_id} cycle {cycle}; ignoring event"
            )
            return "unclaimed"
        if dispatch.status != DispatchStatus.pending:
            logger.info(
                f"Cycle {cycle} of subscription {subscription_id} already "
                f"{dispatch.status.value}; skipping duplicate event"
            )
            return "duplicate"
        return deliver_dispatch(
            db, dispatch, payload, renderer=renderer, notifier=notifier, path="event"
        )
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()
        set_correlation_id(None)


class InvoiceConsumer(ConsumerMixin):
    def __init__(
        self,
        connection: Connection,
        queue_: Queue | None = None,
        executor: BoundedExecutor | None = None,
        handler: Callable[[InvoicePayload], str] | None = None,
        prefetch_count: int | None = None,
    ):
        self.connection = connection
        self.queue = queue_ if queue_ is not None else invoice_queue()
        self.executor = executor or default_executor()
        self.handler = handler or partial(process_invoice_event, session_factory=SessionLocal)
        self.prefetch_count = prefetch_count
        self._outcomes: queue.Queue = queue.Queue()

    def get_consumers(self, Consumer, channel):
        consumer = Consumer(queues=[self.queue], on_message=self.on_message)
        if self.prefetch_count:
            consumer.qos(prefetch_count=self.prefetch_count)
        return [consumer]

    def on_message(self, message) -> None:
        try:
            event = decode_event(message.body)
        except EventDecodeError as exc:
            logger.error(f"Rejecting undecodable event: {exc}")
            EVENTS_CONSUMED.labels(name="-", outcome="rejected").inc()
            message.reject(requeue=False)
            return

        if event.name != EventName.invoice.value:
            logger.warning(f"Ignoring unknown event {event.name!r}")
            EVENTS_CONSUMED.labels(name=event.name, outcome="ignored").inc()
            message.ack()
            return

        try:
            payload = decode_invoice_payload(event)
        except EventDecodeError as exc:
            logger.error(f"Rejecting invoice event: {exc}")
            EVENTS_CONSUMED.labels(name=event.name, outcome="rejected").inc()
            message.reject(requeue=False)
            return

        future = self.executor.submit(self.handler, payload)
        future.add_done_callback(lambda f: self._outcomes.put((message, f)))

    def on_iteration(self) -> None:
        self.settle_outcomes()

    def on_consume_end(self, connection, channel) -> None:
        self.executor.shutdown(wait=True)
        self.settle_outcomes()

    def settle_outcomes(self) -> int:
        """Ack, requeue or reject every message whose processing finished."""
        settled = 0
        while True:
            try:
                message, future = self._outcomes.get_nowait()
            except queue.Empty:
                return settled
            self._settle(message, future)
            settled += 1

    def _settle(self, message, future: Future) -> None:
        exc = future.exception()
        if exc is None:
            outcome = future.result()
            EVENTS_CONSUMED.labels(name=EventName.invoice.value, outcome=outcome).inc()
            message.ack()
            return
        redelivered = bool((message.delivery_info or {}).get("redelivered"))
        logger.error(
            f"Invoice event processing failed (redelivered={redelivered}): {exc}",
            exc_info=exc,
        )
        if redelivered:
            EVENTS_CONSUMED.labels(name=EventName.invoice.value, outcome="rejected").inc()
            message.reject(requeue=False)
        else:
            EVENTS_CONSUMED.labels(name=EventName.invoice.value, outcome="requeued").inc()
            message.requeue()

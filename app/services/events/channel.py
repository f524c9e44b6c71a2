"""AMQP topology and publisher for billing events.

Invoice events are published to a topic exchange (``invoice_topic``) with the
``invoice.SEND`` routing key. Consumers bind either the shared durable queue
named by ``INVOICE_QUEUE`` or, when that is empty, an anonymous exclusive
queue of their own. Rejected messages are dead-lettered to
``<exchange>.dlx`` and parked in ``invoice.dead``.
"""

from __future__ import annotations

import logging
import threading

from kombu import Connection, Exchange, Queue
from kombu.exceptions import KombuError, OperationalError

from app.config import settings
from app.schemas.billing import BillingEvent
from app.services.events.types import encode_event

logger = logging.getLogger(__name__)

DEAD_LETTER_QUEUE = "invoice.dead"
DEAD_LETTER_ROUTING_KEY = "invoice.dead"


class ChannelUnavailableError(Exception):
    pass


def invoice_exchange(name: str | None = None) -> Exchange:
    return Exchange(name or settings.invoice_exchange, type="topic", durable=True)


def dead_letter_exchange(name: str | None = None) -> Exchange:
    return Exchange(
        f"{name or settings.invoice_exchange}.dlx", type="direct", durable=True
    )


def dead_letter_queue(exchange_name: str | None = None) -> Queue:
    return Queue(
        DEAD_LETTER_QUEUE,
        exchange=dead_letter_exchange(exchange_name),
        routing_key=DEAD_LETTER_ROUTING_KEY,
        durable=True,
    )


def invoice_queue(
    queue_name: str | None = None,
    exchange_name: str | None = None,
    routing_key: str | None = None,
) -> Queue:
    queue_name = settings.invoice_queue if queue_name is None else queue_name
    arguments = {
        "x-dead-letter-exchange": dead_letter_exchange(exchange_name).name,
        "x-dead-letter-routing-key": DEAD_LETTER_ROUTING_KEY,
    }
    exchange = invoice_exchange(exchange_name)
    routing_key = routing_key or settings.invoice_routing_key
    if queue_name:
        return Queue(
            queue_name,
            exchange=exchange,
            routing_key=routing_key,
            durable=True,
            queue_arguments=arguments,
        )
    return Queue(
        "",
        exchange=exchange,
        routing_key=routing_key,
        durable=False,
        exclusive=True,
        auto_delete=True,
        queue_arguments=arguments,
    )


def connect(url: str | None = None, max_retries: int | None = None) -> Connection:
    """Open a connection to the broker, retrying with growing intervals.

    Raises:
        ChannelUnavailableError: the broker stayed unreachable after
            ``max_retries`` attempts.
    """
    url = url or settings.amqp_url
    max_retries = settings.channel_connect_retries if max_retries is None else max_retries
    connection = Connection(url)

    def _errback(exc, interval):
        logger.warning(f"Event channel not ready ({exc}); retrying in {interval}s")

    try:
        connection.ensure_connection(
            errback=_errback,
            max_retries=max_retries,
            interval_start=1,
            interval_step=2,
            interval_max=30,
        )
    except OperationalError as exc:
        connection.release()
        raise ChannelUnavailableError(f"Event channel unavailable at {url}: {exc}") from exc
    logger.info("Connected to event channel")
    return connection


def declare_topology(connection: Connection, queue: Queue | None = None) -> None:
    channel = connection.default_channel
    dead_letter_queue()(channel).declare()
    # Anonymous queues are declared by the consumer that owns them.
    if queue is not None and queue.name:
        queue(channel).declare()


class EventPublisher:
    def __init__(
        self,
        connection: Connection,
        exchange: Exchange | None = None,
        routing_key: str | None = None,
    ):
        self.connection = connection
        self.exchange = exchange or invoice_exchange()
        self.routing_key = routing_key or settings.invoice_routing_key
        self._lock = threading.Lock()
        self._producer = None

    def publish(self, event: BillingEvent) -> None:
        """Publish ``event`` as a persistent JSON message.

        Raises:
            ChannelUnavailableError: the broker rejected or never received it.
        """
        broker_errors = (
            KombuError,
            OSError,
            *self.connection.connection_errors,
            *self.connection.channel_errors,
        )
        with self._lock:
            try:
                if self._producer is None:
                    self._producer = self.connection.Producer(serializer="json")
                self._producer.publish(
                    encode_event(event),
                    exchange=self.exchange,
                    routing_key=self.routing_key,
                    declare=[self.exchange],
                    delivery_mode="persistent",
                    retry=True,
                    retry_policy={
                        "max_retries": 3,
                        "interval_start": 0,
                        "interval_step": 1,
                        "interval_max": 5,
                    },
                )
            except broker_errors as exc:
                self._producer = None
                raise ChannelUnavailableError(f"Failed to publish {event.name} event: {exc}") from exc
        logger.info(f"Published {event.name} event to {self.exchange.name}/{self.routing_key}")

    def close(self) -> None:
        self.connection.release()

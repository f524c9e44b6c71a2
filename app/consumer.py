"""Run the invoice event consumer: ``python -m app.consumer``."""

import logging
import signal
import sys

from app.config import settings
from app.logging import configure_logging
from app.services.billing_automation import default_executor
from app.services.events.channel import (
    ChannelUnavailableError,
    connect,
    declare_topology,
    invoice_queue,
)
from app.services.events.consumer import InvoiceConsumer

logger = logging.getLogger(__name__)


def main() -> int:
    configure_logging()
    try:
        connection = connect(settings.amqp_url)
    except ChannelUnavailableError:
        logger.exception("Invoice consumer cannot start")
        return 1

    queue = invoice_queue()
    declare_topology(connection, queue)
    consumer = InvoiceConsumer(
        connection,
        queue_=queue,
        executor=default_executor(),
        prefetch_count=settings.billing_workers + settings.billing_queue_size,
    )

    def _stop(signum, frame):
        logger.info(f"Received signal {signum}; stopping invoice consumer")
        consumer.should_stop = True

    signal.signal(signal.SIGTERM, _stop)
    signal.signal(signal.SIGINT, _stop)

    logger.info(f"Consuming invoice events from queue {queue.name or '<anonymous>'}")
    try:
        consumer.run()
    finally:
        connection.release()
    return 0


if __name__ == "__main__":
    sys.exit(main())

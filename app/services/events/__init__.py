"""Billing event channel.

Usage:
    from app.services.events.channel import EventPublisher, connect
    from app.services.events.types import invoice_event

    publisher = EventPublisher(connect())
    publisher.publish(invoice_event(payload))
"""

from app.services.events.types import EventDecodeError, EventName

__all__ = ["EventDecodeError", "EventName"]

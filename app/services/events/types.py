"""Billing event envelope and its wire encoding.

Events travel as JSON ``{"name": str, "data": {...}}``. An ``invoice`` event
carries an ``InvoicePayload`` serialized with its capitalised aliases
(``User``, ``BillingAddress``, ``Subscription``, ``Plan``); decimals are
strings and dates ISO-8601.
"""

import enum
import json
from typing import Any

from pydantic import ValidationError

from app.schemas.billing import BillingEvent, InvoicePayload


class EventName(enum.Enum):
    invoice = "invoice"


class EventDecodeError(Exception):
    pass


def invoice_event(payload: InvoicePayload) -> BillingEvent:
    return BillingEvent(
        name=EventName.invoice.value,
        data=payload.model_dump(mode="json", by_alias=True),
    )


def encode_event(event: BillingEvent) -> dict[str, Any]:
    return event.model_dump(mode="json")


def decode_event(body: Any) -> BillingEvent:
    """Parse a raw message body into an envelope.

    Raises:
        EventDecodeError: the body is not JSON or not a ``{name, data}`` object.
    """
    if isinstance(body, (bytes, bytearray)):
        try:
            body = body.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise EventDecodeError(f"Event body is not UTF-8: {exc}") from exc
    if isinstance(body, str):
        try:
            body = json.loads(body)
        except json.JSONDecodeError as exc:
            raise EventDecodeError(f"Event body is not JSON: {exc}") from exc
    if not isinstance(body, dict):
        raise EventDecodeError(f"Event body must be an object, got {type(body).__name__}")
    try:
        return BillingEvent.model_validate(body)
    except ValidationError as exc:
        raise EventDecodeError(f"Invalid event envelope: {exc}") from exc


def decode_invoice_payload(event: BillingEvent) -> InvoicePayload:
    try:
        return InvoicePayload.model_validate(event.data)
    except ValidationError as exc:
        raise EventDecodeError(f"Invalid invoice payload: {exc}") from exc

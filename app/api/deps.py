from fastapi import Request

from app.db import get_db  # noqa: F401
from app.services.events.channel import EventPublisher


def get_publisher(request: Request) -> EventPublisher | None:
    return getattr(request.app.state, "publisher", None)

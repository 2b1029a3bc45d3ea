"""Change-feed interface and an in-process implementation.

The aggregator only needs two operations from a feed: register a handler for
a survey and remove it again. ``LocalChangeFeed`` fans events out inside the
current event loop; a host application publishes row changes into it from
whatever replication stream it consumes.
"""

from __future__ import annotations

import uuid
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Protocol, Tuple

from analytics.logging_utils import get_logger
from analytics.models import ChangeEvent

ChangeHandler = Callable[[ChangeEvent], Awaitable[None]]


class ChangeFeedError(Exception):
    """Raised when a change-feed registration cannot be created or removed."""


class ChangeFeed(Protocol):
    async def subscribe(self, survey_id: str, handler: ChangeHandler) -> Any:
        ...

    async def unsubscribe(self, handle: Any) -> None:
        ...


class LocalChangeFeed:
    """
    In-process change feed.

    Handlers for a survey are awaited one after another in registration
    order, so a single publisher sees events delivered in the order it
    published them.
    """

    def __init__(self) -> None:
        self._registrations: Dict[str, Tuple[str, ChangeHandler]] = {}

    async def subscribe(self, survey_id: str, handler: ChangeHandler) -> str:
        handle = f"feed_{survey_id}_{uuid.uuid4().hex}"
        self._registrations[handle] = (str(survey_id), handler)
        get_logger("feed.local", survey_id).info("registered", extra={"handle": handle})
        return handle

    async def unsubscribe(self, handle: str) -> None:
        entry = self._registrations.pop(handle, None)
        if entry is None:
            get_logger("feed.local").warning("unknown handle", extra={"handle": handle})
            return
        get_logger("feed.local", entry[0]).info("unregistered", extra={"handle": handle})

    def registration_count(self, survey_id: str | None = None) -> int:
        if survey_id is None:
            return len(self._registrations)
        return sum(1 for sid, _ in self._registrations.values() if sid == str(survey_id))

    def _handlers_for(self, survey_id: str | None) -> List[ChangeHandler]:
        return [
            handler
            for sid, handler in list(self._registrations.values())
            if survey_id is None or sid == str(survey_id)
        ]

    async def publish(self, survey_id: str, event: ChangeEvent) -> int:
        """Deliver an event to every handler registered for ``survey_id``.

        Returns:
            Number of handlers invoked
        """
        return await self._deliver(self._handlers_for(survey_id), event, survey_id)

    async def publish_all(self, event: ChangeEvent) -> int:
        """Deliver an event to every registered survey (tables without a survey filter)."""
        return await self._deliver(self._handlers_for(None), event, None)

    async def publish_payload(self, survey_id: str | None, payload: Mapping[str, Any]) -> int:
        """Parse a raw realtime payload and publish it."""
        event = ChangeEvent.from_payload(payload)
        if survey_id is None:
            return await self.publish_all(event)
        return await self.publish(survey_id, event)

    async def _deliver(self, handlers: List[ChangeHandler], event: ChangeEvent, survey_id: str | None) -> int:
        for handler in handlers:
            try:
                await handler(event)
            except Exception:
                get_logger("feed.local", survey_id).exception(
                    "handler failed", extra={"event": event.event, "table": event.table}
                )
        return len(handlers)

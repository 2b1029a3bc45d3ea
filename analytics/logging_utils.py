from __future__ import annotations
import logging
import contextvars
from typing import Any, Callable, Awaitable, Dict

from config import logger as base_logger

# Context variable to store logging context across async calls
current_context: contextvars.ContextVar[Dict[str, Any]] = contextvars.ContextVar(
    "current_context", default={}
)


class ContextLogger(logging.LoggerAdapter):
    """Logger adapter injecting contextual fields into log records."""

    def process(self, msg, kwargs):
        context = current_context.get().copy()
        context.update(self.extra)
        context.update(kwargs.pop("extra", {}))
        kwargs["extra"] = context
        return msg, kwargs


def get_logger(step_name: str | None = None, survey_id: str | None = None, **extra: Any) -> ContextLogger:
    """Return a logger enriched with execution context."""

    ctx: Dict[str, Any] = {}
    if survey_id is not None:
        ctx["survey_id"] = str(survey_id)
    if step_name:
        ctx["step_name"] = step_name
    ctx.update({k: v for k, v in extra.items() if v is not None})
    return ContextLogger(base_logger, ctx)


def wrap_handler(step_name: str, survey_id: str, func: Callable[[Any], Awaitable[Any]]):
    """Wrap an async change-feed handler with contextual logging.

    The wrapped handler receives a ``ChangeEvent``; its ``event`` and
    ``table`` are added to every record logged while it runs.
    """

    async def wrapper(event: Any):
        ctx = {
            "survey_id": str(survey_id),
            "event": getattr(event, "event", None),
            "table": getattr(event, "table", None),
            "step_name": step_name,
        }
        token = current_context.set(ctx)
        log = get_logger(step_name, survey_id)
        log.debug("start")
        try:
            result = await func(event)
            log.debug("done")
            return result
        except Exception:
            log.exception("failed")
            raise
        finally:
            current_context.reset(token)

    return wrapper

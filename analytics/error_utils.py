from __future__ import annotations

from typing import Any, Dict, Type

from config import Strings
from analytics.logging_utils import get_logger
from analytics.store import StoreError, SurveyNotFoundError
from analytics.change_feed import ChangeFeedError


# Mapping of exception types to user-facing messages; most specific first
EXCEPTION_MESSAGE_MAP: Dict[Type[BaseException], str] = {
    SurveyNotFoundError: Strings.SURVEY_NOT_FOUND,
    StoreError: Strings.STORE_UNAVAILABLE,
    ChangeFeedError: Strings.CONNECTION_FAILED,
}


def map_exception_to_message(exc: BaseException) -> str:
    """Convert a known exception into a user-facing message.

    Unknown exceptions fall back to a safe generic message.
    """

    for etype, message in EXCEPTION_MESSAGE_MAP.items():
        if isinstance(exc, etype):
            return message
    return Strings.TRY_AGAIN_LATER


def exception_category(exc: BaseException) -> str:
    return (
        "store" if isinstance(exc, StoreError)
        else "feed" if isinstance(exc, ChangeFeedError)
        else "unexpected"
    )


def log_exception_categorized(exc: BaseException, **context: Any) -> None:
    """Log an exception with a category and sanitized context.

    Only non-sensitive fields should be provided in context (survey_id,
    subscription_id, event type); never API keys or raw answers.
    """

    category = exception_category(exc)
    log = get_logger(f"error.{category}")
    log.error("operation failed", exc_info=exc, extra={"category": category, **context})


def handle_exception(exc: BaseException, **context: Any) -> str:
    """Log a categorized exception and return a user-facing message."""

    log_exception_categorized(exc, **context)
    return map_exception_to_message(exc)

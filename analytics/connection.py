from __future__ import annotations

import asyncio
from datetime import timedelta
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional

from config import Config, Strings
from config.constants import CLIENT_ACTIVITY_LIMIT, STATUS_COMPLETED, UpdateType
from analytics.error_utils import handle_exception
from analytics.logging_utils import get_logger
from analytics.models import AnalyticsUpdate, RealTimeMetrics
from analytics.realtime import RealTimeAnalytics


class ConnectionState(str, Enum):
    """Lifecycle of a live subscription as seen by a widget."""
    UNSUBSCRIBED = "unsubscribed"
    CONNECTING = "connecting"
    ACTIVE = "active"
    ERROR = "error"
    RECONNECTING = "reconnecting"


def backoff_delay(attempt: int, base: float = 1.0, cap: float = 30.0) -> float:
    """Seconds to wait before retry number ``attempt`` (1-based)."""
    return min(base * (2 ** attempt), cap)


class RealTimeMetricsClient:
    """
    Subscriber-side wrapper around RealTimeAnalytics for one survey.

    Tracks connection state, keeps the latest metrics and a newest-first
    activity list, and retries failed subscriptions with exponential
    backoff. Once the retries are used up it stays in ``error`` until
    ``reconnect()`` is called.
    """

    def __init__(
        self,
        analytics: RealTimeAnalytics,
        survey_id: str,
        on_update: Optional[Callable[[AnalyticsUpdate], Any]] = None,
        on_metrics_change: Optional[Callable[[RealTimeMetrics], Any]] = None,
        max_reconnect_attempts: Optional[int] = None,
        base_delay: Optional[float] = None,
        max_delay: Optional[float] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        if not survey_id:
            raise ValueError("survey_id is required")
        self.analytics = analytics
        self.survey_id = str(survey_id)
        self.on_update = on_update
        self.on_metrics_change = on_metrics_change
        self.max_reconnect_attempts = (
            max_reconnect_attempts if max_reconnect_attempts is not None else Config.RECONNECT_MAX_ATTEMPTS
        )
        self.base_delay = base_delay if base_delay is not None else Config.RECONNECT_BASE_DELAY
        self.max_delay = max_delay if max_delay is not None else Config.RECONNECT_MAX_DELAY
        self._sleep = sleep

        self.state = ConnectionState.UNSUBSCRIBED
        self.connection_error: Optional[str] = None
        self.metrics = RealTimeMetrics()
        self.recent_activity: List[AnalyticsUpdate] = []
        self.reconnect_attempts = 0
        self.subscription_id: Optional[str] = None

    @property
    def is_connected(self) -> bool:
        return self.state == ConnectionState.ACTIVE

    @property
    def status_message(self) -> str:
        """Short text for a connection indicator."""
        if self.state == ConnectionState.ERROR:
            return self.connection_error or Strings.CONNECTION_FAILED
        return {
            ConnectionState.CONNECTING: Strings.CONNECTING,
            ConnectionState.ACTIVE: Strings.CONNECTED,
            ConnectionState.RECONNECTING: Strings.RECONNECTING,
        }.get(self.state, "")

    def _log(self):
        return get_logger("realtime.client", self.survey_id, state=self.state.value)

    # --- Callbacks from the aggregator ---

    def _handle_update(self, update: AnalyticsUpdate) -> None:
        self.recent_activity = [update, *self.recent_activity[: CLIENT_ACTIVITY_LIMIT - 1]]
        if self.on_update:
            self.on_update(update)

    def _handle_metrics(self, metrics: RealTimeMetrics) -> None:
        self.metrics = metrics
        if self.on_metrics_change:
            self.on_metrics_change(metrics)

    # --- Connection control ---

    async def _setup(self) -> None:
        self.connection_error = None
        self.subscription_id = await self.analytics.subscribe_to_survey(
            self.survey_id, self._handle_update, self._handle_metrics
        )
        self.state = ConnectionState.ACTIVE
        self.reconnect_attempts = 0

        initial = self.analytics.get_current_metrics(self.survey_id)
        if initial is not None:
            self.metrics = initial
        activity = list(reversed(self.analytics.get_recent_activity(self.survey_id)))
        self.recent_activity = activity[:CLIENT_ACTIVITY_LIMIT]

    async def connect(self) -> bool:
        """
        Subscribe, retrying with exponential backoff on failure.

        Returns:
            True once connected, False when retries are exhausted
        """
        if self.state == ConnectionState.ACTIVE:
            return True
        self.state = ConnectionState.CONNECTING
        while True:
            try:
                await self._setup()
                self._log().info("connected")
                return True
            except Exception as e:
                self.state = ConnectionState.ERROR
                self.connection_error = handle_exception(
                    e, survey_id=self.survey_id, attempt=self.reconnect_attempts
                )
                if self.reconnect_attempts >= self.max_reconnect_attempts:
                    self._log().error(
                        "reconnect attempts exhausted", extra={"attempts": self.reconnect_attempts}
                    )
                    return False
                self.reconnect_attempts += 1
                delay = backoff_delay(self.reconnect_attempts, self.base_delay, self.max_delay)
                self.state = ConnectionState.RECONNECTING
                self._log().warning(
                    "retrying", extra={"attempt": self.reconnect_attempts, "delay": delay}
                )
                await self._sleep(delay)

    async def close(self) -> None:
        """Unsubscribe and return to the unsubscribed state."""
        if self.subscription_id is not None:
            await self.analytics.unsubscribe_from_survey(self.subscription_id)
            self.subscription_id = None
        self.state = ConnectionState.UNSUBSCRIBED
        self.connection_error = None

    async def reconnect(self) -> bool:
        """Manual reconnect: resets the retry budget."""
        await self.close()
        self.reconnect_attempts = 0
        return await self.connect()

    # --- Activity helpers ---

    def get_activity_by_type(self, update_type: UpdateType) -> List[AnalyticsUpdate]:
        return [a for a in self.recent_activity if a.type == update_type]

    def get_activity_in_time_range(self, minutes: float) -> List[AnalyticsUpdate]:
        cutoff = self.analytics.clock() - timedelta(minutes=minutes)
        return [a for a in self.recent_activity if a.timestamp > cutoff]

    def response_velocity(self) -> int:
        """New responses seen in the last hour."""
        return len(
            [a for a in self.get_activity_in_time_range(60) if a.type == UpdateType.RESPONSE_CREATED]
        )

    def completion_velocity(self) -> int:
        """Responses that switched to completed in the last hour."""
        count = 0
        for activity in self.get_activity_in_time_range(60):
            if activity.type != UpdateType.RESPONSE_UPDATED or not isinstance(activity.data, dict):
                continue
            new = activity.data.get("new")
            if isinstance(new, dict) and new.get("status") == STATUS_COMPLETED:
                count += 1
        return count


class MultiSurveyMonitor:
    """Follows several surveys at once and aggregates their live metrics."""

    def __init__(self, analytics: RealTimeAnalytics) -> None:
        self.analytics = analytics
        self.metrics: Dict[str, RealTimeMetrics] = {}
        self.connections: Dict[str, bool] = {}
        self._subscriptions: Dict[str, str] = {}

    async def set_surveys(self, survey_ids: Iterable[str]) -> None:
        """Subscribe to newly listed surveys and drop the ones no longer listed."""
        wanted = [str(s) for s in survey_ids]

        for survey_id in wanted:
            if survey_id in self._subscriptions:
                continue
            try:
                self._subscriptions[survey_id] = await self.analytics.subscribe_to_survey(
                    survey_id, lambda update: None, self._metrics_setter(survey_id)
                )
            except Exception as e:
                handle_exception(e, survey_id=survey_id)
                self.connections[survey_id] = False
                continue
            self.connections[survey_id] = True
            current = self.analytics.get_current_metrics(survey_id)
            if current is not None:
                self.metrics[survey_id] = current

        for survey_id in list(self._subscriptions):
            if survey_id not in wanted:
                await self._remove(survey_id)
        for survey_id in list(self.connections):
            if survey_id not in wanted:
                self.connections.pop(survey_id, None)

    def _metrics_setter(self, survey_id: str) -> Callable[[RealTimeMetrics], None]:
        def setter(metrics: RealTimeMetrics) -> None:
            self.metrics[survey_id] = metrics
        return setter

    async def _remove(self, survey_id: str) -> None:
        subscription_id = self._subscriptions.pop(survey_id)
        await self.analytics.unsubscribe_from_survey(subscription_id)
        self.metrics.pop(survey_id, None)
        self.connections.pop(survey_id, None)

    async def close(self) -> None:
        for survey_id in list(self._subscriptions):
            await self._remove(survey_id)

    @property
    def total_active_respondents(self) -> int:
        return sum(m.active_respondents for m in self.metrics.values())

    @property
    def total_responses(self) -> int:
        return sum(m.response_count for m in self.metrics.values())

    @property
    def average_completion_rate(self) -> float:
        if not self.metrics:
            return 0
        return sum(m.completion_rate for m in self.metrics.values()) / len(self.metrics)

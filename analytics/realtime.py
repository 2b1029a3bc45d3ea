"""Live per-survey metrics driven by a change feed.

Every change notification triggers a re-query of the recent activity window;
no running counters are kept. Bursts are not coalesced, so each event costs
one query.
"""

from __future__ import annotations

import asyncio
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional

from config import Config
from config.constants import (
    STATUS_IN_PROGRESS,
    TABLE_ANSWERS,
    TABLE_RESPONSES,
    UpdateType,
)
from analytics.activity import ActivityBuffer
from analytics.change_feed import ChangeFeed, ChangeFeedError
from analytics.error_utils import log_exception_categorized
from analytics.logging_utils import get_logger, wrap_handler
from analytics.models import AnalyticsUpdate, ChangeEvent, RealTimeMetrics, ResponseRecord
from analytics.stats import rate
from analytics.store import ResponseStore

AnalyticsCallback = Callable[[AnalyticsUpdate], Any]
MetricsCallback = Callable[[RealTimeMetrics], Any]

# (table, event) -> update type for rows that carry their own survey id
RESPONSE_EVENT_TYPES = {
    (TABLE_RESPONSES, "insert"): UpdateType.RESPONSE_CREATED,
    (TABLE_RESPONSES, "update"): UpdateType.RESPONSE_UPDATED,
    (TABLE_RESPONSES, "delete"): UpdateType.RESPONSE_DELETED,
}


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Subscription:
    subscription_id: str
    survey_id: str
    on_update: AnalyticsCallback
    on_metrics: Optional[MetricsCallback] = None


class RealTimeAnalytics:
    """
    Keeps live metrics and a recent-activity buffer for subscribed surveys.

    One change-feed registration is shared by all subscribers of a survey;
    it is created by the first subscription and removed with the last.
    Metrics and activity for a survey live exactly as long as that
    registration.
    """

    def __init__(
        self,
        store: ResponseStore,
        feed: ChangeFeed,
        activity_window: Optional[timedelta] = None,
        active_respondent_window: Optional[timedelta] = None,
        activity_limit: Optional[int] = None,
        recent_responses_limit: Optional[int] = None,
        cleanup_interval: Optional[float] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.store = store
        self.feed = feed
        self.activity_window = activity_window or timedelta(seconds=Config.ACTIVITY_WINDOW_SECONDS)
        self.active_respondent_window = active_respondent_window or timedelta(
            seconds=Config.ACTIVE_RESPONDENT_WINDOW_SECONDS
        )
        self.activity_limit = activity_limit or Config.ACTIVITY_LIMIT
        self.recent_responses_limit = recent_responses_limit or Config.RECENT_RESPONSES_LIMIT
        self.cleanup_interval = cleanup_interval or Config.CLEANUP_INTERVAL_SECONDS
        self.clock = clock

        self.subscriptions: Dict[str, Subscription] = {}
        self.feed_handles: Dict[str, Any] = {}  # survey_id -> feed registration
        self.current_metrics: Dict[str, RealTimeMetrics] = {}
        self.recent_activity: Dict[str, ActivityBuffer] = {}
        self._survey_locks: Dict[str, asyncio.Lock] = {}
        self._registry_lock = asyncio.Lock()
        self._cleanup_task: Optional[asyncio.Task] = None

    # --- Subscription management ---

    async def subscribe_to_survey(
        self,
        survey_id: str,
        on_update: AnalyticsCallback,
        on_metrics: Optional[MetricsCallback] = None,
    ) -> str:
        """
        Subscribe to live analytics for a survey.

        Args:
            survey_id: Survey to follow
            on_update: Called with every AnalyticsUpdate for the survey
            on_metrics: Optional, called with every refreshed RealTimeMetrics

        Returns:
            Subscription ID to pass to unsubscribe_from_survey

        Raises:
            ChangeFeedError: If the change-feed registration cannot be created
        """
        survey_id = str(survey_id)
        subscription_id = f"analytics_{survey_id}_{uuid.uuid4().hex}"
        log = get_logger("realtime.subscribe", survey_id, subscription_id=subscription_id)

        async with self._registry_lock:
            first = survey_id not in self.feed_handles
            lock = self._survey_locks.setdefault(survey_id, asyncio.Lock())
            if first:
                handler = wrap_handler("realtime.change", survey_id, self._handler_for(survey_id))
                try:
                    self.feed_handles[survey_id] = await self.feed.subscribe(survey_id, handler)
                except ChangeFeedError:
                    self._survey_locks.pop(survey_id, None)
                    raise
                except Exception as e:
                    self._survey_locks.pop(survey_id, None)
                    raise ChangeFeedError(f"could not subscribe to survey {survey_id}") from e
                log.info("feed registered")
            self.subscriptions[subscription_id] = Subscription(
                subscription_id, survey_id, on_update, on_metrics
            )

        log.info("subscribed", extra={"subscribers": self.subscriber_count(survey_id)})
        if first:
            # Events arriving meanwhile queue behind the initial snapshot
            async with lock:
                if self._is_current(survey_id, lock):
                    await self._refresh_metrics(survey_id)
        return subscription_id

    async def unsubscribe_from_survey(self, subscription_id: str) -> bool:
        """
        Remove a subscription; the last one for a survey tears down its feed registration.

        Returns:
            False if the subscription ID is unknown
        """
        async with self._registry_lock:
            subscription = self.subscriptions.pop(subscription_id, None)
            if subscription is None:
                get_logger("realtime.unsubscribe").warning(
                    "unknown subscription", extra={"subscription_id": subscription_id}
                )
                return False

            survey_id = subscription.survey_id
            log = get_logger("realtime.unsubscribe", survey_id, subscription_id=subscription_id)
            if self.subscriber_count(survey_id) == 0:
                await self._teardown(survey_id)
                log.info("feed removed")
            log.info("unsubscribed")
            return True

    async def _teardown(self, survey_id: str) -> None:
        """Drop a survey's registration and state once its in-flight event is done."""
        lock = self._survey_locks.setdefault(survey_id, asyncio.Lock())
        async with lock:
            handle = self.feed_handles.pop(survey_id, None)
            self.current_metrics.pop(survey_id, None)
            self.recent_activity.pop(survey_id, None)
            if self._survey_locks.get(survey_id) is lock:
                del self._survey_locks[survey_id]
        if handle is None:
            return
        try:
            await self.feed.unsubscribe(handle)
        except Exception as e:
            log_exception_categorized(e, survey_id=survey_id, operation="feed.unsubscribe")

    def _is_current(self, survey_id: str, lock: asyncio.Lock) -> bool:
        """True while ``lock`` still guards a registered survey.

        A waiter that queued on the lock of a torn-down registration must
        not touch the state of a later one.
        """
        return survey_id in self.feed_handles and self._survey_locks.get(survey_id) is lock

    def subscriber_count(self, survey_id: str) -> int:
        return sum(1 for s in self.subscriptions.values() if s.survey_id == str(survey_id))

    def is_listening(self, survey_id: str) -> bool:
        return str(survey_id) in self.feed_handles

    def get_current_metrics(self, survey_id: str) -> Optional[RealTimeMetrics]:
        return self.current_metrics.get(str(survey_id))

    def get_recent_activity(self, survey_id: str) -> List[AnalyticsUpdate]:
        """Recent updates for a survey, oldest first."""
        buffer = self.recent_activity.get(str(survey_id))
        return buffer.items() if buffer else []

    # --- Change handling ---

    def _handler_for(self, survey_id: str):
        async def handler(event: ChangeEvent) -> None:
            await self.handle_change(survey_id, event)
        return handler

    async def handle_change(self, survey_id: str, event: ChangeEvent) -> Optional[AnalyticsUpdate]:
        """
        Process one change-feed event for a survey.

        Events for the same survey are handled strictly one at a time, so
        subscribers observe updates in feed order.

        Returns:
            The published update, or None if the event was ignored
        """
        survey_id = str(survey_id)
        if survey_id not in self.feed_handles:
            return None
        lock = self._survey_locks.setdefault(survey_id, asyncio.Lock())
        async with lock:
            if not self._is_current(survey_id, lock):
                return None
            update = await self._build_update(survey_id, event)
            if update is None or not self._is_current(survey_id, lock):
                return None

            metrics = await self._refresh_metrics(survey_id)
            if not self._is_current(survey_id, lock):
                return None
            self._add_to_recent_activity(survey_id, update)
            self._notify_analytics_callbacks(survey_id, update)
            if metrics is not None:
                self._notify_metrics_callbacks(survey_id, metrics)
            return update

    async def _build_update(self, survey_id: str, event: ChangeEvent) -> Optional[AnalyticsUpdate]:
        log = get_logger("realtime.change", survey_id)
        now = self.clock()

        update_type = RESPONSE_EVENT_TYPES.get((event.table, event.event))
        if update_type is not None:
            if update_type is UpdateType.RESPONSE_UPDATED:
                data: Any = {"old": event.old, "new": event.new}
            elif update_type is UpdateType.RESPONSE_DELETED:
                data = event.old or event.new
            else:
                data = event.new
            return AnalyticsUpdate(type=update_type, data=data, timestamp=now, survey_id=survey_id)

        if event.table == TABLE_ANSWERS and event.event == "insert":
            response_id = event.new.get("response_id")
            if response_id is None:
                log.debug("answer without response id")
                return None
            try:
                owner = await self.store.get_response_survey_id(str(response_id))
            except Exception as e:
                log_exception_categorized(e, survey_id=survey_id, operation="resolve_answer")
                return None
            if owner != survey_id:
                return None
            # An answer insert counts as an update of its response
            return AnalyticsUpdate(
                type=UpdateType.RESPONSE_UPDATED, data=event.new, timestamp=now, survey_id=survey_id
            )

        log.debug("ignored event")
        return None

    async def _refresh_metrics(self, survey_id: str) -> Optional[RealTimeMetrics]:
        """Re-query the activity window and replace the survey's metrics.

        On failure the previous snapshot is kept and None is returned.
        """
        now = self.clock()
        try:
            responses = await self.store.fetch_responses_since(survey_id, now - self.activity_window)
        except Exception as e:
            log_exception_categorized(e, survey_id=survey_id, operation="refresh_metrics")
            get_logger("realtime.metrics", survey_id).warning("re-query failed, keeping previous metrics")
            return None

        previous = self.current_metrics.get(survey_id)
        metrics = self.compute_metrics(responses, now, previous)
        if survey_id in self.feed_handles:
            self.current_metrics[survey_id] = metrics
        get_logger("realtime.metrics", survey_id).debug(
            "metrics refreshed",
            extra={"response_count": metrics.response_count, "active": metrics.active_respondents},
        )
        return metrics

    def compute_metrics(
        self,
        responses: List[ResponseRecord],
        now: datetime,
        previous: Optional[RealTimeMetrics] = None,
    ) -> RealTimeMetrics:
        """Derive live metrics from the responses of the activity window."""
        response_count = len(responses)
        completed = sum(1 for r in responses if r.is_completed)
        active_since = now - self.active_respondent_window
        active = sum(
            1
            for r in responses
            if r.status == STATUS_IN_PROGRESS and r.created_at is not None and r.created_at > active_since
        )
        created = [r.created_at for r in responses if r.created_at is not None]
        last_response_time = max(created) if created else (previous.last_response_time if previous else None)

        return RealTimeMetrics(
            active_respondents=active,
            response_count=response_count,
            last_response_time=last_response_time,
            recent_responses=list(responses[-self.recent_responses_limit:]),
            completion_rate=rate(completed, response_count),
        )

    def _add_to_recent_activity(self, survey_id: str, update: AnalyticsUpdate) -> None:
        buffer = self.recent_activity.get(survey_id)
        if buffer is None:
            buffer = ActivityBuffer(self.activity_window, self.activity_limit)
            self.recent_activity[survey_id] = buffer
        buffer.append(update, self.clock())

    def _callbacks(self, survey_id: str) -> List[Subscription]:
        return [s for s in list(self.subscriptions.values()) if s.survey_id == survey_id]

    def _notify_analytics_callbacks(self, survey_id: str, update: AnalyticsUpdate) -> None:
        for subscription in self._callbacks(survey_id):
            try:
                subscription.on_update(update)
            except Exception:
                get_logger("realtime.callback", survey_id).exception(
                    "analytics callback failed",
                    extra={"subscription_id": subscription.subscription_id},
                )

    def _notify_metrics_callbacks(self, survey_id: str, metrics: RealTimeMetrics) -> None:
        for subscription in self._callbacks(survey_id):
            if subscription.on_metrics is None:
                continue
            try:
                subscription.on_metrics(metrics)
            except Exception:
                get_logger("realtime.callback", survey_id).exception(
                    "metrics callback failed",
                    extra={"subscription_id": subscription.subscription_id},
                )

    # --- Housekeeping ---

    def cleanup_activity(self, now: Optional[datetime] = None) -> int:
        """
        Drop activity older than the window; surveys left with none are removed.

        Returns:
            Number of updates removed
        """
        now = now or self.clock()
        removed = 0
        for survey_id, buffer in list(self.recent_activity.items()):
            removed += buffer.prune(now)
            if not buffer:
                del self.recent_activity[survey_id]
        if removed:
            get_logger("realtime.cleanup").debug("pruned activity", extra={"removed": removed})
        return removed

    async def _cleanup_loop(self) -> None:
        while True:
            await asyncio.sleep(self.cleanup_interval)
            try:
                self.cleanup_activity()
            except Exception:
                get_logger("realtime.cleanup").exception("cleanup failed")

    def start(self) -> None:
        """Start the periodic activity sweep on the running event loop."""
        if self._cleanup_task is None or self._cleanup_task.done():
            self._cleanup_task = asyncio.create_task(self._cleanup_loop())
            get_logger("realtime").info("cleanup started", extra={"interval": self.cleanup_interval})

    async def dispose(self) -> None:
        """Stop housekeeping, remove every feed registration and clear all state."""
        if self._cleanup_task is not None:
            self._cleanup_task.cancel()
            try:
                await self._cleanup_task
            except asyncio.CancelledError:
                pass
            self._cleanup_task = None

        async with self._registry_lock:
            for survey_id in list(self.feed_handles):
                await self._teardown(survey_id)
            self.subscriptions.clear()
            self.current_metrics.clear()
            self.recent_activity.clear()
            self._survey_locks.clear()
        get_logger("realtime").info("disposed")

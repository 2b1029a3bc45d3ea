from __future__ import annotations

from collections import deque
from datetime import datetime, timedelta
from typing import Deque, List

from analytics.models import AnalyticsUpdate


class ActivityBuffer:
    """
    Recent analytics updates for one survey, bounded by count and age.

    Updates are appended in arrival order, so the oldest entry is always on
    the left and eviction is a ``popleft``.
    """

    def __init__(self, window: timedelta, limit: int = 100) -> None:
        self.window = window
        self.limit = limit
        self._items: Deque[AnalyticsUpdate] = deque(maxlen=limit)

    def append(self, update: AnalyticsUpdate, now: datetime) -> None:
        """Add an update and drop whatever has fallen out of the window."""
        self._items.append(update)
        self.prune(now)

    def prune(self, now: datetime) -> int:
        """
        Remove updates older than the activity window.

        Returns:
            Number of updates removed
        """
        cutoff = now - self.window
        removed = 0
        while self._items and self._items[0].timestamp <= cutoff:
            self._items.popleft()
            removed += 1
        return removed

    def items(self) -> List[AnalyticsUpdate]:
        return list(self._items)

    def __len__(self) -> int:
        return len(self._items)

    def __bool__(self) -> bool:
        return bool(self._items)

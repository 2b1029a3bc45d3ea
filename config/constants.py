from enum import Enum
from typing import Dict, Tuple

# Completion durations at or above this many seconds are treated as bad data
MAX_COMPLETION_SECONDS = 3600

# Upper bounds (exclusive, seconds) and labels of the completion-time bands.
# The last band has no upper bound.
TIME_BUCKETS: Tuple[Tuple[float, str], ...] = (
    (60, "under1min"),
    (180, "1to3min"),
    (300, "3to5min"),
    (600, "5to10min"),
    (float("inf"), "over10min"),
)
TIME_BUCKET_LABELS: Tuple[str, ...] = tuple(label for _, label in TIME_BUCKETS)

# User-agent keywords, checked in this order; first match wins
MOBILE_KEYWORDS = ("mobile", "android", "iphone")
TABLET_KEYWORDS = ("ipad", "tablet")
DESKTOP_KEYWORDS = ("windows", "mac", "linux")

# Response statuses as stored by the survey application
STATUS_COMPLETED = "completed"
STATUS_IN_PROGRESS = "in_progress"


class UpdateType(str, Enum):
    """Kinds of realtime analytics updates."""
    RESPONSE_CREATED = "response_created"
    RESPONSE_UPDATED = "response_updated"
    RESPONSE_DELETED = "response_deleted"


# Change-feed tables the aggregator listens to
TABLE_RESPONSES = "responses"
TABLE_ANSWERS = "answers"

# Realtime payload event names normalized to lower case
FEED_EVENTS: Dict[str, str] = {
    "INSERT": "insert",
    "UPDATE": "update",
    "DELETE": "delete",
}

# Client-side activity feed size (newest first)
CLIENT_ACTIVITY_LIMIT = 50

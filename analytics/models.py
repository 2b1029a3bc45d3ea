from __future__ import annotations

import json
from dataclasses import dataclass, field, asdict
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

from config.constants import (
    FEED_EVENTS,
    STATUS_COMPLETED,
    TIME_BUCKET_LABELS,
    UpdateType,
)

AnswerValue = Union[str, int, float, List[str], Dict[str, str]]


class QuestionType(str, Enum):
    """Question types a survey can contain."""
    TEXT = "text"
    TEXTAREA = "textarea"
    SINGLE_CHOICE = "single_choice"
    MULTIPLE_CHOICE = "multiple_choice"
    RATING = "rating"
    DATE = "date"
    MATRIX = "matrix"


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Coerce a stored timestamp into an aware UTC ``datetime``.

    Accepts ``datetime`` objects, ISO-8601 strings (with or without a
    trailing ``Z``) and epoch seconds. Anything else yields ``None``.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, (int, float)) and not isinstance(value, bool):
        try:
            return datetime.fromtimestamp(value, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    elif isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            dt = datetime.fromisoformat(text)
        except ValueError:
            return None
    else:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def _parse_seconds(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _parse_json_object(value: Any) -> Dict[str, Any]:
    if isinstance(value, str):
        try:
            value = json.loads(value)
        except ValueError:
            return {}
    if isinstance(value, Mapping):
        return {str(k): v for k, v in value.items()}
    return {}


def _isoformat(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


@dataclass(frozen=True)
class Question:
    """A single survey question."""

    id: str
    type: Union[QuestionType, str]
    required: bool = False
    settings: Dict[str, Any] = field(default_factory=dict)
    text: str = ""

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Question":
        raw_type = data.get("question_type", data.get("type", ""))
        try:
            qtype: Union[QuestionType, str] = QuestionType(raw_type)
        except ValueError:
            # Unknown types are carried as-is; analytics does not depend on them
            qtype = str(raw_type)
        return cls(
            id=str(data["id"]),
            type=qtype,
            required=bool(data.get("is_required", data.get("required", False))),
            settings=_parse_json_object(data.get("settings")),
            text=str(data.get("question_text", data.get("text")) or ""),
        )


@dataclass(frozen=True)
class SurveySchema:
    """Ordered questions of a survey."""

    survey_id: str
    questions: Tuple[Question, ...] = ()
    title: str = ""

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "SurveySchema":
        """Build a schema from a stored survey row with nested questions.

        Questions are sorted by ``order_index`` when present, otherwise kept
        in the given order.
        """
        raw_questions = list(data.get("questions") or [])
        raw_questions.sort(key=lambda q: q.get("order_index", 0) or 0)
        return cls(
            survey_id=str(data.get("id", data.get("survey_id", ""))),
            questions=tuple(Question.from_dict(q) for q in raw_questions),
            title=str(data.get("title") or ""),
        )


@dataclass(frozen=True)
class ResponseRecord:
    """One respondent's submission (complete or not)."""

    id: str
    created_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    submitted_at: Optional[datetime] = None
    time_spent: Optional[float] = None
    user_agent: Optional[str] = None
    status: Optional[str] = None
    answers: Dict[str, AnswerValue] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ResponseRecord":
        """Build a record from a store row. Malformed optional fields become ``None``."""
        answers = data.get("response_data")
        if answers is None:
            answers = data.get("answers")
        user_agent = data.get("user_agent")
        return cls(
            id=str(data.get("id", "")),
            created_at=parse_timestamp(data.get("created_at")),
            started_at=parse_timestamp(data.get("started_at")),
            completed_at=parse_timestamp(data.get("completed_at")),
            submitted_at=parse_timestamp(data.get("submitted_at")),
            time_spent=_parse_seconds(data.get("time_spent")),
            user_agent=user_agent if isinstance(user_agent, str) else None,
            status=data.get("status"),
            answers=_parse_json_object(answers),
        )

    @property
    def is_completed(self) -> bool:
        return self.status == STATUS_COMPLETED or bool(self.completed_at or self.submitted_at)

    @property
    def finished_at(self) -> Optional[datetime]:
        return self.completed_at or self.submitted_at

    @property
    def timestamp(self) -> Optional[datetime]:
        """When the response was created, falling back to when it was started."""
        return self.created_at or self.started_at

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "createdAt": _isoformat(self.created_at),
            "startedAt": _isoformat(self.started_at),
            "completedAt": _isoformat(self.completed_at),
            "submittedAt": _isoformat(self.submitted_at),
            "timeSpent": self.time_spent,
            "userAgent": self.user_agent,
            "status": self.status,
            "answers": dict(self.answers),
        }


@dataclass(frozen=True)
class QuestionMetric:
    question_id: str
    question: str
    response_rate: float
    avg_time: float
    drop_off_rate: float
    answered_count: int
    skipped_count: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "questionId": self.question_id,
            "question": self.question,
            "responseRate": self.response_rate,
            "avgTime": self.avg_time,
            "dropOffRate": self.drop_off_rate,
            "answeredCount": self.answered_count,
            "skippedCount": self.skipped_count,
        }


@dataclass(frozen=True)
class TrendData:
    date: date
    count: int
    label: str

    def to_dict(self) -> Dict[str, Any]:
        return {"date": self.date.isoformat(), "count": self.count, "label": self.label}


@dataclass(frozen=True)
class DeviceData:
    mobile: int = 0
    desktop: int = 0
    tablet: int = 0
    unknown: int = 0

    @property
    def total(self) -> int:
        return self.mobile + self.desktop + self.tablet + self.unknown

    def to_dict(self) -> Dict[str, int]:
        return asdict(self)


@dataclass(frozen=True)
class DropOffData:
    question_index: int
    drop_off_count: int
    drop_off_rate: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "questionIndex": self.question_index,
            "dropOffCount": self.drop_off_count,
            "dropOffRate": self.drop_off_rate,
        }


@dataclass(frozen=True)
class TimeDistribution:
    """Completion-time histogram, addressable by UI label (``dist["1to3min"]``)."""

    under_1min: int = 0
    one_to_3min: int = 0
    three_to_5min: int = 0
    five_to_10min: int = 0
    over_10min: int = 0

    @classmethod
    def from_counts(cls, counts: Mapping[str, int]) -> "TimeDistribution":
        return cls(*(counts.get(label, 0) for label in TIME_BUCKET_LABELS))

    def to_dict(self) -> Dict[str, int]:
        values = (
            self.under_1min,
            self.one_to_3min,
            self.three_to_5min,
            self.five_to_10min,
            self.over_10min,
        )
        return dict(zip(TIME_BUCKET_LABELS, values))

    def __getitem__(self, label: str) -> int:
        return self.to_dict()[label]

    @property
    def total(self) -> int:
        return sum(self.to_dict().values())


@dataclass(frozen=True)
class ResponseAnalysis:
    """Complete statistics derived from one snapshot of a survey's responses."""

    total_responses: int
    completed_responses: int
    completion_rate: float
    avg_completion_time: float
    median_completion_time: float
    response_velocity: float
    question_metrics: List[QuestionMetric]
    trends_data: List[TrendData]
    device_distribution: DeviceData
    drop_off_analysis: List[DropOffData]
    response_time_distribution: TimeDistribution
    completion_time_summary: Dict[str, float] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "totalResponses": self.total_responses,
            "completedResponses": self.completed_responses,
            "completionRate": self.completion_rate,
            "avgCompletionTime": self.avg_completion_time,
            "medianCompletionTime": self.median_completion_time,
            "responseVelocity": self.response_velocity,
            "questionMetrics": [m.to_dict() for m in self.question_metrics],
            "trendsData": [t.to_dict() for t in self.trends_data],
            "deviceDistribution": self.device_distribution.to_dict(),
            "dropOffAnalysis": [d.to_dict() for d in self.drop_off_analysis],
            "responseTimeDistribution": self.response_time_distribution.to_dict(),
            "completionTimeSummary": dict(self.completion_time_summary),
        }


@dataclass
class RealTimeMetrics:
    """Live metrics for one survey, recomputed from the recent activity window."""

    active_respondents: int = 0
    response_count: int = 0
    last_response_time: Optional[datetime] = None
    recent_responses: List[ResponseRecord] = field(default_factory=list)
    completion_rate: float = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "activeRespondents": self.active_respondents,
            "responseCount": self.response_count,
            "lastResponseTime": _isoformat(self.last_response_time),
            "recentResponses": [r.to_dict() for r in self.recent_responses],
            "completionRate": self.completion_rate,
        }


@dataclass(frozen=True)
class AnalyticsUpdate:
    """A discrete change observed on a survey, kept for activity feeds."""

    type: UpdateType
    data: Any
    timestamp: datetime
    survey_id: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type.value,
            "data": self.data,
            "timestamp": self.timestamp.isoformat(),
            "surveyId": self.survey_id,
        }


@dataclass(frozen=True)
class ChangeEvent:
    """A row-level change delivered by the change feed."""

    event: str
    table: str
    new: Dict[str, Any] = field(default_factory=dict)
    old: Optional[Dict[str, Any]] = None

    @classmethod
    def from_payload(cls, data: Mapping[str, Any]) -> "ChangeEvent":
        """Validate and construct a ChangeEvent from a raw realtime payload.

        Accepts ``eventType``/``type``/``event`` for the operation and
        ``new``/``record`` and ``old``/``old_record`` for the rows.
        """
        raw_event = data.get("eventType") or data.get("type") or data.get("event")
        if not raw_event or not isinstance(raw_event, str):
            raise ValueError("event type is required")
        event = FEED_EVENTS.get(raw_event.upper())
        if event is None:
            raise ValueError(f"unsupported event type: {raw_event}")

        table = data.get("table")
        if not table or not isinstance(table, str):
            raise ValueError("table is required")

        new = data.get("new")
        if new is None:
            new = data.get("record")
        old = data.get("old")
        if old is None:
            old = data.get("old_record")
        if new is not None and not isinstance(new, Mapping):
            raise ValueError("new must be an object")
        if old is not None and not isinstance(old, Mapping):
            raise ValueError("old must be an object")

        return cls(
            event=event,
            table=table,
            new=dict(new or {}),
            old=dict(old) if old is not None else None,
        )

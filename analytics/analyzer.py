"""Batch analysis of a survey's responses.

``analyze_responses`` is a pure function over an in-memory snapshot: it
never performs I/O and never raises on malformed response data. Missing or
broken optional fields simply contribute nothing to the affected statistic.

Two drop-off figures are produced and they intentionally differ:

* ``QuestionMetric.drop_off_rate`` compares the answered counts of adjacent
  questions only.
* ``DropOffData`` counts a response as having reached question ``i`` only if
  every question ``0..i`` has a non-empty answer.
"""

from __future__ import annotations

import math
from collections import Counter
from datetime import datetime, timedelta, timezone, tzinfo
from typing import Any, Iterable, List, Optional, Sequence

import pytz

from config import Config
from config.constants import MAX_COMPLETION_SECONDS
from analytics.devices import DeviceCategory, DeviceClassifier, default_classifier
from analytics.models import (
    DeviceData,
    DropOffData,
    QuestionMetric,
    ResponseAnalysis,
    ResponseRecord,
    SurveySchema,
    TimeDistribution,
    TrendData,
)
from analytics.stats import (
    bucket_durations,
    calculate_average,
    calculate_median,
    days_between,
    describe,
    rate,
)


def analyze_responses(
    schema: SurveySchema,
    responses: Sequence[ResponseRecord],
    trend_window_days: int = 30,
    now: Optional[datetime] = None,
    tz: Optional[tzinfo] = None,
    classifier: Optional[DeviceClassifier] = None,
) -> ResponseAnalysis:
    """
    Derive the full response analysis for a survey.

    Args:
        schema: Survey questions in display order
        responses: Every response record to analyze
        trend_window_days: Number of calendar days in the trend series
        now: End of the trend window (defaults to the current UTC time)
        tz: Timezone defining calendar days (defaults to ``Config.TIMEZONE``)
        classifier: Device classifier (defaults to user-agent keyword sniffing)

    Returns:
        ResponseAnalysis for the given snapshot
    """
    total_responses = len(responses)
    completed_responses = sum(1 for r in responses if r.is_completed)

    completion_times = calculate_completion_times(responses)
    avg_completion_time = calculate_average(completion_times)

    return ResponseAnalysis(
        total_responses=total_responses,
        completed_responses=completed_responses,
        completion_rate=rate(completed_responses, total_responses),
        avg_completion_time=avg_completion_time,
        median_completion_time=calculate_median(completion_times),
        response_velocity=calculate_response_velocity(responses),
        question_metrics=calculate_question_metrics(schema, responses, avg_completion_time),
        trends_data=calculate_trends(responses, trend_window_days, now=now, tz=tz),
        device_distribution=calculate_device_distribution(responses, classifier),
        drop_off_analysis=calculate_drop_off_analysis(schema, responses),
        response_time_distribution=calculate_time_distribution(completion_times),
        completion_time_summary=describe(completion_times),
    )


def completion_seconds(response: ResponseRecord) -> Optional[float]:
    """Duration of a response in seconds, or None when it cannot be derived."""
    if response.time_spent:
        return response.time_spent
    finished = response.finished_at
    if response.started_at and finished:
        return math.floor((finished - response.started_at).total_seconds())
    return None


def calculate_completion_times(responses: Iterable[ResponseRecord]) -> List[float]:
    """Completion durations with non-positive and hour-plus outliers removed."""
    times = []
    for response in responses:
        seconds = completion_seconds(response)
        if seconds is not None and 0 < seconds < MAX_COMPLETION_SECONDS:
            times.append(seconds)
    return times


def calculate_response_velocity(responses: Sequence[ResponseRecord]) -> float:
    """Responses per day across the span of response timestamps."""
    if not responses:
        return 0
    if len(responses) == 1:
        return 1

    stamps = sorted(r.timestamp for r in responses if r.timestamp is not None)
    if len(stamps) < 2:
        return len(responses)
    span = max(1.0, days_between(stamps[0], stamps[-1]))
    return len(responses) / span


def is_answered(answers: dict, question_id: str) -> bool:
    """True when an answer is present and is neither None nor an empty string."""
    value = answers.get(question_id)
    return value is not None and value != ""


def has_content(answers: dict, question_id: str) -> bool:
    """Stricter than ``is_answered``: empty selections and matrices do not count."""
    if not is_answered(answers, question_id):
        return False
    value: Any = answers[question_id]
    if isinstance(value, (list, tuple, dict)):
        return len(value) > 0
    return True


def calculate_question_metrics(
    schema: SurveySchema,
    responses: Sequence[ResponseRecord],
    avg_completion_time: Optional[float] = None,
) -> List[QuestionMetric]:
    """Per-question response and adjacent drop-off rates, in schema order."""
    total = len(responses)
    questions = schema.questions
    answered_counts = [
        sum(1 for r in responses if is_answered(r.answers, q.id)) for q in questions
    ]

    if avg_completion_time is None:
        avg_completion_time = calculate_average(calculate_completion_times(responses))
    # Approximation: no per-question timer exists, so the overall time is split evenly
    avg_time = avg_completion_time / len(questions) if total and questions else 0

    metrics = []
    for index, question in enumerate(questions):
        answered = answered_counts[index]
        drop_off_rate = 0.0
        if index > 0:
            previous = answered_counts[index - 1]
            drop_off_rate = rate(previous - answered, previous)
        metrics.append(
            QuestionMetric(
                question_id=question.id,
                question=question.text,
                response_rate=rate(answered, total),
                avg_time=avg_time,
                drop_off_rate=drop_off_rate,
                answered_count=answered,
                skipped_count=total - answered,
            )
        )
    return metrics


def calculate_trends(
    responses: Iterable[ResponseRecord],
    days: int,
    now: Optional[datetime] = None,
    tz: Optional[tzinfo] = None,
) -> List[TrendData]:
    """Daily response counts for the last ``days`` calendar days, oldest first."""
    if days <= 0:
        return []
    tz = tz or pytz.timezone(Config.TIMEZONE)
    now = now or datetime.now(timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    today = now.astimezone(tz).date()

    per_day = Counter(
        r.timestamp.astimezone(tz).date() for r in responses if r.timestamp is not None
    )

    trends = []
    for offset in range(days - 1, -1, -1):
        day = today - timedelta(days=offset)
        trends.append(TrendData(date=day, count=per_day.get(day, 0), label=format_day_label(day)))
    return trends


def format_day_label(day) -> str:
    """Short label such as ``Oct 7``."""
    return f"{day.strftime('%b')} {day.day}"


def calculate_device_distribution(
    responses: Iterable[ResponseRecord],
    classifier: Optional[DeviceClassifier] = None,
) -> DeviceData:
    """Count responses per device category; every response lands in exactly one."""
    classifier = classifier or default_classifier
    counts = Counter(classifier.classify(r.user_agent) for r in responses)
    return DeviceData(
        mobile=counts[DeviceCategory.MOBILE],
        desktop=counts[DeviceCategory.DESKTOP],
        tablet=counts[DeviceCategory.TABLET],
        unknown=counts[DeviceCategory.UNKNOWN],
    )


def calculate_drop_off_analysis(
    schema: SurveySchema,
    responses: Sequence[ResponseRecord],
) -> List[DropOffData]:
    """Cumulative drop-off: how many responses stop before each question."""
    analysis = []
    reached = list(responses)
    for index, question in enumerate(schema.questions):
        previous = len(reached)
        reached = [r for r in reached if has_content(r.answers, question.id)]
        dropped = previous - len(reached)
        analysis.append(
            DropOffData(
                question_index=index,
                drop_off_count=dropped,
                drop_off_rate=rate(dropped, previous),
            )
        )
    return analysis


def calculate_time_distribution(completion_times: Iterable[float]) -> TimeDistribution:
    return TimeDistribution.from_counts(bucket_durations(completion_times))

import sys
from datetime import datetime, timezone
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parent.parent
sys.path.append(str(ROOT))

from analytics.models import (
    ChangeEvent,
    QuestionType,
    ResponseRecord,
    SurveySchema,
    TimeDistribution,
    parse_timestamp,
)


def test_parse_timestamp_variants():
    expected = datetime(2026, 10, 17, 12, 0, tzinfo=timezone.utc)

    assert parse_timestamp("2026-10-17T12:00:00Z") == expected
    assert parse_timestamp("2026-10-17T14:00:00+02:00") == expected
    assert parse_timestamp("2026-10-17T12:00:00") == expected
    assert parse_timestamp(datetime(2026, 10, 17, 12, 0)) == expected
    assert parse_timestamp(expected.timestamp()) == expected
    assert parse_timestamp("not a date") is None
    assert parse_timestamp("") is None
    assert parse_timestamp(None) is None
    assert parse_timestamp(True) is None


def test_response_record_from_row():
    row = {
        "id": 42,
        "created_at": "2026-10-17T11:58:00Z",
        "started_at": "2026-10-17T11:58:00Z",
        "completed_at": "2026-10-17T12:00:05Z",
        "time_spent": "125",
        "user_agent": "Mozilla/5.0 (iPhone)",
        "status": "completed",
        "response_data": '{"q1": "yes", "q2": ["a", "b"]}',
    }

    record = ResponseRecord.from_dict(row)

    assert record.id == "42"
    assert record.time_spent == 125
    assert record.answers == {"q1": "yes", "q2": ["a", "b"]}
    assert record.is_completed
    assert record.finished_at == datetime(2026, 10, 17, 12, 0, 5, tzinfo=timezone.utc)
    assert record.to_dict()["userAgent"] == "Mozilla/5.0 (iPhone)"


def test_response_record_tolerates_broken_fields():
    record = ResponseRecord.from_dict(
        {
            "id": "r1",
            "created_at": "yesterday",
            "time_spent": "abc",
            "user_agent": 12,
            "response_data": "{broken",
        }
    )

    assert record.created_at is None
    assert record.time_spent is None
    assert record.user_agent is None
    assert record.answers == {}
    assert not record.is_completed


def test_submitted_at_marks_completion():
    record = ResponseRecord.from_dict({"id": "r1", "submitted_at": "2026-10-17T12:00:00Z"})
    assert record.is_completed


def test_survey_schema_sorted_by_order_index():
    schema = SurveySchema.from_dict(
        {
            "id": "s1",
            "title": "Feedback",
            "questions": [
                {"id": "q2", "question_type": "rating", "order_index": 2, "settings": '{"max": 5}'},
                {"id": "q1", "question_type": "text", "order_index": 1, "is_required": 1},
                {"id": "q3", "question_type": "slider", "order_index": 3},
            ],
        }
    )

    assert [q.id for q in schema.questions] == ["q1", "q2", "q3"]
    assert schema.questions[0].required is True
    assert schema.questions[1].type is QuestionType.RATING
    assert schema.questions[1].settings == {"max": 5}
    assert schema.questions[2].type == "slider"


def test_time_distribution_label_access():
    dist = TimeDistribution.from_counts({"1to3min": 2, "over10min": 1})

    assert dist["1to3min"] == 2
    assert dist.over_10min == 1
    assert dist.total == 3
    with pytest.raises(KeyError):
        dist["forever"]


def test_change_event_from_realtime_payload():
    event = ChangeEvent.from_payload(
        {"eventType": "UPDATE", "table": "responses", "new": {"id": "r1"}, "old": {"id": "r1", "status": "in_progress"}}
    )

    assert event.event == "update"
    assert event.table == "responses"
    assert event.old["status"] == "in_progress"


def test_change_event_alternate_keys():
    event = ChangeEvent.from_payload({"type": "insert", "table": "answers", "record": {"response_id": "r1"}})

    assert event.event == "insert"
    assert event.new == {"response_id": "r1"}
    assert event.old is None


@pytest.mark.parametrize(
    "payload",
    [
        {"table": "responses"},
        {"eventType": "TRUNCATE", "table": "responses"},
        {"eventType": "INSERT"},
        {"eventType": "INSERT", "table": "responses", "new": ["not", "a", "row"]},
        {"eventType": "DELETE", "table": "responses", "old": "r1"},
    ],
)
def test_change_event_rejects_bad_payloads(payload):
    with pytest.raises(ValueError):
        ChangeEvent.from_payload(payload)

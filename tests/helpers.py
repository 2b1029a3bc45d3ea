"""Shared builders and in-memory stand-ins for the analytics tests."""

import asyncio
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Dict, List, Optional

ROOT = Path(__file__).resolve().parent.parent
sys.path.append(str(ROOT))

from analytics.models import Question, ResponseRecord, SurveySchema
from analytics.store import StoreError

NOW = datetime(2026, 10, 17, 12, 0, 0, tzinfo=timezone.utc)

IPHONE_UA = "Mozilla/5.0 (iPhone; CPU iPhone OS 14_0 like Mac OS X) AppleWebKit/605.1.15"
ANDROID_UA = "Mozilla/5.0 (Linux; Android 13; Pixel 7) AppleWebKit/537.36 Mobile Safari/537.36"
IPAD_UA = "Mozilla/5.0 (iPad; CPU OS 14_0 like Mac OS X) AppleWebKit/605.1.15"
WINDOWS_UA = "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 Chrome/120.0"


def make_schema(*question_ids: str, survey_id: str = "survey-1") -> SurveySchema:
    return SurveySchema(
        survey_id=survey_id,
        questions=tuple(
            Question(id=qid, type="text", text=f"Question {qid}") for qid in question_ids
        ),
    )


def make_response(
    response_id: str,
    answers: Optional[Dict] = None,
    created_at: Optional[datetime] = NOW,
    **fields,
) -> ResponseRecord:
    return ResponseRecord(
        id=response_id,
        created_at=created_at,
        answers=answers or {},
        **fields,
    )


class FakeClock:
    def __init__(self, now: datetime = NOW) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class FakeStore:
    """Response store keeping rows per survey in memory."""

    def __init__(self) -> None:
        self.responses: Dict[str, List[ResponseRecord]] = {}
        self.schemas: Dict[str, SurveySchema] = {}
        self.owners: Dict[str, str] = {}
        self.fail = False
        self.delays: List[float] = []
        self.since_calls: List[datetime] = []

    def add(self, survey_id: str, record: ResponseRecord) -> None:
        self.responses.setdefault(survey_id, []).append(record)
        self.owners[record.id] = survey_id

    async def _maybe_fail(self) -> None:
        if self.delays:
            await asyncio.sleep(self.delays.pop(0))
        if self.fail:
            raise StoreError("store unavailable")

    async def fetch_schema(self, survey_id: str) -> SurveySchema:
        await self._maybe_fail()
        return self.schemas[survey_id]

    async def fetch_responses(self, survey_id: str) -> List[ResponseRecord]:
        await self._maybe_fail()
        return list(self.responses.get(survey_id, []))

    async def fetch_responses_since(self, survey_id: str, since: datetime) -> List[ResponseRecord]:
        self.since_calls.append(since)
        # rows are read before any delay, like a query that was already sent
        rows = [
            r for r in self.responses.get(survey_id, [])
            if r.created_at is not None and r.created_at >= since
        ]
        await self._maybe_fail()
        return rows

    async def get_response_survey_id(self, response_id: str) -> Optional[str]:
        await self._maybe_fail()
        return self.owners.get(response_id)

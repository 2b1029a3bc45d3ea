from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, List, Optional, Protocol

from cachetools import TTLCache
from databases import Database

from config import Config
from analytics.logging_utils import get_logger
from analytics.models import ResponseRecord, SurveySchema

RESPONSE_COLUMNS = (
    "id, survey_id, status, created_at, started_at, completed_at, submitted_at, "
    "time_spent, user_agent, response_data"
)


class StoreError(Exception):
    """Raised when survey data cannot be read from the backing store."""


class SurveyNotFoundError(StoreError):
    """Raised when the requested survey does not exist."""


class ResponseStore(Protocol):
    """Read-only queries the analytics core needs from the backing store."""

    async def fetch_schema(self, survey_id: str) -> SurveySchema:
        ...

    async def fetch_responses(self, survey_id: str) -> List[ResponseRecord]:
        ...

    async def fetch_responses_since(self, survey_id: str, since: datetime) -> List[ResponseRecord]:
        ...

    async def get_response_survey_id(self, response_id: str) -> Optional[str]:
        ...


class SqlResponseStore:
    """Asynchronous interface to the ``surveys``, ``questions`` and ``responses`` tables."""

    def __init__(
        self,
        database_url: str,
        db: Optional[Database] = None,
        cache_ttl: Optional[int] = None,
    ) -> None:
        self.database_url = database_url
        self.db = db or Database(database_url)
        self._survey_by_response: TTLCache = TTLCache(
            maxsize=4096, ttl=cache_ttl if cache_ttl is not None else Config.RESPONSE_CACHE_TTL
        )

    async def _connect(self) -> None:
        if not self.db.is_connected:
            await self.db.connect()

    async def close(self) -> None:
        if self.db.is_connected:
            await self.db.disconnect()

    def _timestamp_param(self, value: datetime) -> Any:
        """Postgres drivers take datetimes; sqlite takes ISO strings."""
        value = value.astimezone(timezone.utc)
        if self.database_url.startswith("postgres"):
            return value
        return value.isoformat()

    def _timestamp_expr(self, column: str) -> str:
        """SQL expression that orders ``column`` by instant rather than by text.

        sqlite stores timestamps as text in mixed ISO shapes (``T`` or space,
        ``Z`` or an offset), so it compares them through ``julianday``.
        """
        if self.database_url.startswith("sqlite"):
            return f"julianday({column})"
        return column

    async def _fetch_all(self, query: str, params: dict) -> List[dict]:
        await self._connect()
        try:
            rows = await self.db.fetch_all(query, params)
        except Exception as e:
            raise StoreError(f"query failed: {e}") from e
        return [dict(r) for r in rows]

    async def fetch_schema(self, survey_id: str) -> SurveySchema:
        """Return the survey's questions ordered by ``order_index``."""

        surveys = await self._fetch_all(
            "SELECT id, title FROM surveys WHERE id = :survey_id", {"survey_id": survey_id}
        )
        if not surveys:
            raise SurveyNotFoundError(f"survey {survey_id} not found")

        questions = await self._fetch_all(
            "SELECT id, question_type, question_text, is_required, order_index, settings "
            "FROM questions WHERE survey_id = :survey_id ORDER BY order_index",
            {"survey_id": survey_id},
        )
        schema = SurveySchema.from_dict({**surveys[0], "questions": questions})
        get_logger("store.sql", survey_id).debug(
            "schema loaded", extra={"questions": len(schema.questions)}
        )
        return schema

    async def fetch_responses(self, survey_id: str) -> List[ResponseRecord]:
        """Return every response of a survey, oldest first."""

        rows = await self._fetch_all(
            f"SELECT {RESPONSE_COLUMNS} FROM responses "
            f"WHERE survey_id = :survey_id ORDER BY {self._timestamp_expr('created_at')}",
            {"survey_id": survey_id},
        )
        return self._records(rows)

    async def fetch_responses_since(self, survey_id: str, since: datetime) -> List[ResponseRecord]:
        """Return responses created at or after ``since``, oldest first."""

        created_at = self._timestamp_expr("created_at")
        rows = await self._fetch_all(
            f"SELECT {RESPONSE_COLUMNS} FROM responses "
            f"WHERE survey_id = :survey_id AND {created_at} >= {self._timestamp_expr(':since')} "
            f"ORDER BY {created_at}",
            {"survey_id": survey_id, "since": self._timestamp_param(since)},
        )
        return self._records(rows)

    async def get_response_survey_id(self, response_id: str) -> Optional[str]:
        """Return the survey a response belongs to, or None if unknown."""

        key = str(response_id)
        if key in self._survey_by_response:
            return self._survey_by_response[key]
        rows = await self._fetch_all(
            "SELECT survey_id FROM responses WHERE id = :response_id", {"response_id": key}
        )
        if not rows:
            return None
        survey_id = str(rows[0]["survey_id"])
        self._survey_by_response[key] = survey_id
        return survey_id

    def _records(self, rows: List[dict]) -> List[ResponseRecord]:
        # Remember ownership so answer events can be resolved without a query
        for row in rows:
            if row.get("id") is not None and row.get("survey_id") is not None:
                self._survey_by_response[str(row["id"])] = str(row["survey_id"])
        return [ResponseRecord.from_dict(row) for row in rows]

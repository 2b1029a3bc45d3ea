"""Async response store backed by a PostgREST-style HTTP query layer.

Requests follow the hosted backend's REST conventions::

    GET {base}/rest/v1/responses?survey_id=eq.{id}&created_at=gte.{iso}&order=created_at.asc
    apikey: {key}
    Authorization: Bearer {key}

Every request is retried a few times before the last error is raised as a
``StoreError``.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import aiohttp
from cachetools import TTLCache

from config import Config
from analytics.logging_utils import get_logger
from analytics.models import ResponseRecord, SurveySchema
from analytics.store import RESPONSE_COLUMNS, StoreError, SurveyNotFoundError

QUESTION_COLUMNS = "id,question_type,question_text,is_required,order_index,settings"


def base_headers(api_key: str) -> Dict[str, str]:
    """Return headers required for all REST requests."""

    if not api_key:
        raise StoreError("REST_API_KEY is not configured")
    return {
        "apikey": api_key,
        "Authorization": f"Bearer {api_key}",
        "Accept": "application/json",
    }


class RestResponseStore:
    """Asynchronous wrapper around the REST query layer."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        session: Optional[aiohttp.ClientSession] = None,
        max_retries: int = 3,
        retry_delay: float = 1.0,
        cache_ttl: Optional[int] = None,
    ) -> None:
        self.base_url = (base_url if base_url is not None else Config.REST_URL).rstrip("/")
        self.api_key = api_key if api_key is not None else Config.REST_API_KEY
        self.session = session
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self._survey_by_response: TTLCache = TTLCache(
            maxsize=4096, ttl=cache_ttl if cache_ttl is not None else Config.RESPONSE_CACHE_TTL
        )

    async def _get_session(self) -> aiohttp.ClientSession:
        if self.session is None or getattr(self.session, "closed", False):
            self.session = aiohttp.ClientSession()
        return self.session

    async def close(self) -> None:
        if self.session and not getattr(self.session, "closed", False):
            await self.session.close()

    def _url(self, table: str) -> str:
        return f"{self.base_url}{Config.REST_API_PREFIX}/{table}"

    async def query_table(self, table: str, params: Dict[str, str]) -> List[Dict[str, Any]]:
        """Run a filtered select and return the decoded rows."""

        session = await self._get_session()
        url = self._url(table)
        headers = base_headers(self.api_key)
        last_error: Any = None
        for attempt in range(self.max_retries):
            try:
                async with session.get(url, headers=headers, params=params) as resp:
                    data = await resp.json()
                    if resp.status == 200:
                        if not isinstance(data, list):
                            raise StoreError(f"unexpected payload from {table}")
                        return data
                    last_error = data
            except StoreError:
                raise
            except Exception as e:  # pragma: no cover - network errors
                last_error = {"error": str(e)}
            get_logger("store.rest").warning(
                "request failed", extra={"table": table, "attempt": attempt + 1}
            )
            if attempt < self.max_retries - 1:
                await asyncio.sleep(self.retry_delay)
        raise StoreError(last_error)

    async def fetch_schema(self, survey_id: str) -> SurveySchema:
        surveys = await self.query_table(
            "surveys", {"id": f"eq.{survey_id}", "select": "id,title"}
        )
        if not surveys:
            raise SurveyNotFoundError(f"survey {survey_id} not found")
        questions = await self.query_table(
            "questions",
            {
                "survey_id": f"eq.{survey_id}",
                "select": QUESTION_COLUMNS,
                "order": "order_index.asc",
            },
        )
        return SurveySchema.from_dict({**surveys[0], "questions": questions})

    async def fetch_responses(self, survey_id: str) -> List[ResponseRecord]:
        rows = await self.query_table("responses", self._response_params(survey_id))
        return self._records(rows)

    async def fetch_responses_since(self, survey_id: str, since: datetime) -> List[ResponseRecord]:
        params = self._response_params(survey_id)
        params["created_at"] = f"gte.{since.astimezone(timezone.utc).isoformat()}"
        rows = await self.query_table("responses", params)
        return self._records(rows)

    async def get_response_survey_id(self, response_id: str) -> Optional[str]:
        key = str(response_id)
        if key in self._survey_by_response:
            return self._survey_by_response[key]
        rows = await self.query_table("responses", {"id": f"eq.{key}", "select": "survey_id"})
        if not rows:
            return None
        survey_id = str(rows[0]["survey_id"])
        self._survey_by_response[key] = survey_id
        return survey_id

    @staticmethod
    def _response_params(survey_id: str) -> Dict[str, str]:
        return {
            "survey_id": f"eq.{survey_id}",
            "select": RESPONSE_COLUMNS.replace(" ", ""),
            "order": "created_at.asc",
        }

    def _records(self, rows: List[Dict[str, Any]]) -> List[ResponseRecord]:
        for row in rows:
            if row.get("id") is not None and row.get("survey_id") is not None:
                self._survey_by_response[str(row["id"])] = str(row["survey_id"])
        return [ResponseRecord.from_dict(row) for row in rows]

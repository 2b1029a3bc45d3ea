from __future__ import annotations

from datetime import datetime, tzinfo
from typing import Optional

import pytz

from config import Config
from analytics.analyzer import analyze_responses
from analytics.devices import DeviceClassifier
from analytics.error_utils import log_exception_categorized
from analytics.logging_utils import get_logger
from analytics.models import ResponseAnalysis
from analytics.store import ResponseStore


class ResponseReportService:
    """One-shot analysis of a survey loaded from the response store."""

    def __init__(
        self,
        store: ResponseStore,
        classifier: Optional[DeviceClassifier] = None,
        tz: Optional[tzinfo] = None,
    ) -> None:
        self.store = store
        self.classifier = classifier
        self.tz = tz or pytz.timezone(Config.TIMEZONE)

    async def build_report(
        self,
        survey_id: str,
        trend_window_days: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> ResponseAnalysis:
        """
        Load a survey and all of its responses and analyze them.

        Raises:
            StoreError: If the survey or its responses cannot be loaded.
                There is no previous report to fall back to, so the caller
                decides what to show.
        """
        log = get_logger("reports.build", survey_id)
        log.info("start")
        try:
            schema = await self.store.fetch_schema(survey_id)
            responses = await self.store.fetch_responses(survey_id)
        except Exception as e:
            log_exception_categorized(e, survey_id=survey_id, operation="build_report")
            raise

        analysis = analyze_responses(
            schema,
            responses,
            trend_window_days=trend_window_days if trend_window_days is not None else Config.TREND_WINDOW_DAYS,
            now=now,
            tz=self.tz,
            classifier=self.classifier,
        )
        log.info(
            "done",
            extra={"total_responses": analysis.total_responses, "questions": len(schema.questions)},
        )
        return analysis

import logging
import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parent.parent
sys.path.append(str(ROOT))
sys.path.append(str(ROOT / "tests"))

from analytics.change_feed import ChangeFeedError, LocalChangeFeed
from analytics.error_utils import handle_exception, map_exception_to_message
from analytics.logging_utils import current_context, get_logger, wrap_handler
from analytics.models import ChangeEvent
from analytics.realtime import RealTimeAnalytics
from analytics.store import StoreError, SurveyNotFoundError
from config import Strings, setup_logging
from helpers import FakeClock, FakeStore, make_response


def test_get_logger_injects_context(caplog):
    caplog.set_level(logging.INFO, logger="survey_analytics")

    get_logger("reports.build", "s1", subscription_id="sub-1", ignored=None).info("hello")

    record = caplog.records[-1]
    assert record.survey_id == "s1"
    assert record.step_name == "reports.build"
    assert record.subscription_id == "sub-1"
    assert not hasattr(record, "ignored")


@pytest.mark.asyncio
async def test_wrap_handler_sets_event_context(caplog):
    caplog.set_level(logging.DEBUG, logger="survey_analytics")
    seen = {}

    async def handler(event):
        seen.update(current_context.get())
        get_logger().info("inside")

    wrapped = wrap_handler("realtime.change", "s1", handler)
    await wrapped(ChangeEvent(event="insert", table="responses"))

    inside = next(r for r in caplog.records if r.getMessage() == "inside")
    assert inside.survey_id == "s1"
    assert inside.event == "insert"
    assert inside.table == "responses"
    assert [r.getMessage() for r in caplog.records if r.getMessage() in ("start", "done")] == ["start", "done"]
    assert seen["step_name"] == "realtime.change"
    assert current_context.get() == {}


@pytest.mark.asyncio
async def test_wrap_handler_logs_and_reraises(caplog):
    async def handler(event):
        raise RuntimeError("boom")

    wrapped = wrap_handler("realtime.change", "s1", handler)
    with pytest.raises(RuntimeError):
        await wrapped(ChangeEvent(event="delete", table="responses"))

    failed = [r for r in caplog.records if r.getMessage() == "failed"]
    assert failed and failed[0].exc_info is not None
    assert failed[0].table == "responses"


@pytest.mark.asyncio
async def test_realtime_logs_carry_survey_context(caplog):
    caplog.set_level(logging.DEBUG, logger="survey_analytics")
    store = FakeStore()
    feed = LocalChangeFeed()
    analytics = RealTimeAnalytics(store, feed, clock=FakeClock())

    await analytics.subscribe_to_survey("s1", lambda u: None)
    await feed.publish("s1", ChangeEvent(event="insert", table="responses", new={"id": "r1"}))

    refreshed = [r for r in caplog.records if r.getMessage() == "metrics refreshed"]
    assert refreshed and all(r.survey_id == "s1" for r in refreshed)
    # records logged while handling the event also carry the event name
    assert refreshed[-1].event == "insert"


@pytest.mark.parametrize(
    "exc,message,category",
    [
        (SurveyNotFoundError("gone"), Strings.SURVEY_NOT_FOUND, "store"),
        (StoreError("down"), Strings.STORE_UNAVAILABLE, "store"),
        (ChangeFeedError("closed"), Strings.CONNECTION_FAILED, "feed"),
        (KeyError("x"), Strings.TRY_AGAIN_LATER, "unexpected"),
    ],
)
def test_exception_mapping(caplog, exc, message, category):
    assert map_exception_to_message(exc) == message

    assert handle_exception(exc, survey_id="s1") == message
    record = caplog.records[-1]
    assert record.category == category
    assert record.step_name == f"error.{category}"


def test_setup_logging_is_idempotent(tmp_path):
    name = "survey_analytics_setup_test"
    log = setup_logging(logging.DEBUG, name=name, log_dir=str(tmp_path))
    again = setup_logging(logging.DEBUG, name=name, log_dir=str(tmp_path))

    try:
        assert log is again
        assert len(log.handlers) == 2
        log.info("written")
        for handler in log.handlers:
            handler.flush()
        assert "written" in (tmp_path / "analytics.log").read_text()
    finally:
        for handler in list(log.handlers):
            handler.close()
            log.removeHandler(handler)

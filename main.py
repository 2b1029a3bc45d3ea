import asyncio
import logging
from typing import Optional, Tuple, Union

from config import Config, logger, setup_logging
from analytics.change_feed import LocalChangeFeed
from analytics.realtime import RealTimeAnalytics
from analytics.reports import ResponseReportService
from analytics.rest_store import RestResponseStore
from analytics.store import SqlResponseStore

Store = Union[SqlResponseStore, RestResponseStore]


def build_store() -> Store:
    """Pick the SQL adapter when DATABASE_URL is set, else the REST adapter."""
    if Config.DATABASE_URL:
        return SqlResponseStore(Config.DATABASE_URL)
    return RestResponseStore(Config.REST_URL, Config.REST_API_KEY)


def build_analytics(
    store: Optional[Store] = None,
    feed: Optional[LocalChangeFeed] = None,
) -> Tuple[Store, LocalChangeFeed, RealTimeAnalytics, ResponseReportService]:
    """
    Composition root: one store, one feed and one aggregator per process.

    The host application publishes row changes into the returned feed.
    """
    store = store or build_store()
    feed = feed or LocalChangeFeed()
    analytics = RealTimeAnalytics(store, feed)
    reports = ResponseReportService(store)
    return store, feed, analytics, reports


async def main():
    """
    Main entry point for the analytics service.
    Starts housekeeping and keeps the aggregator alive until cancelled.
    """
    setup_logging(getattr(logging, Config.LOG_LEVEL.upper(), logging.INFO), log_dir=Config.LOG_DIR)

    # Validate configuration
    try:
        Config.validate()
    except ValueError as e:
        logger.error(f"Configuration error: {e}")
        return

    store, _, analytics, _ = build_analytics()
    analytics.start()
    logger.info("analytics service started")
    try:
        await asyncio.Event().wait()
    finally:
        await analytics.dispose()
        await store.close()
        logger.info("analytics service stopped")

if __name__ == "__main__":
    asyncio.run(main())

import asyncio
import logging
from datetime import date, datetime, timedelta
from typing import Callable, Optional

from sqlalchemy.orm import Session

from wabot import storage
from wabot.domain import DailyAnalytics
from wabot.utils import utcnow

logger = logging.getLogger(__name__)


class AnalyticsAggregator:
    """Daily usage rollups over the messages and error_events tables."""

    def __init__(self, session_factory: Callable[[], Session]):
        self.session_factory = session_factory

    def run_daily(self, day: date) -> DailyAnalytics:
        """
        Compute the rollup for `day` and upsert it.

        Re-running for the same day replaces the row with freshly computed
        counts, so the table never holds more than one row per date.
        """
        with self.session_factory() as db:
            row = storage.count_daily_activity(db, day)
            storage.upsert_daily_analytics(db, row)

        logger.info(
            f"Analytics updated for {day}: {row.total_messages} messages, "
            f"{row.unique_users} users, {row.ai_responses} responses, {row.errors} errors"
        )
        return row


def seconds_until_next_midnight(now: datetime) -> float:
    next_midnight = datetime.combine(now.date() + timedelta(days=1), datetime.min.time())
    return (next_midnight - now).total_seconds()


class DailyAnalyticsScheduler:
    """
    Background task that runs the aggregator once per UTC day.

    Wakes at each midnight and rolls up the day that just ended.
    """

    def __init__(self, aggregator: AnalyticsAggregator, clock: Callable[[], datetime] = utcnow):
        self.aggregator = aggregator
        self.clock = clock
        self._task: Optional[asyncio.Task] = None

    def start(self) -> None:
        if self._task is None:
            self._task = asyncio.create_task(self._run())
            logger.info("Daily analytics scheduler started")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Daily analytics scheduler stopped")

    async def _run(self) -> None:
        while True:
            now = self.clock()
            day = now.date()
            delay = seconds_until_next_midnight(now)
            logger.debug(f"Next analytics run in {int(delay)}s")
            await asyncio.sleep(delay)
            try:
                await asyncio.to_thread(self.aggregator.run_daily, day)
            except Exception as e:
                logger.error(f"Daily analytics run for {day} failed: {e}")

"""Tests for the daily analytics rollup and its scheduler."""

import asyncio
from datetime import date, datetime

import pytest

from wabot import storage
from wabot.analytics import AnalyticsAggregator, DailyAnalyticsScheduler, seconds_until_next_midnight
from wabot.domain import Direction
from wabot.errors import PersistenceError
from wabot.models import DailyAnalytics as DailyAnalyticsRow
from wabot.registry import UserRegistry


DAY = date(2025, 1, 15)


def seed(session_factory):
    """Two users talking on DAY, one message the day after, one error on DAY."""
    registry = UserRegistry(session_factory)
    alice = registry.resolve("A@c.us", "Alice", datetime(2025, 1, 15, 9, 0))
    bob = registry.resolve("B@c.us", "Bob", datetime(2025, 1, 15, 9, 5))

    with session_factory() as db:
        storage.save_message(db, alice.id, "hi", Direction.INBOUND, "text", datetime(2025, 1, 15, 9, 0))
        storage.save_message(db, alice.id, "hello!", Direction.OUTBOUND, "text", datetime(2025, 1, 15, 9, 0, 2))
        storage.save_message(db, bob.id, "/help", Direction.INBOUND, "command", datetime(2025, 1, 15, 23, 59, 59))
        storage.save_message(db, bob.id, "next day", Direction.INBOUND, "text", datetime(2025, 1, 16, 0, 0))
        storage.record_error_event(db, "B@c.us", "generation_error", "timeout", datetime(2025, 1, 15, 12, 0))

    return alice


class TestAggregator:

    def test_counts_for_day(self, db):
        seed(db)

        row = AnalyticsAggregator(db).run_daily(DAY)

        assert row.date == DAY
        assert row.total_messages == 3
        assert row.unique_users == 2
        assert row.ai_responses == 1
        assert row.errors == 1

    def test_rerun_is_idempotent(self, db):
        """Running twice for one date leaves a single identical row."""
        seed(db)
        aggregator = AnalyticsAggregator(db)

        first = aggregator.run_daily(DAY)
        second = aggregator.run_daily(DAY)

        assert first == second
        with db() as session:
            rows = session.query(DailyAnalyticsRow).filter(DailyAnalyticsRow.date == DAY).all()
            assert len(rows) == 1
            assert rows[0].total_messages == 3

    def test_rerun_replaces_counts(self, db):
        alice = seed(db)
        aggregator = AnalyticsAggregator(db)
        aggregator.run_daily(DAY)

        with db() as session:
            storage.save_message(session, alice.id, "late", Direction.INBOUND, "text", datetime(2025, 1, 15, 20, 0))

        row = aggregator.run_daily(DAY)

        assert row.total_messages == 4
        with db() as session:
            assert session.query(DailyAnalyticsRow).count() == 1

    def test_empty_day(self, db):
        row = AnalyticsAggregator(db).run_daily(date(2024, 6, 1))

        assert (row.total_messages, row.unique_users, row.ai_responses, row.errors) == (0, 0, 0, 0)

    def test_recent_analytics_newest_first(self, db):
        seed(db)
        aggregator = AnalyticsAggregator(db)
        aggregator.run_daily(DAY)
        aggregator.run_daily(date(2025, 1, 16))

        with db() as session:
            rows = storage.get_recent_analytics(session, limit=30)

        assert [r.date for r in rows] == [date(2025, 1, 16), DAY]
        assert rows[0].total_messages == 1

    def test_recent_analytics_failure(self, broken_session_factory):
        with broken_session_factory() as session:
            with pytest.raises(PersistenceError):
                storage.get_recent_analytics(session, limit=30)


@pytest.mark.parametrize("now,expected", [
    (datetime(2025, 1, 15, 0, 0, 0), 86400.0),
    (datetime(2025, 1, 15, 23, 0, 0), 3600.0),
    (datetime(2025, 1, 15, 23, 59, 59, 500000), 0.5),
])
def test_seconds_until_next_midnight(now, expected):
    assert seconds_until_next_midnight(now) == expected


class RecordingAggregator:
    def __init__(self):
        self.days = []

    def run_daily(self, day):
        self.days.append(day)


class TestScheduler:

    @pytest.mark.asyncio
    async def test_runs_for_day_that_just_ended(self):
        aggregator = RecordingAggregator()
        scheduler = DailyAnalyticsScheduler(aggregator, clock=lambda: datetime(2025, 1, 15, 23, 59, 59, 950000))

        scheduler.start()
        for _ in range(50):
            if aggregator.days:
                break
            await asyncio.sleep(0.02)
        await scheduler.stop()

        assert aggregator.days[0] == DAY

    @pytest.mark.asyncio
    async def test_stop_without_start(self):
        scheduler = DailyAnalyticsScheduler(RecordingAggregator())

        await scheduler.stop()

"""
Tests for admin command parsing and dispatch.

Tests cover:
- Authorization against the allow-list
- Case/whitespace-insensitive command matching
- /stats, /restart, /help and unknown commands
"""

import pytest

from wabot.admin import (
    HELP_REPLY,
    NOT_AUTHORIZED_REPLY,
    RESTART_REPLY,
    UNKNOWN_COMMAND_REPLY,
    AdminCommand,
    AdminDispatcher,
    parse_command,
)
from wabot.domain import BotStats


ADMIN = "admin@c.us"


class StatsSpy:
    def __init__(self):
        self.calls = 0

    def __call__(self):
        self.calls += 1
        return BotStats(total_users=3, total_messages=42, today_messages=7)


@pytest.fixture
def stats():
    return StatsSpy()


@pytest.fixture
def restarts():
    return []


@pytest.fixture
def dispatcher(stats, restarts):
    return AdminDispatcher(
        admin_ids=[ADMIN],
        stats_provider=stats,
        uptime=lambda: 12.5,
        schedule_restart=restarts.append,
        restart_grace_seconds=1.0,
    )


class TestParseCommand:

    @pytest.mark.parametrize("text,expected", [
        ("/stats", AdminCommand.STATS),
        (" /STATS ", AdminCommand.STATS),
        ("/Restart", AdminCommand.RESTART),
        ("\t/help\n", AdminCommand.HELP),
        ("/stats now", AdminCommand.UNKNOWN),
        ("/unknown", AdminCommand.UNKNOWN),
        ("/", AdminCommand.UNKNOWN),
    ])
    def test_parse(self, text, expected):
        assert parse_command(text) is expected


class TestAuthorization:

    def test_non_admin_stats_denied(self, dispatcher, stats):
        """Non-admins get the literal denial and stats are never read."""
        assert dispatcher.dispatch("/stats", "A@c.us") == NOT_AUTHORIZED_REPLY
        assert stats.calls == 0

    def test_non_admin_unknown_command_gets_same_denial(self, dispatcher):
        assert dispatcher.dispatch("/whatever", "A@c.us") == NOT_AUTHORIZED_REPLY

    def test_non_admin_restart_has_no_side_effects(self, dispatcher, restarts):
        assert dispatcher.dispatch("/restart", "A@c.us") == NOT_AUTHORIZED_REPLY
        assert restarts == []


class TestAdminCommands:

    def test_stats_recognized_regardless_of_case_and_whitespace(self, dispatcher, stats):
        reply = dispatcher.dispatch(" /STATS ", ADMIN)

        assert stats.calls == 1
        assert reply.startswith("📊 Bot Statistics:")
        assert "Total Users: 3" in reply
        assert "Total Messages: 42" in reply
        assert "Today's Messages: 7" in reply
        assert "Uptime: 12.50 seconds" in reply

    def test_restart_schedules_and_acknowledges(self, dispatcher, restarts):
        assert dispatcher.dispatch("/restart", ADMIN) == RESTART_REPLY
        assert restarts == [1.0]

    def test_help(self, dispatcher):
        reply = dispatcher.dispatch("/help", ADMIN)

        assert reply == HELP_REPLY
        for command in ("/stats", "/restart", "/help"):
            assert command in reply

    def test_unknown_command(self, dispatcher):
        assert dispatcher.dispatch("/deploy", ADMIN) == UNKNOWN_COMMAND_REPLY

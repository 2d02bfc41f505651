"""
Admin commands sent as chat messages.

Only senders on the admin allow-list get anything other than the fixed
not-authorized reply.
"""

import logging
import os
import signal
import threading
from enum import Enum
from typing import Callable, Iterable

from wabot.domain import BotStats

logger = logging.getLogger(__name__)


NOT_AUTHORIZED_REPLY = "❌ You are not authorized to use admin commands."
UNKNOWN_COMMAND_REPLY = "❓ Unknown command. Use /help for available commands."
RESTART_REPLY = "🔄 Restarting bot..."
HELP_REPLY = (
    "🤖 Admin Commands:\n"
    "/stats - Show bot statistics\n"
    "/restart - Restart the bot\n"
    "/help - Show this help message"
)


class AdminCommand(Enum):
    STATS = "/stats"
    RESTART = "/restart"
    HELP = "/help"
    UNKNOWN = None


def parse_command(text: str) -> AdminCommand:
    """Match text case-insensitively after trimming; anything else is UNKNOWN."""
    normalized = text.strip().lower()
    for command in AdminCommand:
        if command.value == normalized:
            return command
    return AdminCommand.UNKNOWN


def format_stats(stats: BotStats, uptime_seconds: float) -> str:
    return (
        "📊 Bot Statistics:\n"
        f"👥 Total Users: {stats.total_users}\n"
        f"💬 Total Messages: {stats.total_messages}\n"
        f"📅 Today's Messages: {stats.today_messages}\n"
        f"⏰ Uptime: {uptime_seconds:.2f} seconds"
    )


def terminate_process_later(delay_seconds: float) -> None:
    """Send SIGTERM to this process after delay_seconds so the server shuts down cleanly."""
    def _terminate():
        logger.info("Admin requested restart")
        os.kill(os.getpid(), signal.SIGTERM)

    timer = threading.Timer(delay_seconds, _terminate)
    timer.daemon = True
    timer.start()


class AdminDispatcher:
    """
    Single dispatch function over the closed AdminCommand set.

    Args:
        admin_ids: sender addresses allowed to run commands
        stats_provider: returns current counts from persistence
        uptime: returns process uptime in seconds
        schedule_restart: called with the grace delay for /restart
        restart_grace_seconds: delay before the process terminates
    """

    def __init__(
        self,
        admin_ids: Iterable[str],
        stats_provider: Callable[[], BotStats],
        uptime: Callable[[], float],
        schedule_restart: Callable[[float], None] = terminate_process_later,
        restart_grace_seconds: float = 1.0,
    ):
        self.admin_ids = frozenset(admin_ids)
        self.stats_provider = stats_provider
        self.uptime = uptime
        self.schedule_restart = schedule_restart
        self.restart_grace_seconds = restart_grace_seconds

    def is_admin(self, sender_id: str) -> bool:
        return sender_id in self.admin_ids

    def dispatch(self, command_text: str, sender_id: str) -> str:
        if not self.is_admin(sender_id):
            logger.warning(f"Unauthorized admin command attempt from {sender_id}")
            return NOT_AUTHORIZED_REPLY

        command = parse_command(command_text)
        logger.info(f"Admin command {command.name} from {sender_id}")

        if command is AdminCommand.STATS:
            return format_stats(self.stats_provider(), self.uptime())
        if command is AdminCommand.RESTART:
            self.schedule_restart(self.restart_grace_seconds)
            return RESTART_REPLY
        if command is AdminCommand.HELP:
            return HELP_REPLY
        return UNKNOWN_COMMAND_REPLY

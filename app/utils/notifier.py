# app/utils/notifier.py
import asyncio
import html
import logging
from datetime import datetime
from typing import List, Optional

from app.utils.tg_service import TelegramService

logger = logging.getLogger(__name__)


def format_expiry(expires_at: Optional[datetime]) -> str:
    if expires_at is None:
        return "N/A"
    if expires_at.year >= 9999:
        return "Lifetime"
    return expires_at.strftime("%Y-%m-%d")


class Notifier:
    """
    Enrollment notifications. Callers treat sending as fire-and-forget and
    only log failures.
    """

    def send(
        self,
        to_address: str,
        subject: str,
        body_lines: List[str],
        course_title: str,
        expires_at: Optional[datetime] = None,
    ) -> None:
        raise NotImplementedError


class LogNotifier(Notifier):
    """Writes notifications to the application log. Used when Telegram is off."""

    def send(self, to_address, subject, body_lines, course_title, expires_at=None):
        logger.info(
            f"Notification to {to_address}: {course_title} - {subject} "
            f"(expires: {format_expiry(expires_at)}) {' '.join(body_lines)}"
        )


class TelegramNotifier(Notifier):
    """A Bot's HTTP pool is bound to the loop it first ran on, so each send builds its own service."""

    def __init__(self, bot_token: str, service_class=TelegramService):
        self.bot_token = bot_token
        self.service_class = service_class

    @staticmethod
    def render(subject, body_lines, course_title, expires_at) -> str:
        lines = [f"<b>{html.escape(course_title)} - {html.escape(subject)}</b>", ""]
        lines.extend(html.escape(line) for line in body_lines)
        lines.append("")
        lines.append(f"<b>Course:</b> {html.escape(course_title)}")
        lines.append(f"<b>Access Expires:</b> {format_expiry(expires_at)}")
        return "\n".join(lines)

    def send(self, to_address, subject, body_lines, course_title, expires_at=None):
        if not to_address or "@" in str(to_address):
            # No Telegram chat linked to this user
            logger.info(f"Skipping Telegram notification for {to_address}: no chat id")
            return

        text = self.render(subject, body_lines, course_title, expires_at)
        # Engine code runs in FastAPI's threadpool, so there is no running loop here
        tg_service = self.service_class(bot_token=self.bot_token)
        asyncio.run(tg_service.send_message(chat_id=to_address, text=text))

# app/utils/tg_service.py
import logging
from typing import Optional, Union

from telegram import Bot, Message
from telegram.constants import ParseMode
from telegram.error import TelegramError

logger = logging.getLogger(__name__)


class TelegramService:
    """Service for sending enrollment messages through a Telegram bot"""

    def __init__(self, bot_token: str):
        """
        Initialize Telegram service with bot token

        Args:
            bot_token: Telegram bot token from @BotFather
        """
        self.bot = Bot(token=bot_token)

    async def send_message(
        self,
        chat_id: Union[int, str],
        text: str,
        parse_mode: Optional[str] = ParseMode.HTML,
        disable_notification: bool = False,
    ) -> Optional[Message]:
        """
        Send a message to a chat.

        Returns:
            Message object on success, None on failure
        """
        try:
            message = await self.bot.send_message(
                chat_id=chat_id,
                text=text,
                parse_mode=parse_mode,
                disable_web_page_preview=True,
                disable_notification=disable_notification,
            )
            logger.info(f"Message sent successfully to chat {chat_id}")
            return message

        except TelegramError as e:
            logger.error(f"Failed to send message to chat {chat_id}: {e}")
            return None

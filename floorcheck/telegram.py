import aiohttp
from datetime import datetime
import logging
from typing import Iterable, Optional

from . import config

logger = logging.getLogger(__name__)


class TelegramNotifier:
    """Posts shop-floor alerts to a Telegram chat.

    Sending is best effort: failures are logged and never raised, so an
    unreachable bot cannot block a checklist from completing.
    """

    def __init__(self, bot_token: Optional[str] = None, chat_id: Optional[str] = None):
        self.bot_token = (bot_token if bot_token is not None else config.TELEGRAM_BOT_TOKEN).strip()
        self.chat_id = (chat_id if chat_id is not None else config.TELEGRAM_CHAT_ID).strip()
        self.api_url = f"https://api.telegram.org/bot{self.bot_token}"
        self.send_message_url = f"{self.api_url}/sendMessage"
        logger.info(f"Telegram notifier configured: {self.configured}")

    @property
    def configured(self) -> bool:
        return bool(self.bot_token and self.chat_id)

    async def send_message(self, text: str) -> dict:
        if not self.configured:
            logger.warning(f"Would have sent Telegram message (but bot not configured): {text}")
            return {}

        async with aiohttp.ClientSession() as session:
            try:
                logger.info(f"Sending Telegram message to chat {self.chat_id}")
                async with session.post(
                    self.send_message_url,
                    json={
                        "chat_id": self.chat_id,
                        "text": text,
                        "parse_mode": "HTML"
                    }
                ) as response:
                    try:
                        result = await response.json()
                    except Exception as e:
                        logger.error(f"Error parsing response JSON: {str(e)}")
                        result = {}

                    if response.status == 200 and result.get('ok'):
                        logger.info("Telegram message sent successfully")
                    else:
                        logger.error(f"Telegram API error: {result}")
                    return result
            except aiohttp.ClientError as e:
                logger.error(f"Telegram HTTP error: {str(e)}")
            except Exception as e:
                logger.error(f"Error sending Telegram message: {str(e)}")
        return {}

    async def notify_critical_failures(
        self,
        template_name: str,
        machine_name: str,
        user_id: str,
        item_labels: Iterable[str],
        when: Optional[datetime] = None,
    ) -> dict:
        message = format_critical_failure_message(template_name, machine_name, user_id, item_labels, when)
        logger.info(f"Notifying critical failures on {machine_name}")
        return await self.send_message(message)


def format_critical_failure_message(
    template_name: str,
    machine_name: str,
    user_id: str,
    item_labels: Iterable[str],
    when: Optional[datetime] = None,
) -> str:
    when = (when or datetime.now(config.SITE_TIMEZONE)).astimezone(config.SITE_TIMEZONE)
    lines = [
        f"⚠️ {template_name} on {machine_name} completed by {user_id} at {when.strftime('%H:%M')} "
        f"with failed critical checks:"
    ]
    lines.extend(f"• {label}" for label in item_labels)
    return "\n".join(lines)


telegram = TelegramNotifier()

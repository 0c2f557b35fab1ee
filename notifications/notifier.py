"""
Back office notifications

Notifications are stored for the recipient and, when a bot is configured,
relayed to a Telegram chat. Callers on the request path use dispatch(),
which runs delivery as a detached task: failures are logged, never raised.
"""
import asyncio
import html
import logging
from typing import Optional, Set

import aiohttp

from database.db_manager import DatabaseManager

logger = logging.getLogger(__name__)


class Notifier:
    """Stores notifications and optionally relays them to Telegram"""

    def __init__(self, db_manager: DatabaseManager, bot_token: Optional[str] = None,
                 alert_chat_id: Optional[str] = None, max_retries: int = 3):
        """
        Initialize notifier

        Args:
            db_manager: DatabaseManager instance
            bot_token: Telegram Bot token for relaying notifications (optional)
            alert_chat_id: Telegram chat ID for notifications (optional)
            max_retries: Delivery attempts for the Telegram relay
        """
        self.db_manager = db_manager
        self.bot_token = bot_token
        self.alert_chat_id = alert_chat_id
        self.max_retries = max_retries
        self._http_session: Optional[aiohttp.ClientSession] = None
        self._pending: Set[asyncio.Task] = set()

    @property
    def relay_enabled(self) -> bool:
        return bool(self.bot_token and self.alert_chat_id)

    async def start(self):
        """Create the HTTP session used by the Telegram relay"""
        if self.relay_enabled and self._http_session is None:
            self._http_session = aiohttp.ClientSession()
            logger.info("HTTP session created for sending notifications")

    async def close(self):
        """Wait for in-flight deliveries and close the HTTP session"""
        await self.wait_for_pending()
        if self._http_session:
            await self._http_session.close()
            self._http_session = None
            logger.info("HTTP session closed")

    async def notify(self, type: str, title: str, message: str, recipient_id: Optional[str],
                     link: Optional[str] = None, metadata: Optional[dict] = None) -> int:
        """
        Store a notification and relay it if configured

        Returns:
            ID of the stored notification
        """
        notification_id = self.db_manager.save_notification({
            'type': type,
            'title': title,
            'message': message,
            'user_id': recipient_id,
            'link': link,
            'metadata_': metadata or {},
        })
        logger.info(f"Notification {notification_id} stored for user {recipient_id}")

        if self.relay_enabled:
            await self._send_telegram(title, message, link)

        return notification_id

    def dispatch(self, *args, **kwargs) -> asyncio.Task:
        """
        Fire-and-forget notify(); must be called from a running event loop

        The returned task never propagates its error to the caller.
        """
        task = asyncio.ensure_future(self.notify(*args, **kwargs))
        self._pending.add(task)
        task.add_done_callback(self._on_dispatch_done)
        return task

    def _on_dispatch_done(self, task: asyncio.Task):
        self._pending.discard(task)
        if task.cancelled():
            logger.warning("Notification delivery cancelled")
            return
        error = task.exception()
        if error is not None:
            logger.error(f"Notification delivery failed: {error}", exc_info=error)

    async def wait_for_pending(self):
        """Wait until every dispatched notification has finished"""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    def _format_message(self, title: str, message: str, link: Optional[str]) -> str:
        text = f"<b>{html.escape(title)}</b>\n{html.escape(message)}"
        if link:
            text += f'\n\n<a href="{html.escape(link)}">🔗 Abrir</a>'
        return text

    async def _send_telegram(self, title: str, message: str, link: Optional[str]) -> bool:
        """
        Relay a notification to the configured Telegram chat

        Returns:
            True if Telegram accepted the message
        """
        if self._http_session is None:
            await self.start()

        url = f"https://api.telegram.org/bot{self.bot_token}/sendMessage"
        payload = {
            "chat_id": self.alert_chat_id,
            "text": self._format_message(title, message, link),
            "parse_mode": "HTML",
            "disable_web_page_preview": True
        }

        for attempt in range(1, self.max_retries + 1):
            try:
                async with self._http_session.post(url, json=payload) as response:
                    if response.status == 200:
                        logger.info("Notification relayed to Telegram")
                        return True
                    elif response.status == 429:
                        error_data = await response.json()
                        retry_after = error_data.get('parameters', {}).get('retry_after', 5)
                        logger.warning(f"Rate limit hit, waiting {retry_after} seconds")
                        await asyncio.sleep(retry_after)
                        continue
                    else:
                        error_text = await response.text()
                        logger.warning(
                            f"Attempt {attempt}/{self.max_retries}: "
                            f"Error relaying notification (status {response.status}): {error_text}"
                        )
            except aiohttp.ClientError as e:
                logger.warning(f"Attempt {attempt}/{self.max_retries}: Error relaying notification: {e}")

            if attempt < self.max_retries:
                await asyncio.sleep(2 ** (attempt - 1))

        logger.error(f"Failed to relay notification after {self.max_retries} attempts")
        return False

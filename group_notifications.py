"""
Owner and group notifications for the panel storefront
Sends Telegram messages when panels are registered, paid, deleted or fail to provision.

Delivery is fire-and-forget: notify() schedules a task and returns at once.
The owner chat gets full details; the optional notify group gets a masked
summary so buyer usernames are not exposed.
"""

import asyncio
import html
import logging
from typing import Optional, List, Dict, Any, Callable, Set

from telegram import Bot

from config import TelegramConfig, get_config
from models import NotificationEvent
from pricing_utils import format_money
from utils.timezone_utils import format_local_datetime

logger = logging.getLogger(__name__)


def mask_username(username: Optional[str]) -> str:
    """Mask username: show first 2 chars + asterisks. e.g. us***"""
    if not username:
        return "Someone"
    clean = username.lstrip('@')
    if len(clean) <= 2:
        return '*' * 4
    return f"{clean[:2]}{'*' * max(3, len(clean) - 2)}"


def _e(value: Any) -> str:
    return html.escape(str(value)) if value is not None else '-'


def _specs_line(specs: Optional[Dict[str, str]]) -> str:
    specs = specs or {}
    return f"RAM {_e(specs.get('ram'))} | CPU {_e(specs.get('cpu'))} | Disk {_e(specs.get('disk'))}"


# ─── Message builders ────────────────────────────────────────────────────────

def _account_registered_message(payload: Dict[str, Any]) -> str:
    expires = payload.get('account_expires_at')
    lines = [
        "🖥️ <b>New panel created</b>",
        "",
        f"👤 Buyer: <b>{_e(payload.get('username') or payload.get('user_id'))}</b>",
        f"🔑 Panel user: <code>{_e(payload.get('panel_username'))}</code>",
        f"📧 Email: {_e(payload.get('email'))}",
        f"📦 Plan: <b>{_e(str(payload.get('plan', '')).upper())}</b>",
        f"⚙️ {_specs_line(payload.get('specs'))}",
        f"🆔 Server ID: {_e(payload.get('server_id'))}",
        f"🌐 Login: {_e(payload.get('login_url'))}",
    ]
    if expires:
        lines.append(f"⏳ Valid until: {_e(format_local_datetime(expires))}")
    return "\n".join(lines)


def _order_paid_message(payload: Dict[str, Any]) -> str:
    total = payload.get('total') or payload.get('amount') or 0
    return "\n".join([
        "💰 <b>Payment received</b>",
        "",
        f"🧾 Order: <code>{_e(payload.get('order_id'))}</code>",
        f"👤 Buyer: <b>{_e(payload.get('username') or payload.get('user_id'))}</b>",
        f"📦 Plan: <b>{_e(str(payload.get('plan', '')).upper())}</b>",
        f"💵 Total: <b>{_e(format_money(total))}</b>",
    ])


def _panel_deleted_message(payload: Dict[str, Any]) -> str:
    return "\n".join([
        "🗑️ <b>Panel deleted</b>",
        "",
        f"🔑 Panel user: <code>{_e(payload.get('panel_username'))}</code>",
        f"🆔 Server ID: {_e(payload.get('server_id'))}",
        f"👮 By: {_e(payload.get('actor'))}",
    ])


def _provisioning_failed_message(payload: Dict[str, Any]) -> str:
    return "\n".join([
        "🚨 <b>Panel provisioning failed</b>",
        "",
        f"🧾 Order: <code>{_e(payload.get('order_id'))}</code>",
        f"🔑 Panel user: <code>{_e(payload.get('panel_username'))}</code>",
        f"📦 Plan: <b>{_e(str(payload.get('plan', '')).upper())}</b>",
        f"❗ Reason: {_e(payload.get('reason'))}",
        "",
        "<i>Payment is completed. Provision manually from the admin API.</i>",
    ])


def _group_message(event: NotificationEvent, payload: Dict[str, Any]) -> Optional[str]:
    """Public summary for the notify group; None for events the group never sees"""
    buyer = mask_username(payload.get('username') or payload.get('panel_username'))
    plan = _e(str(payload.get('plan', '')).upper())
    if event == NotificationEvent.ACCOUNT_REGISTERED:
        return f"🚀 <b>{_e(buyer)}</b> just launched a <b>{plan}</b> panel!\n    ⚙️ {_specs_line(payload.get('specs'))}"
    if event == NotificationEvent.ORDER_PAID:
        return f"💰 <b>{_e(buyer)}</b> just paid for a <b>{plan}</b> panel"
    return None


MESSAGE_BUILDERS: Dict[NotificationEvent, Callable[[Dict[str, Any]], str]] = {
    NotificationEvent.ACCOUNT_REGISTERED: _account_registered_message,
    NotificationEvent.ORDER_PAID: _order_paid_message,
    NotificationEvent.PANEL_DELETED: _panel_deleted_message,
    NotificationEvent.PROVISIONING_FAILED: _provisioning_failed_message,
}


class Notifier:
    """Telegram notifier; log-only when no bot is configured"""

    def __init__(self, bot: Optional[Bot] = None, owner_chat_id: Optional[int] = None, group_chat_id: Optional[int] = None):
        self.bot = bot
        self.owner_chat_id = owner_chat_id
        self.group_chat_id = group_chat_id
        self._tasks: Set[asyncio.Task] = set()

    @property
    def enabled(self) -> bool:
        return self.bot is not None and (self.owner_chat_id is not None or self.group_chat_id is not None)

    def notify(self, event: NotificationEvent, payload: Dict[str, Any]) -> None:
        """Schedule delivery and return immediately"""
        logger.info(f"🔔 Notification {event.value}: order={payload.get('order_id')} panel={payload.get('panel_username')}")
        if not self.enabled:
            return

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning(f"⚠️ No running event loop, dropping {event.value} notification")
            return

        task = loop.create_task(self._deliver(event, payload))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _deliver(self, event: NotificationEvent, payload: Dict[str, Any]):
        try:
            owner_message = MESSAGE_BUILDERS[event](payload)
            group_message = _group_message(event, payload)
        except Exception as e:
            logger.warning(f"⚠️ Could not build {event.value} notification: {type(e).__name__}: {e}")
            return

        targets: List[tuple] = []
        if self.owner_chat_id is not None:
            targets.append((self.owner_chat_id, owner_message))
        if self.group_chat_id is not None and self.group_chat_id != self.owner_chat_id and group_message:
            targets.append((self.group_chat_id, group_message))

        for chat_id, message in targets:
            try:
                await self.bot.send_message(chat_id=chat_id, text=message, parse_mode='HTML')
            except Exception as e:
                logger.warning(f"⚠️ Telegram notification ({event.value}) to {chat_id} failed: {e}")

    async def drain(self):
        """Wait for every scheduled delivery (shutdown and tests)"""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def start(self):
        if self.bot is None:
            logger.info("🔕 TELEGRAM_BOT_TOKEN not set - notifications are log-only")
            return
        try:
            await self.bot.initialize()
            logger.info("✅ Telegram notifier ready")
        except Exception as e:
            logger.warning(f"⚠️ Telegram bot initialization failed, notifications may not be delivered: {e}")

    async def close(self):
        await self.drain()
        if self.bot is not None:
            try:
                await self.bot.shutdown()
            except Exception as e:
                logger.warning(f"⚠️ Telegram bot shutdown error: {e}")


def build_notifier_from_config(config: Optional[TelegramConfig] = None) -> Notifier:
    config = config or get_config().telegram
    bot = Bot(token=config.bot_token) if config.bot_token else None
    return Notifier(bot=bot, owner_chat_id=config.owner_chat_id, group_chat_id=config.notify_group_id)

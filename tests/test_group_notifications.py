"""Telegram notifier delivery."""

import logging
from datetime import timedelta
from decimal import Decimal
from unittest.mock import AsyncMock

from conftest import START
from group_notifications import Notifier, mask_username, build_notifier_from_config
from config import TelegramConfig
from models import NotificationEvent

PAYLOAD = {
    "order_id": "PANEL-1-AB",
    "user_id": "u1",
    "username": "budi_tg",
    "plan": "1gb",
    "panel_username": "budi",
    "amount": Decimal("15000"),
    "total": Decimal("15105"),
    "email": "budi@gmail.com",
    "login_url": "https://panel.test",
    "server_id": 42,
    "specs": {"ram": "1GB", "cpu": "40%", "disk": "1GB"},
    "account_expires_at": START + timedelta(days=30),
}


class TestNotifier:
    """Fire-and-forget delivery."""

    async def test_owner_gets_full_details(self) -> None:
        """The owner chat receives an HTML message with the panel details."""
        bot = AsyncMock()
        notifier = Notifier(bot=bot, owner_chat_id=1001)

        notifier.notify(NotificationEvent.ACCOUNT_REGISTERED, PAYLOAD)
        await notifier.drain()

        bot.send_message.assert_awaited_once()
        kwargs = bot.send_message.await_args.kwargs
        assert kwargs["chat_id"] == 1001
        assert kwargs["parse_mode"] == "HTML"
        assert "<code>budi</code>" in kwargs["text"]
        assert "RAM 1GB" in kwargs["text"]

    async def test_group_gets_masked_summary(self) -> None:
        """The notify group sees a masked buyer name only."""
        bot = AsyncMock()
        notifier = Notifier(bot=bot, owner_chat_id=1001, group_chat_id=-2002)

        notifier.notify(NotificationEvent.ORDER_PAID, PAYLOAD)
        await notifier.drain()

        assert bot.send_message.await_count == 2
        group_text = bot.send_message.await_args_list[1].kwargs["text"]
        assert bot.send_message.await_args_list[1].kwargs["chat_id"] == -2002
        assert "budi_tg" not in group_text
        assert "bu*****" in group_text

    async def test_owner_only_events_skip_group(self) -> None:
        """Deletions and failures are never posted to the group."""
        bot = AsyncMock()
        notifier = Notifier(bot=bot, owner_chat_id=1001, group_chat_id=-2002)

        notifier.notify(NotificationEvent.PROVISIONING_FAILED, {**PAYLOAD, "reason": "create server: HTTP 500"})
        await notifier.drain()

        bot.send_message.assert_awaited_once()
        assert "create server: HTTP 500" in bot.send_message.await_args.kwargs["text"]

    async def test_delivery_failure_is_swallowed(self) -> None:
        """A Telegram error is logged and does not reach the caller."""
        bot = AsyncMock()
        bot.send_message.side_effect = RuntimeError("Forbidden: bot was blocked")
        notifier = Notifier(bot=bot, owner_chat_id=1001)

        notifier.notify(NotificationEvent.PANEL_DELETED, {"panel_username": "budi", "server_id": 42, "actor": "owner"})
        await notifier.drain()

        bot.send_message.assert_awaited_once()

    async def test_unbuildable_payload_logged(self, caplog) -> None:
        """A payload the message builder cannot render is logged and nothing is sent."""
        bot = AsyncMock()
        notifier = Notifier(bot=bot, owner_chat_id=1001, group_chat_id=-2002)

        with caplog.at_level(logging.WARNING, logger="group_notifications"):
            notifier.notify(NotificationEvent.ORDER_PAID, {**PAYLOAD, "total": "n/a"})
            await notifier.drain()

        bot.send_message.assert_not_called()
        assert "Could not build order_paid notification" in caplog.text

    async def test_html_escaped(self) -> None:
        """User-controlled text cannot inject markup."""
        bot = AsyncMock()
        notifier = Notifier(bot=bot, owner_chat_id=1001)

        notifier.notify(NotificationEvent.PANEL_DELETED, {"panel_username": "<b>x</b>", "server_id": 1, "actor": "a&b"})
        await notifier.drain()

        text = bot.send_message.await_args.kwargs["text"]
        assert "&lt;b&gt;x&lt;/b&gt;" in text
        assert "a&amp;b" in text

    async def test_disabled_without_bot(self) -> None:
        """Without a bot the notifier only logs."""
        notifier = Notifier(bot=None, owner_chat_id=1001)
        notifier.notify(NotificationEvent.ORDER_PAID, PAYLOAD)
        await notifier.drain()
        assert not notifier.enabled

    def test_no_running_loop(self) -> None:
        """Outside an event loop the notification is dropped, not raised."""
        bot = AsyncMock()
        Notifier(bot=bot, owner_chat_id=1001).notify(NotificationEvent.ORDER_PAID, PAYLOAD)
        bot.send_message.assert_not_called()

    def test_build_without_token(self) -> None:
        """No token means no bot."""
        notifier = build_notifier_from_config(TelegramConfig(bot_token="", owner_chat_id=1001))
        assert notifier.bot is None


class TestMaskUsername:
    """Username masking for group posts."""

    def test_mask(self) -> None:
        assert mask_username("budi_tg") == "bu*****"
        assert mask_username("@ab") == "****"
        assert mask_username(None) == "Someone"

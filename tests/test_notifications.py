"""
Tests for settlement notification formatting and delivery.
"""
from datetime import datetime, timezone
from typing import List, Tuple

import httpx
import pytest

from voucher_hub.core.models import Provider, TransactionStatus
from voucher_hub.core.notifications import (
    NotificationDispatcher,
    SettlementNotice,
    escape_markdown,
    format_message,
    format_rupiah,
    parse_chat_ids,
)
from voucher_hub.integrations.credentials import StaticCredentialSource
from voucher_hub.integrations.telegram import TelegramTransport

from tests.conftest import make_transaction

TELEGRAM = {"telegram.bot_token": "123:abc", "telegram.chat_ids": "111, 222"}


class RecordingTransport:
    def __init__(self, failing: Tuple[str, ...] = (), raising: Tuple[str, ...] = ()):
        self.failing = failing
        self.raising = raising
        self.sent: List[Tuple[str, str, str]] = []

    async def send(self, bot_token: str, chat_id: str, text: str) -> bool:
        if chat_id in self.raising:
            raise RuntimeError("socket closed")
        self.sent.append((bot_token, chat_id, text))
        return chat_id not in self.failing


def settled_notice(**overrides) -> SettlementNotice:
    values = dict(
        status=TransactionStatus.SUKSES,
        serial_number="1234-5678",
        timestamp=datetime(2024, 5, 1, 8, 0, tzinfo=timezone.utc),
    )
    values.update(overrides)
    return SettlementNotice.from_transaction(make_transaction(**values), context="Auto Check")


class TestFormatting:
    """Test suite for MarkdownV2 rendering."""

    @pytest.mark.unit
    def test_escape_reserved_characters(self) -> None:
        assert escape_markdown("a_b.c!") == "a\\_b\\.c\\!"
        assert escape_markdown("(x) [y] -z+") == "\\(x\\) \\[y\\] \\-z\\+"
        assert escape_markdown(None) == ""

    @pytest.mark.unit
    def test_format_rupiah(self) -> None:
        assert format_rupiah(16000) == "Rp 16.000"
        assert format_rupiah(1250000) == "Rp 1.250.000"
        assert format_rupiah(500) == "Rp 500"

    @pytest.mark.unit
    def test_success_message(self) -> None:
        """Test labels, amounts and the Jakarta timestamp of a Sukses notice."""
        text = format_message(settled_notice())

        assert text.startswith("*🔔 Transaksi Voucher Hub \\(Auto Check\\)*")
        assert "*Provider:* Voucher\\-A" in text
        assert "*ID Ref:* `VHTEST0001`" in text
        assert "*Status:* *Sukses*" in text
        assert "*SN/Token:* `1234\\-5678`" in text
        assert "*Harga Jual:* Rp 16\\.000" in text
        assert "*Harga Modal:* Rp 15\\.000" in text
        assert "*Profit:* Rp 1\\.000" in text
        assert "_01/05/2024 15\\.00\\.00 WIB_" in text

    @pytest.mark.unit
    def test_break_even_sale_shows_zero_profit(self) -> None:
        text = format_message(settled_notice(cost_price=16000, selling_price=16000))

        assert "*Profit:* Rp 0" in text

    @pytest.mark.unit
    def test_failure_message(self) -> None:
        text = format_message(
            settled_notice(status=TransactionStatus.GAGAL, serial_number=None, failure_reason="Nomor salah.")
        )

        assert "*Alasan Gagal:* Nomor salah\\." in text
        assert "SN/Token" not in text
        assert "Harga Jual" not in text

    @pytest.mark.unit
    def test_pending_message_and_server_id(self) -> None:
        notice = SettlementNotice.from_transaction(
            make_transaction(
                provider=Provider.VOUCHER_B,
                original_customer_no="12345678|2001",
                provider_transaction_id="T-9",
            ),
            context="Order",
        )
        text = format_message(notice)

        assert notice.destination == "12345678 (2001)"
        assert "*Tujuan:* 12345678 \\(2001\\)" in text
        assert "*ID Trx Provider:* `T\\-9`" in text
        assert "sedang diproses" in text

    @pytest.mark.unit
    def test_parse_chat_ids(self) -> None:
        assert parse_chat_ids(" 111 , ,222,") == ["111", "222"]
        assert parse_chat_ids(None) == []


class TestNotificationDispatcher:
    """Test suite for NotificationDispatcher."""

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_sends_to_every_chat(self) -> None:
        transport = RecordingTransport()
        dispatcher = NotificationDispatcher(transport, StaticCredentialSource(TELEGRAM))

        delivered = await dispatcher.notify(settled_notice())

        assert delivered == 2
        assert [chat for _, chat, _ in transport.sent] == ["111", "222"]
        assert all(token == "123:abc" for token, _, _ in transport.sent)

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_missing_token_skips(self) -> None:
        transport = RecordingTransport()
        dispatcher = NotificationDispatcher(
            transport, StaticCredentialSource({"telegram.chat_ids": "111"})
        )

        assert await dispatcher.notify(settled_notice()) == 0
        assert transport.sent == []

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_one_failing_chat_does_not_block_others(self) -> None:
        """Test per-chat independence for rejected and raising sends."""
        rejecting = NotificationDispatcher(
            RecordingTransport(failing=("111",)), StaticCredentialSource(TELEGRAM)
        )
        raising = NotificationDispatcher(
            RecordingTransport(raising=("111",)), StaticCredentialSource(TELEGRAM)
        )

        assert await rejecting.notify(settled_notice()) == 1
        assert await raising.notify(settled_notice()) == 1

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_dispatch_runs_in_background(self) -> None:
        transport = RecordingTransport()
        dispatcher = NotificationDispatcher(transport, StaticCredentialSource(TELEGRAM))

        dispatcher.dispatch(settled_notice())
        await dispatcher.drain()

        assert len(transport.sent) == 2

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_telegram_transport(self) -> None:
        """Test the Bot API request shape and rejection handling."""
        seen: List[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            if request.url.path.endswith("/sendMessage") and b'"999"' in request.content:
                return httpx.Response(400, json={"ok": False, "description": "chat not found"})
            return httpx.Response(200, json={"ok": True, "result": {}})

        transport = TelegramTransport(
            base_url="https://telegram.test", transport=httpx.MockTransport(handler)
        )

        assert await transport.send("123:abc", "111", "*hi*") is True
        assert await transport.send("123:abc", "999", "*hi*") is False
        assert seen[0].url.path == "/bot123:abc/sendMessage"

"""
Settlement notifications.

Dispatch is best-effort: ``dispatch`` schedules delivery and returns at once,
and no notification failure ever reaches the caller. Each chat id is sent
independently so one bad destination does not block the rest.
"""
import asyncio
import re
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional, Protocol, Set
from zoneinfo import ZoneInfo

import structlog

from voucher_hub.core.models import Transaction, TransactionStatus, split_destination
from voucher_hub.integrations.credentials import (
    TELEGRAM_BOT_TOKEN,
    TELEGRAM_CHAT_IDS,
    CredentialSource,
)
from voucher_hub.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)

JAKARTA = ZoneInfo("Asia/Jakarta")

_RESERVED = re.compile(r"([_*\[\]()~`>#+\-=|{}.!\\])")


class NotificationTransport(Protocol):
    async def send(self, bot_token: str, chat_id: str, text: str) -> bool:
        ...


@dataclass(frozen=True)
class SettlementNotice:
    ref_id: str
    product_name: str
    destination: str
    status: TransactionStatus
    provider: str
    timestamp: datetime
    cost_price: Optional[int] = None
    selling_price: Optional[int] = None
    serial_number: Optional[str] = None
    failure_reason: Optional[str] = None
    provider_transaction_id: Optional[str] = None
    context: Optional[str] = None

    @property
    def profit(self) -> Optional[int]:
        if self.cost_price is None or self.selling_price is None:
            return None
        return self.selling_price - self.cost_price

    @classmethod
    def from_transaction(cls, tx: Transaction, context: Optional[str] = None) -> "SettlementNotice":
        destination, server_id = split_destination(tx.original_customer_no)
        if server_id:
            destination = f"{destination} ({server_id})"
        return cls(
            ref_id=tx.id,
            product_name=tx.product_name,
            destination=destination,
            status=tx.status,
            provider=tx.provider.display_name,
            timestamp=tx.timestamp,
            cost_price=tx.cost_price,
            selling_price=tx.selling_price,
            serial_number=tx.serial_number,
            failure_reason=tx.failure_reason,
            provider_transaction_id=tx.provider_transaction_id,
            context=context,
        )


def escape_markdown(value: object) -> str:
    """Escape Telegram MarkdownV2 reserved characters."""
    if value is None:
        return ""
    return _RESERVED.sub(r"\\\1", str(value))


def format_rupiah(amount: int) -> str:
    # id-ID grouping uses dots
    return f"Rp {amount:,}".replace(",", ".")


def format_message(notice: SettlementNotice) -> str:
    """Render a notice as a MarkdownV2 message."""
    title = "*🔔 Transaksi Voucher Hub"
    if notice.context:
        title += f" \\({escape_markdown(notice.context)}\\)"
    lines = [
        title + "*",
        "",
        f"*Provider:* {escape_markdown(notice.provider)}",
        f"*ID Ref:* `{escape_markdown(notice.ref_id)}`",
    ]
    if notice.provider_transaction_id:
        lines.append(f"*ID Trx Provider:* `{escape_markdown(notice.provider_transaction_id)}`")
    lines.append(f"*Produk:* {escape_markdown(notice.product_name)}")
    lines.append(f"*Tujuan:* {escape_markdown(notice.destination)}")
    lines.append(f"*Status:* *{escape_markdown(notice.status.value)}*")

    if notice.status is TransactionStatus.SUKSES:
        lines.append(f"*SN/Token:* `{escape_markdown(notice.serial_number or 'N/A')}`")
        if notice.selling_price is not None:
            lines.append(f"*Harga Jual:* {escape_markdown(format_rupiah(notice.selling_price))}")
        if notice.cost_price is not None:
            lines.append(f"*Harga Modal:* {escape_markdown(format_rupiah(notice.cost_price))}")
        if notice.profit is not None:
            lines.append(f"*Profit:* {escape_markdown(format_rupiah(notice.profit))}")
    elif notice.status is TransactionStatus.GAGAL and notice.failure_reason:
        lines.append(f"*Alasan Gagal:* {escape_markdown(notice.failure_reason)}")
    elif notice.status is TransactionStatus.PENDING:
        lines.append("_Transaksi sedang diproses\\.\\.\\._")

    local_time = notice.timestamp.astimezone(JAKARTA).strftime("%d/%m/%Y %H.%M.%S")
    lines.append("")
    lines.append(f"_{escape_markdown(local_time)} WIB_")
    return "\n".join(lines)


def parse_chat_ids(raw: Optional[str]) -> List[str]:
    if not raw:
        return []
    return [chat_id.strip() for chat_id in raw.split(",") if chat_id.strip()]


class NotificationDispatcher:
    """Fans a settlement notice out to every configured Telegram chat."""

    def __init__(self, transport: NotificationTransport, credentials: CredentialSource):
        self.transport = transport
        self.credentials = credentials
        self._tasks: Set[asyncio.Task] = set()

    def dispatch(self, notice: SettlementNotice) -> None:
        """Schedule delivery without waiting for it."""
        task = asyncio.create_task(self.notify(notice))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def drain(self) -> None:
        """Wait for every scheduled delivery (used on shutdown and in tests)."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def notify(self, notice: SettlementNotice) -> int:
        """
        Deliver a notice now.

        Returns:
            int: Number of chats that accepted the message
        """
        try:
            bot_token = await self.credentials.get(TELEGRAM_BOT_TOKEN)
            chat_ids = parse_chat_ids(await self.credentials.get(TELEGRAM_CHAT_IDS))
        except Exception as e:
            logger.error("notification_settings_failed", ref_id=notice.ref_id, error=str(e))
            metrics.record_notification("failed")
            return 0

        if not bot_token or not chat_ids:
            metrics.record_notification("skipped")
            return 0

        text = format_message(notice)
        delivered = 0
        for chat_id in chat_ids:
            try:
                sent = await self.transport.send(bot_token, chat_id, text)
            except Exception as e:
                logger.warning(
                    "notification_send_error",
                    ref_id=notice.ref_id,
                    chat_id=chat_id,
                    error=str(e),
                )
                sent = False

            if sent:
                delivered += 1
                metrics.record_notification("sent")
                logger.info("notification_sent", ref_id=notice.ref_id, chat_id=chat_id)
            else:
                metrics.record_notification("failed")
                logger.warning("notification_failed", ref_id=notice.ref_id, chat_id=chat_id)

        return delivered

"""
Runtime credential lookup.

Adapters and the notification transport resolve credentials through a
``CredentialSource`` on every call, so rotating a key in the settings store
takes effect without a restart.
"""
from typing import Mapping, Optional, Protocol

VOUCHER_A_USERNAME = "voucher_a.username"
VOUCHER_A_API_KEY = "voucher_a.api_key"
VOUCHER_B_MEMBER_CODE = "voucher_b.member_code"
VOUCHER_B_SECRET = "voucher_b.secret"
TELEGRAM_BOT_TOKEN = "telegram.bot_token"
TELEGRAM_CHAT_IDS = "telegram.chat_ids"
NICKNAME_INQUIRY_URL = "nickname_inquiry.url"
PIN_HASH_PREFIX = "pin_hash."


class CredentialSource(Protocol):
    async def get(self, key: str) -> Optional[str]:
        ...


class StaticCredentialSource:
    """Credentials from a fixed mapping; blank values count as missing."""

    def __init__(self, values: Optional[Mapping[str, Optional[str]]] = None):
        self.values = dict(values or {})

    async def get(self, key: str) -> Optional[str]:
        value = self.values.get(key)
        if value is None or not str(value).strip():
            return None
        return str(value).strip()

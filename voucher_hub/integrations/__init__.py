"""Upstream provider and notification integrations."""
from .base import CircuitBreaker, ProviderAdapter, ProviderCallError
from .nickname import NicknameInquiryAdapter
from .pin import SettingsPinVerifier
from .telegram import TelegramTransport
from .voucher_a import VoucherAAdapter
from .voucher_b import VoucherBAdapter

__all__ = [
    "CircuitBreaker",
    "NicknameInquiryAdapter",
    "ProviderAdapter",
    "ProviderCallError",
    "SettingsPinVerifier",
    "TelegramTransport",
    "VoucherAAdapter",
    "VoucherBAdapter",
]

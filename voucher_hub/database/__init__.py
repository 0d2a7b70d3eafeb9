"""Database package for the voucher hub."""
from .connection import build_engine, build_session_factory, init_db
from .models import AppSetting, Base, PriceOverride, TransactionRecord
from .repository import (
    PriceOverrideRepository,
    SettingsCredentialSource,
    SettingsRepository,
    SqlTransactionStore,
)

__all__ = [
    "AppSetting",
    "Base",
    "PriceOverride",
    "PriceOverrideRepository",
    "SettingsCredentialSource",
    "SettingsRepository",
    "SqlTransactionStore",
    "TransactionRecord",
    "build_engine",
    "build_session_factory",
    "init_db",
]

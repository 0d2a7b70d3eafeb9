"""
Wiring of the runtime object graph.

``build_services`` is shared by the API lifespan and the standalone worker so
both run the same engine against the same store.
"""
from dataclasses import dataclass
from typing import Optional

import httpx
import structlog
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from voucher_hub.config import Settings, get_settings
from voucher_hub.core.lifecycle import TransactionLifecycleEngine
from voucher_hub.core.models import Provider
from voucher_hub.core.notifications import NotificationDispatcher
from voucher_hub.core.pricing import PriceResolver
from voucher_hub.core.scheduler import InMemoryLeaseMap, ReconciliationScheduler, RedisLeaseMap
from voucher_hub.database.connection import build_engine, build_session_factory
from voucher_hub.database.repository import (
    PriceOverrideRepository,
    SettingsCredentialSource,
    SettingsRepository,
    SqlTransactionStore,
)
from voucher_hub.integrations.base import CircuitBreaker
from voucher_hub.integrations.nickname import NicknameInquiryAdapter
from voucher_hub.integrations.pin import SettingsPinVerifier
from voucher_hub.integrations.telegram import TelegramTransport
from voucher_hub.integrations.voucher_a import VoucherAAdapter
from voucher_hub.integrations.voucher_b import VoucherBAdapter
from voucher_hub.monitoring.health import HealthCheck

logger = structlog.get_logger(__name__)


@dataclass
class Services:
    settings: Settings
    db_engine: AsyncEngine
    session_factory: async_sessionmaker[AsyncSession]
    store: SqlTransactionStore
    price_overrides: PriceOverrideRepository
    settings_repository: SettingsRepository
    engine: TransactionLifecycleEngine
    nickname_inquiry: NicknameInquiryAdapter
    scheduler: ReconciliationScheduler
    health: HealthCheck

    async def close(self) -> None:
        await self.scheduler.stop()
        if self.engine.dispatcher is not None:
            await self.engine.dispatcher.drain()
        leases = self.scheduler.leases
        if isinstance(leases, RedisLeaseMap):
            await leases.close()
        await self.db_engine.dispose()
        logger.info("services_closed")


def build_services(
    settings: Optional[Settings] = None,
    db_engine: Optional[AsyncEngine] = None,
    provider_transport: Optional[httpx.AsyncBaseTransport] = None,
    notification_transport: Optional[httpx.AsyncBaseTransport] = None,
) -> Services:
    """
    Build the full service graph.

    Args:
        settings: Settings to use (defaults to ``get_settings()``)
        db_engine: Existing engine; one is created from settings otherwise
        provider_transport: httpx transport for provider calls (tests)
        notification_transport: httpx transport for Telegram calls (tests)
    """
    settings = settings or get_settings()
    db_engine = db_engine or build_engine(
        settings.database_url,
        echo=settings.database_echo,
        pool_size=settings.database_pool_size,
        max_overflow=settings.database_max_overflow,
    )
    session_factory = build_session_factory(db_engine)

    price_overrides = PriceOverrideRepository(session_factory)
    price_resolver = PriceResolver(price_overrides)
    settings_repository = SettingsRepository(session_factory)
    credentials = SettingsCredentialSource(settings_repository, settings)
    store = SqlTransactionStore(session_factory, price_resolver)

    adapter_options = dict(
        timeout=settings.provider_timeout_seconds,
        max_attempts=settings.provider_retry_max_attempts,
        retry_base_delay=settings.provider_retry_base_delay,
        transport=provider_transport,
    )
    adapters = {
        Provider.VOUCHER_A: VoucherAAdapter(
            credentials,
            settings.voucher_a_base_url,
            testing=settings.voucher_a_testing,
            circuit_breaker=CircuitBreaker(
                Provider.VOUCHER_A.value,
                failure_threshold=settings.circuit_breaker_failure_threshold,
                timeout=settings.circuit_breaker_reset_seconds,
            ),
            **adapter_options,
        ),
        Provider.VOUCHER_B: VoucherBAdapter(
            credentials,
            settings.voucher_b_base_url,
            circuit_breaker=CircuitBreaker(
                Provider.VOUCHER_B.value,
                failure_threshold=settings.circuit_breaker_failure_threshold,
                timeout=settings.circuit_breaker_reset_seconds,
            ),
            **adapter_options,
        ),
    }

    nickname_inquiry = NicknameInquiryAdapter(
        credentials,
        circuit_breaker=CircuitBreaker(
            "nickname_inquiry",
            failure_threshold=settings.circuit_breaker_failure_threshold,
            timeout=settings.circuit_breaker_reset_seconds,
        ),
        **adapter_options,
    )

    dispatcher = NotificationDispatcher(
        TelegramTransport(
            settings.telegram_api_base_url,
            timeout=settings.notification_timeout_seconds,
            transport=notification_transport,
        ),
        credentials,
    )

    engine = TransactionLifecycleEngine(
        store=store,
        adapters=adapters,
        price_resolver=price_resolver,
        dispatcher=dispatcher,
        pin_verifier=SettingsPinVerifier(credentials),
    )

    leases = RedisLeaseMap.from_url(settings.redis_url) if settings.redis_url else InMemoryLeaseMap()
    scheduler = ReconciliationScheduler(
        engine,
        store,
        leases=leases,
        interval=settings.reconciliation_interval_seconds,
        attempt_timeout=settings.reconciliation_attempt_timeout_seconds,
        lease_ttl=settings.reconciliation_lease_ttl_seconds,
        max_concurrency_per_provider=settings.reconciliation_max_concurrency_per_provider,
    )

    return Services(
        settings=settings,
        db_engine=db_engine,
        session_factory=session_factory,
        store=store,
        price_overrides=price_overrides,
        settings_repository=settings_repository,
        engine=engine,
        nickname_inquiry=nickname_inquiry,
        scheduler=scheduler,
        health=HealthCheck(session_factory, settings.redis_url, scheduler),
    )

"""
Pytest configuration and fixtures.
"""
import asyncio
from datetime import datetime, timezone
from typing import Any, AsyncGenerator, List, Optional

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine
from sqlalchemy.pool import NullPool

from voucher_hub.config import Settings
from voucher_hub.core.lifecycle import TransactionLifecycleEngine
from voucher_hub.core.models import (
    OrderRequest,
    OutcomeEnvelope,
    OutcomeStatus,
    PinVerification,
    Provider,
    Transaction,
    TransactionStatus,
)
from voucher_hub.core.pricing import PriceResolver
from voucher_hub.database.connection import build_session_factory, init_db
from voucher_hub.database.repository import SqlTransactionStore


def envelope(status: OutcomeStatus, **kwargs: Any) -> OutcomeEnvelope:
    """Build an outcome envelope for a scripted adapter."""
    return OutcomeEnvelope(
        is_success=status in (OutcomeStatus.SUKSES, OutcomeStatus.PENDING),
        status=status,
        **kwargs,
    )


class FakeAdapter:
    """
    Scripted provider adapter.

    Responses are consumed in order; the last one repeats. An exception in the
    script is raised instead of returned.
    """

    def __init__(self, *responses: Any, delay: float = 0.0):
        self.responses: List[Any] = list(responses)
        self.delay = delay
        self.calls: List[dict] = []
        self.active = 0
        self.max_active = 0

    async def purchase(
        self,
        ref_id: str,
        product_code: str,
        destination: str,
        server_id: Optional[str] = None,
    ) -> OutcomeEnvelope:
        self.calls.append(
            {
                "ref_id": ref_id,
                "product_code": product_code,
                "destination": destination,
                "server_id": server_id,
            }
        )
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            response = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        finally:
            self.active -= 1
        if isinstance(response, Exception):
            raise response
        return response


class RecordingDispatcher:
    """Collects notices instead of sending them."""

    def __init__(self) -> None:
        self.notices: list = []

    def dispatch(self, notice: Any) -> None:
        self.notices.append(notice)

    def contexts(self) -> List[Optional[str]]:
        return [notice.context for notice in self.notices]


class StaticPinVerifier:
    def __init__(self, valid: bool = True):
        self.valid = valid
        self.calls: list = []

    async def verify(self, account_id: str, pin: str) -> PinVerification:
        self.calls.append((account_id, pin))
        if self.valid:
            return PinVerification(valid=True)
        return PinVerification(valid=False, message="Invalid PIN.")


def make_transaction(**overrides: Any) -> Transaction:
    """A Pending Voucher-A transaction with sensible defaults."""
    values = dict(
        id="VHTEST0001",
        product_name="Telkomsel 15.000",
        details="Telkomsel 15.000 ke 081234567890",
        cost_price=15000,
        selling_price=16000,
        status=TransactionStatus.PENDING,
        timestamp=datetime(2024, 5, 1, 8, 0, tzinfo=timezone.utc),
        buyer_sku_code="tsel15",
        original_customer_no="081234567890",
        product_category="Pulsa",
        product_brand="TELKOMSEL",
        provider=Provider.VOUCHER_A,
        category_key="Pulsa",
    )
    values.update(overrides)
    return Transaction(**values)


def make_order(**overrides: Any) -> OrderRequest:
    values = dict(
        provider=Provider.VOUCHER_A,
        product_code="tsel15",
        destination="081234567890",
        cost_price=15000,
        product_name="Telkomsel 15.000",
        product_category="Pulsa",
        product_brand="TELKOMSEL",
    )
    values.update(overrides)
    return OrderRequest(**values)


@pytest.fixture
def test_settings(tmp_path: Any) -> Settings:
    """Create test settings."""
    return Settings(
        _env_file=None,
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'api.db'}",
        redis_url=None,
        app_name="voucher-hub-test",
        app_env="test",
        log_level="DEBUG",
        voucher_a_base_url="https://voucher-a.test",
        voucher_b_base_url="https://voucher-b.test",
        nickname_inquiry_url="https://storefront.test/initPayment.action",
        voucher_a_username="user-a",
        voucher_a_api_key="key-a",
        provider_retry_max_attempts=1,
        provider_retry_base_delay=0,
        run_scheduler_in_api=False,
    )


@pytest_asyncio.fixture
async def db_engine(tmp_path: Any) -> AsyncGenerator[AsyncEngine, Any]:
    """File-backed SQLite engine; every session gets its own connection."""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'voucher_hub.db'}",
        poolclass=NullPool,
    )
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def store(db_engine: AsyncEngine) -> SqlTransactionStore:
    return SqlTransactionStore(build_session_factory(db_engine), PriceResolver())


@pytest.fixture
def dispatcher() -> RecordingDispatcher:
    return RecordingDispatcher()


@pytest.fixture
def make_engine(store: SqlTransactionStore, dispatcher: RecordingDispatcher) -> Any:
    """Factory for engines sharing the test store and dispatcher."""

    def _make(
        voucher_a: Optional[FakeAdapter] = None,
        voucher_b: Optional[FakeAdapter] = None,
        pin_verifier: Optional[StaticPinVerifier] = None,
    ) -> TransactionLifecycleEngine:
        adapters = {}
        if voucher_a is not None:
            adapters[Provider.VOUCHER_A] = voucher_a
        if voucher_b is not None:
            adapters[Provider.VOUCHER_B] = voucher_b
        return TransactionLifecycleEngine(
            store=store,
            adapters=adapters,
            price_resolver=PriceResolver(),
            dispatcher=dispatcher,
            pin_verifier=pin_verifier,
        )

    return _make

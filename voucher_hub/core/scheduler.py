"""
Background reconciliation of Pending transactions.

Every tick re-derives the Pending set from the store and schedules at most one
attempt per transaction id. In-flight attempts are tracked by an explicit
lease map: an in-process dict by default, or Redis ``SET NX PX`` when several
worker replicas share the same database.
"""
import asyncio
import time
import uuid
from typing import Dict, Optional, Protocol

import redis.asyncio as aioredis
import structlog

from voucher_hub.core.errors import ProviderNotConfiguredError, TransactionNotFoundError
from voucher_hub.core.lifecycle import ReconcileOutcome, TransactionLifecycleEngine
from voucher_hub.core.models import Provider, Transaction
from voucher_hub.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)

AUTO_CHECK_CONTEXT = "Auto Check"


class LeaseMap(Protocol):
    async def acquire(self, key: str, ttl_seconds: float) -> bool:
        ...

    async def release(self, key: str) -> None:
        ...


class InMemoryLeaseMap:
    """Leases held in this process; expired leases can be re-acquired."""

    def __init__(self) -> None:
        self._expiry: Dict[str, float] = {}

    async def acquire(self, key: str, ttl_seconds: float) -> bool:
        now = time.monotonic()
        expires_at = self._expiry.get(key)
        if expires_at is not None and expires_at > now:
            return False
        self._expiry[key] = now + ttl_seconds
        return True

    async def release(self, key: str) -> None:
        self._expiry.pop(key, None)

    def __contains__(self, key: str) -> bool:
        expires_at = self._expiry.get(key)
        return expires_at is not None and expires_at > time.monotonic()


class RedisLeaseMap:
    """Leases shared across processes through Redis."""

    # Delete only if we still own the lease.
    RELEASE_SCRIPT = """
    if redis.call("get", KEYS[1]) == ARGV[1] then
        return redis.call("del", KEYS[1])
    end
    return 0
    """

    def __init__(self, redis_client: aioredis.Redis, prefix: str = "voucher_hub:reconcile:"):
        self.redis = redis_client
        self.prefix = prefix
        self._tokens: Dict[str, str] = {}

    @classmethod
    def from_url(cls, url: str) -> "RedisLeaseMap":
        return cls(aioredis.from_url(url, encoding="utf-8", decode_responses=True))

    async def acquire(self, key: str, ttl_seconds: float) -> bool:
        token = uuid.uuid4().hex
        acquired = await self.redis.set(
            f"{self.prefix}{key}", token, nx=True, px=int(ttl_seconds * 1000)
        )
        if acquired:
            self._tokens[key] = token
        return bool(acquired)

    async def release(self, key: str) -> None:
        token = self._tokens.pop(key, None)
        if token is None:
            return
        await self.redis.eval(self.RELEASE_SCRIPT, 1, f"{self.prefix}{key}", token)

    async def close(self) -> None:
        await self.redis.aclose()


class ReconciliationScheduler:
    """
    Polls Pending transactions and feeds them through the engine.

    Attempts are bounded by ``attempt_timeout`` and by a semaphore per
    provider. A timed-out or failed attempt leaves the transaction Pending for
    the next tick.
    """

    def __init__(
        self,
        engine: TransactionLifecycleEngine,
        store,
        leases: Optional[LeaseMap] = None,
        interval: float = 60.0,
        attempt_timeout: float = 45.0,
        lease_ttl: float = 120.0,
        max_concurrency_per_provider: int = 5,
    ):
        self.engine = engine
        self.store = store
        self.leases = leases or InMemoryLeaseMap()
        self.interval = interval
        self.attempt_timeout = attempt_timeout
        self.lease_ttl = lease_ttl
        self.max_concurrency_per_provider = max_concurrency_per_provider
        self._semaphores: Dict[Provider, asyncio.Semaphore] = {}
        self._inflight: Dict[str, asyncio.Task] = {}
        self._task: Optional[asyncio.Task] = None
        self._stop_event: Optional[asyncio.Event] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def inflight(self) -> int:
        return len(self._inflight)

    def _semaphore(self, provider: Provider) -> asyncio.Semaphore:
        semaphore = self._semaphores.get(provider)
        if semaphore is None:
            semaphore = asyncio.Semaphore(self.max_concurrency_per_provider)
            self._semaphores[provider] = semaphore
        return semaphore

    async def tick(self) -> int:
        """
        Schedule one attempt for each Pending transaction without one in flight.

        Returns:
            int: Number of attempts scheduled
        """
        pending = await self.store.list_pending()
        metrics.set_pending_transactions(len(pending))

        scheduled = 0
        for tx in pending:
            if tx.id in self._inflight:
                continue
            if not await self.leases.acquire(tx.id, self.lease_ttl):
                logger.debug("reconciliation_lease_held", transaction_id=tx.id)
                continue

            task = asyncio.create_task(self._attempt(tx))
            self._inflight[tx.id] = task
            task.add_done_callback(lambda _t, tx_id=tx.id: self._inflight.pop(tx_id, None))
            scheduled += 1

        metrics.set_reconciliation_inflight(len(self._inflight))
        if pending:
            logger.info(
                "reconciliation_tick",
                pending=len(pending),
                scheduled=scheduled,
                inflight=len(self._inflight),
            )
        return scheduled

    async def _attempt(self, tx: Transaction) -> Optional[ReconcileOutcome]:
        log = logger.bind(transaction_id=tx.id, provider=tx.provider.value)
        try:
            async with self._semaphore(tx.provider):
                result = await asyncio.wait_for(
                    self.engine.reconcile(tx.id, context=AUTO_CHECK_CONTEXT),
                    timeout=self.attempt_timeout,
                )
            return result.outcome
        except asyncio.TimeoutError:
            log.warning("reconciliation_attempt_timeout", timeout=self.attempt_timeout)
            metrics.record_reconciliation(ReconcileOutcome.TIMEOUT.value)
            return ReconcileOutcome.TIMEOUT
        except ProviderNotConfiguredError as e:
            log.warning("reconciliation_provider_not_configured", error=str(e))
            return ReconcileOutcome.NOT_CONFIGURED
        except TransactionNotFoundError:
            log.debug("reconciliation_transaction_deleted")
            return None
        except Exception as e:
            # Keep polling; the transaction stays Pending for the next tick.
            log.error("reconciliation_attempt_failed", error=str(e), exc_info=True)
            metrics.record_reconciliation("failed")
            return None
        finally:
            try:
                await self.leases.release(tx.id)
            except Exception as e:
                log.warning("reconciliation_lease_release_failed", error=str(e))

    async def drain(self) -> None:
        """Wait for every in-flight attempt to finish."""
        while self._inflight:
            await asyncio.gather(*list(self._inflight.values()), return_exceptions=True)
        metrics.set_reconciliation_inflight(0)

    async def run_forever(self) -> None:
        """Tick every ``interval`` seconds until ``stop`` is called."""
        if self._stop_event is None:
            self._stop_event = asyncio.Event()
        logger.info(
            "reconciliation_scheduler_started",
            interval=self.interval,
            attempt_timeout=self.attempt_timeout,
            max_concurrency_per_provider=self.max_concurrency_per_provider,
        )
        try:
            while not self._stop_event.is_set():
                try:
                    await self.tick()
                except Exception as e:
                    logger.error("reconciliation_tick_failed", error=str(e))

                try:
                    await asyncio.wait_for(self._stop_event.wait(), timeout=self.interval)
                except asyncio.TimeoutError:
                    pass
        finally:
            await self.drain()
            logger.info("reconciliation_scheduler_stopped")

    def start(self) -> asyncio.Task:
        if not self.running:
            self._stop_event = asyncio.Event()
            self._task = asyncio.create_task(self.run_forever())
        return self._task

    async def stop(self) -> None:
        if self._stop_event is not None:
            self._stop_event.set()
        if self._task is not None:
            await self._task
            self._task = None
        self._stop_event = None

"""
Concurrency tests for reconciliation.

Manual status checks and the background scheduler share the same settle path,
so overlapping reconciles must settle a transaction exactly once.
"""
import asyncio

import pytest

from voucher_hub.core.lifecycle import ReconcileOutcome
from voucher_hub.core.models import OutcomeStatus, TransactionStatus

from tests.conftest import FakeAdapter, envelope, make_transaction


class TestConcurrentReconcile:
    """Test suite for overlapping reconciles of one transaction."""

    @pytest.mark.race
    @pytest.mark.asyncio
    async def test_conflicting_outcomes_settle_once(self, make_engine, store, dispatcher) -> None:
        """
        Two reconciles observe different provider outcomes at the same time.

        Only one write may apply, the stored state must match the winner and
        only the winner notifies.
        """
        await store.create(make_transaction(id="RACE-1"))
        sukses = make_engine(
            voucher_a=FakeAdapter(envelope(OutcomeStatus.SUKSES, serial_number="SN-RACE"), delay=0.05)
        )
        gagal = make_engine(
            voucher_a=FakeAdapter(envelope(OutcomeStatus.GAGAL, message="Gangguan"), delay=0.05)
        )

        first, second = await asyncio.gather(
            sukses.reconcile("RACE-1", context="Status Check"),
            gagal.reconcile("RACE-1", context="Auto Check"),
        )

        outcomes = sorted([first.outcome.value, second.outcome.value])
        assert outcomes == sorted([ReconcileOutcome.SETTLED.value, ReconcileOutcome.LOST_RACE.value])

        winner = first if first.changed else second
        stored = await store.get("RACE-1")
        assert stored.status is winner.transaction.status
        assert len(dispatcher.notices) == 1
        if stored.status is TransactionStatus.SUKSES:
            assert stored.serial_number == "SN-RACE"
            assert stored.failure_reason is None
        else:
            assert stored.failure_reason == "Gangguan"
            assert stored.serial_number is None

    @pytest.mark.race
    @pytest.mark.asyncio
    async def test_many_concurrent_checks(self, make_engine, store, dispatcher) -> None:
        """Test that a burst of identical checks produces one settlement."""
        await store.create(make_transaction(id="RACE-2"))
        adapter = FakeAdapter(envelope(OutcomeStatus.SUKSES, serial_number="SN-2"), delay=0.02)
        engine = make_engine(voucher_a=adapter)

        results = await asyncio.gather(*(engine.reconcile("RACE-2") for _ in range(8)))

        settled = [r for r in results if r.outcome is ReconcileOutcome.SETTLED]
        assert len(settled) == 1
        assert all(r.transaction.status is TransactionStatus.SUKSES for r in results)
        assert len(dispatcher.notices) == 1
        assert dispatcher.notices[0].serial_number == "SN-2"

    @pytest.mark.race
    @pytest.mark.asyncio
    async def test_check_after_settlement_is_noop(self, make_engine, store, dispatcher) -> None:
        await store.create(make_transaction(id="RACE-3"))
        adapter = FakeAdapter(envelope(OutcomeStatus.GAGAL, message="Timeout"))
        engine = make_engine(voucher_a=adapter)

        await engine.reconcile("RACE-3")
        again = await engine.reconcile("RACE-3")

        assert again.outcome is ReconcileOutcome.ALREADY_SETTLED
        assert len(adapter.calls) == 1
        assert len(dispatcher.notices) == 1

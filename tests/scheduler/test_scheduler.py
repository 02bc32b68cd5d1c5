"""
Tests for the Scheduler.

============================================================
PURPOSE
============================================================
Verify due selection, dispatch order, lease exclusivity and the
bounded worker pool.

TEST PRINCIPLES:
- An indicator never runs twice concurrently
- Leases are always released, whatever the run outcome
- Urgent and overdue indicators are dispatched first

============================================================
"""

import asyncio
from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest

from core.config import SchedulerConfig
from core.exceptions import PersistenceError
from execution.executor import Executor
from execution.ledger import HistoryQuery
from indicators.store import InMemoryIndicatorStore
from scheduler.leases import LeaseMap
from scheduler.scheduler import Scheduler, is_due, overdue_minutes, priority_score


# ============================================================
# FIXTURES
# ============================================================

class FailingIndicatorStore(InMemoryIndicatorStore):
    """Store whose last_run writes always fail."""

    async def update_last_run(self, indicator_id, last_run):
        raise PersistenceError("write failed", operation="update_last_run")


@pytest.fixture
def scheduler_config():
    return SchedulerConfig(max_concurrent_executions=2, stuck_after_minutes=30)


@pytest.fixture
def leases():
    return LeaseMap(ttl_seconds=90)


@pytest.fixture
def scheduler(indicator_store, executor, leases, scheduler_config):
    return Scheduler(indicator_store, executor, leases, scheduler_config)


@pytest.fixture
def slow_scheduler(indicator_store, ledger, alert_store, slow_collector, notifier, leases, scheduler_config):
    executor = Executor(indicator_store, ledger, alert_store, slow_collector, notifier)
    return Scheduler(indicator_store, executor, leases, scheduler_config)


# ============================================================
# DUE SELECTION TESTS
# ============================================================

class TestDuePredicate:
    """Tests for is_due and ordering helpers."""

    def test_never_run_is_due(self, make_indicator, now):
        """An indicator that never ran is due immediately."""
        assert is_due(make_indicator(), now)

    def test_due_at_exact_frequency(self, make_indicator, now):
        """An indicator is due exactly one frequency after its last run."""
        indicator = make_indicator(frequency_minutes=5, last_run=now - timedelta(minutes=5))

        assert is_due(indicator, now)

    def test_not_due_before_frequency(self, make_indicator, now):
        """An indicator is not due a moment before its frequency elapses."""
        indicator = make_indicator(
            frequency_minutes=5, last_run=now - timedelta(minutes=5) + timedelta(seconds=1)
        )

        assert not is_due(indicator, now)

    def test_inactive_never_due(self, make_indicator, now):
        """Inactive indicators are never due."""
        assert not is_due(make_indicator(is_active=False), now)

    def test_overdue_minutes(self, make_indicator, now):
        """Overdue time counts from the due time, not the last run."""
        indicator = make_indicator(frequency_minutes=5, last_run=now - timedelta(minutes=12))

        assert overdue_minutes(indicator, now) == 7.0
        assert overdue_minutes(make_indicator(), now) == 0.0

    def test_overdue_bonus_is_capped(self, make_indicator, now):
        """Being overdue never outranks a more urgent priority."""
        stale = make_indicator(priority=2, frequency_minutes=5, last_run=now - timedelta(days=2))
        urgent = make_indicator(priority=1)

        assert priority_score(stale, now) == 1500.0
        assert priority_score(urgent, now) < priority_score(stale, now)


class TestDueIndicators:
    """Tests for Scheduler.due_indicators ordering."""

    @pytest.mark.asyncio
    async def test_priority_then_overdue(self, scheduler, indicator_store, make_indicator, now):
        """Dispatch order is priority first, then most overdue."""
        await indicator_store.add(make_indicator(name="a", priority=2))
        await indicator_store.add(make_indicator(
            name="b", priority=1, last_run=now - timedelta(minutes=10)
        ))
        await indicator_store.add(make_indicator(
            name="c", priority=2, last_run=now - timedelta(minutes=60)
        ))
        await indicator_store.add(make_indicator(name="d", priority=1))
        await indicator_store.add(make_indicator(name="e", last_run=now))

        due = await scheduler.due_indicators(now)

        assert [i.name for i in due] == ["b", "d", "c", "a"]


# ============================================================
# TICK TESTS
# ============================================================

class TestTick:
    """Tests for dispatch and tick."""

    @pytest.mark.asyncio
    async def test_first_tick_runs_everything(self, scheduler, indicator_store, make_indicator, ledger, now):
        """New indicators all run on the first tick."""
        for name in ("a", "b", "c"):
            await indicator_store.add(make_indicator(name=name))

        result = await scheduler.tick(now)

        assert result.dispatched == [1, 2, 3]
        assert len(result.records) == 3
        assert len(ledger) == 3
        assert all(i.last_run == now for i in await indicator_store.list_indicators())

    @pytest.mark.asyncio
    async def test_second_tick_same_time_is_idle(self, scheduler, indicator_store, make_indicator, now):
        """Nothing is due again until its frequency elapses."""
        await indicator_store.add(make_indicator(frequency_minutes=5))
        await scheduler.tick(now)

        assert (await scheduler.tick(now + timedelta(minutes=4))).due == []
        assert (await scheduler.tick(now + timedelta(minutes=5))).dispatched == [1]

    @pytest.mark.asyncio
    async def test_overlapping_ticks_run_once(
        self, slow_scheduler, indicator_store, make_indicator, slow_collector, ledger, now
    ):
        """Two concurrent ticks never run the same indicator twice."""
        await indicator_store.add(make_indicator())

        first, second = await asyncio.gather(slow_scheduler.tick(now), slow_scheduler.tick(now))

        assert len(first.dispatched) + len(second.dispatched) == 1
        assert len(slow_collector.calls) == 1
        assert len(ledger) == 1

    @pytest.mark.asyncio
    async def test_held_lease_is_skipped(self, scheduler, indicator_store, make_indicator, leases, now):
        """An indicator with a live lease is skipped this tick."""
        await indicator_store.add(make_indicator())
        leases.try_acquire(1, now)

        result = await scheduler.tick(now)

        assert result.due == [1]
        assert result.skipped == [1]
        assert result.records == []

    @pytest.mark.asyncio
    async def test_worker_pool_is_bounded(
        self, slow_scheduler, indicator_store, make_indicator, slow_collector, now
    ):
        """No more than max_concurrent_executions runs are in flight."""
        for name in ("a", "b", "c", "d", "e"):
            await indicator_store.add(make_indicator(name=name))

        result = await slow_scheduler.tick(now)

        assert len(result.records) == 5
        assert slow_collector.max_active == 2

    @pytest.mark.asyncio
    async def test_lease_released_after_failed_run(
        self, scheduler, indicator_store, make_indicator, leases, now
    ):
        """Collection failures still release the lease."""
        await indicator_store.add(make_indicator())

        result = await scheduler.tick(now)

        assert not result.records[0].success
        assert result.failed_runs == 1
        assert len(leases) == 0

    @pytest.mark.asyncio
    async def test_unexpected_error_reported(self, indicator_store, make_indicator, leases, now):
        """An executor crash is reported and the lease released."""
        executor = MagicMock()
        executor.run = AsyncMock(side_effect=RuntimeError("boom"))
        scheduler = Scheduler(indicator_store, executor, leases)
        await indicator_store.add(make_indicator())

        result = await scheduler.tick(now)

        assert result.records == []
        assert result.errors == ["1: RuntimeError: boom"]
        assert len(leases) == 0

    @pytest.mark.asyncio
    async def test_persistence_error_raised(
        self, ledger, alert_store, collector, notifier, leases, make_indicator, now
    ):
        """A persistence failure aborts the tick."""
        store = FailingIndicatorStore()
        executor = Executor(store, ledger, alert_store, collector, notifier)
        scheduler = Scheduler(store, executor, leases)
        await store.add(make_indicator())

        with pytest.raises(PersistenceError):
            await scheduler.tick(now)

        assert len(leases) == 0
        scheduler.raise_if_fatal()


class TestBackgroundDispatch:
    """Tests for non-blocking dispatch."""

    @pytest.mark.asyncio
    async def test_dispatch_then_drain(
        self, slow_scheduler, indicator_store, make_indicator, ledger, now
    ):
        """Dispatch returns before the runs finish; drain waits for them."""
        await indicator_store.add(make_indicator())

        batch = await slow_scheduler.dispatch(now)

        assert batch.dispatched == [1]
        assert slow_scheduler.in_flight == 1
        assert [lease.indicator_id for lease in slow_scheduler.running_executions(now)] == [1]

        assert await slow_scheduler.drain(timeout=2)
        assert slow_scheduler.in_flight == 0
        assert len(ledger) == 1

    @pytest.mark.asyncio
    async def test_background_persistence_error_surfaces(
        self, ledger, alert_store, collector, notifier, leases, make_indicator, now
    ):
        """A background persistence failure is re-raised once."""
        store = FailingIndicatorStore()
        executor = Executor(store, ledger, alert_store, collector, notifier)
        scheduler = Scheduler(store, executor, leases)
        await store.add(make_indicator())

        await scheduler.dispatch(now)
        await scheduler.drain(timeout=2)

        with pytest.raises(PersistenceError):
            scheduler.raise_if_fatal()
        scheduler.raise_if_fatal()

    @pytest.mark.asyncio
    async def test_cancel_all_releases_leases(
        self, slow_scheduler, indicator_store, make_indicator, slow_collector, leases, ledger, now
    ):
        """Cancelling in-flight runs releases their leases."""
        slow_collector.delay = 10
        await indicator_store.add(make_indicator())
        await slow_scheduler.dispatch(now)
        await asyncio.sleep(0.01)

        await slow_scheduler.cancel_all()

        assert slow_scheduler.in_flight == 0
        assert len(leases) == 0
        assert len(ledger) == 0


class TestInFlightExclusivity:
    """Tests that an indicator never has two runs in flight."""

    @pytest.mark.asyncio
    async def test_queued_run_outlives_its_lease(
        self, indicator_store, ledger, alert_store, slow_collector, notifier, make_indicator, now
    ):
        """A run waiting for a worker is not dispatched again when its lease expires."""
        slow_collector.delay = 0.3
        executor = Executor(indicator_store, ledger, alert_store, slow_collector, notifier)
        scheduler = Scheduler(
            indicator_store,
            executor,
            LeaseMap(ttl_seconds=1.5),
            SchedulerConfig(max_concurrent_executions=1),
        )
        await indicator_store.add(make_indicator(name="a"))
        await indicator_store.add(make_indicator(name="b"))
        later = now + timedelta(seconds=2)

        first = await scheduler.dispatch(now)
        second = await scheduler.dispatch(later)

        assert first.dispatched == [1, 2]
        assert second.dispatched == []
        assert second.skipped == [1, 2]
        assert [lease.indicator_id for lease in scheduler.running_executions(later)] == [1, 2]

        assert await scheduler.drain(timeout=5)
        assert slow_collector.calls == ["a", "b"]
        assert slow_collector.max_active == 1
        assert len(ledger) == 2

    @pytest.mark.asyncio
    async def test_stuck_run_cancelled_before_reclaim(
        self, indicator_store, ledger, alert_store, slow_collector, notifier, make_indicator, now
    ):
        """The stuck sweep cancels the run, records a failure, then frees the indicator."""
        slow_collector.delay = 10
        executor = Executor(indicator_store, ledger, alert_store, slow_collector, notifier)
        leases = LeaseMap(ttl_seconds=3600)
        scheduler = Scheduler(
            indicator_store, executor, leases, SchedulerConfig(stuck_after_minutes=1)
        )
        await indicator_store.add(make_indicator(frequency_minutes=1))
        await scheduler.dispatch(now)
        await asyncio.sleep(0.05)
        assert slow_collector.active == 1

        later = now + timedelta(minutes=2)
        stuck = await scheduler.sweep_stuck(later)

        assert [lease.indicator_id for lease in stuck] == [1]
        assert slow_collector.active == 0
        assert scheduler.in_flight == 0
        assert len(leases) == 0

        records = await ledger.query(HistoryQuery())
        assert len(records) == 1
        assert not records[0].success
        assert "cancelled" in records[0].error_message
        assert (await indicator_store.get(1)).last_run == now

        slow_collector.delay = 0.01
        result = await scheduler.tick(later)

        assert result.dispatched == [1]
        assert slow_collector.max_active == 1
        assert len(ledger) == 2

    @pytest.mark.asyncio
    async def test_finished_runs_are_not_swept(self, scheduler, indicator_store, make_indicator, ledger, now):
        """Completed runs leave nothing for the stuck sweep."""
        await indicator_store.add(make_indicator())
        await scheduler.tick(now)

        assert await scheduler.sweep_stuck(now + timedelta(hours=2)) == []
        assert len(ledger) == 1


# ============================================================
# LEASE TESTS
# ============================================================

class TestLeaseMap:
    """Tests for lease exclusivity and expiry."""

    def test_acquire_is_exclusive(self, leases, now):
        """A live lease blocks a second acquire."""
        lease = leases.try_acquire(1, now)

        assert lease is not None
        assert leases.try_acquire(1, now) is None
        assert leases.is_held(1, now)
        assert leases.try_acquire(2, now) is not None

    def test_release_then_reacquire(self, leases, now):
        """Releasing frees the indicator for the next tick."""
        lease = leases.try_acquire(1, now)

        assert leases.release(lease)
        assert leases.try_acquire(1, now) is not None

    def test_stale_token_release_is_noop(self, leases, now):
        """Only the current holder can release a lease."""
        old = leases.try_acquire(1, now)
        later = now + timedelta(seconds=91)
        new = leases.try_acquire(1, later)

        assert new is not None
        assert new.token != old.token
        assert not leases.release(old)
        assert leases.is_held(1, later)

    def test_expired_lease_not_active(self, leases, now):
        """Expired leases drop out of the active listing."""
        leases.try_acquire(1, now)
        later = now + timedelta(seconds=90)

        assert len(leases.active()) == 1
        assert leases.active(later) == []
        assert not leases.is_held(1, later)

    def test_ttl_must_be_positive(self):
        """A lease map needs a positive lifetime."""
        with pytest.raises(ValueError):
            LeaseMap(ttl_seconds=0)

    @pytest.mark.asyncio
    async def test_sweep_stuck(self, now):
        """Orphaned leases held past stuck_after_minutes are reclaimed."""
        long_leases = LeaseMap(ttl_seconds=3600)
        stuck_scheduler = Scheduler(
            MagicMock(), MagicMock(), long_leases, SchedulerConfig(stuck_after_minutes=30)
        )
        long_leases.try_acquire(1, now - timedelta(minutes=31))
        long_leases.try_acquire(2, now - timedelta(minutes=5))

        stuck = await stuck_scheduler.sweep_stuck(now)

        assert [lease.indicator_id for lease in stuck] == [1]
        assert [lease.indicator_id for lease in long_leases.active(now)] == [2]

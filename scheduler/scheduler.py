"""
Scheduler - Due Selection and Dispatch.

============================================================
PURPOSE
============================================================
Each tick:

    1. Snapshot active indicators
    2. Select the due ones:
           last_run is None  OR  now - last_run >= frequency
    3. Order by priority (1 first), then most overdue
    4. Skip indicators whose previous run is still in flight,
       then try_acquire a lease per indicator; held -> skip
    5. Run each leased indicator in the worker pool
    6. Release the lease when the run ends, however it ends

Two overlapping ticks can never run the same indicator twice.
An expired lease is only taken over once its run has ended;
runs held past stuck_after_minutes are cancelled by the stuck
sweep and recorded as failed collections.

============================================================
"""

import asyncio
import functools
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Dict, List, Optional

from core.config import SchedulerConfig
from core.exceptions import CollectionError, PersistenceError
from execution.executor import Executor
from execution.ledger import ExecutionRecord
from indicators.models import Indicator
from indicators.store import IndicatorStore

from .leases import Lease, LeaseMap


logger = logging.getLogger(__name__)

MAX_OVERDUE_BONUS = 500.0


# ============================================================
# DUE PREDICATE
# ============================================================

def is_due(indicator: Indicator, now: datetime) -> bool:
    """Active and never run, or at least one frequency since the last run."""
    if not indicator.is_active:
        return False
    if indicator.last_run is None:
        return True
    return now - indicator.last_run >= indicator.frequency


def overdue_minutes(indicator: Indicator, now: datetime) -> float:
    """Minutes past the due time; 0 for indicators that never ran."""
    next_run = indicator.next_run_at
    if next_run is None or now <= next_run:
        return 0.0
    return (now - next_run).total_seconds() / 60.0


def priority_score(indicator: Indicator, now: datetime) -> float:
    """Lower runs first. Overdue indicators gain up to half a priority level."""
    bonus = min(overdue_minutes(indicator, now) * 10.0, MAX_OVERDUE_BONUS)
    return indicator.priority * 1000.0 - bonus


# ============================================================
# RESULTS
# ============================================================

@dataclass
class DispatchBatch:
    """Runs started by one dispatch."""

    tick_time: datetime
    due: List[int] = field(default_factory=list)
    dispatched: List[int] = field(default_factory=list)
    skipped: List[int] = field(default_factory=list)
    tasks: List["asyncio.Task[ExecutionRecord]"] = field(default_factory=list)


@dataclass
class TickResult:
    """Outcome of a full tick."""

    tick_time: datetime
    due: List[int] = field(default_factory=list)
    dispatched: List[int] = field(default_factory=list)
    skipped: List[int] = field(default_factory=list)
    records: List[ExecutionRecord] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)

    @property
    def failed_runs(self) -> int:
        return sum(1 for record in self.records if not record.success) + len(self.errors)


@dataclass
class InFlightRun:
    """A dispatched run and the lease that admitted it."""

    indicator: Indicator
    lease: Lease
    scheduled_at: datetime
    task: "asyncio.Task[ExecutionRecord]"


# ============================================================
# SCHEDULER
# ============================================================

class Scheduler:
    """Selects due indicators and runs them under leases."""

    def __init__(
        self,
        indicator_store: IndicatorStore,
        executor: Executor,
        leases: LeaseMap,
        config: Optional[SchedulerConfig] = None,
    ):
        self._indicators = indicator_store
        self._executor = executor
        self._leases = leases
        self._config = config or SchedulerConfig()
        self._pool = asyncio.Semaphore(self._config.max_concurrent_executions)
        self._runs: Dict[int, InFlightRun] = {}
        self._fatal_error: Optional[PersistenceError] = None

    @property
    def leases(self) -> LeaseMap:
        return self._leases

    @property
    def in_flight(self) -> int:
        return len(self._runs)

    def is_running(self, indicator_id: int) -> bool:
        """True while a dispatched run for the indicator has not finished."""
        run = self._runs.get(indicator_id)
        return run is not None and not run.task.done()

    # --------------------------------------------------------
    # SELECTION
    # --------------------------------------------------------

    async def due_indicators(self, now: datetime) -> List[Indicator]:
        """Due indicators in dispatch order."""
        indicators = await self._indicators.list_indicators(active_only=True)
        due = [indicator for indicator in indicators if is_due(indicator, now)]
        due.sort(key=lambda indicator: (priority_score(indicator, now), indicator.indicator_id))
        return due

    def running_executions(self, now: Optional[datetime] = None) -> List[Lease]:
        """Live leases, plus leases of runs still in flight past expiry."""
        leases = {lease.indicator_id: lease for lease in self._leases.active(now)}
        for indicator_id, run in self._runs.items():
            if not run.task.done():
                leases.setdefault(indicator_id, run.lease)
        return sorted(leases.values(), key=lambda lease: lease.acquired_at)

    # --------------------------------------------------------
    # DISPATCH
    # --------------------------------------------------------

    async def dispatch(self, now: datetime) -> DispatchBatch:
        """Lease and start every due indicator without waiting for the runs."""
        batch = DispatchBatch(tick_time=now)

        for indicator in await self.due_indicators(now):
            indicator_id = indicator.indicator_id
            batch.due.append(indicator_id)

            if self.is_running(indicator_id):
                if self._runs[indicator_id].lease.is_expired(now):
                    logger.warning(
                        f"Indicator {indicator_id} lease expired but its run is still in flight, skipped"
                    )
                else:
                    logger.debug(f"Indicator {indicator_id} already running, skipped")
                batch.skipped.append(indicator_id)
                continue

            lease = self._leases.try_acquire(indicator_id, now)
            if lease is None:
                logger.debug(f"Indicator {indicator_id} already running, skipped")
                batch.skipped.append(indicator_id)
                continue

            task = asyncio.create_task(
                self._run_leased(indicator, lease, now),
                name=f"indicator-{indicator_id}",
            )
            self._runs[indicator_id] = InFlightRun(
                indicator=indicator, lease=lease, scheduled_at=now, task=task
            )
            task.add_done_callback(functools.partial(self._on_task_done, indicator_id))
            batch.dispatched.append(indicator_id)
            batch.tasks.append(task)

        if batch.due:
            logger.info(
                f"Tick {now.isoformat()}: {len(batch.due)} due, "
                f"{len(batch.dispatched)} dispatched, {len(batch.skipped)} skipped"
            )
        return batch

    async def tick(self, now: datetime) -> TickResult:
        """
        Dispatch and wait for this tick's runs.

        Raises:
            PersistenceError: a run could not persist its result
        """
        batch = await self.dispatch(now)
        result = TickResult(
            tick_time=now,
            due=batch.due,
            dispatched=batch.dispatched,
            skipped=batch.skipped,
        )

        outcomes = await asyncio.gather(*batch.tasks, return_exceptions=True)
        fatal: Optional[PersistenceError] = None
        for indicator_id, outcome in zip(batch.dispatched, outcomes):
            if isinstance(outcome, PersistenceError):
                fatal = fatal or outcome
                result.errors.append(f"{indicator_id}: {outcome.message}")
            elif isinstance(outcome, BaseException):
                result.errors.append(f"{indicator_id}: {type(outcome).__name__}: {outcome}")
            else:
                result.records.append(outcome)

        if fatal is not None:
            self._fatal_error = None
            raise fatal
        return result

    def raise_if_fatal(self) -> None:
        """Re-raise a persistence failure seen by any background run."""
        if self._fatal_error is not None:
            error, self._fatal_error = self._fatal_error, None
            raise error

    async def drain(self, timeout: Optional[float] = None) -> bool:
        """Wait for in-flight runs. Returns False if the timeout expired."""
        if not self._runs:
            return True
        done, pending = await asyncio.wait(
            {run.task for run in self._runs.values()}, timeout=timeout
        )
        return not pending

    async def cancel_all(self) -> None:
        tasks = [run.task for run in self._runs.values()]
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    async def sweep_stuck(self, now: datetime) -> List[Lease]:
        """
        Cancel runs held longer than stuck_after_minutes and reclaim leases.

        A cancelled run is recorded as a failed collection at its
        scheduled time. Its lease is released only after the task has
        finished, so the indicator is never running twice.

        Raises:
            PersistenceError: the failure record could not be written
        """
        older_than = timedelta(minutes=self._config.stuck_after_minutes)
        stuck_runs = [
            run for run in self._runs.values()
            if not run.task.done() and run.lease.age(now) >= older_than
        ]

        for run in stuck_runs:
            run.task.cancel()
        await asyncio.gather(*(run.task for run in stuck_runs), return_exceptions=True)

        for run in stuck_runs:
            age_minutes = run.lease.age(now).total_seconds() / 60.0
            logger.warning(
                f"Cancelled stuck run for indicator {run.indicator.indicator_id} "
                f"after {age_minutes:.1f} minutes"
            )
            if run.task.cancelled():
                await self._executor.record_failure(
                    run.indicator,
                    run.scheduled_at,
                    CollectionError(
                        f"run cancelled after {age_minutes:.1f} minutes without finishing",
                        indicator_id=run.indicator.indicator_id,
                        source_ref=run.indicator.source_ref,
                    ),
                )

        orphaned = self._leases.reclaim_stuck(now, older_than)
        for lease in orphaned:
            logger.warning(
                f"Reclaimed stuck lease for indicator {lease.indicator_id} "
                f"held for {lease.age(now).total_seconds() / 60.0:.1f} minutes"
            )
        return [run.lease for run in stuck_runs] + orphaned

    # --------------------------------------------------------
    # INTERNALS
    # --------------------------------------------------------

    async def _run_leased(self, indicator: Indicator, lease: Lease, now: datetime) -> ExecutionRecord:
        try:
            async with self._pool:
                return await self._executor.run(indicator, now)
        finally:
            self._leases.release(lease)

    def _on_task_done(self, indicator_id: int, task: "asyncio.Task[ExecutionRecord]") -> None:
        run = self._runs.get(indicator_id)
        if run is not None and run.task is task:
            del self._runs[indicator_id]
        if task.cancelled():
            return

        error = task.exception()
        if error is None:
            return
        if isinstance(error, PersistenceError):
            logger.critical(f"{task.get_name()}: {error.to_log_format()}")
            if self._fatal_error is None:
                self._fatal_error = error
        else:
            logger.error(f"{task.get_name()} failed: {type(error).__name__}: {error}")


__all__ = [
    "is_due",
    "overdue_minutes",
    "priority_score",
    "DispatchBatch",
    "TickResult",
    "InFlightRun",
    "Scheduler",
]

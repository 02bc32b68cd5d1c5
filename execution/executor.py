"""
Execution - Executor.

============================================================
PURPOSE
============================================================
Runs one indicator end to end:

    1. collect      (bounded by collection_timeout_seconds)
    2. evaluate     (pure)
    3. record       (ledger append)
    4. last_run     (indicator store)
    5. transition   (alert state store)
    6. notify       (only on TRIGGERED / RESOLVED transitions)

Steps run strictly in this order within one run.

============================================================
FAILURE HANDLING
============================================================
- Collection failure/timeout: failed record appended, last_run
  advanced, no evaluation, no alert transition.
- Evaluation error (zero/missing baseline): logged, run succeeds
  with deviation None and no alert.
- Notification failure: logged, state is not rolled back.
- PersistenceError: propagates to the caller.

============================================================
"""

import asyncio
import logging
import time
from datetime import datetime, timedelta
from typing import Optional

from core.config import ExecutorConfig
from core.exceptions import (
    CollectionError,
    CollectionTimeoutError,
    NotificationError,
    PersistenceError,
    wrap_exception,
)
from alerting.notifier import (
    AlertResolvedEvent,
    AlertTriggeredEvent,
    IndicatorExecutedEvent,
    MonitorEvent,
    Notifier,
)
from alerting.state_machine import TransitionOutcome
from alerting.store import AlertStateStore
from indicators.evaluator import evaluate
from indicators.models import AlertSeverity, Indicator
from indicators.store import IndicatorStore

from .collector import CollectionResult, MetricCollector
from .ledger import ExecutionLedger, ExecutionRecord


logger = logging.getLogger(__name__)


class Executor:
    """Runs single indicators. Stateless between runs."""

    def __init__(
        self,
        indicator_store: IndicatorStore,
        ledger: ExecutionLedger,
        alert_store: AlertStateStore,
        collector: MetricCollector,
        notifier: Notifier,
        config: Optional[ExecutorConfig] = None,
    ):
        self._indicators = indicator_store
        self._ledger = ledger
        self._alerts = alert_store
        self._collector = collector
        self._notifier = notifier
        self._config = config or ExecutorConfig()
        self._default_severity = AlertSeverity(self._config.default_threshold_severity)

    # --------------------------------------------------------
    # PUBLIC
    # --------------------------------------------------------

    async def run(self, indicator: Indicator, now: datetime) -> ExecutionRecord:
        """Execute one indicator at logical time `now`."""
        indicator_id = indicator.indicator_id
        logger.debug(f"Running indicator {indicator_id} '{indicator.name}'")
        started = time.perf_counter()

        try:
            result = await self._collect(indicator, now)
        except CollectionError as e:
            return await self.record_failure(indicator, now, e, started=started)

        evaluation = evaluate(
            indicator.indicator_type,
            indicator.config,
            result.current_value,
            result.baseline_value,
            default_severity=self._default_severity,
        )
        if evaluation.error is not None:
            logger.warning(
                f"Indicator {indicator_id} deviation not computed: {evaluation.error.message}"
            )

        record = ExecutionRecord(
            indicator_id=indicator_id,
            timestamp=now,
            success=True,
            current_value=result.current_value,
            baseline_value=result.baseline_value,
            deviation_percent=evaluation.deviation_percent,
            should_alert=evaluation.should_alert,
            severity=evaluation.severity if evaluation.should_alert else None,
            duration_ms=_elapsed_ms(started),
        )
        record = await self._ledger.append(record)
        await self._indicators.update_last_run(indicator_id, now)

        outcome = await self._alerts.transition(
            indicator_id,
            evaluation.should_alert,
            evaluation.severity,
            evaluation.deviation_percent,
            now,
            current_value=result.current_value,
        )
        await self._notify_transition(indicator, result, outcome, now)
        await self._publish(self._executed_event(indicator, record))

        logger.debug(
            f"Indicator {indicator_id} done: value={result.current_value} "
            f"deviation={evaluation.deviation_percent} alert={evaluation.should_alert} "
            f"transition={outcome.transition.value}"
        )
        return record

    async def record_failure(
        self,
        indicator: Indicator,
        now: datetime,
        error: CollectionError,
        started: Optional[float] = None,
    ) -> ExecutionRecord:
        """
        Record a run that produced no value.

        The failure is appended to the ledger and last_run advances,
        so the indicator waits a full period before it is due again.
        Evaluation and alert state are untouched.
        """
        record = ExecutionRecord(
            indicator_id=indicator.indicator_id,
            timestamp=now,
            success=False,
            error_message=error.message,
            duration_ms=_elapsed_ms(started) if started is not None else 0.0,
        )
        record = await self._ledger.append(record)
        await self._indicators.update_last_run(indicator.indicator_id, now)
        logger.warning(f"Indicator {indicator.indicator_id} collection failed: {error.message}")
        await self._publish(self._executed_event(indicator, record))
        return record

    # --------------------------------------------------------
    # COLLECTION
    # --------------------------------------------------------

    async def _collect(self, indicator: Indicator, now: datetime) -> CollectionResult:
        timeout = self._config.collection_timeout_seconds
        deadline = now + timedelta(seconds=timeout)

        try:
            result = await asyncio.wait_for(
                self._collector.collect(indicator.source_ref, indicator.window_minutes, deadline),
                timeout=timeout,
            )
        except asyncio.TimeoutError as e:
            raise CollectionTimeoutError(indicator.indicator_id, timeout, cause=e) from e
        except CollectionError:
            raise
        except PersistenceError:
            raise
        except Exception as e:
            raise wrap_exception(
                e,
                CollectionError,
                f"collector raised {type(e).__name__}: {e}",
                indicator_id=indicator.indicator_id,
                source_ref=indicator.source_ref,
            ) from e

        if not result.ok:
            raise CollectionError(
                result.error or "collector reported failure",
                indicator_id=indicator.indicator_id,
                source_ref=indicator.source_ref,
            )
        if result.current_value is None:
            raise CollectionError(
                "collector returned no current value",
                indicator_id=indicator.indicator_id,
                source_ref=indicator.source_ref,
            )
        return result

    # --------------------------------------------------------
    # NOTIFICATION
    # --------------------------------------------------------

    async def _notify_transition(
        self,
        indicator: Indicator,
        result: CollectionResult,
        outcome: TransitionOutcome,
        now: datetime,
    ) -> None:
        if outcome.triggered:
            logger.info(
                f"Alert triggered for indicator {indicator.indicator_id} '{indicator.name}' "
                f"[{outcome.state.severity.value if outcome.state.severity else '-'}] "
                f"deviation={outcome.state.last_deviation}"
            )
            await self._publish(AlertTriggeredEvent(
                indicator_id=indicator.indicator_id,
                name=indicator.name,
                owner=indicator.owner,
                severity=outcome.state.severity,
                current_value=result.current_value,
                baseline_value=result.baseline_value,
                deviation_percent=outcome.state.last_deviation,
                trigger_time=now,
            ))
        elif outcome.resolved:
            logger.info(f"Alert resolved for indicator {indicator.indicator_id} '{indicator.name}'")
            await self._publish(AlertResolvedEvent(
                indicator_id=indicator.indicator_id,
                resolved_time=now,
            ))

    def _executed_event(self, indicator: Indicator, record: ExecutionRecord) -> Optional[IndicatorExecutedEvent]:
        if not self._config.publish_execution_events:
            return None
        return IndicatorExecutedEvent(
            indicator_id=indicator.indicator_id,
            name=indicator.name,
            success=record.success,
            timestamp=record.timestamp,
            duration_ms=record.duration_ms,
            current_value=record.current_value,
            deviation_percent=record.deviation_percent,
            error_message=record.error_message,
        )

    async def _publish(self, event: Optional[MonitorEvent]) -> None:
        if event is None:
            return

        timeout = self._config.notification_timeout_seconds
        try:
            await asyncio.wait_for(self._notifier.publish(event), timeout=timeout)
        except asyncio.TimeoutError as e:
            error = NotificationError(
                f"publish timed out after {timeout}s", event_type=event.event_type, cause=e
            )
            logger.error(error.to_log_format())
        except NotificationError as e:
            logger.error(e.to_log_format())
        except Exception as e:
            error = NotificationError(
                f"notifier raised {type(e).__name__}: {e}", event_type=event.event_type, cause=e
            )
            logger.error(error.to_log_format())


def _elapsed_ms(started: float) -> float:
    return (time.perf_counter() - started) * 1000.0


__all__ = ["Executor"]

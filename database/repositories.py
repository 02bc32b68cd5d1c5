"""
Database - Repositories.

SQL implementations of IndicatorStore, ExecutionLedger and
AlertStateStore. Each call runs in its own transaction_scope.
"""

import logging
from datetime import datetime
from typing import List, Optional

from pydantic import TypeAdapter
from sqlalchemy import desc, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import async_sessionmaker

from alerting.state_machine import AlertState, AlertStatus, TransitionOutcome, apply_transition
from alerting.store import AlertStateStore
from core.clock import ensure_utc
from core.exceptions import ConcurrencyConflictError, PersistenceError
from execution.ledger import ExecutionLedger, ExecutionRecord, HistoryQuery
from indicators.models import AlertSeverity, Indicator, IndicatorConfig
from indicators.store import IndicatorStore

from .engine import transaction_scope
from .models import AlertStateRow, ExecutionRecordRow, IndicatorRow


logger = logging.getLogger(__name__)

_config_adapter = TypeAdapter(IndicatorConfig)


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands back naive datetimes
    return ensure_utc(value) if value is not None else None


def _severity(value: Optional[str]) -> Optional[AlertSeverity]:
    return AlertSeverity(value) if value else None


# =============================================================
# INDICATORS
# =============================================================

class SqlIndicatorStore(IndicatorStore):
    """Indicator store backed by the `indicators` table."""

    def __init__(self, session_factory: async_sessionmaker):
        self._session_factory = session_factory

    async def list_indicators(self, active_only: bool = False) -> List[Indicator]:
        stmt = select(IndicatorRow).order_by(IndicatorRow.id)
        if active_only:
            stmt = stmt.where(IndicatorRow.is_active.is_(True))

        async with transaction_scope(self._session_factory) as session:
            result = await session.execute(stmt)
            return [self._row_to_indicator(row) for row in result.scalars().all()]

    async def get(self, indicator_id: int) -> Optional[Indicator]:
        async with transaction_scope(self._session_factory) as session:
            row = await session.get(IndicatorRow, indicator_id)
            return self._row_to_indicator(row) if row else None

    async def add(self, indicator: Indicator) -> Indicator:
        async with transaction_scope(self._session_factory) as session:
            row = IndicatorRow(id=indicator.indicator_id, last_run=indicator.last_run)
            self._apply(row, indicator)
            session.add(row)
            await session.flush()
            return self._row_to_indicator(row)

    async def replace(self, indicator: Indicator) -> Indicator:
        async with transaction_scope(self._session_factory) as session:
            row = await session.get(IndicatorRow, indicator.indicator_id)
            if row is None:
                raise PersistenceError(
                    f"Indicator {indicator.indicator_id} does not exist", operation="replace"
                )
            self._apply(row, indicator)
            await session.flush()
            return self._row_to_indicator(row)

    async def update_last_run(self, indicator_id: int, last_run: datetime) -> None:
        async with transaction_scope(self._session_factory) as session:
            result = await session.execute(
                update(IndicatorRow)
                .where(IndicatorRow.id == indicator_id)
                .values(last_run=last_run)
            )
            if result.rowcount == 0:
                raise PersistenceError(
                    f"Indicator {indicator_id} does not exist", operation="update_last_run"
                )

    @staticmethod
    def _apply(row: IndicatorRow, indicator: Indicator) -> None:
        row.name = indicator.name
        row.owner = indicator.owner
        row.source_ref = indicator.source_ref
        row.indicator_type = indicator.indicator_type.value
        row.config = indicator.config.model_dump(mode="json")
        row.frequency_minutes = indicator.frequency_minutes
        row.priority = indicator.priority
        row.is_active = indicator.is_active

    @staticmethod
    def _row_to_indicator(row: IndicatorRow) -> Indicator:
        return Indicator(
            indicator_id=row.id,
            name=row.name,
            owner=row.owner,
            source_ref=row.source_ref,
            config=_config_adapter.validate_python(row.config),
            frequency_minutes=row.frequency_minutes,
            priority=row.priority,
            is_active=row.is_active,
            last_run=_as_utc(row.last_run),
        )


# =============================================================
# EXECUTION LEDGER
# =============================================================

class SqlExecutionLedger(ExecutionLedger):
    """Execution history backed by the `execution_records` table."""

    def __init__(self, session_factory: async_sessionmaker):
        self._session_factory = session_factory

    async def append(self, record: ExecutionRecord) -> ExecutionRecord:
        async with transaction_scope(self._session_factory) as session:
            row = ExecutionRecordRow(
                indicator_id=record.indicator_id,
                timestamp=record.timestamp,
                success=record.success,
                current_value=record.current_value,
                baseline_value=record.baseline_value,
                deviation_percent=record.deviation_percent,
                should_alert=record.should_alert,
                severity=record.severity.value if record.severity else None,
                error_message=record.error_message,
                duration_ms=record.duration_ms,
            )
            session.add(row)
            await session.flush()
            return self._row_to_record(row)

    async def query(self, query: HistoryQuery) -> List[ExecutionRecord]:
        stmt = select(ExecutionRecordRow)

        if query.indicator_id is not None:
            stmt = stmt.where(ExecutionRecordRow.indicator_id == query.indicator_id)
        if query.since is not None:
            stmt = stmt.where(ExecutionRecordRow.timestamp >= query.since)
        if query.until is not None:
            stmt = stmt.where(ExecutionRecordRow.timestamp <= query.until)
        if query.success is not None:
            stmt = stmt.where(ExecutionRecordRow.success.is_(query.success))

        stmt = stmt.order_by(desc(ExecutionRecordRow.timestamp), desc(ExecutionRecordRow.id))
        if query.offset:
            stmt = stmt.offset(query.offset)
        if query.limit is not None:
            stmt = stmt.limit(query.limit)

        async with transaction_scope(self._session_factory) as session:
            result = await session.execute(stmt)
            return [self._row_to_record(row) for row in result.scalars().all()]

    @staticmethod
    def _row_to_record(row: ExecutionRecordRow) -> ExecutionRecord:
        return ExecutionRecord(
            record_id=row.id,
            indicator_id=row.indicator_id,
            timestamp=_as_utc(row.timestamp),
            success=row.success,
            current_value=row.current_value,
            baseline_value=row.baseline_value,
            deviation_percent=row.deviation_percent,
            should_alert=row.should_alert,
            severity=_severity(row.severity),
            error_message=row.error_message,
            duration_ms=row.duration_ms,
        )


# =============================================================
# ALERT STATES
# =============================================================

class SqlAlertStateStore(AlertStateStore):
    """
    Alert state backed by the `alert_states` table.

    Transitions use optimistic compare-and-update on `version`;
    a lost race re-reads and re-applies the evaluation.
    """

    def __init__(self, session_factory: async_sessionmaker, max_attempts: int = 5):
        self._session_factory = session_factory
        self._max_attempts = max_attempts

    async def get(self, indicator_id: int) -> AlertState:
        async with transaction_scope(self._session_factory) as session:
            row = await session.get(AlertStateRow, indicator_id)
            return self._row_to_state(row) if row else AlertState(indicator_id=indicator_id)

    async def list_states(self) -> List[AlertState]:
        async with transaction_scope(self._session_factory) as session:
            result = await session.execute(
                select(AlertStateRow).order_by(AlertStateRow.indicator_id)
            )
            return [self._row_to_state(row) for row in result.scalars().all()]

    async def transition(
        self,
        indicator_id: int,
        should_alert: bool,
        severity: Optional[AlertSeverity],
        deviation: Optional[float],
        now: datetime,
        current_value: Optional[float] = None,
    ) -> TransitionOutcome:
        for attempt in range(1, self._max_attempts + 1):
            async with transaction_scope(self._session_factory) as session:
                row = await session.get(AlertStateRow, indicator_id)
                current = self._row_to_state(row) if row else AlertState(indicator_id=indicator_id)
                outcome = apply_transition(
                    current, should_alert, severity, deviation, now, current_value
                )
                if not outcome.changed:
                    return outcome

                values = self._state_values(outcome.state)
                if row is None:
                    session.add(AlertStateRow(indicator_id=indicator_id, **values))
                    try:
                        await session.flush()
                    except IntegrityError:
                        # Another writer created the row first
                        await session.rollback()
                        logger.debug(f"Alert state insert race for {indicator_id}, attempt {attempt}")
                        continue
                    return outcome

                result = await session.execute(
                    update(AlertStateRow)
                    .where(
                        AlertStateRow.indicator_id == indicator_id,
                        AlertStateRow.version == current.version,
                    )
                    .values(**values)
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount == 1:
                    return outcome

            logger.debug(f"Alert state version conflict for {indicator_id}, attempt {attempt}")

        raise ConcurrencyConflictError(indicator_id, self._max_attempts)

    @staticmethod
    def _state_values(state: AlertState) -> dict:
        return {
            "status": state.status.value,
            "last_trigger_time": state.last_trigger_time,
            "last_deviation": state.last_deviation,
            "severity": state.severity.value if state.severity else None,
            "resolved_time": state.resolved_time,
            "last_value": state.last_value,
            "trigger_count": state.trigger_count,
            "version": state.version,
        }

    @staticmethod
    def _row_to_state(row: AlertStateRow) -> AlertState:
        return AlertState(
            indicator_id=row.indicator_id,
            status=AlertStatus(row.status),
            last_trigger_time=_as_utc(row.last_trigger_time),
            last_deviation=row.last_deviation,
            severity=_severity(row.severity),
            resolved_time=_as_utc(row.resolved_time),
            last_value=row.last_value,
            trigger_count=row.trigger_count,
            version=row.version,
        )


__all__ = [
    "SqlIndicatorStore",
    "SqlExecutionLedger",
    "SqlAlertStateStore",
]

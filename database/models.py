"""
Database ORM Models - All Tables.

============================================================
INDICATOR MONITOR SCHEMA
============================================================

Defines the durable tables:
- indicators: monitored metric definitions
- execution_records: append-only run history
- alert_states: one row per indicator that ever alerted

All timestamps are UTC.

============================================================
"""

from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    JSON,
    String,
    Text,
)

from .engine import Base


# =============================================================
# HELPER FUNCTIONS
# =============================================================

def utc_now():
    """Get current UTC timestamp."""
    return datetime.now(timezone.utc)


# =============================================================
# 1. INDICATORS TABLE
# =============================================================

class IndicatorRow(Base):
    """
    Monitored metric definition.

    Written by: indicators.catalog (create/update/activate)
    Updated by: execution.executor (last_run)
    """
    __tablename__ = "indicators"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(255), nullable=False)
    owner = Column(String(100), nullable=False)
    source_ref = Column(Text, nullable=False)

    indicator_type = Column(String(32), nullable=False)
    config = Column(JSON, nullable=False)

    frequency_minutes = Column(Integer, nullable=False)
    priority = Column(Integer, nullable=False, default=2)
    is_active = Column(Boolean, nullable=False, default=True)
    last_run = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now)

    __table_args__ = (
        Index("ix_indicators_active", "is_active"),
    )


# =============================================================
# 2. EXECUTION RECORDS TABLE
# =============================================================

class ExecutionRecordRow(Base):
    """
    One indicator run. Never updated or deleted by the monitor.
    """
    __tablename__ = "execution_records"

    id = Column(Integer, primary_key=True, autoincrement=True)
    indicator_id = Column(Integer, ForeignKey("indicators.id"), nullable=False)
    timestamp = Column(DateTime(timezone=True), nullable=False)

    success = Column(Boolean, nullable=False)
    current_value = Column(Float, nullable=True)
    baseline_value = Column(Float, nullable=True)
    deviation_percent = Column(Float, nullable=True)
    should_alert = Column(Boolean, nullable=False, default=False)
    severity = Column(String(16), nullable=True)
    error_message = Column(Text, nullable=True)
    duration_ms = Column(Float, nullable=False, default=0.0)

    __table_args__ = (
        Index("ix_execution_records_indicator_time", "indicator_id", "timestamp"),
        Index("ix_execution_records_time", "timestamp"),
    )


# =============================================================
# 3. ALERT STATES TABLE
# =============================================================

class AlertStateRow(Base):
    """
    Current alert state per indicator.

    `version` increments on every change; writers update with
    WHERE version = <read version> and retry on conflict.
    """
    __tablename__ = "alert_states"

    indicator_id = Column(Integer, ForeignKey("indicators.id"), primary_key=True)
    status = Column(String(16), nullable=False)
    last_trigger_time = Column(DateTime(timezone=True), nullable=True)
    last_deviation = Column(Float, nullable=True)
    severity = Column(String(16), nullable=True)
    resolved_time = Column(DateTime(timezone=True), nullable=True)
    last_value = Column(Float, nullable=True)
    trigger_count = Column(Integer, nullable=False, default=0)
    version = Column(Integer, nullable=False, default=0)


__all__ = [
    "IndicatorRow",
    "ExecutionRecordRow",
    "AlertStateRow",
]

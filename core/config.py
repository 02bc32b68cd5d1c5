"""
Core Module - Configuration.

============================================================
PURPOSE
============================================================
All runtime configuration for the indicator monitor.

Sections:
- SchedulerConfig: tick cadence, worker pool, leases
- ExecutorConfig: collection and notification deadlines
- DashboardConfig: aggregation windows
- DatabaseConfig: durable store connection
- LoggingConfig: log level and format

Values come from defaults, environment variables (a .env file
is honoured) or the CLI, in increasing order of precedence.

============================================================
"""

import os
from dataclasses import dataclass, field
from typing import List, Optional

from dotenv import load_dotenv

from core.exceptions import ConfigurationError


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


def _env_number(name: str, default: str, kind=float):
    raw = os.getenv(name, default)
    try:
        return kind(raw)
    except ValueError as e:
        raise ConfigurationError(
            f"{name} must be a number",
            config_key=name,
            actual_value=raw,
            cause=e,
        ) from e


# ============================================================
# SCHEDULER CONFIGURATION
# ============================================================

@dataclass
class SchedulerConfig:
    """
    Scheduler configuration.

    The driver ticks at a fixed interval; every tick dispatches
    due indicators into a bounded worker pool.
    """

    tick_interval_seconds: float = 60.0
    """Interval between scheduler ticks."""

    max_concurrent_executions: int = 5
    """Worker pool size (indicator runs in flight at once)."""

    lease_grace_seconds: float = 30.0
    """Added to the collection timeout to form the lease lifetime."""

    stuck_after_minutes: float = 30.0
    """Leases older than this are reported and reclaimed."""

    stuck_check_interval_seconds: float = 30.0
    """How often the service sweeps for stuck leases."""

    error_backoff_seconds: float = 30.0
    """Pause after an unexpected tick failure."""


# ============================================================
# EXECUTOR CONFIGURATION
# ============================================================

@dataclass
class ExecutorConfig:
    """
    Executor configuration.
    """

    collection_timeout_seconds: float = 60.0
    """Deadline for a single metric collection."""

    notification_timeout_seconds: float = 10.0
    """Deadline for a single notifier publish."""

    default_threshold_severity: str = "medium"
    """Severity assigned to threshold-type alerts."""

    publish_execution_events: bool = True
    """Publish an event after every completed run."""


# ============================================================
# DASHBOARD CONFIGURATION
# ============================================================

@dataclass
class DashboardConfig:
    """
    Dashboard aggregation configuration.
    """

    window_hours: float = 24.0
    """Window for executions/alerts counted in a snapshot."""

    recent_limit: int = 10
    """Number of recent executions and alerts in a snapshot."""

    due_soon_minutes: float = 5.0
    """Next-due indicator within this many minutes is 'Due Soon'."""


# ============================================================
# DATABASE CONFIGURATION
# ============================================================

@dataclass
class DatabaseConfig:
    """
    Durable store configuration.
    """

    enabled: bool = False
    """Use SQL repositories instead of in-memory stores."""

    url: str = "sqlite+aiosqlite:///./indicator_monitor.db"
    """SQLAlchemy async database URL."""

    echo: bool = False
    """Log emitted SQL."""

    conflict_retries: int = 5
    """Compare-and-update attempts for alert transitions."""


# ============================================================
# LOGGING CONFIGURATION
# ============================================================

@dataclass
class LoggingConfig:
    """
    Logging configuration.
    """

    level: str = "INFO"
    """Root log level."""

    format: str = "text"
    """Output format: 'text' or 'json'."""


# ============================================================
# MASTER CONFIGURATION
# ============================================================

@dataclass
class MonitorConfig:
    """
    Master configuration for the indicator monitor.
    """

    scheduler: SchedulerConfig = field(default_factory=SchedulerConfig)
    executor: ExecutorConfig = field(default_factory=ExecutorConfig)
    dashboard: DashboardConfig = field(default_factory=DashboardConfig)
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    indicators_file: Optional[str] = None
    """JSON file of indicator definitions loaded at startup."""

    collector: Optional[str] = None
    """Metric collector factory as 'module:attribute'."""

    shutdown_timeout_seconds: float = 30.0
    """Maximum time to drain in-flight runs on stop."""

    @property
    def lease_ttl_seconds(self) -> float:
        """Lifetime of a scheduler lease."""
        return (
            self.executor.collection_timeout_seconds
            + self.scheduler.lease_grace_seconds
        )

    @classmethod
    def from_env(cls, dotenv: bool = True) -> "MonitorConfig":
        """
        Load configuration from environment variables.

        Raises:
            ConfigurationError: a numeric variable does not parse
        """
        if dotenv:
            load_dotenv()

        return cls(
            scheduler=SchedulerConfig(
                tick_interval_seconds=_env_number("TICK_INTERVAL_SECONDS", "60"),
                max_concurrent_executions=_env_number("MAX_CONCURRENT_EXECUTIONS", "5", int),
                lease_grace_seconds=_env_number("LEASE_GRACE_SECONDS", "30"),
                stuck_after_minutes=_env_number("STUCK_AFTER_MINUTES", "30"),
            ),
            executor=ExecutorConfig(
                collection_timeout_seconds=_env_number("COLLECTION_TIMEOUT_SECONDS", "60"),
                notification_timeout_seconds=_env_number("NOTIFICATION_TIMEOUT_SECONDS", "10"),
            ),
            dashboard=DashboardConfig(
                window_hours=_env_number("DASHBOARD_WINDOW_HOURS", "24"),
            ),
            database=DatabaseConfig(
                enabled=_env_bool("DATABASE_ENABLED", "false"),
                url=os.getenv("DATABASE_URL", DatabaseConfig.url),
                echo=_env_bool("DATABASE_ECHO", "false"),
            ),
            logging=LoggingConfig(
                level=os.getenv("LOG_LEVEL", "INFO"),
                format=os.getenv("LOG_FORMAT", "text"),
            ),
            indicators_file=os.getenv("INDICATORS_FILE"),
            collector=os.getenv("METRIC_COLLECTOR"),
            shutdown_timeout_seconds=_env_number("SHUTDOWN_TIMEOUT_SECONDS", "30"),
        )

    @classmethod
    def for_testing(cls) -> "MonitorConfig":
        """Fast configuration for tests."""
        return cls(
            scheduler=SchedulerConfig(
                tick_interval_seconds=0.05,
                max_concurrent_executions=2,
                lease_grace_seconds=1.0,
                stuck_check_interval_seconds=0.05,
                error_backoff_seconds=0.05,
            ),
            executor=ExecutorConfig(
                collection_timeout_seconds=1.0,
                notification_timeout_seconds=1.0,
            ),
            shutdown_timeout_seconds=2.0,
        )

    def validate(self) -> List[str]:
        """Validate configuration, return list of errors."""
        errors = []

        if self.scheduler.tick_interval_seconds <= 0:
            errors.append("tick_interval_seconds must be positive")

        if self.scheduler.max_concurrent_executions < 1:
            errors.append("max_concurrent_executions must be at least 1")

        if self.scheduler.lease_grace_seconds < 0:
            errors.append("lease_grace_seconds must not be negative")

        if self.scheduler.stuck_after_minutes <= 0:
            errors.append("stuck_after_minutes must be positive")

        if self.executor.collection_timeout_seconds <= 0:
            errors.append("collection_timeout_seconds must be positive")

        if self.executor.notification_timeout_seconds <= 0:
            errors.append("notification_timeout_seconds must be positive")

        if self.executor.default_threshold_severity not in ("low", "medium", "high", "critical"):
            errors.append("default_threshold_severity must be low, medium, high or critical")

        if self.dashboard.window_hours <= 0:
            errors.append("dashboard window_hours must be positive")

        if self.logging.format not in ("text", "json"):
            errors.append("log format must be 'text' or 'json'")

        if self.collector and ":" not in self.collector:
            errors.append("collector must be given as 'module:attribute'")

        return errors


__all__ = [
    "SchedulerConfig",
    "ExecutorConfig",
    "DashboardConfig",
    "DatabaseConfig",
    "LoggingConfig",
    "MonitorConfig",
]

"""
Orchestrator - Core.

============================================================
RESPONSIBILITY
============================================================
The recurring driver of the indicator monitor.

- Wires stores, collector, notifier, executor and scheduler
- Ticks the scheduler at a fixed interval
- Sweeps stuck leases periodically
- Handles signals (SIGINT, SIGTERM) and drains in-flight runs
- Stops on non-recoverable errors (PersistenceError)

============================================================
ARCHITECTURAL POSITION
============================================================
- No evaluation logic lives here
- A slow run never delays the next tick: runs are dispatched
  as background tasks bounded by the scheduler's worker pool

============================================================
"""

import asyncio
import json
import logging
import signal
import sys
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional

from alerting.notifier import LoggingNotifier, Notifier
from alerting.store import AlertStateStore, InMemoryAlertStateStore
from core.clock import ClockProtocol, SystemClock
from core.config import MonitorConfig
from core.exceptions import (
    ErrorClassification,
    MonitorException,
    ShutdownError,
    StartupError,
    classify_exception,
    wrap_exception,
)
from dashboard.aggregator import DashboardAggregator
from dashboard.queries import QueryService
from execution.collector import MetricCollector, StaticMetricCollector, load_collector
from execution.executor import Executor
from execution.ledger import ExecutionLedger, InMemoryExecutionLedger
from indicators.catalog import IndicatorCatalog
from indicators.store import IndicatorStore, InMemoryIndicatorStore
from scheduler.leases import LeaseMap
from scheduler.scheduler import Scheduler, TickResult


# ============================================================
# LOGGING SETUP
# ============================================================

def setup_logging(
    level: str = "INFO",
    log_format: str = "text",
) -> logging.Logger:
    """
    Set up structured logging.

    Args:
        level: Log level
        log_format: Output format (json or text)

    Returns:
        Configured logger
    """
    log_level = getattr(logging, level.upper(), logging.INFO)

    if log_format == "json":
        formatter = logging.Formatter(
            json.dumps({
                "timestamp": "%(asctime)s",
                "level": "%(levelname)s",
                "logger": "%(name)s",
                "message": "%(message)s",
            })
        )
    else:
        formatter = logging.Formatter(
            "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
        )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers = [handler]

    return logging.getLogger("orchestrator")


# ============================================================
# COMPONENTS
# ============================================================

@dataclass
class MonitorComponents:
    """Everything the service drives, wired together."""

    indicator_store: IndicatorStore
    ledger: ExecutionLedger
    alert_store: AlertStateStore
    collector: MetricCollector
    notifier: Notifier
    leases: LeaseMap
    executor: Executor
    scheduler: Scheduler
    catalog: IndicatorCatalog
    aggregator: DashboardAggregator
    queries: QueryService
    engine: Optional[Any] = None
    """AsyncEngine when SQL stores are in use."""


def build_components(
    config: MonitorConfig,
    indicator_store: IndicatorStore,
    ledger: ExecutionLedger,
    alert_store: AlertStateStore,
    collector: MetricCollector,
    notifier: Notifier,
    engine: Optional[Any] = None,
) -> MonitorComponents:
    """Wire the core around the given stores and collaborators."""
    leases = LeaseMap(ttl_seconds=config.lease_ttl_seconds)
    executor = Executor(
        indicator_store, ledger, alert_store, collector, notifier, config.executor
    )
    scheduler = Scheduler(indicator_store, executor, leases, config.scheduler)
    aggregator = DashboardAggregator(
        indicator_store, ledger, alert_store, leases, config.dashboard
    )
    return MonitorComponents(
        indicator_store=indicator_store,
        ledger=ledger,
        alert_store=alert_store,
        collector=collector,
        notifier=notifier,
        leases=leases,
        executor=executor,
        scheduler=scheduler,
        catalog=IndicatorCatalog(indicator_store),
        aggregator=aggregator,
        queries=QueryService(indicator_store, ledger, alert_store, scheduler, aggregator),
        engine=engine,
    )


# ============================================================
# SERVICE
# ============================================================

class MonitorService:
    """
    Main monitor service.

    Single entrypoint of the running application: start, run the
    tick loop until stopped, drain.
    """

    def __init__(
        self,
        config: MonitorConfig,
        components: MonitorComponents,
        clock: Optional[ClockProtocol] = None,
        install_signal_handlers: bool = True,
    ):
        errors = config.validate()
        if errors:
            raise StartupError(
                message=f"Invalid configuration: {'; '.join(errors)}",
                stage="config",
            )

        self._config = config
        self._components = components
        self._clock = clock or SystemClock()
        self._install_signals = install_signal_handlers
        self._logger = logging.getLogger("orchestrator")

        self._running = False
        self._shutdown_requested = False
        self._main_loop_task: Optional[asyncio.Task] = None
        self._signals_installed = False
        self._fatal_error: Optional[MonitorException] = None
        self._stopped: Optional[asyncio.Event] = None

        self._ticks = 0
        self._started_at: Optional[datetime] = None
        self._last_tick_at: Optional[datetime] = None
        self._last_stuck_sweep: Optional[datetime] = None

    # --------------------------------------------------------
    # Properties
    # --------------------------------------------------------

    @property
    def config(self) -> MonitorConfig:
        return self._config

    @property
    def components(self) -> MonitorComponents:
        return self._components

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def fatal_error(self) -> Optional[MonitorException]:
        """The non-recoverable error that stopped the loop, if any."""
        return self._fatal_error

    # --------------------------------------------------------
    # Lifecycle
    # --------------------------------------------------------

    async def start(self) -> None:
        """Initialize storage and load indicator definitions."""
        if self._running:
            return

        self._logger.info("=== MONITOR STARTUP SEQUENCE ===")

        try:
            if self._components.engine is not None:
                from database.engine import initialize_database

                await initialize_database(self._components.engine)

            if self._config.indicators_file:
                await self._components.catalog.load_file(self._config.indicators_file)
        except MonitorException as e:
            raise StartupError(
                message=f"Startup failed: {e.message}",
                stage="initialize",
                cause=e,
            ) from e
        except (OSError, ValueError) as e:
            raise StartupError(
                message=f"Startup failed: {e}",
                stage="load_indicators",
                cause=e,
            ) from e

        if self._install_signals:
            self._install_signal_handlers()

        active = await self._components.indicator_store.list_indicators(active_only=True)
        self._running = True
        self._shutdown_requested = False
        self._started_at = self._clock.now()
        self._logger.info(
            f"Monitor started | active_indicators={len(active)} "
            f"interval={self._config.scheduler.tick_interval_seconds}s "
            f"workers={self._config.scheduler.max_concurrent_executions}"
        )

    async def stop(self) -> None:
        """Stop the service gracefully, draining in-flight runs."""
        if not self._running:
            return
        if self._stopped is not None:
            await self._stopped.wait()
            return

        self._logger.info("=== MONITOR SHUTDOWN SEQUENCE ===")
        self._stopped = asyncio.Event()
        self._shutdown_requested = True
        timeout = self._config.shutdown_timeout_seconds

        try:
            if (
                self._main_loop_task
                and not self._main_loop_task.done()
                and self._main_loop_task is not asyncio.current_task()
            ):
                self._main_loop_task.cancel()
                await asyncio.gather(self._main_loop_task, return_exceptions=True)

            scheduler = self._components.scheduler
            if not await scheduler.drain(timeout=timeout):
                self._logger.warning(
                    f"{scheduler.in_flight} run(s) still in flight after {timeout}s, cancelling"
                )
                await scheduler.cancel_all()

            if self._components.engine is not None:
                await self._components.engine.dispose()

            self._restore_signal_handlers()
            self._running = False
            self._logger.info("=== MONITOR SHUTDOWN COMPLETE ===")

        except Exception as e:
            self._logger.error(f"Shutdown error: {e}", exc_info=True)
            raise ShutdownError(
                message=f"Shutdown error: {e}",
                timeout_seconds=timeout,
                cause=e,
            ) from e
        finally:
            self._stopped.set()
            self._stopped = None

    # --------------------------------------------------------
    # Main Loop
    # --------------------------------------------------------

    async def run_forever(self) -> None:
        """
        Run the tick loop until shutdown or a non-recoverable error.
        """
        if not self._running:
            await self.start()

        self._logger.info(
            f"Starting main loop | interval={self._config.scheduler.tick_interval_seconds}s"
        )
        self._main_loop_task = asyncio.current_task()
        scheduler = self._components.scheduler

        try:
            while not self._shutdown_requested:
                try:
                    scheduler.raise_if_fatal()
                    now = self._clock.now()
                    await scheduler.dispatch(now)
                    self._ticks += 1
                    self._last_tick_at = now
                    await self._sweep_stuck(now)

                    if not self._shutdown_requested:
                        await self._wait_for_next_tick()

                except asyncio.CancelledError:
                    self._logger.info("Main loop cancelled")
                    break
                except Exception as e:
                    error = e if isinstance(e, MonitorException) else wrap_exception(e)
                    if classify_exception(e) == ErrorClassification.NON_RECOVERABLE:
                        self._logger.critical(f"Stopping monitor: {error.to_log_format()}")
                        self._fatal_error = error
                        self._shutdown_requested = True
                        break
                    self._logger.error(
                        f"Tick error: {error.to_log_format()}",
                        exc_info=not isinstance(e, MonitorException),
                    )
                    await asyncio.sleep(self._config.scheduler.error_backoff_seconds)
        finally:
            self._main_loop_task = None

    async def run_single_tick(self) -> TickResult:
        """Run one tick and wait for its runs."""
        if not self._running:
            await self.start()

        now = self._clock.now()
        result = await self._components.scheduler.tick(now)
        self._ticks += 1
        self._last_tick_at = now
        return result

    async def _wait_for_next_tick(self) -> None:
        wait_seconds = self._config.scheduler.tick_interval_seconds
        self._logger.debug(f"Waiting {wait_seconds:.1f}s until next tick")
        await asyncio.sleep(wait_seconds)

    async def _sweep_stuck(self, now: datetime) -> None:
        interval = self._config.scheduler.stuck_check_interval_seconds
        if (
            self._last_stuck_sweep is None
            or (now - self._last_stuck_sweep).total_seconds() >= interval
        ):
            await self._components.scheduler.sweep_stuck(now)
            self._last_stuck_sweep = now

    # --------------------------------------------------------
    # Signal Handlers
    # --------------------------------------------------------

    def _install_signal_handlers(self) -> None:
        """Install signal handlers for graceful shutdown."""
        if sys.platform == "win32":
            signal.signal(signal.SIGINT, self._signal_handler)
            return

        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(
                sig,
                lambda s=sig: asyncio.create_task(self._async_signal_handler(s)),
            )
        self._signals_installed = True

    def _restore_signal_handlers(self) -> None:
        """Restore original signal handlers."""
        if not self._signals_installed:
            return
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.remove_signal_handler(sig)
        self._signals_installed = False

    def _signal_handler(self, signum: int, frame: Any) -> None:
        """Synchronous signal handler (Windows)."""
        self._logger.info(f"Received signal {signum}")
        self._shutdown_requested = True

    async def _async_signal_handler(self, sig: signal.Signals) -> None:
        """Async signal handler (Unix)."""
        self._logger.info(f"Received signal {sig.name}")
        await self.stop()

    # --------------------------------------------------------
    # Health & Status
    # --------------------------------------------------------

    def get_status(self) -> Dict[str, Any]:
        """Get service status."""
        now = self._clock.now()
        return {
            "running": self._running,
            "shutdown_requested": self._shutdown_requested,
            "current_time": now.isoformat(),
            "started_at": self._started_at.isoformat() if self._started_at else None,
            "ticks": self._ticks,
            "last_tick_at": self._last_tick_at.isoformat() if self._last_tick_at else None,
            "in_flight": self._components.scheduler.in_flight,
            "running_executions": [
                lease.to_dict() for lease in self._components.scheduler.running_executions(now)
            ],
            "fatal_error": self._fatal_error.to_dict() if self._fatal_error else None,
        }

    async def health_check(self) -> Dict[str, Any]:
        """Service health plus the current dashboard health bucket."""
        snapshot = await self._components.queries.dashboard(self._clock.now())
        return {
            "healthy": self._running and not self._shutdown_requested and self._fatal_error is None,
            "system_health": snapshot.system_health.value,
            "active_indicators": snapshot.active_indicators,
            "active_alerts": snapshot.active_alerts,
            "running_indicators": snapshot.running_indicators,
        }


# ============================================================
# SERVICE FACTORY
# ============================================================

async def create_service(
    config: Optional[MonitorConfig] = None,
    collector: Optional[MetricCollector] = None,
    notifier: Optional[Notifier] = None,
    clock: Optional[ClockProtocol] = None,
    install_signal_handlers: bool = True,
) -> MonitorService:
    """
    Factory function to create a monitor service.

    Args:
        config: Configuration (or load from environment)
        collector: Metric collector (or config.collector, or an empty static one)
        notifier: Event notifier (defaults to logging)
        clock: Time source (defaults to system clock)

    Returns:
        Configured MonitorService instance
    """
    if config is None:
        config = MonitorConfig.from_env()

    if collector is None:
        if config.collector:
            collector = load_collector(config.collector)
        else:
            logging.getLogger("orchestrator").warning(
                "No metric collector configured; every run will fail collection"
            )
            collector = StaticMetricCollector()

    notifier = notifier or LoggingNotifier()

    if config.database.enabled:
        from database.engine import create_database_engine, create_session_factory
        from database.repositories import (
            SqlAlertStateStore,
            SqlExecutionLedger,
            SqlIndicatorStore,
        )

        engine = create_database_engine(config.database.url, echo=config.database.echo)
        session_factory = create_session_factory(engine)
        components = build_components(
            config,
            SqlIndicatorStore(session_factory),
            SqlExecutionLedger(session_factory),
            SqlAlertStateStore(session_factory, max_attempts=config.database.conflict_retries),
            collector,
            notifier,
            engine=engine,
        )
    else:
        components = build_components(
            config,
            InMemoryIndicatorStore(),
            InMemoryExecutionLedger(),
            InMemoryAlertStateStore(),
            collector,
            notifier,
        )

    return MonitorService(
        config,
        components,
        clock=clock,
        install_signal_handlers=install_signal_handlers,
    )


# ============================================================
# EXPORTS
# ============================================================

__all__ = [
    "MonitorComponents",
    "MonitorService",
    "build_components",
    "create_service",
    "setup_logging",
]

"""
Core Module - Exceptions.

============================================================
RESPONSIBILITY
============================================================
Defines all custom exceptions for the indicator monitor.

- Provides clear exception hierarchy
- Separates per-run failures (recorded) from fatal ones (propagated)
- Includes context for debugging

============================================================
EXCEPTION HIERARCHY
============================================================
MonitorException (base)
├── ConfigurationError
│   ├── InvalidIndicatorError
│   └── DuplicateIndicatorError
├── CollectionError
│   └── CollectionTimeoutError
├── EvaluationError
├── NotificationError
├── PersistenceError
│   └── ConcurrencyConflictError
└── OrchestrationError
    ├── StartupError
    └── ShutdownError

============================================================
HANDLING RULES
============================================================
- CollectionError: recorded as a failed execution, not fatal
- ConfigurationError: raised synchronously on create/update
- EvaluationError: reported in the evaluation result, not fatal
- NotificationError: logged, alert state is never rolled back
- PersistenceError: fatal, propagates and stops the driver loop

============================================================
"""

from enum import Enum
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional


# ============================================================
# SEVERITY LEVELS
# ============================================================

class ErrorSeverity(Enum):
    """Exception severity levels for logging and alerting."""

    LOW = "low"
    """Minor issue, informational."""

    MEDIUM = "medium"
    """Moderate issue, requires attention."""

    HIGH = "high"
    """Serious issue, may impact operations."""

    CRITICAL = "critical"
    """Critical issue, requires immediate action."""


# ============================================================
# ERROR CLASSIFICATION
# ============================================================

class ErrorClassification(Enum):
    """Classification of error recoverability."""

    RECOVERABLE = "recoverable"
    """Error can be recovered from automatically."""

    TRANSIENT = "transient"
    """Temporary error, next run may succeed."""

    NON_RECOVERABLE = "non_recoverable"
    """Permanent error, requires intervention."""


# ============================================================
# BASE EXCEPTION
# ============================================================

class MonitorException(Exception):
    """
    Base exception for all indicator monitor errors.

    All exceptions carry:
    - severity: for alerting
    - context: for debugging
    - classification: for error handling decisions
    - timestamp: when the error occurred
    """

    default_severity: ErrorSeverity = ErrorSeverity.MEDIUM
    default_classification: ErrorClassification = ErrorClassification.RECOVERABLE

    def __init__(
        self,
        message: str,
        severity: Optional[ErrorSeverity] = None,
        context: Optional[Dict[str, Any]] = None,
        classification: Optional[ErrorClassification] = None,
        cause: Optional[Exception] = None,
    ):
        super().__init__(message)

        self.message = message
        self.severity = severity or self.default_severity
        self.context = context or {}
        self.classification = classification or self.default_classification
        self.cause = cause
        self.timestamp = datetime.now(timezone.utc)

        if cause:
            self.context["cause_type"] = type(cause).__name__
            self.context["cause_message"] = str(cause)

    @property
    def is_recoverable(self) -> bool:
        """Check if error is recoverable."""
        return self.classification in (
            ErrorClassification.RECOVERABLE,
            ErrorClassification.TRANSIENT,
        )

    def to_dict(self) -> Dict[str, Any]:
        """Serialize exception for logging/storage."""
        return {
            "type": type(self).__name__,
            "message": self.message,
            "severity": self.severity.value,
            "classification": self.classification.value,
            "context": self.context,
            "timestamp": self.timestamp.isoformat(),
            "cause": str(self.cause) if self.cause else None,
        }

    def to_log_format(self) -> str:
        """Format exception for structured logging."""
        line = f"[{self.severity.value.upper()}] {type(self).__name__}: {self.message}"
        if self.context:
            ctx_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
            line = f"{line} | {ctx_str}"
        return line


# ============================================================
# CONFIGURATION ERRORS
# ============================================================

class ConfigurationError(MonitorException):
    """Error in runtime or indicator configuration."""

    default_severity = ErrorSeverity.HIGH
    default_classification = ErrorClassification.NON_RECOVERABLE

    def __init__(
        self,
        message: str,
        config_key: Optional[str] = None,
        actual_value: Optional[Any] = None,
        **kwargs,
    ):
        context = kwargs.pop("context", {})

        if config_key:
            context["config_key"] = config_key
        if actual_value is not None:
            context["actual_value"] = str(actual_value)[:100]

        super().__init__(message, context=context, **kwargs)


class InvalidIndicatorError(ConfigurationError):
    """Indicator definition failed validation."""

    def __init__(self, message: str, errors: Optional[List[str]] = None, **kwargs):
        self.errors = list(errors or [])
        context = kwargs.pop("context", {})
        if self.errors:
            context["errors"] = self.errors
        super().__init__(message, context=context, **kwargs)


class DuplicateIndicatorError(ConfigurationError):
    """An indicator with the same name already exists."""

    def __init__(self, name: str):
        super().__init__(
            message=f"Indicator name already exists: {name}",
            config_key="name",
            actual_value=name,
        )


# ============================================================
# RUN-TIME ERRORS
# ============================================================

class CollectionError(MonitorException):
    """Metric collection failed for an indicator run."""

    default_classification = ErrorClassification.TRANSIENT

    def __init__(
        self,
        message: str,
        indicator_id: Optional[int] = None,
        source_ref: Optional[str] = None,
        **kwargs,
    ):
        context = kwargs.pop("context", {})

        if indicator_id is not None:
            context["indicator_id"] = indicator_id
        if source_ref:
            context["source_ref"] = source_ref

        super().__init__(message, context=context, **kwargs)


class CollectionTimeoutError(CollectionError):
    """Metric collection did not finish before its deadline."""

    def __init__(self, indicator_id: int, timeout_seconds: float, **kwargs):
        context = kwargs.pop("context", {})
        context["timeout_seconds"] = timeout_seconds
        super().__init__(
            message=f"Metric collection timed out after {timeout_seconds}s",
            indicator_id=indicator_id,
            context=context,
            **kwargs,
        )


class EvaluationError(MonitorException):
    """Deviation could not be computed (missing or zero baseline)."""

    default_severity = ErrorSeverity.LOW


class NotificationError(MonitorException):
    """Publishing an alert event failed."""

    default_classification = ErrorClassification.TRANSIENT

    def __init__(self, message: str, event_type: Optional[str] = None, **kwargs):
        context = kwargs.pop("context", {})
        if event_type:
            context["event_type"] = event_type
        super().__init__(message, context=context, **kwargs)


# ============================================================
# PERSISTENCE ERRORS
# ============================================================

class PersistenceError(MonitorException):
    """A store could not persist or read state. Fatal for the run loop."""

    default_severity = ErrorSeverity.CRITICAL
    default_classification = ErrorClassification.NON_RECOVERABLE

    def __init__(self, message: str, operation: Optional[str] = None, **kwargs):
        context = kwargs.pop("context", {})
        if operation:
            context["operation"] = operation
        super().__init__(message, context=context, **kwargs)


class ConcurrencyConflictError(PersistenceError):
    """Compare-and-update kept losing against concurrent writers."""

    def __init__(self, indicator_id: int, attempts: int):
        super().__init__(
            message=f"Alert state update conflicted {attempts} times",
            operation="alert_transition",
            context={"indicator_id": indicator_id, "attempts": attempts},
        )


# ============================================================
# ORCHESTRATION ERRORS
# ============================================================

class OrchestrationError(MonitorException):
    """Base class for service lifecycle errors."""

    default_severity = ErrorSeverity.HIGH
    default_classification = ErrorClassification.NON_RECOVERABLE


class StartupError(OrchestrationError):
    """Service startup failed."""

    def __init__(self, message: str, stage: Optional[str] = None, **kwargs):
        context = kwargs.pop("context", {})
        if stage:
            context["stage"] = stage
        super().__init__(message, context=context, **kwargs)


class ShutdownError(OrchestrationError):
    """Service shutdown failed."""

    default_severity = ErrorSeverity.MEDIUM
    default_classification = ErrorClassification.RECOVERABLE

    def __init__(
        self,
        message: str,
        timeout_seconds: Optional[float] = None,
        **kwargs,
    ):
        context = kwargs.pop("context", {})
        if timeout_seconds is not None:
            context["timeout_seconds"] = timeout_seconds
        super().__init__(message, context=context, **kwargs)


# ============================================================
# EXCEPTION UTILITIES
# ============================================================

def classify_exception(exc: Exception) -> ErrorClassification:
    """Classify an exception for error handling."""
    if isinstance(exc, MonitorException):
        return exc.classification

    if isinstance(exc, (ConnectionError, TimeoutError, OSError)):
        return ErrorClassification.TRANSIENT

    if isinstance(exc, (SystemExit, KeyboardInterrupt, MemoryError)):
        return ErrorClassification.NON_RECOVERABLE

    return ErrorClassification.RECOVERABLE


def wrap_exception(
    exc: Exception,
    wrapper_class: type = MonitorException,
    message: Optional[str] = None,
    **kwargs,
) -> MonitorException:
    """Wrap a standard exception in a MonitorException."""
    msg = message or f"{type(exc).__name__}: {exc}"
    return wrapper_class(message=msg, cause=exc, **kwargs)


__all__ = [
    "ErrorSeverity",
    "ErrorClassification",
    "MonitorException",
    "ConfigurationError",
    "InvalidIndicatorError",
    "DuplicateIndicatorError",
    "CollectionError",
    "CollectionTimeoutError",
    "EvaluationError",
    "NotificationError",
    "PersistenceError",
    "ConcurrencyConflictError",
    "OrchestrationError",
    "StartupError",
    "ShutdownError",
    "classify_exception",
    "wrap_exception",
]

"""
Core Module Package.

This package contains the core infrastructure components
that all other modules depend on.

Components:
- clock: Unified time abstraction
- config: Runtime configuration
- exceptions: Custom exception hierarchy
"""

from .clock import ClockProtocol, MockClock, SystemClock, ensure_utc
from .config import MonitorConfig
from .exceptions import MonitorException

__all__ = [
    "ClockProtocol",
    "MockClock",
    "SystemClock",
    "ensure_utc",
    "MonitorConfig",
    "MonitorException",
]

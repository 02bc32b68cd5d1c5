"""
Orchestrator Package - Runtime Coordination Layer.

============================================================
PACKAGE OVERVIEW
============================================================
The running monitor: a fixed-interval driver around the
scheduler, plus the command-line entry point.

============================================================
ARCHITECTURE
============================================================

    +-----------------------------------------------------+
    |                   MonitorService                    |
    |-----------------------------------------------------|
    |  Scheduler      |  due selection, leases, workers   |
    |  Executor       |  collect -> evaluate -> record    |
    |                 |  -> alert transition -> notify    |
    |  QueryService   |  dashboard, history, performance  |
    |  CLI            |  argparse entry point             |
    +-----------------------------------------------------+

============================================================
"""

from .core import (
    MonitorComponents,
    MonitorService,
    build_components,
    create_service,
    setup_logging,
)

__all__ = [
    "MonitorComponents",
    "MonitorService",
    "build_components",
    "create_service",
    "setup_logging",
]

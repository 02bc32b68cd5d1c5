"""
Scheduler Package.

Due-indicator selection, leases and bounded dispatch.
"""

from .leases import Lease, LeaseMap
from .scheduler import Scheduler, TickResult, is_due, priority_score

__all__ = [
    "Lease",
    "LeaseMap",
    "Scheduler",
    "TickResult",
    "is_due",
    "priority_score",
]

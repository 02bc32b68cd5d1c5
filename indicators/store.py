"""
Indicators - Store.

Abstract indicator store plus the in-memory implementation.
The SQL implementation lives in database/repositories.py.
"""

import threading
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Dict, List, Optional

from core.exceptions import PersistenceError

from .models import Indicator


class IndicatorStore(ABC):
    """Indicator persistence contract."""

    @abstractmethod
    async def list_indicators(self, active_only: bool = False) -> List[Indicator]:
        """Snapshot of indicators, ordered by id."""
        pass

    @abstractmethod
    async def get(self, indicator_id: int) -> Optional[Indicator]:
        pass

    @abstractmethod
    async def add(self, indicator: Indicator) -> Indicator:
        """Insert and return the indicator with its assigned id."""
        pass

    @abstractmethod
    async def replace(self, indicator: Indicator) -> Indicator:
        """
        Overwrite an existing definition (matched by id).

        last_run is left as stored; only update_last_run writes it.
        """
        pass

    @abstractmethod
    async def update_last_run(self, indicator_id: int, last_run: datetime) -> None:
        pass


class InMemoryIndicatorStore(IndicatorStore):
    """Dictionary-backed store. Returns copies, never live objects."""

    def __init__(self) -> None:
        self._indicators: Dict[int, Indicator] = {}
        self._next_id = 1
        self._lock = threading.Lock()

    async def list_indicators(self, active_only: bool = False) -> List[Indicator]:
        with self._lock:
            return [
                indicator.copy()
                for _, indicator in sorted(self._indicators.items())
                if indicator.is_active or not active_only
            ]

    async def get(self, indicator_id: int) -> Optional[Indicator]:
        with self._lock:
            indicator = self._indicators.get(indicator_id)
            return indicator.copy() if indicator else None

    async def add(self, indicator: Indicator) -> Indicator:
        with self._lock:
            if indicator.indicator_id is None:
                indicator_id = self._next_id
            else:
                indicator_id = indicator.indicator_id
                if indicator_id in self._indicators:
                    raise PersistenceError(
                        f"Indicator {indicator_id} already exists", operation="add"
                    )
            self._next_id = max(self._next_id, indicator_id + 1)
            stored = indicator.copy(indicator_id=indicator_id)
            self._indicators[indicator_id] = stored
            return stored.copy()

    async def replace(self, indicator: Indicator) -> Indicator:
        with self._lock:
            if indicator.indicator_id not in self._indicators:
                raise PersistenceError(
                    f"Indicator {indicator.indicator_id} does not exist", operation="replace"
                )
            stored = indicator.copy(last_run=self._indicators[indicator.indicator_id].last_run)
            self._indicators[indicator.indicator_id] = stored
            return stored.copy()

    async def update_last_run(self, indicator_id: int, last_run: datetime) -> None:
        with self._lock:
            indicator = self._indicators.get(indicator_id)
            if indicator is None:
                raise PersistenceError(
                    f"Indicator {indicator_id} does not exist", operation="update_last_run"
                )
            self._indicators[indicator_id] = indicator.copy(last_run=last_run)


__all__ = [
    "IndicatorStore",
    "InMemoryIndicatorStore",
]

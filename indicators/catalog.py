"""
Indicators - Catalog.

============================================================
PURPOSE
============================================================
Create, update and (de)activate indicator definitions.

Validation happens here, synchronously, before anything reaches
the store. The scheduler never sees an invalid indicator.

============================================================
"""

import json
import logging
from pathlib import Path
from typing import Any, List, Mapping, Optional, Tuple, Union

from pydantic import ValidationError

from core.exceptions import DuplicateIndicatorError, InvalidIndicatorError

from .models import Indicator
from .schemas import IndicatorDefinition
from .store import IndicatorStore


logger = logging.getLogger(__name__)

Payload = Union[IndicatorDefinition, Mapping[str, Any]]


def parse_definition(payload: Payload) -> IndicatorDefinition:
    """
    Validate a raw payload into an IndicatorDefinition.

    Raises:
        InvalidIndicatorError: payload violates a hard limit
    """
    if isinstance(payload, IndicatorDefinition):
        return payload
    try:
        return IndicatorDefinition.model_validate(dict(payload))
    except ValidationError as exc:
        errors = [
            f"{'.'.join(str(part) for part in error['loc']) or 'definition'}: {error['msg']}"
            for error in exc.errors()
        ]
        raise InvalidIndicatorError(
            f"Invalid indicator definition: {'; '.join(errors)}",
            errors=errors,
            cause=exc,
        ) from exc


class IndicatorCatalog:
    """Validated write access to an IndicatorStore."""

    def __init__(self, store: IndicatorStore):
        self._store = store

    async def create(self, payload: Payload) -> Tuple[Indicator, List[str]]:
        """Validate and insert a new indicator. Returns (indicator, warnings)."""
        definition = parse_definition(payload)
        await self._ensure_unique_name(definition.name)

        indicator = await self._store.add(definition.to_indicator())
        warnings = definition.warnings()
        for warning in warnings:
            logger.warning(f"Indicator '{indicator.name}' ({indicator.indicator_id}): {warning}")

        logger.info(
            f"Created indicator {indicator.indicator_id} '{indicator.name}' "
            f"type={indicator.indicator_type.value} every {indicator.frequency_minutes}m"
        )
        return indicator, warnings

    async def update(self, indicator_id: int, payload: Payload) -> Tuple[Indicator, List[str]]:
        """Validate and replace an existing definition. last_run is kept by the store."""
        existing = await self._store.get(indicator_id)
        if existing is None:
            raise InvalidIndicatorError(f"Indicator {indicator_id} does not exist")

        definition = parse_definition(payload)
        await self._ensure_unique_name(definition.name, exclude_id=indicator_id)

        indicator = await self._store.replace(
            definition.to_indicator(indicator_id=indicator_id)
        )
        logger.info(f"Updated indicator {indicator_id} '{indicator.name}'")
        return indicator, definition.warnings()

    async def set_active(self, indicator_id: int, active: bool) -> Indicator:
        existing = await self._store.get(indicator_id)
        if existing is None:
            raise InvalidIndicatorError(f"Indicator {indicator_id} does not exist")

        indicator = await self._store.replace(existing.copy(is_active=active))
        logger.info(f"Indicator {indicator_id} {'activated' if active else 'deactivated'}")
        return indicator

    async def load_file(self, path: Union[str, Path]) -> List[Indicator]:
        """
        Create indicators from a JSON file holding a list of definitions.

        Definitions whose name already exists are skipped, so reloading
        the same file on restart is harmless.
        """
        raw = json.loads(Path(path).read_text(encoding="utf-8"))
        if not isinstance(raw, list):
            raise InvalidIndicatorError(f"{path}: expected a JSON list of indicator definitions")

        loaded = []
        for payload in raw:
            try:
                indicator, _ = await self.create(payload)
            except DuplicateIndicatorError as exc:
                logger.info(f"Skipping existing indicator: {exc.message}")
                continue
            loaded.append(indicator)

        logger.info(f"Loaded {len(loaded)} indicator(s) from {path}")
        return loaded

    async def _ensure_unique_name(self, name: str, exclude_id: Optional[int] = None) -> None:
        folded = name.casefold()
        for indicator in await self._store.list_indicators():
            if indicator.indicator_id != exclude_id and indicator.name.casefold() == folded:
                raise DuplicateIndicatorError(name)


__all__ = [
    "IndicatorCatalog",
    "parse_definition",
]

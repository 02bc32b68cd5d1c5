"""
Pydantic Schemas for Indicator Definitions.

Payload accepted by the catalog on create/update. Hard limits
are errors; soft limits surface as warnings.
"""

import re
from typing import List

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from .models import Indicator, IndicatorConfig, IndicatorType


NAME_PATTERN = re.compile(r"^[a-zA-Z0-9\s\-_\.]+$")

MAX_FREQUENCY_MINUTES = 10080
LONG_WINDOW_MINUTES = 10080
MIN_TREND_WINDOW_MINUTES = 60
MIN_URGENT_FREQUENCY_MINUTES = 5


class IndicatorDefinition(BaseModel):
    """Indicator create/update payload."""

    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)

    name: str = Field(min_length=1, max_length=255)
    owner: str = Field(min_length=1, max_length=100)
    source_ref: str = Field(min_length=1)
    frequency_minutes: int = Field(ge=1, le=MAX_FREQUENCY_MINUTES)
    priority: int = Field(default=2, ge=1, le=5)
    is_active: bool = True
    config: IndicatorConfig

    @field_validator("name")
    @classmethod
    def _check_name(cls, value: str) -> str:
        if not NAME_PATTERN.match(value):
            raise ValueError(
                "name may only contain letters, numbers, spaces, hyphens, "
                "underscores and periods"
            )
        return value

    @model_validator(mode="after")
    def _check_urgent_frequency(self) -> "IndicatorDefinition":
        # SMS-level priority must not page more often than every 5 minutes
        if self.priority == 1 and self.frequency_minutes < MIN_URGENT_FREQUENCY_MINUTES:
            raise ValueError(
                f"priority 1 indicators need frequency_minutes >= {MIN_URGENT_FREQUENCY_MINUTES}"
            )
        return self

    @property
    def indicator_type(self) -> IndicatorType:
        return IndicatorType(self.config.indicator_type)

    def warnings(self) -> List[str]:
        """Soft-limit findings that do not block the definition."""
        found = []
        last_minutes = getattr(self.config, "last_minutes", None)

        if last_minutes is not None and last_minutes > LONG_WINDOW_MINUTES:
            found.append(
                f"last_minutes={last_minutes} exceeds 7 days; collection may be slow"
            )

        if (
            self.indicator_type == IndicatorType.TREND_ANALYSIS
            and last_minutes is not None
            and last_minutes < MIN_TREND_WINDOW_MINUTES
        ):
            found.append(
                f"trend_analysis window of {last_minutes} minutes is below the "
                f"recommended {MIN_TREND_WINDOW_MINUTES}"
            )

        return found

    def to_indicator(self, **extra) -> Indicator:
        return Indicator(
            name=self.name,
            owner=self.owner,
            source_ref=self.source_ref,
            config=self.config,
            frequency_minutes=self.frequency_minutes,
            priority=self.priority,
            is_active=self.is_active,
            **extra,
        )

    @classmethod
    def from_indicator(cls, indicator: Indicator) -> "IndicatorDefinition":
        return cls(
            name=indicator.name,
            owner=indicator.owner,
            source_ref=indicator.source_ref,
            frequency_minutes=indicator.frequency_minutes,
            priority=indicator.priority,
            is_active=indicator.is_active,
            config=indicator.config,
        )


__all__ = [
    "IndicatorDefinition",
    "NAME_PATTERN",
]

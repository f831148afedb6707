"""
Type-safe schemas for the performance-metrics archive.

These schemas define the data model shared by the parsers, the sample store
and the archive maintainer. Tier constants live here so every component agrees
on sample budgets and native periods.
"""

import math
from enum import Enum
from typing import Literal, NamedTuple, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


# ============================================================================
# ENUMS - No magic strings
# ============================================================================


class Resolution(str, Enum):
    """Sampling granularity of one archive tier."""

    FIVE_SECOND = "five_second"
    ONE_MINUTE = "one_minute"
    ONE_HOUR = "one_hour"
    ONE_DAY = "one_day"
    NONE = "none"  # Not part of any tier


class EntityType(str, Enum):
    """Kinds of monitored entity that expose RRD endpoints."""

    HOST = "host"
    VM = "vm"


class MaintainerState(str, Enum):
    """Archive maintainer lifecycle states."""

    STOPPED = "stopped"
    LOADING_INITIAL = "loading_initial"
    POLLING = "polling"


# ============================================================================
# TIER CONSTANTS
# ============================================================================

FIVE_SECONDS_IN_TEN_MINUTES = 120
MINUTES_IN_TWO_HOURS = 120
HOURS_IN_ONE_WEEK = 168
DAYS_IN_ONE_YEAR = 366

# Tiers that are actually populated, finest first
TIERS = (
    Resolution.FIVE_SECOND,
    Resolution.ONE_MINUTE,
    Resolution.ONE_HOUR,
    Resolution.ONE_DAY,
)

_MAX_POINTS = {
    Resolution.FIVE_SECOND: FIVE_SECONDS_IN_TEN_MINUTES + 1,
    Resolution.ONE_MINUTE: MINUTES_IN_TWO_HOURS,
    Resolution.ONE_HOUR: HOURS_IN_ONE_WEEK,
    Resolution.ONE_DAY: DAYS_IN_ONE_YEAR,
    Resolution.NONE: 0,
}

_PERIOD_SECONDS = {
    Resolution.FIVE_SECOND: 5,
    Resolution.ONE_MINUTE: 60,
    Resolution.ONE_HOUR: 3600,
    Resolution.ONE_DAY: 86400,
}

_WINDOW_SECONDS = {
    Resolution.FIVE_SECOND: 10 * 60,
    Resolution.ONE_MINUTE: 2 * 60 * 60,
    Resolution.ONE_HOUR: 7 * 24 * 60 * 60,
    Resolution.ONE_DAY: DAYS_IN_ONE_YEAR * 24 * 60 * 60,
}

_PDP_PER_ROW = {
    1: Resolution.FIVE_SECOND,
    12: Resolution.ONE_MINUTE,
    720: Resolution.ONE_HOUR,
    17280: Resolution.ONE_DAY,
}


def max_points_for(resolution: Resolution) -> int:
    """Sample budget of a tier (0 for the NONE placeholder)."""
    return _MAX_POINTS.get(resolution, 0)


def period_seconds_for(resolution: Resolution) -> int:
    """Native sampling period of a tier in seconds."""
    return _PERIOD_SECONDS.get(resolution, 5)


def window_seconds_for(resolution: Resolution) -> int:
    """Wall-clock window requested when a tier has never been collected."""
    return _WINDOW_SECONDS.get(resolution, 5)


def resolution_from_pdp_per_row(pdp_per_row: int) -> Resolution:
    """Map an RRA ``pdp_per_row`` multiplier to its tier, NONE if unknown."""
    return _PDP_PER_ROW.get(pdp_per_row, Resolution.NONE)


# ============================================================================
# SAMPLES
# ============================================================================


class DataPoint(BaseModel):
    """A single immutable sample.

    Non-finite values are stored as -1.0, which the graphs treat as "no data".
    """

    model_config = ConfigDict(frozen=True)

    timestamp_ms: int = Field(description="Milliseconds since the epoch")
    value: float = Field(description="Sample value, always finite once stored")

    @field_validator("value")
    @classmethod
    def _finite_or_sentinel(cls, v: float) -> float:
        return v if math.isfinite(v) else -1.0


class PointUpdate(NamedTuple):
    """One parsed sample destined for a tier's archive."""

    resolution: Resolution
    data_source_id: str
    timestamp_ms: int
    value: float


# ============================================================================
# ENTITY REFERENCES
# ============================================================================


class HostRef(BaseModel):
    """A physical host as seen by the console's object cache."""

    model_config = ConfigDict(frozen=True)

    object_type: Literal[EntityType.HOST] = EntityType.HOST
    uuid: str = Field(min_length=1)
    address: Optional[str] = None
    is_master: bool = False


class VmRef(BaseModel):
    """A virtual machine and the host it currently runs on, if any."""

    model_config = ConfigDict(frozen=True)

    object_type: Literal[EntityType.VM] = EntityType.VM
    uuid: str = Field(min_length=1)
    resident_on: Optional[HostRef] = None

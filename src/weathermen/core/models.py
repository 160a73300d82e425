"""Domain models for the weathermen core.

Provides validated, immutable structures for locations, provider settings and
normalized measurements.
"""
from __future__ import annotations

import datetime as dt
import enum
from dataclasses import dataclass, field
from typing import List, Optional, Tuple


class ValidationError(ValueError):
    """Raised when model inputs violate constraints."""


@dataclass(frozen=True)
class Coordinates:
    latitude: float
    longitude: float

    def __post_init__(self):
        if not (-90.0 <= self.latitude <= 90.0):
            raise ValidationError("Latitude must be between -90 and 90 degrees")
        if not (-180.0 <= self.longitude <= 180.0):
            raise ValidationError("Longitude must be between -180 and 180 degrees")

    def __str__(self) -> str:
        return f"{self.latitude:.7f},{self.longitude:.7f}"


@dataclass(frozen=True)
class Location:
    name: str
    coordinates: Coordinates

    def __post_init__(self):
        if not self.name:
            raise ValidationError("Location name is required")
        if not isinstance(self.coordinates, Coordinates):
            raise ValidationError("coordinates must be a Coordinates instance")


@dataclass(frozen=True)
class BreakerSettings:
    failure_threshold: int = 3
    failure_window: float = 300.0
    cooldown: float = 30.0
    max_cooldown: float = 300.0
    backoff_multiplier: float = 2.0

    def __post_init__(self):
        if self.failure_threshold < 1:
            raise ValidationError("failure_threshold must be at least 1")
        if self.failure_window <= 0:
            raise ValidationError("failure_window must be positive")
        if self.cooldown < 0:
            raise ValidationError("cooldown must be non-negative")
        if self.max_cooldown < self.cooldown:
            raise ValidationError("max_cooldown must not be smaller than cooldown")
        if self.backoff_multiplier < 1:
            raise ValidationError("backoff_multiplier must be >= 1")


@dataclass(frozen=True)
class ProviderConfig:
    kind: str
    id: str
    api_key: Optional[str] = field(default=None, repr=False)
    endpoint: Optional[str] = None
    refresh_interval: float = 600.0
    timeout: float = 10.0
    retries: int = 0
    serve_stale: bool = False
    max_stale: float = 0.0
    station_refresh: float = 86400.0
    breaker: BreakerSettings = field(default_factory=BreakerSettings)

    def __post_init__(self):
        if not self.kind:
            raise ValidationError("Provider kind is required")
        if not self.id:
            raise ValidationError("Provider id is required")
        if self.refresh_interval < 0:
            raise ValidationError("refresh_interval must be non-negative")
        if self.timeout <= 0:
            raise ValidationError("timeout must be positive")
        if self.retries < 0:
            raise ValidationError("retries must be non-negative")
        if self.max_stale < 0:
            raise ValidationError("max_stale must be non-negative")
        if self.station_refresh <= 0:
            raise ValidationError("station_refresh must be positive")

    @property
    def stale_horizon(self) -> float:
        """Maximum age (seconds) at which a cached entry may still be served stale."""
        extra = self.max_stale if self.max_stale > 0 else self.refresh_interval
        return self.refresh_interval + extra


@dataclass(frozen=True)
class Measurement:
    provider: str
    location: str
    timestamp: dt.datetime
    temperature: Optional[float] = None
    relative_humidity: Optional[float] = None
    city: Optional[str] = None
    coordinates: Optional[Coordinates] = None

    def __post_init__(self):
        if not self.provider:
            raise ValidationError("Measurement provider is required")
        if not self.location:
            raise ValidationError("Measurement location is required")
        if self.timestamp.tzinfo is None:
            raise ValidationError("Measurement timestamp must be timezone-aware")
        if self.relative_humidity is not None and not (0.0 <= self.relative_humidity <= 1.0):
            raise ValidationError("relative_humidity must be a ratio between 0 and 1")


@dataclass(frozen=True)
class CacheEntry:
    measurement: Measurement
    fetched_at: float


class BreakerState(str, enum.Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass(frozen=True)
class CollectorSettings:
    max_workers: int = 4
    deadline: float = 30.0

    def __post_init__(self):
        if self.max_workers < 1:
            raise ValidationError("max_workers must be at least 1")
        if self.deadline <= 0:
            raise ValidationError("deadline must be positive")


@dataclass(frozen=True)
class Settings:
    locations: Tuple[Location, ...] = ()
    providers: Tuple[ProviderConfig, ...] = ()
    collector: CollectorSettings = field(default_factory=CollectorSettings)

    def __post_init__(self):
        if not self.locations:
            raise ValidationError("At least one location is required")
        if not self.providers:
            raise ValidationError("At least one provider is required")
        names = [loc.name for loc in self.locations]
        if len(set(names)) != len(names):
            raise ValidationError("Location names must be unique")
        ids = [p.id for p in self.providers]
        if len(set(ids)) != len(ids):
            raise ValidationError("Provider ids must be unique")

    def matrix(self) -> List[Tuple[Location, ProviderConfig]]:
        return [(loc, provider) for provider in self.providers for loc in self.locations]


__all__ = [
    "ValidationError",
    "Coordinates",
    "Location",
    "BreakerSettings",
    "ProviderConfig",
    "Measurement",
    "CacheEntry",
    "BreakerState",
    "CollectorSettings",
    "Settings",
]

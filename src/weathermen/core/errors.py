"""Error taxonomy shared by providers, the resilience wrapper and the aggregator."""
from __future__ import annotations

import copy
from typing import Optional


class WeathermenError(Exception):
    """Root of all errors raised by weathermen."""


class FetchError(WeathermenError):
    """Failure to obtain a measurement for one (provider, location) pair.

    ``provider`` and ``location`` are filled in by whoever knows them; adapters
    usually only know the provider, the aggregator fills in the rest.
    """

    def __init__(self, message: str, *, provider: Optional[str] = None, location: Optional[str] = None):
        super().__init__(message)
        self.provider = provider
        self.location = location

    @property
    def kind(self) -> str:
        return type(self).__name__

    def with_context(self, provider: Optional[str] = None, location: Optional[str] = None) -> "FetchError":
        """Return a copy with missing provider/location filled in.

        The original is left untouched so one exception instance can be
        reported for several pairs.
        """
        clone = copy.copy(self)
        if clone.provider is None:
            clone.provider = provider
        if clone.location is None:
            clone.location = location
        clone.__cause__ = self.__cause__
        return clone.with_traceback(self.__traceback__)


class UpstreamUnavailable(FetchError):
    """Network error, timeout, 5xx or rate limiting. Transient."""


class UpstreamRejected(FetchError):
    """4xx: bad credentials or a malformed request. Needs operator attention."""

    def __init__(self, message: str, *, status: Optional[int] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.status = status


class ResponseMalformed(FetchError):
    """Payload could not be parsed or had an unexpected shape."""


class CircuitOpen(FetchError):
    """Rejected by the circuit breaker without calling upstream."""


class DeadlineExceeded(FetchError):
    """The collection deadline passed before this pair finished."""


class NoStationFound(FetchError):
    """Station lookup impossible: index missing or empty."""


class DatasetLoadError(FetchError):
    """Reference station dataset could not be read or parsed."""


class CacheMiss(LookupError):
    """No usable cache entry. Internal; triggers a real fetch."""


# Outcomes that count as breaker failures.
BREAKER_FAILURES = (
    UpstreamUnavailable,
    UpstreamRejected,
    ResponseMalformed,
    NoStationFound,
    DatasetLoadError,
)


__all__ = [
    "WeathermenError",
    "FetchError",
    "UpstreamUnavailable",
    "UpstreamRejected",
    "ResponseMalformed",
    "CircuitOpen",
    "DeadlineExceeded",
    "NoStationFound",
    "DatasetLoadError",
    "CacheMiss",
    "BREAKER_FAILURES",
]

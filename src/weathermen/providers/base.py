"""Provider protocol and the shared HTTP adapter base."""
from __future__ import annotations

import dataclasses
import datetime as dt
import logging
from typing import Any, Dict, FrozenSet, Optional, Protocol

import requests

from weathermen.core.debug import DebugCollector, NullDebugCollector
from weathermen.core.errors import ResponseMalformed
from weathermen.core.models import Coordinates, Location, Measurement, ProviderConfig

from .http import get_json

logger = logging.getLogger("weathermen.providers")

TEMPERATURE = "temperature"
RELATIVE_HUMIDITY = "relative_humidity"
ALL_CAPABILITIES: FrozenSet[str] = frozenset({TEMPERATURE, RELATIVE_HUMIDITY})


class WeatherProvider(Protocol):
    """Interface for fetching the current conditions at one location."""

    id: str
    capabilities: FrozenSet[str]

    def fetch(self, location: Location) -> Measurement:
        """Return a normalized Measurement (degC, humidity ratio) or raise a FetchError."""
        ...


class HttpWeatherProvider:
    """Base class for JSON-over-HTTP adapters.

    Subclasses set the class attributes and implement ``_build_params`` and
    ``_parse``; anything unexpected in the payload shape surfaces as
    ``ResponseMalformed``.
    """

    SOURCE_URI: str = ""
    DEFAULT_ENDPOINT: str = ""
    REQUIRES_API_KEY: bool = False
    DEFAULT_REFRESH_INTERVAL: Optional[float] = None
    capabilities: FrozenSet[str] = ALL_CAPABILITIES

    def __init__(
        self,
        config: ProviderConfig,
        session: requests.Session | None = None,
        debug: DebugCollector | None = None,
    ):
        self.config = config
        self.id = config.id
        self.endpoint = config.endpoint or self.DEFAULT_ENDPOINT
        self.timeout = config.timeout
        self.session = session or requests.Session()
        self.debug = debug or NullDebugCollector()

    def __repr__(self) -> str:
        return f"{type(self).__name__}(id={self.id!r}, endpoint={self.endpoint!r})"

    def _build_params(self, location: Location) -> Dict[str, str]:
        raise NotImplementedError

    def _request(self, location: Location) -> Any:
        return get_json(
            self.session,
            self.endpoint,
            params=self._build_params(location),
            timeout=self.timeout,
            provider=self.id,
        )

    def _parse(self, payload: Any, location: Location) -> Measurement:
        raise NotImplementedError

    def _measurement(
        self,
        location: Location,
        *,
        temperature: Optional[float] = None,
        relative_humidity: Optional[float] = None,
        timestamp: Optional[dt.datetime] = None,
        city: Optional[str] = None,
        coordinates: Optional[Coordinates] = None,
    ) -> Measurement:
        return Measurement(
            provider=self.id,
            location=location.name,
            timestamp=timestamp or dt.datetime.now(dt.timezone.utc),
            temperature=None if temperature is None else float(temperature),
            relative_humidity=relative_humidity,
            city=city or location.name,
            coordinates=coordinates or location.coordinates,
        )

    def _restrict(self, measurement: Measurement) -> Measurement:
        """Drop any field the adapter does not declare as a capability."""
        changes = {}
        if TEMPERATURE not in self.capabilities and measurement.temperature is not None:
            changes["temperature"] = None
        if RELATIVE_HUMIDITY not in self.capabilities and measurement.relative_humidity is not None:
            changes["relative_humidity"] = None
        return dataclasses.replace(measurement, **changes) if changes else measurement

    def fetch(self, location: Location) -> Measurement:
        payload = self._request(location)
        try:
            measurement = self._parse(payload, location)
        except (KeyError, TypeError, ValueError, IndexError) as exc:
            raise ResponseMalformed(
                f"Unexpected response shape from {self.endpoint}: {exc!r}", provider=self.id
            ) from exc
        measurement = self._restrict(measurement)
        logger.debug(
            "%s fetched %s: temperature=%s relative_humidity=%s",
            self.id,
            location.name,
            measurement.temperature,
            measurement.relative_humidity,
        )
        return measurement


__all__ = [
    "WeatherProvider",
    "HttpWeatherProvider",
    "TEMPERATURE",
    "RELATIVE_HUMIDITY",
    "ALL_CAPABILITIES",
]

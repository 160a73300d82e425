"""Open-Meteo current conditions provider."""
from __future__ import annotations

from typing import Any, Dict

import pandas as pd

from weathermen.core.models import Coordinates, Location, Measurement

from .base import HttpWeatherProvider
from .units import percent_to_ratio

_CURRENT_VARS = ("temperature_2m", "relative_humidity_2m")


class OpenMeteoProvider(HttpWeatherProvider):
    SOURCE_URI = "com.open-meteo"
    DEFAULT_ENDPOINT = "https://api.open-meteo.com/v1/forecast"
    # Open-Meteo updates current conditions every 15 minutes.
    DEFAULT_REFRESH_INTERVAL = 15 * 60.0

    def _build_params(self, location: Location) -> Dict[str, str]:
        coords = location.coordinates
        params = {
            "latitude": str(coords.latitude),
            "longitude": str(coords.longitude),
            "current": ",".join(_CURRENT_VARS),
            "timezone": "UTC",
        }
        # An API key is only needed for the commercial tier.
        if self.config.api_key:
            params["apikey"] = self.config.api_key
        return params

    def _parse(self, payload: Dict[str, Any], location: Location) -> Measurement:
        current = payload["current"]
        timestamp = None
        if current.get("time"):
            timestamp = pd.Timestamp(current["time"], tz="UTC").to_pydatetime()
        coordinates = None
        if payload.get("latitude") is not None and payload.get("longitude") is not None:
            coordinates = Coordinates(latitude=float(payload["latitude"]), longitude=float(payload["longitude"]))
        humidity = current.get("relative_humidity_2m")
        return self._measurement(
            location,
            temperature=current["temperature_2m"],
            relative_humidity=percent_to_ratio(humidity),
            timestamp=timestamp,
            coordinates=coordinates,
        )


__all__ = ["OpenMeteoProvider"]

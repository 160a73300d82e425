"""OpenWeatherMap current weather provider."""
from __future__ import annotations

import datetime as dt
from typing import Any, Dict

from weathermen.core.models import Coordinates, Location, Measurement

from .base import HttpWeatherProvider
from .units import kelvin_to_celsius, percent_to_ratio


class OpenWeatherProvider(HttpWeatherProvider):
    SOURCE_URI = "org.openweathermap"
    DEFAULT_ENDPOINT = "https://api.openweathermap.org/data/2.5/weather"
    REQUIRES_API_KEY = True

    def _build_params(self, location: Location) -> Dict[str, str]:
        coords = location.coordinates
        return {
            "lat": str(coords.latitude),
            "lon": str(coords.longitude),
            "appid": self.config.api_key or "",
        }

    def _parse(self, payload: Dict[str, Any], location: Location) -> Measurement:
        # Without units=metric the API reports Kelvin.
        main = payload["main"]
        timestamp = None
        if payload.get("dt") is not None:
            timestamp = dt.datetime.fromtimestamp(int(payload["dt"]), tz=dt.timezone.utc)
        coordinates = None
        if payload.get("coord"):
            coordinates = Coordinates(
                latitude=float(payload["coord"]["lat"]),
                longitude=float(payload["coord"]["lon"]),
            )
        return self._measurement(
            location,
            temperature=kelvin_to_celsius(main["temp"]),
            relative_humidity=percent_to_ratio(main.get("humidity")),
            timestamp=timestamp,
            city=payload.get("name"),
            coordinates=coordinates,
        )


__all__ = ["OpenWeatherProvider"]

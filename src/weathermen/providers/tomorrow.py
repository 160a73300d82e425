"""Tomorrow.io timelines provider."""
from __future__ import annotations

from typing import Any, Dict

import pandas as pd

from weathermen.core.errors import ResponseMalformed
from weathermen.core.models import Location, Measurement

from .base import HttpWeatherProvider
from .units import percent_to_ratio


class TomorrowProvider(HttpWeatherProvider):
    SOURCE_URI = "io.tomorrow"
    DEFAULT_ENDPOINT = "https://api.tomorrow.io/v4/timelines"
    REQUIRES_API_KEY = True

    def _build_params(self, location: Location) -> Dict[str, str]:
        coords = location.coordinates
        return {
            "location": f"{coords.latitude},{coords.longitude}",
            "apikey": self.config.api_key or "",
            "fields": "temperature,humidity",
            "units": "metric",
            "timesteps": "1m",
            "startTime": "now",
            "endTime": "nowPlus1m",
        }

    def _parse(self, payload: Dict[str, Any], location: Location) -> Measurement:
        timelines = payload["data"]["timelines"]
        if not timelines:
            raise ResponseMalformed("Tomorrow.io returned no timelines", provider=self.id)
        intervals = timelines[0]["intervals"]
        if not intervals:
            raise ResponseMalformed("Tomorrow.io returned an empty timeline", provider=self.id)
        first = intervals[0]
        values = first["values"]
        timestamp = None
        if first.get("startTime"):
            timestamp = pd.Timestamp(first["startTime"]).tz_convert("UTC").to_pydatetime()
        return self._measurement(
            location,
            temperature=values["temperature"],
            relative_humidity=percent_to_ratio(values.get("humidity")),
            timestamp=timestamp,
        )


__all__ = ["TomorrowProvider"]

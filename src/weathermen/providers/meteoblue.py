"""Meteoblue current conditions provider (signed requests)."""
from __future__ import annotations

import hashlib
import hmac
from typing import Any, Dict
from urllib.parse import urlencode, urlsplit

from weathermen.core.models import Coordinates, Location, Measurement

from .base import TEMPERATURE, HttpWeatherProvider
from .http import get_json


def sign_url(endpoint: str, params: Dict[str, str], secret: str) -> str:
    """Append a ``sig`` parameter: hex HMAC-SHA256 over ``path?query``."""
    query = urlencode(params)
    message = f"{urlsplit(endpoint).path}?{query}"
    sig = hmac.new(secret.encode("utf-8"), message.encode("utf-8"), hashlib.sha256).hexdigest()
    return f"{endpoint}?{query}&{urlencode({'sig': sig})}"


class MeteoblueProvider(HttpWeatherProvider):
    SOURCE_URI = "com.meteoblue"
    DEFAULT_ENDPOINT = "https://my.meteoblue.com/packages/current"
    REQUIRES_API_KEY = True
    # The current package has no humidity.
    capabilities = frozenset({TEMPERATURE})

    def _build_params(self, location: Location) -> Dict[str, str]:
        coords = location.coordinates
        return {
            "lat": str(coords.latitude),
            "lon": str(coords.longitude),
            "format": "json",
            "apikey": self.config.api_key or "",
        }

    def _request(self, location: Location) -> Any:
        url = sign_url(self.endpoint, self._build_params(location), self.config.api_key or "")
        return get_json(self.session, url, timeout=self.timeout, provider=self.id)

    def _parse(self, payload: Dict[str, Any], location: Location) -> Measurement:
        metadata = payload["metadata"]
        coordinates = None
        if metadata.get("latitude") is not None and metadata.get("longitude") is not None:
            coordinates = Coordinates(latitude=float(metadata["latitude"]), longitude=float(metadata["longitude"]))
        return self._measurement(
            location,
            temperature=payload["data_current"]["temperature"],
            city=metadata.get("name") or None,
            coordinates=coordinates,
        )


__all__ = ["MeteoblueProvider", "sign_url"]

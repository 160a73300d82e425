"""Provider that always fails; handy for exercising the failure paths end to end."""
from __future__ import annotations

from weathermen.core.errors import UpstreamUnavailable
from weathermen.core.models import Location, Measurement

from .base import HttpWeatherProvider


class NogoodnikProvider(HttpWeatherProvider):
    SOURCE_URI = "local.nogoodnik"

    def fetch(self, location: Location) -> Measurement:
        raise UpstreamUnavailable(f"{self.id} never has weather for {location.name}", provider=self.id)


__all__ = ["NogoodnikProvider"]

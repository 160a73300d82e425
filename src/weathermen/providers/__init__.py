"""Weather provider adapters and the registry that maps config tags to them."""
from __future__ import annotations

from typing import Dict, Type

import requests

from weathermen.core.debug import DebugCollector
from weathermen.core.models import ProviderConfig

from .base import HttpWeatherProvider, WeatherProvider
from .dwd import DeutscherWetterdienstProvider
from .meteoblue import MeteoblueProvider
from .nogoodnik import NogoodnikProvider
from .open_meteo import OpenMeteoProvider
from .open_weather import OpenWeatherProvider
from .tomorrow import TomorrowProvider

PROVIDER_KINDS: Dict[str, Type[HttpWeatherProvider]] = {
    "open_weather": OpenWeatherProvider,
    "open_meteo": OpenMeteoProvider,
    "tomorrow": TomorrowProvider,
    "meteoblue": MeteoblueProvider,
    "deutscher_wetterdienst": DeutscherWetterdienstProvider,
    "nogoodnik": NogoodnikProvider,
}


def build_provider(
    config: ProviderConfig,
    session: requests.Session | None = None,
    debug: DebugCollector | None = None,
) -> WeatherProvider:
    try:
        provider_cls = PROVIDER_KINDS[config.kind]
    except KeyError as exc:
        raise ValueError(f"Unknown provider kind {config.kind!r}") from exc
    return provider_cls(config, session=session, debug=debug)


__all__ = [
    "PROVIDER_KINDS",
    "build_provider",
    "WeatherProvider",
    "HttpWeatherProvider",
    "OpenWeatherProvider",
    "OpenMeteoProvider",
    "TomorrowProvider",
    "MeteoblueProvider",
    "DeutscherWetterdienstProvider",
    "NogoodnikProvider",
]

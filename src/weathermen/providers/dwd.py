"""Deutscher Wetterdienst (DWD) open data provider.

DWD publishes 10-minute observations per station, not per coordinate. The
adapter resolves the nearest station from the published station list, then
downloads that station's zipped CSV and reads its latest row.
"""
from __future__ import annotations

import io
import logging
import time
import zipfile
from typing import Callable, List

import pandas as pd
import requests

from weathermen.core.debug import DebugCollector
from weathermen.core.errors import DatasetLoadError, ResponseMalformed
from weathermen.core.models import Location, Measurement, ProviderConfig
from weathermen.geo.stations import GeoResolver, Station, parse_dwd_station_list

from .base import HttpWeatherProvider
from .http import get_bytes
from .units import percent_to_ratio

logger = logging.getLogger("weathermen.providers.dwd")

STATION_LIST_NAME = "zehn_now_tu_Beschreibung_Stationen.txt"
STATION_LIST_ENCODING = "iso-8859-15"
MISSING_VALUE = -999


def station_data_name(station_id: str) -> str:
    return f"10minutenwerte_TU_{station_id}_now.zip"


def read_measurement_zip(payload: bytes) -> str:
    """Return the text of the ``produkt_zehn_now*.txt`` member of a station archive."""
    try:
        with zipfile.ZipFile(io.BytesIO(payload)) as archive:
            for name in archive.namelist():
                if name.startswith("produkt_zehn_now") and name.endswith(".txt"):
                    return archive.read(name).decode("latin-1")
                logger.debug("Skipping file in measurement archive: %s", name)
    except zipfile.BadZipFile as exc:
        raise ResponseMalformed(f"DWD measurement archive is not a zip file: {exc}") from exc
    raise ResponseMalformed("DWD measurement archive has no produkt_zehn_now file")


def parse_measurement_csv(text: str) -> pd.DataFrame:
    """Parse the ``;``-separated 10-minute CSV into a frame indexed by UTC time.

    ``-999`` marks a missing value and becomes NaN.
    """
    try:
        df = pd.read_csv(io.StringIO(text), sep=";", skipinitialspace=True, dtype={"STATIONS_ID": str})
    except (ValueError, pd.errors.ParserError) as exc:
        raise ResponseMalformed(f"Cannot parse DWD measurement CSV: {exc}") from exc
    df.columns = [str(c).strip() for c in df.columns]
    if "MESS_DATUM" not in df.columns or df.empty:
        raise ResponseMalformed("DWD measurement CSV has no MESS_DATUM rows")
    try:
        df.index = pd.to_datetime(df.pop("MESS_DATUM").astype(str).str.strip(), format="%Y%m%d%H%M", utc=True)
    except ValueError as exc:
        raise ResponseMalformed(f"Bad MESS_DATUM in DWD measurement CSV: {exc}") from exc
    df.index.name = "ts"
    numeric = [c for c in ("PP_10", "TT_10", "TM5_10", "RF_10", "TD_10") if c in df.columns]
    df[numeric] = df[numeric].apply(pd.to_numeric, errors="coerce").replace(MISSING_VALUE, float("nan"))
    return df.sort_index()


def _value(row: pd.Series, column: str):
    if column not in row.index or pd.isna(row[column]):
        return None
    return float(row[column])


class DeutscherWetterdienstProvider(HttpWeatherProvider):
    SOURCE_URI = "de.dwd"
    DEFAULT_ENDPOINT = (
        "https://opendata.dwd.de/climate_environment/CDC/observations_germany/climate/10_minutes/air_temperature/now"
    )

    def __init__(
        self,
        config: ProviderConfig,
        session: requests.Session | None = None,
        debug: DebugCollector | None = None,
        resolver: GeoResolver | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        super().__init__(config, session=session, debug=debug)
        self.endpoint = self.endpoint.rstrip("/")
        self.resolver = resolver or GeoResolver(clock=clock)

    def load_stations(self) -> List[Station]:
        payload = get_bytes(
            self.session,
            f"{self.endpoint}/{STATION_LIST_NAME}",
            timeout=self.timeout,
            provider=self.id,
        )
        try:
            text = payload.decode(STATION_LIST_ENCODING)
        except UnicodeDecodeError as exc:
            raise DatasetLoadError(f"DWD station list is not {STATION_LIST_ENCODING}: {exc}", provider=self.id) from exc
        return parse_dwd_station_list(text)

    def fetch(self, location: Location) -> Measurement:
        self.resolver.ensure_fresh(self.load_stations, self.config.station_refresh)
        station = self.resolver.nearest(location.coordinates)
        self.debug.emit(
            "dwd.station",
            {"station_id": station.id, "station_name": station.name},
            provider=self.id,
            location=location.name,
        )

        payload = get_bytes(
            self.session,
            f"{self.endpoint}/{station_data_name(station.id)}",
            timeout=self.timeout,
            provider=self.id,
        )
        try:
            frame = parse_measurement_csv(read_measurement_zip(payload))
        except ResponseMalformed as exc:
            raise exc.with_context(provider=self.id)
        latest = frame.iloc[-1]
        humidity = _value(latest, "RF_10")
        return self._restrict(
            self._measurement(
                location,
                temperature=_value(latest, "TT_10"),
                relative_humidity=percent_to_ratio(humidity),
                timestamp=frame.index[-1].to_pydatetime(),
                city=station.name,
                coordinates=station.coordinates,
            )
        )


__all__ = [
    "DeutscherWetterdienstProvider",
    "parse_measurement_csv",
    "read_measurement_zip",
    "station_data_name",
]

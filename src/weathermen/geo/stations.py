"""Static nearest-station index for providers that only expose fixed stations."""
from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterable, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from weathermen.core.errors import DatasetLoadError, FetchError, NoStationFound
from weathermen.core.models import Coordinates, ValidationError

logger = logging.getLogger("weathermen.geo")

EARTH_RADIUS_KM = 6371.0
# Distances closer than this are considered a tie.
_TIE_TOLERANCE_KM = 1e-9


@dataclass(frozen=True)
class Station:
    id: str
    latitude: float
    longitude: float
    name: Optional[str] = None

    def __post_init__(self):
        if not self.id:
            raise ValidationError("Station id is required")
        # Reuse coordinate range checks.
        Coordinates(latitude=self.latitude, longitude=self.longitude)

    @property
    def coordinates(self) -> Coordinates:
        return Coordinates(latitude=self.latitude, longitude=self.longitude)


def haversine_km(lat1, lon1, lat2, lon2):
    """Great-circle distance in km; accepts scalars or numpy arrays in degrees."""
    lat1, lon1, lat2, lon2 = (np.radians(np.asarray(v, dtype=float)) for v in (lat1, lon1, lat2, lon2))
    dlat = lat2 - lat1
    dlon = lon2 - lon1
    a = np.sin(dlat / 2) ** 2 + np.cos(lat1) * np.cos(lat2) * np.sin(dlon / 2) ** 2
    return 2 * EARTH_RADIUS_KM * np.arcsin(np.sqrt(np.clip(a, 0.0, 1.0)))


class StationIndex:
    """Read-only collection of stations ordered by station id.

    Built once; lookups never mutate it, so one instance can be shared by any
    number of threads without locking.
    """

    def __init__(self, stations: Iterable[Station]):
        unique = {}
        for station in stations:
            if station.id in unique:
                logger.debug("Ignoring duplicate station id %s", station.id)
                continue
            unique[station.id] = station
        self._stations: Tuple[Station, ...] = tuple(sorted(unique.values(), key=lambda s: s.id))
        self._lat = np.array([s.latitude for s in self._stations], dtype=float)
        self._lon = np.array([s.longitude for s in self._stations], dtype=float)

    def __len__(self) -> int:
        return len(self._stations)

    def __iter__(self):
        return iter(self._stations)

    def distances_km(self, target: Coordinates) -> np.ndarray:
        return haversine_km(target.latitude, target.longitude, self._lat, self._lon)

    def nearest(self, target: Coordinates) -> Station:
        if not self._stations:
            raise NoStationFound("Station index is empty")
        distances = self.distances_km(target)
        best = distances.min()
        # Stations are sorted by id, so the first candidate is the smallest id.
        candidates = np.flatnonzero(distances <= best + _TIE_TOLERANCE_KM)
        return self._stations[int(candidates[0])]


class GeoResolver:
    """Owns the current StationIndex and swaps it atomically on rebuild."""

    def __init__(self, index: Optional[StationIndex] = None, clock: Callable[[], float] = time.monotonic):
        self._index = index
        self._clock = clock
        self._built_at: Optional[float] = clock() if index is not None else None
        self._build_lock = threading.Lock()

    @property
    def index(self) -> Optional[StationIndex]:
        return self._index

    def age(self) -> Optional[float]:
        if self._built_at is None:
            return None
        return self._clock() - self._built_at

    def build(self, loader: Callable[[], Iterable[Station]]) -> StationIndex:
        """Load stations and replace the current index.

        On failure the previous index (if any) stays in place.
        """
        with self._build_lock:
            return self._build_locked(loader)

    rebuild = build

    def ensure_fresh(self, loader: Callable[[], Iterable[Station]], max_age: float) -> StationIndex:
        """Build if missing or older than ``max_age``; concurrent callers build once.

        A failed refresh of an existing index is logged and the old index kept.
        """
        with self._build_lock:
            current = self._index
            age = self.age()
            if current is not None and age is not None and age < max_age:
                return current
            try:
                return self._build_locked(loader)
            except FetchError as exc:
                if current is None:
                    raise
                logger.warning("Station dataset refresh failed, keeping previous index: %s", exc)
                return current

    def _build_locked(self, loader: Callable[[], Iterable[Station]]) -> StationIndex:
        try:
            stations = list(loader())
        except DatasetLoadError:
            raise
        except (OSError, ValueError, KeyError, TypeError) as exc:
            raise DatasetLoadError(f"Cannot load station dataset: {exc}") from exc
        index = StationIndex(stations)
        self._index = index
        self._built_at = self._clock()
        logger.info("Station index built with %d stations", len(index))
        return index

    def nearest(self, target: Coordinates) -> Station:
        index = self._index
        if index is None:
            raise NoStationFound("Station index has not been built")
        station = index.nearest(target)
        logger.debug("Nearest station to %s is %s (%s)", target, station.id, station.name)
        return station

    def resolve(self, target: Coordinates) -> str:
        return self.nearest(target).id


# ---------------------------------------------------------------------------
# Dataset loaders
# ---------------------------------------------------------------------------


def read_station_table(
    source,
    *,
    id_column: str = "station_id",
    lat_column: str = "latitude",
    lon_column: str = "longitude",
    name_column: Optional[str] = "name",
    sep: str = ",",
    compression: str = "infer",
) -> List[Station]:
    """Read a delimited (optionally compressed) station table."""
    try:
        df = pd.read_csv(source, sep=sep, dtype={id_column: str}, compression=compression)
    except (OSError, ValueError, UnicodeDecodeError, pd.errors.ParserError) as exc:
        raise DatasetLoadError(f"Cannot read station table {source}: {exc}") from exc
    return _stations_from_frame(df, id_column, lat_column, lon_column, name_column)


def _stations_from_frame(
    df: pd.DataFrame,
    id_column: str,
    lat_column: str,
    lon_column: str,
    name_column: Optional[str],
) -> List[Station]:
    missing = {id_column, lat_column, lon_column} - set(df.columns)
    if missing:
        raise DatasetLoadError(f"Station table missing columns: {sorted(missing)}")
    if df.empty:
        raise DatasetLoadError("Station table has no rows")

    lats = pd.to_numeric(df[lat_column], errors="coerce")
    lons = pd.to_numeric(df[lon_column], errors="coerce")
    bad = lats.isna() | lons.isna() | df[id_column].isna()
    if bad.any():
        raise DatasetLoadError(f"Station table has {int(bad.sum())} rows with missing id or coordinates")

    has_names = name_column is not None and name_column in df.columns
    stations = []
    for pos in range(len(df)):
        name = df[name_column].iloc[pos] if has_names else None
        try:
            stations.append(
                Station(
                    id=str(df[id_column].iloc[pos]).strip(),
                    latitude=float(lats.iloc[pos]),
                    longitude=float(lons.iloc[pos]),
                    name=str(name).strip() if name is not None and not pd.isna(name) else None,
                )
            )
        except ValidationError as exc:
            raise DatasetLoadError(f"Invalid station row {pos}: {exc}") from exc
    return stations


# Stations_id von_datum bis_datum Stationshoehe geoBreite geoLaenge Stationsname Bundesland [Abgabe]
# Names may contain single spaces; columns after the name are separated by 2+ spaces.
_DWD_STATION_PATTERN = (
    r"^\s*(?P<station_id>\d+)\s+(?P<start>\d{8})\s+(?P<end>\d{8})\s+(?P<height>-?\d+)"
    r"\s+(?P<latitude>-?\d+(?:\.\d+)?)\s+(?P<longitude>-?\d+(?:\.\d+)?)\s+(?P<name>\S.*?)(?:\s{2,}.*)?\s*$"
)


def parse_dwd_station_list(text: str) -> List[Station]:
    """Parse the DWD ``*_Beschreibung_Stationen.txt`` fixed-width station list."""
    lines = pd.Series(text.splitlines(), dtype="object")
    if lines.empty:
        raise DatasetLoadError("DWD station list is empty")
    df = lines.str.extract(_DWD_STATION_PATTERN).dropna(subset=["station_id"])
    if df.empty:
        raise DatasetLoadError("DWD station list contains no station rows")
    return _stations_from_frame(df.reset_index(drop=True), "station_id", "latitude", "longitude", "name")


def read_dwd_station_list(path: str | Path, encoding: str = "iso-8859-15") -> List[Station]:
    try:
        text = Path(path).read_bytes().decode(encoding)
    except (OSError, UnicodeDecodeError) as exc:
        raise DatasetLoadError(f"Cannot read DWD station list {path}: {exc}") from exc
    return parse_dwd_station_list(text)


def stations_from_records(records: Sequence[Tuple[str, float, float]]) -> List[Station]:
    """Small helper for in-memory datasets: ``[(id, lat, lon), ...]``."""
    return [Station(id=str(sid), latitude=float(lat), longitude=float(lon)) for sid, lat, lon in records]


__all__ = [
    "Station",
    "StationIndex",
    "GeoResolver",
    "haversine_km",
    "read_station_table",
    "parse_dwd_station_list",
    "read_dwd_station_list",
    "stations_from_records",
]

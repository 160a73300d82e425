"""Nearest-station lookup for station-based providers."""

from .stations import (
    GeoResolver,
    Station,
    StationIndex,
    haversine_km,
    parse_dwd_station_list,
    read_dwd_station_list,
    read_station_table,
)

__all__ = [
    "GeoResolver",
    "Station",
    "StationIndex",
    "haversine_km",
    "parse_dwd_station_list",
    "read_dwd_station_list",
    "read_station_table",
]

import gzip
from pathlib import Path

import pytest

from weathermen.core.errors import DatasetLoadError, NoStationFound
from weathermen.core.models import Coordinates
from weathermen.geo.stations import (
    GeoResolver,
    Station,
    StationIndex,
    haversine_km,
    parse_dwd_station_list,
    read_station_table,
    stations_from_records,
)

DWD_LIST = (
    "Stations_id von_datum bis_datum Stationshoehe geoBreite geoLaenge Stationsname Bundesland Abgabe\n"
    "----------- --------- --------- ------------- --------- --------- ----------------------------------------- ---------- ------\n"
    "00044 20070209 20230111             44     52.9336    8.2370 Großenkneten                             Niedersachsen                            Frei\n"
    "01262 20000101 20230111            446     48.3477   11.8134 München-Flughafen                        Bayern                                   Frei\n"
    "03379 19970703 20230111            515     48.1632   11.5429 München-Stadt                            Bayern                                   Frei\n"
    "05792 19900101 20230111           2964     47.4210   10.9848 Zugspitze                                Bayern                                   Frei\n"
    "01303 20080701 20230111            150     51.4041    6.9677 Essen-Bredeney                           Nordrhein-Westfalen                      Frei\n"
    "07341 20090101 20230111            133     50.0900    8.7862 Offenbach-Wetterpark                     Hessen                                   Frei\n"
    "02483 19500101 20230111            839     51.2540    8.6500 Kahler Asten                             Nordrhein-Westfalen                      Frei\n"
)


def test_nearest_of_three_stations():
    index = StationIndex(stations_from_records([("A", 0, 0), ("B", 1, 1), ("C", 10, 10)]))
    assert index.nearest(Coordinates(0.4, 0.4)).id == "A"
    assert index.nearest(Coordinates(0.9, 0.9)).id == "B"
    assert index.nearest(Coordinates(9, 9)).id == "C"


def test_equidistant_tie_picks_smallest_id():
    index = StationIndex(stations_from_records([("b", 1, 0), ("a", -1, 0)]))
    assert index.nearest(Coordinates(0, 0)).id == "a"


def test_exact_match_and_sorted_order():
    index = StationIndex(stations_from_records([("z", 5, 5), ("m", 0, 0), ("c", -5, -5)]))
    assert [s.id for s in index] == ["c", "m", "z"]
    assert index.nearest(Coordinates(5, 5)).id == "z"


def test_haversine_known_distance():
    # Munich to Berlin is roughly 504 km
    assert haversine_km(48.1372, 11.5756, 52.5200, 13.4050) == pytest.approx(504, abs=5)
    assert haversine_km(0, 0, 0, 0) == 0


def test_empty_or_missing_index_raises():
    with pytest.raises(NoStationFound):
        StationIndex([]).nearest(Coordinates(0, 0))
    with pytest.raises(NoStationFound):
        GeoResolver().resolve(Coordinates(0, 0))


def test_parse_dwd_station_list():
    stations = parse_dwd_station_list(DWD_LIST)
    by_id = {s.id: s for s in stations}
    assert by_id["00044"] == Station(id="00044", latitude=52.9336, longitude=8.2370, name="Großenkneten")
    # names with single spaces survive
    assert by_id["02483"].name == "Kahler Asten"
    assert len(stations) == 7


def test_dwd_munich_resolves_to_city_station():
    resolver = GeoResolver()
    resolver.build(lambda: parse_dwd_station_list(DWD_LIST))
    assert resolver.resolve(Coordinates(48.11591, 11.570906)) == "03379"


def test_parse_dwd_station_list_rejects_garbage():
    with pytest.raises(DatasetLoadError):
        parse_dwd_station_list("")
    with pytest.raises(DatasetLoadError):
        parse_dwd_station_list("Stations_id von_datum\n------ -----\nnot a station row\n")


def test_rebuild_failure_keeps_previous_index():
    resolver = GeoResolver()
    resolver.build(lambda: stations_from_records([("A", 0, 0)]))

    def broken():
        raise OSError("disk gone")

    with pytest.raises(DatasetLoadError):
        resolver.rebuild(broken)
    assert resolver.resolve(Coordinates(1, 1)) == "A"

    old = resolver.index
    resolver.rebuild(lambda: stations_from_records([("B", 1, 1)]))
    assert resolver.resolve(Coordinates(0, 0)) == "B"
    # lookups holding the old index still see it
    assert old.nearest(Coordinates(0, 0)).id == "A"


def test_ensure_fresh_rebuilds_only_when_stale():
    now = {"t": 0.0}
    calls = {"count": 0}

    def loader():
        calls["count"] += 1
        return stations_from_records([(f"S{calls['count']}", 0, 0)])

    resolver = GeoResolver(clock=lambda: now["t"])
    resolver.ensure_fresh(loader, max_age=100)
    resolver.ensure_fresh(loader, max_age=100)
    assert calls["count"] == 1
    now["t"] = 150.0
    resolver.ensure_fresh(loader, max_age=100)
    assert calls["count"] == 2
    assert resolver.resolve(Coordinates(0, 0)) == "S2"

    def broken():
        raise DatasetLoadError("upstream gone")

    now["t"] = 400.0
    # refresh failure keeps the old index when one exists
    resolver.ensure_fresh(broken, max_age=100)
    assert resolver.resolve(Coordinates(0, 0)) == "S2"


def test_read_station_table_plain_and_gzip(tmp_path: Path):
    body = "station_id,latitude,longitude,name\n007,0.0,0.0,Zero\n042,1.0,1.0,One\n"
    plain = tmp_path / "stations.csv"
    plain.write_text(body)
    stations = read_station_table(plain)
    assert [s.id for s in stations] == ["007", "042"]
    assert stations[0].name == "Zero"

    packed = tmp_path / "stations.csv.gz"
    with gzip.open(packed, "wt") as fh:
        fh.write(body)
    assert [s.id for s in read_station_table(packed)] == ["007", "042"]


def test_read_station_table_malformed(tmp_path: Path):
    missing_col = tmp_path / "a.csv"
    missing_col.write_text("id,lat\n1,2\n")
    with pytest.raises(DatasetLoadError):
        read_station_table(missing_col)

    bad_coord = tmp_path / "b.csv"
    bad_coord.write_text("station_id,latitude,longitude\n1,north,2\n")
    with pytest.raises(DatasetLoadError):
        read_station_table(bad_coord)

    out_of_range = tmp_path / "c.csv"
    out_of_range.write_text("station_id,latitude,longitude\n1,200,2\n")
    with pytest.raises(DatasetLoadError):
        read_station_table(out_of_range)

    with pytest.raises(DatasetLoadError):
        read_station_table(tmp_path / "missing.csv")

import io
import zipfile

import pytest

from weathermen.core.errors import DatasetLoadError, NoStationFound, ResponseMalformed, UpstreamUnavailable
from weathermen.providers.dwd import (
    DeutscherWetterdienstProvider,
    parse_measurement_csv,
    read_measurement_zip,
    station_data_name,
)

STATION_LIST = (
    "Stations_id von_datum bis_datum Stationshoehe geoBreite geoLaenge Stationsname Bundesland Abgabe\n"
    "----------- --------- --------- ------------- --------- --------- ----------------------------------------- ---------- ------\n"
    "01262 20000101 20230111            446     48.3477   11.8134 München-Flughafen                        Bayern                                   Frei\n"
    "03379 19970703 20230111            515     48.1632   11.5429 München-Stadt                            Bayern                                   Frei\n"
).encode("iso-8859-15")

MEASUREMENTS = (
    "STATIONS_ID;MESS_DATUM;  QN;PP_10;TT_10;TM5_10;RF_10;TD_10;eor\n"
    "       3379;202501011150;    2;   -999;   3.1;   1.2;  85.0;   0.8;eor\n"
    "       3379;202501011200;    2;  953.1;   3.4;   1.3;  81.0;   0.6;eor\n"
)


def _zip(text, member="produkt_zehn_now_tu_20250101_20250101_03379.txt"):
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, "w") as archive:
        archive.writestr("Metadaten_Geographie_03379.txt", "ignored")
        archive.writestr(member, text)
    return buf.getvalue()


def _provider(http, provider_config, *responses, **kwargs):
    session = http.Session(*responses)
    config = provider_config("deutscher_wetterdienst", id="de.dwd", **kwargs)
    return DeutscherWetterdienstProvider(config, session=session, clock=lambda: 0.0), session


def test_fetch_resolves_nearest_station_and_reads_last_row(http, munich, provider_config):
    provider, session = _provider(
        http,
        provider_config,
        http.Resp(content=STATION_LIST),
        http.Resp(content=_zip(MEASUREMENTS)),
        http.Resp(content=_zip(MEASUREMENTS)),
    )

    m = provider.fetch(munich)
    assert m.provider == "de.dwd"
    assert m.city == "München-Stadt"
    assert m.temperature == pytest.approx(3.4)
    assert m.relative_humidity == pytest.approx(0.81)
    assert m.timestamp.isoformat() == "2025-01-01T12:00:00+00:00"
    assert session.calls[0]["url"].endswith("/zehn_now_tu_Beschreibung_Stationen.txt")
    assert session.calls[1]["url"].endswith("/" + station_data_name("03379"))

    # station list is cached until station_refresh elapses
    provider.fetch(munich)
    assert len(session.calls) == 3


def test_missing_values_become_none(http, munich, provider_config):
    text = MEASUREMENTS.replace("  953.1;   3.4;   1.3;  81.0", "  953.1;  -999;   1.3;  -999")
    provider, _ = _provider(http, provider_config, http.Resp(content=STATION_LIST), http.Resp(content=_zip(text)))
    m = provider.fetch(munich)
    assert m.temperature is None
    assert m.relative_humidity is None


def test_station_list_network_failure_is_transient(http, munich, provider_config):
    provider, _ = _provider(http, provider_config, http.Resp(status_code=503))
    with pytest.raises(UpstreamUnavailable):
        provider.fetch(munich)


def test_unparseable_station_list_is_dataset_error(http, munich, provider_config):
    provider, _ = _provider(http, provider_config, http.Resp(content=b"<html>maintenance</html>"))
    with pytest.raises(DatasetLoadError):
        provider.fetch(munich)


def test_station_list_without_rows_is_dataset_error(http, munich, provider_config):
    provider, _ = _provider(http, provider_config, http.Resp(content=b""))
    with pytest.raises((DatasetLoadError, NoStationFound)):
        provider.fetch(munich)


def test_broken_archive_is_malformed(http, munich, provider_config):
    provider, _ = _provider(http, provider_config, http.Resp(content=STATION_LIST), http.Resp(content=b"not a zip"))
    with pytest.raises(ResponseMalformed) as excinfo:
        provider.fetch(munich)
    assert excinfo.value.provider == "de.dwd"


def test_read_measurement_zip_requires_product_file():
    with pytest.raises(ResponseMalformed):
        read_measurement_zip(_zip(MEASUREMENTS, member="something_else.txt"))


def test_parse_measurement_csv_sorts_by_time():
    reversed_rows = MEASUREMENTS.splitlines()
    text = "\n".join([reversed_rows[0], reversed_rows[2], reversed_rows[1]]) + "\n"
    frame = parse_measurement_csv(text)
    assert frame.index.is_monotonic_increasing
    assert frame["TT_10"].iloc[-1] == pytest.approx(3.4)
    assert frame["PP_10"].isna().iloc[0]

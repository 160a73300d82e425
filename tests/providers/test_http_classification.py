import pytest
import requests

from weathermen.core.errors import ResponseMalformed, UpstreamRejected, UpstreamUnavailable
from weathermen.providers.http import get_bytes, get_json

URL = "https://example.invalid/weather"


@pytest.mark.parametrize("status", [500, 502, 503, 429])
def test_server_errors_and_rate_limits_are_transient(http, status):
    with pytest.raises(UpstreamUnavailable):
        get_json(http.Session(http.Resp({}, status_code=status)), URL, provider="p")


@pytest.mark.parametrize("status", [400, 401, 403, 404])
def test_client_errors_are_rejections(http, status):
    with pytest.raises(UpstreamRejected) as excinfo:
        get_json(http.Session(http.Resp({}, status_code=status)), URL, provider="p")
    assert excinfo.value.status == status
    assert excinfo.value.provider == "p"


@pytest.mark.parametrize("exc", [requests.Timeout("slow"), requests.ConnectionError("refused")])
def test_transport_errors_are_transient(http, exc):
    with pytest.raises(UpstreamUnavailable):
        get_json(http.Session(exc), URL)


def test_invalid_json_is_malformed(http):
    with pytest.raises(ResponseMalformed):
        get_json(http.Session(http.Resp(ValueError("Expecting value"))), URL)


def test_success_passes_params_and_timeout(http):
    session = http.Session(http.Resp({"ok": True}))
    assert get_json(session, URL, params={"a": "1"}, timeout=3) == {"ok": True}
    assert session.calls == [{"url": URL, "params": {"a": "1"}, "timeout": 3}]
    assert get_bytes(http.Session(http.Resp(content=b"raw")), URL) == b"raw"

import json
from pathlib import Path
from types import SimpleNamespace

import pytest

from weathermen.core.models import Coordinates, Location, ProviderConfig

FIXTURES = Path(__file__).parents[1] / "fixtures"


class Resp:
    def __init__(self, payload=None, status_code=200, content=b""):
        self.payload = payload
        self.status_code = status_code
        self.content = content

    def json(self):
        if isinstance(self.payload, Exception):
            raise self.payload
        return self.payload


class Session:
    """Replays canned responses (or raises canned exceptions) in order."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.calls = []

    def get(self, url, params=None, timeout=None, headers=None):
        self.calls.append({"url": url, "params": params, "timeout": timeout})
        resp = self.responses.pop(0)
        if isinstance(resp, Exception):
            raise resp
        return resp


@pytest.fixture
def http():
    return SimpleNamespace(Resp=Resp, Session=Session)


@pytest.fixture
def munich():
    return Location(name="munich", coordinates=Coordinates(48.11591, 11.570906))


@pytest.fixture
def load_fixture():
    def _load(name):
        return json.loads((FIXTURES / name).read_text())

    return _load


@pytest.fixture
def provider_config():
    def _make(kind, **kwargs):
        kwargs.setdefault("id", kind)
        return ProviderConfig(kind=kind, **kwargs)

    return _make

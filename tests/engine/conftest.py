import copy
import datetime as dt
from types import SimpleNamespace

import pytest

from weathermen.core.models import Coordinates, Location, Measurement


class FakeClock:
    def __init__(self, start=0.0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


class FakeAdapter:
    """Plays back outcomes in order; the last outcome repeats.

    Exceptions are copied before raising, like a real adapter raising a new
    error per call.
    """

    capabilities = frozenset({"temperature", "relative_humidity"})

    def __init__(self, *outcomes, provider_id="p"):
        self.id = provider_id
        self.outcomes = list(outcomes)
        self.calls = 0

    def fetch(self, location):
        self.calls += 1
        outcome = self.outcomes.pop(0) if len(self.outcomes) > 1 else self.outcomes[0]
        if isinstance(outcome, Exception):
            raise copy.copy(outcome)
        if callable(outcome):
            return outcome(location)
        return outcome


def make_measurement(provider="p", location="home", temperature=20.0):
    return Measurement(
        provider=provider,
        location=location,
        timestamp=dt.datetime(2025, 1, 1, tzinfo=dt.timezone.utc),
        temperature=temperature,
        relative_humidity=0.5,
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def home():
    return Location(name="home", coordinates=Coordinates(0, 0))


@pytest.fixture
def fakes():
    return SimpleNamespace(Adapter=FakeAdapter, measurement=make_measurement)

"""Circuit breaker, TTL cache and the wrapper that combines them around an adapter."""
from __future__ import annotations

import logging
import threading
import time
from collections import deque
from typing import Callable, Deque, Dict, Optional

from weathermen.core.debug import DebugCollector, NullDebugCollector, ScopedDebugCollector
from weathermen.core.errors import (
    BREAKER_FAILURES,
    CacheMiss,
    CircuitOpen,
    FetchError,
    UpstreamRejected,
    UpstreamUnavailable,
)
from weathermen.core.models import BreakerSettings, BreakerState, CacheEntry, Location, Measurement, ProviderConfig
from weathermen.providers.base import WeatherProvider

logger = logging.getLogger("weathermen.engine.resilience")

Clock = Callable[[], float]


class CircuitBreaker:
    """Three-state breaker (closed, open, half-open) for one provider.

    Failures are counted inside a rolling ``failure_window``. Once open, calls
    are rejected until the cool-down elapses; then exactly one probe is let
    through. A failed probe re-opens the breaker with a longer cool-down.
    """

    def __init__(
        self,
        settings: BreakerSettings | None = None,
        clock: Clock = time.monotonic,
        name: str = "",
        debug: DebugCollector | None = None,
    ):
        self.settings = settings or BreakerSettings()
        self.name = name
        self.debug = debug or NullDebugCollector()
        self._clock = clock
        self._lock = threading.Lock()
        self._state = BreakerState.CLOSED
        self._failures: Deque[float] = deque()
        self._opened_at: Optional[float] = None
        self._cooldown = self.settings.cooldown
        self._probe_in_flight = False

    @property
    def state(self) -> BreakerState:
        with self._lock:
            return self._state

    @property
    def cooldown(self) -> float:
        with self._lock:
            return self._cooldown

    @property
    def failure_count(self) -> int:
        with self._lock:
            self._prune(self._clock())
            return len(self._failures)

    def _prune(self, now: float) -> None:
        horizon = now - self.settings.failure_window
        while self._failures and self._failures[0] <= horizon:
            self._failures.popleft()

    def _transition(self, new_state: BreakerState, reason: str) -> None:
        old_state = self._state
        if old_state is new_state:
            return
        self._state = new_state
        if new_state is BreakerState.OPEN:
            logger.warning("Circuit for %s opened (%s); cooling down for %.0fs", self.name, reason, self._cooldown)
        else:
            logger.info("Circuit for %s %s -> %s (%s)", self.name, old_state.value, new_state.value, reason)
        self.debug.emit(
            "breaker.transition",
            {"from": old_state, "to": new_state, "reason": reason, "cooldown": self._cooldown},
            provider=self.name or None,
        )

    def allow(self) -> bool:
        """Admit a call or raise ``CircuitOpen``.

        Returns True when the admitted call is the half-open probe. Callers
        hand that flag back to ``on_success``, ``on_failure`` or ``release``
        so that only the probe's outcome can settle the half-open state.
        """
        with self._lock:
            if self._state is BreakerState.CLOSED:
                return False
            if self._state is BreakerState.OPEN:
                remaining = (self._opened_at or 0.0) + self._cooldown - self._clock()
                if remaining > 0:
                    raise CircuitOpen(
                        f"Circuit for {self.name} is open; next probe in {remaining:.0f}s", provider=self.name or None
                    )
                self._transition(BreakerState.HALF_OPEN, "cooldown elapsed")
                self._probe_in_flight = True
                return True
            if self._probe_in_flight:
                raise CircuitOpen(f"Circuit for {self.name} is half-open; probe in flight", provider=self.name or None)
            self._probe_in_flight = True
            return True

    def on_success(self, probe: bool = False) -> None:
        with self._lock:
            if self._state is BreakerState.HALF_OPEN:
                if not probe:
                    # Admitted before the breaker opened; says nothing about recovery.
                    return
                self._probe_in_flight = False
                self._cooldown = self.settings.cooldown
                self._opened_at = None
                self._failures.clear()
                self._transition(BreakerState.CLOSED, "probe succeeded")
                return
            self._failures.clear()

    def on_failure(self, probe: bool = False) -> None:
        with self._lock:
            now = self._clock()
            if self._state is BreakerState.HALF_OPEN:
                if not probe:
                    return
                self._probe_in_flight = False
                self._cooldown = min(self._cooldown * self.settings.backoff_multiplier, self.settings.max_cooldown)
                self._opened_at = now
                self._transition(BreakerState.OPEN, "probe failed")
                return
            if self._state is BreakerState.OPEN:
                # A call admitted before the breaker opened finished late.
                return
            self._failures.append(now)
            self._prune(now)
            if len(self._failures) >= self.settings.failure_threshold:
                self._opened_at = now
                self._failures.clear()
                self._transition(
                    BreakerState.OPEN,
                    f"{self.settings.failure_threshold} failures within {self.settings.failure_window:.0f}s",
                )

    def release(self, probe: bool = False) -> None:
        """Give back a half-open probe slot without recording an outcome."""
        if not probe:
            return
        with self._lock:
            self._probe_in_flight = False


class MeasurementCache:
    """Last successful Measurement per location with its fetch time."""

    def __init__(self, clock: Clock = time.monotonic):
        self._clock = clock
        self._entries: Dict[str, CacheEntry] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def store(self, key: str, measurement: Measurement) -> CacheEntry:
        entry = CacheEntry(measurement=measurement, fetched_at=self._clock())
        with self._lock:
            self._entries[key] = entry
        return entry

    def get(self, key: str) -> CacheEntry:
        with self._lock:
            entry = self._entries.get(key)
        if entry is None:
            raise CacheMiss(key)
        return entry

    def age(self, key: str) -> float:
        return self._clock() - self.get(key).fetched_at

    def _within(self, key: str, max_age: float) -> Measurement:
        entry = self.get(key)
        if self._clock() - entry.fetched_at >= max_age:
            raise CacheMiss(key)
        return entry.measurement

    def fresh(self, key: str, ttl: float) -> Measurement:
        return self._within(key, ttl)

    def stale(self, key: str, horizon: float) -> Measurement:
        return self._within(key, horizon)


class ResilientProvider:
    """Cache, breaker and retry policy around one provider adapter."""

    def __init__(
        self,
        adapter: WeatherProvider,
        config: ProviderConfig,
        clock: Clock = time.monotonic,
        debug: DebugCollector | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.adapter = adapter
        self.config = config
        self.id = config.id
        self.debug = debug or NullDebugCollector()
        self._sleep = sleep
        self.breaker = CircuitBreaker(config.breaker, clock=clock, name=config.id, debug=self.debug)
        self.cache = MeasurementCache(clock=clock)

    def __repr__(self) -> str:
        return f"ResilientProvider({self.adapter!r}, breaker={self.breaker.state.value})"

    def _fetch_with_retries(self, location: Location, debug: DebugCollector) -> Measurement:
        attempts = self.config.retries + 1
        for attempt in range(1, attempts + 1):
            try:
                return self.adapter.fetch(location)
            except UpstreamUnavailable as exc:
                if attempt == attempts:
                    raise
                backoff = 0.5 * attempt
                debug.emit("fetch.retry", {"attempt": attempt, "error": str(exc), "backoff": backoff})
                self._sleep(backoff)
        raise AssertionError("unreachable")

    def _fallback(self, location: Location, exc: FetchError, debug: DebugCollector) -> Measurement:
        if self.config.serve_stale:
            try:
                measurement = self.cache.stale(location.name, self.config.stale_horizon)
            except CacheMiss:
                pass
            else:
                age = self.cache.age(location.name)
                logger.info("Serving stale %s data for %s (age %.0fs) after %s", self.id, location.name, age, exc.kind)
                debug.emit("cache.stale", {"age": age, "error": exc.kind})
                return measurement
        raise exc

    def fetch(self, location: Location) -> Measurement:
        debug = ScopedDebugCollector(self.debug, provider=self.id, location=location.name)
        try:
            measurement = self.cache.fresh(location.name, self.config.refresh_interval)
        except CacheMiss:
            pass
        else:
            debug.emit("cache.hit", {"age": self.cache.age(location.name)})
            return measurement

        try:
            probe = self.breaker.allow()
        except CircuitOpen as exc:
            logger.debug("%s for %s skipped: %s", self.id, location.name, exc)
            return self._fallback(location, exc.with_context(self.id, location.name), debug)

        try:
            measurement = self._fetch_with_retries(location, debug)
        except BREAKER_FAILURES as exc:
            self.breaker.on_failure(probe)
            exc = exc.with_context(self.id, location.name)
            if isinstance(exc, UpstreamRejected):
                logger.error("%s rejected the request for %s: %s", self.id, location.name, exc)
            else:
                logger.warning("Fetching %s for %s failed: %s", self.id, location.name, exc)
            debug.emit("fetch.error", {"error": exc.kind, "message": str(exc)})
            return self._fallback(location, exc, debug)
        except Exception:
            self.breaker.release(probe)
            raise

        self.breaker.on_success(probe)
        self.cache.store(location.name, measurement)
        return measurement


__all__ = ["CircuitBreaker", "MeasurementCache", "ResilientProvider"]

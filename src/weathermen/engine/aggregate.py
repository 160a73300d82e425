"""Fan a (location, provider) matrix out over a thread pool and gather results."""
from __future__ import annotations

import logging
import threading
import time
from collections import Counter
from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Tuple, Union

import pandas as pd
import requests

from weathermen.core.debug import DebugCollector, NullDebugCollector
from weathermen.core.errors import DeadlineExceeded, FetchError, UpstreamRejected
from weathermen.core.models import CollectorSettings, Location, Measurement, ProviderConfig, Settings
from weathermen.providers import build_provider

from .resilience import ResilientProvider

logger = logging.getLogger("weathermen.engine.aggregate")

MatrixEntry = Tuple[Location, Union[ProviderConfig, str]]


@dataclass(frozen=True)
class FetchResult:
    provider: str
    location: str
    measurement: Optional[Measurement] = None
    error: Optional[Exception] = None

    @property
    def ok(self) -> bool:
        return self.measurement is not None

    @property
    def error_kind(self) -> Optional[str]:
        if self.error is None:
            return None
        return getattr(self.error, "kind", type(self.error).__name__)


def _provider_id(provider: Union[ProviderConfig, str]) -> str:
    return provider.id if isinstance(provider, ProviderConfig) else str(provider)


def build_wrappers(
    settings: Settings,
    session: requests.Session | None = None,
    clock: Callable[[], float] = time.monotonic,
    debug: DebugCollector | None = None,
) -> Dict[str, ResilientProvider]:
    """One ResilientProvider per configured provider, keyed by provider id."""
    wrappers: Dict[str, ResilientProvider] = {}
    for config in settings.providers:
        adapter = build_provider(config, session=session, debug=debug)
        wrappers[config.id] = ResilientProvider(adapter, config, clock=clock, debug=debug)
    return wrappers


class Aggregator:
    """Collects one FetchResult per (location, provider) pair within a deadline.

    A slow or failing pair never blocks or aborts the others; pairs still
    running when the deadline passes are reported as ``DeadlineExceeded`` and
    left to finish in the background.
    """

    def __init__(
        self,
        wrappers: Mapping[str, ResilientProvider],
        settings: Settings | CollectorSettings | None = None,
        debug: DebugCollector | None = None,
    ):
        self._wrappers: Dict[str, ResilientProvider] = dict(wrappers)
        self.settings: Optional[Settings] = settings if isinstance(settings, Settings) else None
        if isinstance(settings, Settings):
            self.collector = settings.collector
        else:
            self.collector = settings or CollectorSettings()
        self.debug = debug or NullDebugCollector()
        self.failures: Counter = Counter()
        self._lock = threading.Lock()

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        session: requests.Session | None = None,
        clock: Callable[[], float] = time.monotonic,
        debug: DebugCollector | None = None,
    ) -> "Aggregator":
        return cls(build_wrappers(settings, session=session, clock=clock, debug=debug), settings, debug=debug)

    @property
    def wrappers(self) -> Dict[str, ResilientProvider]:
        with self._lock:
            return dict(self._wrappers)

    def reload(
        self,
        settings: Settings,
        session: requests.Session | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Swap in providers built from ``settings``; in-flight collections keep the old set."""
        wrappers = build_wrappers(settings, session=session, clock=clock, debug=self.debug)
        with self._lock:
            self._wrappers = wrappers
            self.settings = settings
            self.collector = settings.collector
        logger.info("Reloaded %d providers for %d locations", len(wrappers), len(settings.locations))

    def collect_all(self) -> List[FetchResult]:
        if self.settings is None:
            raise ValueError("Aggregator has no Settings; pass a matrix to collect()")
        return self.collect(self.settings.matrix())

    def collect(self, matrix: Iterable[MatrixEntry]) -> List[FetchResult]:
        pairs = [(location, _provider_id(provider)) for location, provider in matrix]
        with self._lock:
            wrappers = self._wrappers
            collector = self.collector

        results: Dict[int, FetchResult] = {}
        futures = {}
        started = time.monotonic()
        executor = ThreadPoolExecutor(max_workers=collector.max_workers, thread_name_prefix="weathermen-fetch")
        try:
            for idx, (location, provider_id) in enumerate(pairs):
                wrapper = wrappers.get(provider_id)
                if wrapper is None:
                    results[idx] = FetchResult(
                        provider_id,
                        location.name,
                        error=UpstreamRejected(
                            f"Provider {provider_id} is not configured", provider=provider_id, location=location.name
                        ),
                    )
                    continue
                futures[executor.submit(wrapper.fetch, location)] = idx
            done, not_done = wait(futures, timeout=collector.deadline)
        finally:
            executor.shutdown(wait=False, cancel_futures=True)

        for future in done:
            idx = futures[future]
            location, provider_id = pairs[idx]
            try:
                results[idx] = FetchResult(provider_id, location.name, measurement=future.result())
            except FetchError as exc:
                results[idx] = FetchResult(provider_id, location.name, error=exc.with_context(provider_id, location.name))
            except Exception as exc:
                logger.exception("Unexpected error fetching %s for %s", provider_id, location.name)
                results[idx] = FetchResult(provider_id, location.name, error=exc)
        for future in not_done:
            idx = futures[future]
            location, provider_id = pairs[idx]
            results[idx] = FetchResult(
                provider_id,
                location.name,
                error=DeadlineExceeded(
                    f"No result within {collector.deadline:.1f}s", provider=provider_id, location=location.name
                ),
            )

        ordered = [results[idx] for idx in range(len(pairs))]
        self._record(ordered, time.monotonic() - started)
        return ordered

    def _record(self, results: List[FetchResult], elapsed: float) -> None:
        failed = [r for r in results if not r.ok]
        with self._lock:
            for result in failed:
                self.failures[(result.provider, result.location, result.error_kind)] += 1
        for result in failed:
            logger.info("No data from %s for %s: %s", result.provider, result.location, result.error)
        self.debug.emit(
            "collect.summary",
            {
                "pairs": len(results),
                "ok": len(results) - len(failed),
                "failed": dict(Counter(r.error_kind for r in failed)),
                "elapsed_s": round(elapsed, 3),
            },
        )

    @staticmethod
    def measurements(results: Iterable[FetchResult]) -> Dict[Tuple[str, str], Measurement]:
        """Successful results keyed by (provider, location); failed pairs are omitted."""
        return {(r.provider, r.location): r.measurement for r in results if r.measurement is not None}


def results_frame(results: Iterable[FetchResult]) -> pd.DataFrame:
    """Flatten results into a table for display or export."""
    rows = []
    for r in results:
        m = r.measurement
        rows.append(
            {
                "provider": r.provider,
                "location": r.location,
                "city": m.city if m else None,
                "temperature_c": m.temperature if m else None,
                "relative_humidity": m.relative_humidity if m else None,
                "timestamp": m.timestamp.isoformat() if m else None,
                "error": None if r.ok else f"{r.error_kind}: {r.error}",
            }
        )
    columns = ["provider", "location", "city", "temperature_c", "relative_humidity", "timestamp", "error"]
    return pd.DataFrame(rows, columns=columns)


__all__ = ["Aggregator", "FetchResult", "build_wrappers", "results_frame"]

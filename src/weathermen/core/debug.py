"""Structured debug events (breaker transitions, cache decisions, fetch errors)."""
from __future__ import annotations

import datetime as _dt
import json
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol


class DebugCollector(Protocol):
    def emit(
        self,
        stage: str,
        payload: Dict[str, Any],
        *,
        ts: Any = None,
        provider: Optional[str] = None,
        location: Optional[str] = None,
    ) -> None:
        ...


def _utcnow() -> _dt.datetime:
    return _dt.datetime.now(_dt.timezone.utc)


def _json_safe_scalar(val: Any) -> Any:
    """Convert common non-JSON types to safe representations."""
    if hasattr(val, "isoformat"):
        try:
            return val.isoformat()
        except Exception:
            return str(val)
    if isinstance(val, (set, frozenset, tuple)):
        return [_json_safe_scalar(v) for v in sorted(val, key=str)]
    if hasattr(val, "value") and hasattr(val, "name"):  # enums
        return val.value
    return val


def _ordered(obj: Any) -> Any:
    """Recursively order mappings for deterministic JSON dumps."""
    if isinstance(obj, dict):
        return {k: _ordered(obj[k]) for k in sorted(obj)}
    if isinstance(obj, list):
        return [_ordered(v) for v in obj]
    return _json_safe_scalar(obj)


def _event(stage: str, payload: Dict[str, Any], ts: Any, provider: Optional[str], location: Optional[str]) -> Dict[str, Any]:
    return {
        "stage": stage,
        "ts": _json_safe_scalar(ts if ts is not None else _utcnow()),
        "provider": provider,
        "location": location,
        "payload": _ordered(payload),
    }


class NullDebugCollector:
    def emit(self, stage: str, payload: Dict[str, Any], *, ts: Any = None, provider: Optional[str] = None, location: Optional[str] = None) -> None:  # noqa: D401
        """Discard events (no-op)."""
        return


@dataclass
class ListDebugCollector:
    events: List[Dict[str, Any]] = field(default_factory=list)

    def emit(self, stage: str, payload: Dict[str, Any], *, ts: Any = None, provider: Optional[str] = None, location: Optional[str] = None) -> None:
        self.events.append(_event(stage, payload, ts, provider, location))

    def stages(self) -> List[str]:
        return [e["stage"] for e in self.events]


class JsonlDebugWriter:
    """Append one JSON object per event; safe to share between worker threads."""

    def __init__(self, path: str | Path):
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._fh = self.path.open("a", encoding="utf-8")
        self._lock = threading.Lock()

    def emit(self, stage: str, payload: Dict[str, Any], *, ts: Any = None, provider: Optional[str] = None, location: Optional[str] = None) -> None:
        line = json.dumps(_event(stage, payload, ts, provider, location), sort_keys=True)
        with self._lock:
            self._fh.write(line)
            self._fh.write("\n")
            self._fh.flush()

    def close(self) -> None:
        with self._lock:
            if not self._fh.closed:
                self._fh.close()

    def __del__(self):  # pragma: no cover - best effort cleanup
        try:
            self.close()
        except Exception:
            pass


class ScopedDebugCollector:
    """Wrapper that injects fixed provider/location context into every emit."""

    def __init__(self, inner: DebugCollector, *, provider: Optional[str] = None, location: Optional[str] = None):
        self.inner = inner
        self.provider = provider
        self.location = location

    def emit(self, stage: str, payload: Dict[str, Any], *, ts: Any = None, provider: Optional[str] = None, location: Optional[str] = None) -> None:
        eff_provider = provider if provider is not None else self.provider
        eff_location = location if location is not None else self.location
        self.inner.emit(stage, payload, ts=ts, provider=eff_provider, location=eff_location)


__all__ = [
    "DebugCollector",
    "NullDebugCollector",
    "ListDebugCollector",
    "JsonlDebugWriter",
    "ScopedDebugCollector",
]

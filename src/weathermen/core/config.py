"""Configuration loader.

Supports YAML and JSON files describing locations, providers and collector
limits, with ``WEATHERMEN_*`` environment overrides merged on top.
"""
from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import pandas as pd
import yaml

from weathermen.providers import PROVIDER_KINDS
from .models import (
    BreakerSettings,
    CollectorSettings,
    Coordinates,
    Location,
    ProviderConfig,
    Settings,
    ValidationError,
)

logger = logging.getLogger("weathermen.config")


class ConfigError(ValueError):
    """Raised when configuration cannot be parsed into domain models."""


ENV_PREFIX = "WEATHERMEN_"
DEFAULT_CONFIG = Path("/etc/weathermen/weathermen.yaml")
MIN_RECOMMENDED_REFRESH = 5 * 60

_PROVIDER_KEYS = {
    "kind",
    "id",
    "api_key",
    "endpoint",
    "refresh_interval",
    "timeout",
    "retries",
    "serve_stale",
    "max_stale",
    "station_refresh",
    "breaker",
}
_BREAKER_KEYS = {"failure_threshold", "failure_window", "cooldown", "max_cooldown", "backoff_multiplier"}


def _load_raw(path: Path) -> Dict[str, Any]:
    text = path.read_text()
    if path.suffix.lower() in {".yaml", ".yml"}:
        return yaml.safe_load(text) or {}
    if path.suffix.lower() == ".json":
        return json.loads(text)
    raise ConfigError(f"Unsupported config extension: {path.suffix}")


def parse_duration(value: Any, field_name: str) -> float:
    """Return seconds for numbers or strings such as ``10m``, ``30s``, ``1h``."""
    if isinstance(value, bool):
        raise ConfigError(f"{field_name} must be a duration, got {value!r}")
    if isinstance(value, (int, float)):
        return float(value)
    try:
        return pd.Timedelta(str(value).strip()).total_seconds()
    except (ValueError, TypeError) as exc:
        raise ConfigError(f"{field_name}: cannot parse duration {value!r}") from exc


def _env_overrides(environ: Mapping[str, str]) -> Dict[str, Any]:
    """Turn ``WEATHERMEN_PROVIDER__OPEN_WEATHER__API_KEY=x`` into nested dicts."""
    overrides: Dict[str, Any] = {}
    for key, raw_value in sorted(environ.items()):
        if not key.startswith(ENV_PREFIX):
            continue
        path = [part.lower() for part in key[len(ENV_PREFIX):].split("__") if part]
        if not path:
            continue
        node = overrides
        for part in path[:-1]:
            node = node.setdefault(part, {})
            if not isinstance(node, dict):
                raise ConfigError(f"Environment override {key} conflicts with a scalar value")
        try:
            node[path[-1]] = yaml.safe_load(raw_value)
        except yaml.YAMLError:
            node[path[-1]] = raw_value
    return overrides


def _merge(base: Dict[str, Any], overrides: Dict[str, Any]) -> Dict[str, Any]:
    merged = dict(base)
    for key, value in overrides.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def _parse_location(key: str, raw: Dict[str, Any]) -> Location:
    if not isinstance(raw, dict):
        raise ConfigError(f"Location {key!r} must be a mapping")
    try:
        lat = raw["latitude"] if "latitude" in raw else raw["lat"]
        lon = raw["longitude"] if "longitude" in raw else raw["lon"]
        return Location(
            name=str(raw.get("name") or key),
            coordinates=Coordinates(latitude=float(lat), longitude=float(lon)),
        )
    except KeyError as exc:
        raise ConfigError(f"Location {key!r} missing field: {exc}") from exc
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"Invalid location {key!r}: {exc}") from exc


def _parse_breaker(key: str, raw: Any) -> BreakerSettings:
    if raw is None:
        return BreakerSettings()
    if not isinstance(raw, dict):
        raise ConfigError(f"Provider {key!r}: breaker must be a mapping")
    unknown = set(raw) - _BREAKER_KEYS
    if unknown:
        raise ConfigError(f"Provider {key!r}: unknown breaker fields {sorted(unknown)}")
    kwargs: Dict[str, Any] = {}
    try:
        if "failure_threshold" in raw:
            kwargs["failure_threshold"] = int(raw["failure_threshold"])
        if "backoff_multiplier" in raw:
            kwargs["backoff_multiplier"] = float(raw["backoff_multiplier"])
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"Provider {key!r}: invalid breaker settings: {exc}") from exc
    for name in ("failure_window", "cooldown", "max_cooldown"):
        if name in raw:
            kwargs[name] = parse_duration(raw[name], f"{key}.breaker.{name}")
    if "cooldown" in kwargs and "max_cooldown" not in kwargs:
        kwargs["max_cooldown"] = max(kwargs["cooldown"], BreakerSettings.max_cooldown)
    try:
        return BreakerSettings(**kwargs)
    except ValidationError as exc:
        raise ConfigError(f"Provider {key!r}: invalid breaker settings: {exc}") from exc


def _parse_provider(key: str, raw: Optional[Dict[str, Any]]) -> ProviderConfig:
    raw = raw or {}
    if not isinstance(raw, dict):
        raise ConfigError(f"Provider {key!r} must be a mapping")
    unknown = set(raw) - _PROVIDER_KEYS
    if unknown:
        raise ConfigError(f"Provider {key!r}: unknown fields {sorted(unknown)}")

    if not isinstance(raw.get("serve_stale", False), bool):
        raise ConfigError(f"Provider {key!r}: serve_stale must be true or false")

    kind = str(raw.get("kind") or key)
    provider_cls = PROVIDER_KINDS.get(kind)
    if provider_cls is None:
        raise ConfigError(f"Provider {key!r}: unknown kind {kind!r}; expected one of {sorted(PROVIDER_KINDS)}")
    if provider_cls.REQUIRES_API_KEY and not raw.get("api_key"):
        raise ConfigError(f"Provider {key!r}: api_key is required for {kind}")

    kwargs: Dict[str, Any] = {
        "kind": kind,
        "id": str(raw.get("id") or provider_cls.SOURCE_URI),
        "api_key": raw.get("api_key"),
        "endpoint": raw.get("endpoint"),
        "serve_stale": raw.get("serve_stale", False),
        "breaker": _parse_breaker(key, raw.get("breaker")),
    }
    for name in ("refresh_interval", "timeout", "max_stale", "station_refresh"):
        if name in raw:
            kwargs[name] = parse_duration(raw[name], f"{key}.{name}")
    if "refresh_interval" not in kwargs and provider_cls.DEFAULT_REFRESH_INTERVAL is not None:
        kwargs["refresh_interval"] = provider_cls.DEFAULT_REFRESH_INTERVAL
    if "retries" in raw:
        try:
            kwargs["retries"] = int(raw["retries"])
        except (TypeError, ValueError) as exc:
            raise ConfigError(f"Provider {key!r}: retries must be an integer") from exc

    try:
        config = ProviderConfig(**kwargs)
    except ValidationError as exc:
        raise ConfigError(f"Invalid provider {key!r}: {exc}") from exc

    if config.refresh_interval < MIN_RECOMMENDED_REFRESH:
        logger.warning(
            "Updating weather information more often than every 5 minutes is discouraged. "
            "Consider increasing the refresh interval for %s",
            config.id,
        )
    return config


def _parse_collector(raw: Any) -> CollectorSettings:
    if raw is None:
        return CollectorSettings()
    if not isinstance(raw, dict):
        raise ConfigError("collector must be a mapping")
    kwargs: Dict[str, Any] = {}
    if "max_workers" in raw:
        try:
            kwargs["max_workers"] = int(raw["max_workers"])
        except (TypeError, ValueError) as exc:
            raise ConfigError("collector.max_workers must be an integer") from exc
    if "deadline" in raw:
        kwargs["deadline"] = parse_duration(raw["deadline"], "collector.deadline")
    try:
        return CollectorSettings(**kwargs)
    except ValidationError as exc:
        raise ConfigError(f"Invalid collector settings: {exc}") from exc


def parse_settings(raw: Dict[str, Any]) -> Settings:
    if not isinstance(raw, dict):
        raise ConfigError("Config root must be a mapping")
    if not raw.get("location"):
        raise ConfigError("Config must contain a 'location' mapping")
    if not raw.get("provider"):
        raise ConfigError("No providers configured")
    if not isinstance(raw["location"], dict) or not isinstance(raw["provider"], dict):
        raise ConfigError("'location' and 'provider' must be mappings keyed by name")

    locations = tuple(_parse_location(str(k), v) for k, v in raw["location"].items())
    providers = tuple(_parse_provider(str(k), v) for k, v in raw["provider"].items())
    try:
        return Settings(locations=locations, providers=providers, collector=_parse_collector(raw.get("collector")))
    except ValidationError as exc:
        raise ConfigError(f"Invalid settings: {exc}") from exc


def load_settings(path: str | Path, environ: Optional[Mapping[str, str]] = None) -> Settings:
    path = Path(path)
    if not path.exists():
        raise ConfigError(f"Config file not found: {path}")
    logger.info("Reading config file %s", path)
    try:
        raw = _load_raw(path)
    except (yaml.YAMLError, json.JSONDecodeError) as exc:
        raise ConfigError(f"Cannot parse {path}: {exc}") from exc
    if not isinstance(raw, dict):
        raise ConfigError("Config root must be a mapping")
    raw = _merge(raw, _env_overrides(os.environ if environ is None else environ))
    settings = parse_settings(raw)
    logger.debug("Read config is %s", settings)
    return settings


__all__ = [
    "ConfigError",
    "DEFAULT_CONFIG",
    "load_settings",
    "parse_settings",
    "parse_duration",
]

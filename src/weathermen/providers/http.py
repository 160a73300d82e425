"""HTTP helpers that map transport outcomes onto the fetch error taxonomy."""
from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import requests

from weathermen import __version__
from weathermen.core.errors import ResponseMalformed, UpstreamRejected, UpstreamUnavailable

logger = logging.getLogger("weathermen.http")

USER_AGENT = f"weathermen/{__version__}"


def _check_status(resp: Any, url: str, provider: Optional[str]) -> None:
    status = int(getattr(resp, "status_code", 200))
    if status == 429 or status >= 500:
        raise UpstreamUnavailable(f"{url} answered HTTP {status}", provider=provider)
    if status >= 400:
        raise UpstreamRejected(f"{url} answered HTTP {status}", status=status, provider=provider)


def http_get(
    session: requests.Session,
    url: str,
    *,
    params: Optional[Dict[str, str]] = None,
    timeout: float = 10.0,
    provider: Optional[str] = None,
):
    """GET ``url`` and return the response, raising a FetchError on failure.

    Network errors, timeouts, 5xx and 429 are transient; every other 4xx is a
    rejection that retrying will not fix.
    """
    logger.debug("GET %s params=%s", url, sorted((params or {}).keys()))
    try:
        resp = session.get(url, params=params, timeout=timeout, headers={"User-Agent": USER_AGENT})
    except requests.Timeout as exc:
        raise UpstreamUnavailable(f"Timed out after {timeout}s requesting {url}", provider=provider) from exc
    except requests.RequestException as exc:
        raise UpstreamUnavailable(f"Request to {url} failed: {exc}", provider=provider) from exc
    _check_status(resp, url, provider)
    return resp


def get_json(
    session: requests.Session,
    url: str,
    *,
    params: Optional[Dict[str, str]] = None,
    timeout: float = 10.0,
    provider: Optional[str] = None,
) -> Any:
    resp = http_get(session, url, params=params, timeout=timeout, provider=provider)
    try:
        return resp.json()
    except ValueError as exc:
        raise ResponseMalformed(f"{url} returned invalid JSON: {exc}", provider=provider) from exc


def get_bytes(
    session: requests.Session,
    url: str,
    *,
    timeout: float = 10.0,
    provider: Optional[str] = None,
) -> bytes:
    resp = http_get(session, url, timeout=timeout, provider=provider)
    return resp.content


__all__ = ["http_get", "get_json", "get_bytes", "USER_AGENT"]

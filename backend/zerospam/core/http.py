from __future__ import annotations

from typing import Any

import requests

from zerospam.core.config import settings
from zerospam.core.errors import RemoteUnavailable

USER_AGENT = "zerospam-engine/1.0"


def effective_timeout(value: Any, default: float | None = None) -> float:
    """Clamp a configured timeout to the detector floor."""
    fallback = settings.DETECTOR_DEFAULT_TIMEOUT_SECONDS if default is None else default
    if value is None or isinstance(value, bool):
        parsed = float(fallback)
    else:
        try:
            parsed = float(value)
        except (TypeError, ValueError):
            parsed = float(fallback)
    return max(settings.DETECTOR_TIMEOUT_FLOOR_SECONDS, parsed)


def remote_get_json(
    url: str,
    *,
    params: dict[str, Any] | None = None,
    timeout: float,
) -> Any:
    """
    GET a JSON document, converting every transport or payload problem into
    RemoteUnavailable so callers only have one failure type to absorb.
    """
    try:
        resp = requests.get(
            url,
            params=params,
            timeout=timeout,
            headers={"Accept": "application/json", "User-Agent": USER_AGENT},
        )
    except requests.Timeout as exc:
        raise RemoteUnavailable("timeout", f"Request to {url} timed out") from exc
    except requests.RequestException as exc:
        raise RemoteUnavailable("connection", f"Request to {url} failed: {exc}") from exc
    if resp.status_code < 200 or resp.status_code >= 300:
        raise RemoteUnavailable("http_status", f"{url} returned status {resp.status_code}")
    try:
        return resp.json()
    except ValueError as exc:
        raise RemoteUnavailable("malformed", f"{url} returned a non-JSON body") from exc

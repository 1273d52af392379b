from __future__ import annotations

import json
from typing import Any
from urllib import request
from urllib.error import HTTPError, URLError
from urllib.parse import urlencode

from mediajobs.errors import ArtifactFetchError, PermanentAdapterError, TransientAdapterError

RETRYABLE_CLIENT_STATUSES = frozenset({408, 429})


def build_url(base: str, path: str, params: dict[str, Any] | None = None) -> str:
    url = f"{base.rstrip('/')}/{path.lstrip('/')}"
    if params:
        url = f"{url}?{urlencode(params)}"
    return url


def _error_detail(raw: str) -> str:
    try:
        data = json.loads(raw)
    except json.JSONDecodeError:
        return raw[:200]
    if isinstance(data, dict):
        return str(data.get("message") or data.get("error") or data.get("msg") or raw[:200])
    return raw[:200]


def make_request(
    *,
    url: str,
    method: str = "GET",
    data: dict[str, Any] | None = None,
    timeout: float = 30.0,
    service: str = "remote",
) -> dict[str, Any]:
    """Call a JSON endpoint and classify failures.

    4xx responses and bodies that are not a JSON object raise
    PermanentAdapterError. 408, 429, 5xx, connection problems and timeouts
    raise TransientAdapterError.
    """
    headers = {"Accept": "application/json"}
    body = None
    if data is not None:
        body = json.dumps(data).encode("utf-8")
        headers["Content-Type"] = "application/json"

    req = request.Request(url, data=body, method=method, headers=headers)
    try:
        with request.urlopen(req, timeout=timeout) as resp:
            raw = resp.read().decode("utf-8")
    except HTTPError as e:
        raw = e.read().decode("utf-8", errors="replace")
        message = f"{service} HTTP {e.code}: {_error_detail(raw)}"
        if 400 <= e.code < 500 and e.code not in RETRYABLE_CLIENT_STATUSES:
            raise PermanentAdapterError(message, code="REMOTE_REJECTED", status_code=e.code) from e
        raise TransientAdapterError(message, code="REMOTE_UNAVAILABLE", status_code=e.code) from e
    except (URLError, OSError) as e:
        raise TransientAdapterError(f"{service} unavailable: {e}", code="REMOTE_UNAVAILABLE") from e

    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError as e:
        raise PermanentAdapterError(f"{service} returned invalid JSON", code="REMOTE_SCHEMA_INVALID") from e
    if not isinstance(parsed, dict):
        raise PermanentAdapterError(f"{service} returned unexpected payload", code="REMOTE_SCHEMA_INVALID")
    return parsed


def download_bytes(url: str, *, timeout: float = 120.0) -> bytes:
    try:
        with request.urlopen(url, timeout=timeout) as resp:
            return resp.read()
    except HTTPError as e:
        raise ArtifactFetchError(f"artifact download failed: HTTP {e.code}") from e
    except (URLError, OSError) as e:
        raise ArtifactFetchError(f"artifact download failed: {e}") from e

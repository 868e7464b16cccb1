"""Lightweight JSON-over-HTTP helpers (stdlib only)."""

from __future__ import annotations

import json
import time
from urllib.error import HTTPError, URLError
from urllib.request import Request, urlopen

import structlog

from qamax_agent.common.constants import (
    AGENT_NAME,
    HTTP_TIMEOUT_SECS,
    MAX_RESPONSE_BYTES,
    VERSION,
)

_UA = f"{AGENT_NAME.replace(' ', '')}/{VERSION}"
_MAX_RETRIES = 3
_BACKOFF_BASE = 2.0  # seconds; doubles each retry
_ERROR_BODY_PREVIEW = 500

_log = structlog.get_logger("http")


class CloudAPIError(RuntimeError):
    """A request failed in transport or came back with a non-200 status."""

    def __init__(self, message: str, *, status: int | None = None, body: str = "") -> None:
        super().__init__(message)
        self.status = status
        self.body = body


def _read_capped(resp) -> bytes:  # noqa: ANN001
    return resp.read(MAX_RESPONSE_BYTES)


def _decode(raw: bytes) -> dict:
    if not raw:
        return {}
    data = json.loads(raw.decode("utf-8", errors="replace"))
    return data if isinstance(data, dict) else {"data": data}


def request_json(
    url: str,
    *,
    method: str = "GET",
    payload: dict | None = None,
    headers: dict | None = None,
    timeout: float = HTTP_TIMEOUT_SECS,
    retries: int = _MAX_RETRIES,
) -> dict:
    """Send *payload* as JSON and return the parsed JSON response body.

    Only a 200 response counts as success. Response bodies are read up to
    ``MAX_RESPONSE_BYTES``. HTTP 429 is retried with exponential backoff;
    every other failure raises :class:`CloudAPIError`.
    """
    hdr = {"Accept": "application/json", "User-Agent": _UA, **(headers or {})}
    data = None
    if payload is not None:
        data = json.dumps(payload).encode()
        hdr["Content-Type"] = "application/json"
    req = Request(url, method=method, data=data, headers=hdr)

    for attempt in range(1, retries + 1):
        try:
            with urlopen(req, timeout=timeout) as resp:
                raw = _read_capped(resp)
                if resp.status != 200:
                    raise CloudAPIError(
                        f"{method} {url} failed: {resp.status}",
                        status=resp.status,
                        body=raw[:_ERROR_BODY_PREVIEW].decode("utf-8", errors="replace"),
                    )
                try:
                    return _decode(raw)
                except json.JSONDecodeError as exc:
                    raise CloudAPIError(f"{method} {url}: invalid JSON response: {exc}") from exc
        except HTTPError as exc:
            if exc.code == 429 and attempt < retries:
                wait = _BACKOFF_BASE ** attempt
                _log.warning(
                    "rate_limited",
                    url=url,
                    retry_in_seconds=wait,
                    attempt=attempt,
                    retries=retries,
                )
                time.sleep(wait)
                continue
            body = exc.read(_ERROR_BODY_PREVIEW).decode("utf-8", errors="replace")
            raise CloudAPIError(
                f"{method} {url} failed: {exc.code} - {body}", status=exc.code, body=body,
            ) from exc
        except (URLError, TimeoutError, OSError) as exc:
            raise CloudAPIError(f"{method} {url}: request failed: {exc}") from exc
    raise CloudAPIError(f"{method} {url}: retries exhausted", status=429)


def http_get(url: str, headers: dict | None = None, timeout: float = HTTP_TIMEOUT_SECS) -> dict:
    """Perform a GET request and return the parsed JSON body."""
    return request_json(url, method="GET", headers=headers, timeout=timeout)


def http_post(
    url: str,
    headers: dict | None = None,
    payload: dict | None = None,
    timeout: float = HTTP_TIMEOUT_SECS,
) -> dict:
    """POST a JSON payload and return the parsed JSON body."""
    return request_json(
        url, method="POST", payload=payload if payload is not None else {},
        headers=headers, timeout=timeout,
    )

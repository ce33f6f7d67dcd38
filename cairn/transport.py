"""JSON-over-HTTP helpers for providers that litellm does not front for us."""

import json
import logging
import socket
import urllib.error
import urllib.request

from .errors import (
    LLMConnectionFailed,
    LLMRateLimited,
    LLMRequestFailed,
    LLMResponseInvalid,
    LLMTimeout,
)

logger = logging.getLogger(__name__)

SSE_DATA_PREFIX = "data: "
SSE_DONE = "[DONE]"


def _retry_after(headers) -> float | None:
    value = headers.get("Retry-After") if headers is not None else None
    try:
        return float(value) if value is not None else None
    except ValueError:
        return None


def _open(url: str, payload: dict, headers: dict, timeout: float):
    body = json.dumps(payload).encode("utf-8")
    req = urllib.request.Request(
        url,
        data=body,
        headers={"Content-Type": "application/json", **headers},
        method="POST",
    )
    logger.debug("POST %s (%d bytes)", url, len(body))
    try:
        return urllib.request.urlopen(req, timeout=timeout)
    except urllib.error.HTTPError as e:
        detail = e.read().decode("utf-8", errors="replace")[:500]
        if e.code == 429:
            raise LLMRateLimited(detail or "rate limited", _retry_after(e.headers)) from e
        raise LLMRequestFailed(detail or e.reason, status=e.code) from e
    except (socket.timeout, TimeoutError) as e:
        raise LLMTimeout(f"request to {url} timed out after {timeout:g}s") from e
    except urllib.error.URLError as e:
        if isinstance(e.reason, (socket.timeout, TimeoutError)):
            raise LLMTimeout(f"request to {url} timed out after {timeout:g}s") from e
        raise LLMConnectionFailed(f"cannot reach {url}: {e.reason}") from e


def post_json(url: str, payload: dict, headers: dict, timeout: float) -> dict:
    """POST ``payload`` and decode the JSON response body."""
    with _open(url, payload, headers, timeout) as resp:
        raw = resp.read()
    try:
        return json.loads(raw)
    except json.JSONDecodeError as e:
        raise LLMResponseInvalid(f"invalid JSON from {url}: {e}") from e


def stream_post(url: str, payload: dict, headers: dict, timeout: float):
    """POST ``payload`` and yield the data field of each server-sent event.

    Stops at the ``[DONE]`` sentinel or when the server closes the stream.
    """
    resp = _open(url, payload, headers, timeout)
    try:
        for raw_line in resp:
            line = raw_line.decode("utf-8", errors="replace").rstrip("\r\n")
            if not line.startswith(SSE_DATA_PREFIX):
                continue
            data = line[len(SSE_DATA_PREFIX) :]
            if data.strip() == SSE_DONE:
                return
            yield data
    except (socket.timeout, TimeoutError) as e:
        raise LLMTimeout(f"stream from {url} timed out") from e
    finally:
        resp.close()

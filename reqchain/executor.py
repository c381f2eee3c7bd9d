"""reqchain executor - sends resolved requests with requests."""

import json
import time
from typing import Any

import requests

from reqchain.variables import RequestSnapshot


class RequestResult:
    """Outcome of one HTTP exchange.

    headers keeps every value of a repeated header, in arrival order.
    raw_text is the body exactly as received; body is its parsed JSON
    when it parses, otherwise the same text.
    """

    def __init__(self):
        self.status_code: int = 0
        self.headers: dict[str, list[str]] = {}
        self.body: Any = None
        self.elapsed_ms: float = 0
        self.error: str | None = None
        self.raw_text: str = ""

    def snapshot(self) -> RequestSnapshot:
        """Capture this response for ``{{name.response...}}`` references."""
        return RequestSnapshot(
            status_code=self.status_code,
            headers={k: list(v) for k, v in self.headers.items()},
            body=self.raw_text,
        )


def _header_multimap(resp) -> dict[str, list[str]]:
    raw = getattr(getattr(resp, "raw", None), "headers", None)
    if raw is not None and hasattr(raw, "getlist"):
        return {k: list(raw.getlist(k)) for k in raw.keys()}
    return {k: [v] for k, v in resp.headers.items()}


def _parse_body(resp) -> Any:
    try:
        return resp.json()
    except (json.JSONDecodeError, ValueError):
        return resp.text


def execute_request(
    method: str,
    url: str,
    headers: dict[str, str] | None = None,
    body: str | None = None,
    timeout: int = 30,
    follow_redirects: bool = True,
) -> RequestResult:
    """Send one request and describe the response.

    Transport failures are reported through ``result.error``; this
    function does not raise.
    """
    result = RequestResult()
    payload = body.encode("utf-8") if body else None

    try:
        start = time.monotonic()
        resp = requests.request(
            method=method.upper(),
            url=url,
            headers=headers,
            data=payload,
            timeout=timeout,
            allow_redirects=follow_redirects,
        )
        result.elapsed_ms = (time.monotonic() - start) * 1000
    except requests.exceptions.Timeout:
        result.error = f"Request timed out after {timeout}s"
        return result
    except requests.exceptions.ConnectionError as e:
        result.error = f"Connection error: {e}"
        return result
    except requests.exceptions.RequestException as e:
        result.error = f"Request failed: {e}"
        return result
    except Exception as e:
        result.error = f"Unexpected error: {e}"
        return result

    result.status_code = resp.status_code
    result.headers = _header_multimap(resp)
    result.raw_text = resp.text
    result.body = _parse_body(resp)
    return result

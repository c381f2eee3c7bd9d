"""reqchain output - response formatting and request validation."""

from __future__ import annotations

import json
import re
from urllib.parse import urlsplit

from reqchain.errors import ValidationError
from reqchain.parser import HTTP_METHODS, HttpRequest
from reqchain.variables import find_unresolved

HEADER_NAME_RE = re.compile(r"^[!#$%&'*+\-.^_`|~0-9A-Za-z]+$")


def validate_request(request: HttpRequest) -> None:
    """Check a fully resolved request before sending.

    Raises ValidationError listing every problem found. Any ``{{...}}``
    left in the URL or a header value counts as a problem.
    """
    problems: list[str] = []

    if not request.method:
        problems.append("Method: method is required")
    elif request.method.upper() not in HTTP_METHODS:
        problems.append(f"Method: invalid HTTP method: {request.method}")

    problems.extend(_url_problems(request.url))

    for name, value in request.headers.items():
        if not HEADER_NAME_RE.match(name):
            problems.append(f"Header:{name}: header name contains invalid characters")
        leftover = find_unresolved(value)
        if leftover:
            problems.append(
                f"Header:{name}: unresolved variables: {', '.join(leftover)}",
            )

    if problems:
        raise ValidationError(problems)


def _url_problems(url: str) -> list[str]:
    if not url:
        return ["URL: URL is required"]
    leftover = find_unresolved(url)
    if leftover:
        return [
            f"URL: unresolved variables: {', '.join(leftover)} "
            "(check your environment configuration)",
        ]
    try:
        parts = urlsplit(url)
    except ValueError as e:
        return [f"URL: invalid URL: {e}"]
    if parts.scheme.lower() not in ("http", "https"):
        return ["URL: URL must use http:// or https://"]
    if not parts.netloc:
        return ["URL: URL must include a host"]
    if " " in url:
        return ["URL: URL contains spaces (URLs should be properly encoded)"]
    return []


def _body_text(body) -> str:
    if isinstance(body, dict | list):
        return json.dumps(body, indent=2)
    return str(body) if body is not None else ""


def format_output(
    result,  # RequestResult from executor.py
    verbose: bool = False,
    raw: bool = False,
    headers_only: bool = False,
) -> str:
    """Format the request result for CLI output.

    Default:   STATUS, TIME and BODY sections.
    verbose:   adds a HEADERS section.
    raw:       the body alone.
    headers_only: STATUS and HEADERS, no body.
    """
    if result.error:
        return f"ERROR: {result.error}"

    if raw:
        return _body_text(result.body)

    lines = [f"STATUS: {result.status_code}", f"TIME: {int(result.elapsed_ms)}ms"]

    if (verbose or headers_only) and result.headers:
        lines.append("HEADERS:")
        for key, values in result.headers.items():
            for value in values:
                lines.append(f"  {key}: {value}")

    if not headers_only and result.body is not None:
        lines.append("BODY:")
        lines.append(_body_text(result.body))

    return "\n".join(lines)


def format_request(request: HttpRequest) -> str:
    """Render a resolved request the way it would go on the wire (dry run)."""
    lines = [f"{request.method} {request.url}"]
    for key, value in request.headers.items():
        lines.append(f"{key}: {value}")
    if request.body:
        lines.append("")
        lines.append(request.body)
    return "\n".join(lines)


def format_request_list(requests: list[HttpRequest]) -> str:
    """One line per request: [index] METHOD URL  name."""
    lines = []
    for i, req in enumerate(requests):
        label = req.name or f"(unnamed request {i + 1})"
        lines.append(f"  [{i + 1}] {req.method:<6} {req.url}  {label}")
    return "\n".join(lines)

"""reqchain headers - case-insensitive header lookups."""

from collections.abc import Mapping, Sequence


def get_header(headers: Mapping[str, str], name: str) -> str | None:
    """Case-insensitive lookup in a single-value header mapping."""
    if name in headers:
        return headers[name]
    lower = name.lower()
    for k, v in headers.items():
        if k.lower() == lower:
            return v
    return None


def get_first(headers: Mapping[str, Sequence[str]], name: str) -> str | None:
    """Case-insensitive lookup in a multi-value mapping; returns the first value."""
    lower = name.lower()
    for k, values in headers.items():
        if k.lower() == lower and values:
            return values[0]
    return None


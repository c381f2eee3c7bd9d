"""reqchain jsonpath - minimal JSON-path extraction over raw response text.

Only a small dot/bracket subset is supported:

  $.field                top-level key
  $.a.b                  nested key
  $.items[1]             zero-based index into an array field
  $[0].id                index into a top-level array

No wildcards, filters, slices or negative indices. The body is never
parsed into a tree; values are located with a single-pass scanner and
returned as raw JSON text (strings unquoted).
"""

from __future__ import annotations

import json
import re

from reqchain.errors import VariableError

_SEGMENT_RE = re.compile(r"^([^\[\]]*)(?:\[(\d+)\])?$")
_WHITESPACE = " \t\r\n"
_BARE_STOP = ",}]" + _WHITESPACE


# ---------------------------------------------------------------------------
# Scanner
# ---------------------------------------------------------------------------


def _skip_ws(text: str, pos: int) -> int:
    while pos < len(text) and text[pos] in _WHITESPACE:
        pos += 1
    return pos


def _scan_string(text: str, start: int) -> int:
    """Return the index just past the closing quote of the string at start."""
    i = start + 1
    while i < len(text):
        ch = text[i]
        if ch == "\\":
            i += 2
            continue
        if ch == '"':
            return i + 1
        i += 1
    raise VariableError("JSONPath", "unterminated string")


def _scan_composite(text: str, start: int) -> int:
    """Return the index just past the bracket that closes the one at start."""
    opener = text[start]
    closer = "}" if opener == "{" else "]"
    depth = 0
    i = start
    while i < len(text):
        ch = text[i]
        if ch == '"':
            i = _scan_string(text, i)
            continue
        if ch == opener:
            depth += 1
        elif ch == closer:
            depth -= 1
            if depth == 0:
                return i + 1
        i += 1
    raise VariableError("JSONPath", f"unbalanced '{opener}'")


def scan_value(text: str, start: int = 0) -> tuple[str, int]:
    """Scan one JSON value beginning at or after start.

    Returns (raw_value_text, end_index). The kind of value is decided by
    its first non-whitespace character: a quoted string, an object, an
    array, or a bare token (number / true / false / null).
    """
    pos = _skip_ws(text, start)
    if pos >= len(text):
        raise VariableError("JSONPath", "expected a value, found end of input")

    ch = text[pos]
    if ch == '"':
        end = _scan_string(text, pos)
    elif ch in "{[":
        end = _scan_composite(text, pos)
    else:
        end = pos
        while end < len(text) and text[end] not in _BARE_STOP:
            end += 1
        if end == pos:
            raise VariableError("JSONPath", f"unexpected character {ch!r}")
    return text[pos:end], end


def _iter_members(obj_text: str):
    """Yield (key, raw_value) for the top-level members of an object."""
    pos = _skip_ws(obj_text, 0)
    if pos >= len(obj_text) or obj_text[pos] != "{":
        raise VariableError("JSONPath", "expected an object")
    pos = _skip_ws(obj_text, pos + 1)
    if pos < len(obj_text) and obj_text[pos] == "}":
        return
    while pos < len(obj_text):
        if obj_text[pos] != '"':
            raise VariableError("JSONPath", "expected an object key")
        key_end = _scan_string(obj_text, pos)
        try:
            key = json.loads(obj_text[pos:key_end])
        except ValueError:
            raise VariableError("JSONPath", "invalid object key") from None
        pos = _skip_ws(obj_text, key_end)
        if pos >= len(obj_text) or obj_text[pos] != ":":
            raise VariableError("JSONPath", f"expected ':' after key '{key}'")
        raw, pos = scan_value(obj_text, pos + 1)
        yield key, raw
        pos = _skip_ws(obj_text, pos)
        if pos < len(obj_text) and obj_text[pos] == ",":
            pos = _skip_ws(obj_text, pos + 1)
            continue
        return


# ---------------------------------------------------------------------------
# Lookup
# ---------------------------------------------------------------------------


def find_field(text: str, name: str) -> str:
    """Return the raw value of field ``name`` in the object ``text``.

    Members of the object are walked first so that a key nested deeper in
    the document never shadows a top-level one. If the object is
    malformed, the first ``"name":`` occurrence is used instead.
    """
    if not text.lstrip().startswith("{"):
        raise VariableError("JSONPath", f"expected object at '{name}'")
    try:
        for key, raw in _iter_members(text):
            if key == name:
                return raw
    except VariableError:
        match = re.search(r'"' + re.escape(name) + r'"\s*:', text)
        if match:
            raw, _ = scan_value(text, match.end())
            return raw
    raise VariableError("JSONPath", f"field '{name}' not found")


def element_at(array_text: str, index: int) -> str:
    """Return the raw element at a zero-based index of the array ``array_text``."""
    pos = _skip_ws(array_text, 0)
    if pos >= len(array_text) or array_text[pos] != "[":
        raise VariableError("JSONPath", "expected an array")
    pos = _skip_ws(array_text, pos + 1)

    current = 0
    while pos < len(array_text) and array_text[pos] != "]":
        raw, pos = scan_value(array_text, pos)
        if current == index:
            return raw
        current += 1
        pos = _skip_ws(array_text, pos)
        if pos < len(array_text) and array_text[pos] == ",":
            pos = _skip_ws(array_text, pos + 1)

    raise VariableError(
        "array index",
        f"index {index} out of bounds (length {current})",
    )


def _unquote(raw: str) -> str:
    if raw.startswith('"'):
        try:
            return json.loads(raw)
        except ValueError:
            return raw[1:-1]
    return raw


def split_path(path: str) -> list[tuple[str, int | None]]:
    """Split a ``$.``-prefixed path into (field, index) segments."""
    if path.startswith("$."):
        rest = path[2:]
    elif path.startswith("$["):
        rest = path[1:]
    else:
        raise VariableError("JSONPath", f"path must start with '$.' or '$[': {path}")

    segments: list[tuple[str, int | None]] = []
    for part in rest.split("."):
        m = _SEGMENT_RE.match(part)
        if not m or (not m.group(1) and m.group(2) is None):
            raise VariableError("JSONPath", f"invalid path segment '{part}'")
        index = int(m.group(2)) if m.group(2) is not None else None
        segments.append((m.group(1), index))
    return segments


def extract(body: str, path: str) -> str:
    """Resolve ``path`` against raw JSON ``body``.

    String results lose their surrounding quotes; objects and arrays are
    returned as the raw substring from the body. Raises VariableError for
    a missing field or an index past the end of an array.
    """
    current = body
    for name, index in split_path(path):
        if name:
            current = find_field(current, name)
        if index is not None:
            current = element_at(current, index)
    return _unquote(current.strip())

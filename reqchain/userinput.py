"""reqchain userinput - ``{{:name}}`` placeholders supplied by the user.

These are resolved in a separate pass, before ordinary ``{{name}}``
variables. ``{{:name!secret}}`` marks a value that should be masked when
prompted for. Values are remembered per endpoint in the session, keyed by
generate_key(url).
"""

from __future__ import annotations

import re
from collections.abc import Callable
from dataclasses import dataclass, field
from urllib.parse import urlsplit

from reqchain.escapes import path_escape
from reqchain.logging import get_logger

log = get_logger(__name__)

USER_INPUT_RE = re.compile(r"\{\{:([A-Za-z_][A-Za-z0-9_]*)(!secret)?\}\}")


@dataclass
class Pattern:
    name: str
    original: str
    position: int
    is_secret: bool = False


@dataclass
class InputField:
    name: str
    default: str = ""
    is_secret: bool = False


@dataclass
class ProcessResult:
    text: str
    values: dict[str, str] = field(default_factory=dict)
    patterns: list[Pattern] = field(default_factory=list)
    prompted: bool = False
    secrets: dict[str, bool] = field(default_factory=dict)


InputForm = Callable[[list[InputField]], dict[str, str]]


# ── Detection and replacement ───────────────────────────────────────────


def detect(content: str) -> list[Pattern]:
    """Find ``{{:name}}`` patterns, one per name, in order of first appearance.

    A name is secret if any of its occurrences carries ``!secret``.
    """
    by_name: dict[str, Pattern] = {}
    for m in USER_INPUT_RE.finditer(content):
        name = m.group(1)
        secret = m.group(2) is not None
        existing = by_name.get(name)
        if existing is None:
            by_name[name] = Pattern(name, m.group(0), m.start(), secret)
        elif secret:
            existing.is_secret = True
    return list(by_name.values())


def has_patterns(content: str) -> bool:
    return bool(content) and USER_INPUT_RE.search(content) is not None


def _substitute(content: str, values: dict[str, str], encode) -> str:
    def _replace(m: re.Match) -> str:
        name = m.group(1)
        if name not in values:
            return m.group(0)
        return encode(values[name])

    return USER_INPUT_RE.sub(_replace, content)


def replace(content: str, values: dict[str, str]) -> str:
    """Substitute known names, path-escaping each value (URL contexts)."""
    return _substitute(content, values, path_escape)


def replace_raw(content: str, values: dict[str, str]) -> str:
    """Substitute known names verbatim (headers, bodies, form values)."""
    return _substitute(content, values, str)


def generate_key(url: str) -> str:
    """Session key for an endpoint: host + path + raw query.

    Scheme, user-info and fragment are dropped so http and https variants
    of the same endpoint share stored values.
    """
    try:
        parts = urlsplit(url)
    except ValueError:
        return url
    host = parts.netloc.rpartition("@")[2]
    key = host + parts.path
    if parts.query:
        key += "?" + parts.query
    return key


# ── Prompting with session memory ───────────────────────────────────────


class Prompter:
    """Collect values for ``{{:name}}`` patterns, reusing session values.

    The user is asked through ``form`` whenever a detected name has no
    stored value, or always when force_prompt is set. New answers are
    written back to the session.
    """

    def __init__(self, session=None, form: InputForm | None = None, force_prompt: bool = False):
        self.session = session
        self.form = form
        self.force_prompt = force_prompt

    def process_content(self, content: str, url_key: str) -> ProcessResult:
        """Collect values for every pattern in content and substitute them verbatim.

        Callers that need URL escaping apply replace() with the returned values.
        """
        if not has_patterns(content):
            return ProcessResult(text=content)
        patterns = detect(content)

        stored = {}
        if self.session is not None:
            stored = self.session.get_user_inputs(url_key)

        secrets = {
            p.name: True
            for p in patterns
            if p.is_secret or stored.get(p.name, {}).get("is_secret")
        }

        need_prompt = self.force_prompt or any(p.name not in stored for p in patterns)
        if need_prompt:
            if self.form is None:
                log.debug("user input needed but no form configured", key=url_key)
                values = {k: e.get("value", "") for k, e in stored.items()}
            else:
                fields = [
                    InputField(
                        name=p.name,
                        default=stored.get(p.name, {}).get("value", ""),
                        is_secret=secrets.get(p.name, False),
                    )
                    for p in patterns
                ]
                values = self.form(fields)
                if self.session is not None:
                    self.session.set_user_inputs(
                        url_key,
                        {k: {"value": v, "is_secret": secrets.get(k, False)} for k, v in values.items()},
                    )
        else:
            values = {k: e.get("value", "") for k, e in stored.items()}

        return ProcessResult(
            text=replace_raw(content, values),
            values=values,
            patterns=patterns,
            prompted=need_prompt and self.form is not None,
            secrets=secrets,
        )

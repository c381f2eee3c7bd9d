"""reqchain variables - ``{{...}}`` placeholder resolution and request chaining.

Expression forms, tried in this order:

  {{$name args...}}                    system function (see sysfuncs)
  {{req.response.body.$.path}}         value from an earlier named response
  {{req.response.body.*}}              whole earlier response body
  {{req.response.headers.Name}}        header from an earlier response
  {{name}}                             file variable (@name = value), then
                                       environment (current, then $shared)
  {{%expr}}                            any of the above, percent-encoded

A placeholder that cannot be resolved is left in the text unchanged.
"""

from __future__ import annotations

import enum
import os
import re
import shlex
from collections.abc import Mapping
from dataclasses import dataclass, field

from reqchain import jsonpath, sysfuncs
from reqchain.errors import VariableError
from reqchain.escapes import url_encode
from reqchain.headers import get_first
from reqchain.logging import get_logger

log = get_logger(__name__)

PLACEHOLDER_RE = re.compile(r"\{\{(.+?)\}\}")
SHARED_ENVIRONMENT = "$shared"
MAX_DEPTH = 32


class VariableType(enum.Enum):
    SYSTEM = "system"
    ENVIRONMENT = "environment"
    FILE = "file"
    REQUEST = "request"
    PROMPT = "prompt"


@dataclass
class Variable:
    name: str
    value: str
    type: VariableType
    error: str | None = None
    warning: str | None = None


@dataclass
class RequestSnapshot:
    """Captured response of a named request, used for chaining."""

    status_code: int
    headers: dict[str, list[str]] = field(default_factory=dict)
    body: str = ""


class RecursionLimitError(VariableError):
    """Nested variable resolution went deeper than MAX_DEPTH."""


# ---------------------------------------------------------------------------
# Namespaces
# ---------------------------------------------------------------------------


class Namespace:
    """A source of variables. ``has`` decides dispatch, ``get`` resolves."""

    type: VariableType

    def __init__(self, processor: VariableProcessor):
        self.processor = processor

    def has(self, name: str) -> bool:
        raise NotImplementedError

    def get(self, name: str) -> Variable:
        raise NotImplementedError


class SystemNamespace(Namespace):
    type = VariableType.SYSTEM

    def has(self, name: str) -> bool:
        return name.startswith("$")

    def get(self, name: str) -> Variable:
        tokens = _tokenize(name)
        if not tokens:
            raise VariableError("system variable", "empty variable name")
        func, args = tokens[0], tokens[1:]
        p = self.processor

        if func in ("$guid", "$uuid"):
            value = sysfuncs.guid()
        elif func == "$timestamp":
            value = sysfuncs.timestamp(args)
        elif func == "$datetime":
            value = sysfuncs.datetime_value(args, local=False)
        elif func == "$localDatetime":
            value = sysfuncs.datetime_value(args, local=True)
        elif func == "$randomInt":
            value = sysfuncs.random_int(args)
        elif func == "$processEnv":
            value = sysfuncs.process_env(args, p.environ, p.lookup_environment)
            if args and not value:
                return Variable(name, value, self.type, warning=f"{args[0]} is not set")
        elif func == "$dotenv":
            value = sysfuncs.dotenv(args, p.current_dir, p.environment, p.lookup_environment)
        elif func == "$prompt":
            value = sysfuncs.prompt(args, p.prompt_handler)
            return Variable(name, value, VariableType.PROMPT)
        else:
            raise VariableError(func, "unknown system variable")
        return Variable(name, value, self.type)


class RequestNamespace(Namespace):
    type = VariableType.REQUEST

    def has(self, name: str) -> bool:
        return ".response." in name or ".request." in name

    def get(self, name: str) -> Variable:
        parts = name.split(".", 3)
        if len(parts) < 4:
            raise VariableError(
                name,
                "invalid request variable (expected: requestName.response.body.path)",
            )
        request_name, source, section, path = parts

        snapshot = self.processor.request_results.get(request_name)
        if snapshot is None:
            raise VariableError(request_name, "request has not been sent yet")

        if source == "response":
            if section == "body":
                return Variable(name, _extract_from_body(snapshot.body, path), self.type)
            if section == "headers":
                value = get_first(snapshot.headers, path)
                if value is None:
                    raise VariableError(path, "header not found")
                return Variable(name, value, self.type)

        raise VariableError(name, "unsupported request variable")


class FileNamespace(Namespace):
    type = VariableType.FILE

    def has(self, name: str) -> bool:
        return name in self.processor.file_variables

    def get(self, name: str) -> Variable:
        raw = self.processor.file_variables[name]
        return Variable(name, self.processor.process_nested(raw), self.type)


class EnvironmentNamespace(Namespace):
    """Current environment first, then ``$shared``."""

    type = VariableType.ENVIRONMENT

    def _tables(self) -> list[Mapping[str, str]]:
        p = self.processor
        tables = []
        if p.environment and p.environment != SHARED_ENVIRONMENT:
            tables.append(p.environments.get(p.environment) or {})
        tables.append(p.environments.get(SHARED_ENVIRONMENT) or {})
        return tables

    def has(self, name: str) -> bool:
        return any(name in t for t in self._tables())

    def get(self, name: str) -> Variable:
        for table in self._tables():
            if name in table:
                raw = "" if table[name] is None else str(table[name])
                return Variable(name, self.processor.process_nested(raw), self.type)
        raise VariableError(name, "variable not found")


# ---------------------------------------------------------------------------
# Processor
# ---------------------------------------------------------------------------


class VariableProcessor:
    """Resolves placeholders for one run.

    Holds the file variables, the environment table, captured responses of
    named requests and a cache of resolved expressions. The cache makes
    the same expression text ({{$guid}} included) resolve to the same value
    for the lifetime of the instance. Not safe to share between threads.
    """

    def __init__(
        self,
        environment: str = "",
        environments: Mapping[str, Mapping[str, str]] | None = None,
        file_variables: Mapping[str, str] | None = None,
        current_dir: str = ".",
        prompt_handler: sysfuncs.PromptHandler | None = None,
        environ: Mapping[str, str] | None = None,
    ):
        self.environment = environment
        self.environments: dict[str, Mapping[str, str]] = dict(environments or {})
        self.file_variables: dict[str, str] = dict(file_variables or {})
        self.current_dir = current_dir
        self.prompt_handler = prompt_handler
        self.environ = os.environ if environ is None else environ
        self.request_results: dict[str, RequestSnapshot] = {}
        self._cache: dict[str, str] = {}
        self._depth = 0
        self._unresolved = 0
        self.namespaces: list[Namespace] = [
            SystemNamespace(self),
            RequestNamespace(self),
            FileNamespace(self),
            EnvironmentNamespace(self),
        ]

    # ── Configuration ────────────────────────────────────────────────

    def set_environment(self, name: str) -> None:
        self.environment = name

    def set_environment_variables(self, table: Mapping[str, Mapping[str, str]]) -> None:
        self.environments = dict(table)

    def set_file_variables(self, variables: Mapping[str, str]) -> None:
        """Merge file variables into the existing ones."""
        self.file_variables.update(variables)

    def set_request_result(self, name: str, snapshot: RequestSnapshot) -> None:
        """Register the response of a named request. Last write wins."""
        self.request_results[name] = snapshot

    def set_prompt_handler(self, handler: sysfuncs.PromptHandler | None) -> None:
        self.prompt_handler = handler

    def set_current_dir(self, directory: str) -> None:
        self.current_dir = directory

    # ── Resolution ───────────────────────────────────────────────────

    def process(self, text: str) -> str:
        """Replace every resolvable ``{{...}}`` in text.

        Unresolvable placeholders are kept verbatim; only unexpected
        internal failures raise.
        """
        if not text or "{{" not in text:
            return text

        out: list[str] = []
        last = 0
        for m in PLACEHOLDER_RE.finditer(text):
            out.append(text[last : m.start()])
            key = m.group(1).strip()
            try:
                out.append(self.resolve_variable(key))
            except RecursionLimitError:
                if self._depth > 0:
                    raise
                log.debug("unresolved placeholder", expression=key, reason="recursion limit")
                self._unresolved += 1
                out.append(m.group(0))
            except VariableError as e:
                log.debug("unresolved placeholder", expression=key, reason=str(e))
                self._unresolved += 1
                out.append(m.group(0))
            last = m.end()
        out.append(text[last:])
        return "".join(out)

    def process_nested(self, raw: str) -> str:
        """Process a variable's own value, guarding against runaway recursion.

        The value only resolves when every placeholder inside it does, so a
        partial expansion never reaches the cache.
        """
        if self._depth >= MAX_DEPTH:
            raise RecursionLimitError("variable", f"nesting deeper than {MAX_DEPTH} levels")
        unresolved = self._unresolved
        self._depth += 1
        try:
            value = self.process(raw)
        finally:
            self._depth -= 1
        if self._unresolved > unresolved:
            raise VariableError("variable", "value references an unresolved variable")
        return value

    def resolve_variable(self, key: str) -> str:
        """Resolve one trimmed expression, using and filling the cache."""
        if not key:
            raise VariableError("variable", "empty variable name")
        if key in self._cache:
            return self._cache[key]

        encode = key.startswith("%")
        name = key[1:].strip() if encode else key
        if not name:
            raise VariableError("variable", "url-encoded variable missing name")

        variable = self.lookup(name)
        if variable.warning:
            log.debug("variable warning", expression=key, warning=variable.warning)

        value = url_encode(variable.value) if encode else variable.value
        self._cache[key] = value
        return value

    def lookup(self, name: str) -> Variable:
        """Dispatch name to the first namespace that claims it."""
        for namespace in self.namespaces:
            if namespace.has(name):
                return namespace.get(name)
        raise VariableError(name, "variable not found")

    def lookup_environment(self, name: str) -> str:
        """Resolve name in the environment table only (used for ``%name``)."""
        return self.namespaces[-1].get(name).value


def _tokenize(expression: str) -> list[str]:
    try:
        return shlex.split(expression)
    except ValueError:
        return expression.split()


def _extract_from_body(body: str, path: str) -> str:
    if path == "*":
        return body
    if path.startswith(("$.", "$[")):
        return jsonpath.extract(body, path)
    raise VariableError(path, "unsupported path (use *, $. or $[)")


def find_unresolved(text: str) -> list[str]:
    """Return the expressions of placeholders still present in text."""
    if not text:
        return []
    return [m.group(1).strip() for m in PLACEHOLDER_RE.finditer(text)]

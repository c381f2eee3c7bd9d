"""reqchain parser - .http / .rest request files.

File layout:

  @baseUrl = https://api.example.com        file variable (any line of the file)

  # @name login                             metadata for the next request
  # @prompt otp One-time password
  POST {{baseUrl}}/login HTTP/1.1
  Content-Type: application/json

  {"user": "{{:user}}"}

  ###                                       request separator

  GET {{baseUrl}}/me
  Authorization: Bearer {{login.response.body.$.token}}
"""

import re
from dataclasses import dataclass, field

from reqchain.errors import ParseError
from reqchain.escapes import process_escapes
from reqchain.headers import get_header
from reqchain.sysfuncs import is_password_name

BLOCK_SEPARATOR_RE = re.compile(r"(?m)^#{3,}.*$")
FILE_VARIABLE_RE = re.compile(r"(?m)^[ \t]*@([^\s=]+)[ \t]*=[ \t]*(.*?)[ \t]*$")
METADATA_RE = re.compile(r"^(?:#|//)\s*@([\w-]+)(?:\s+(.*?))?\s*$")
HTTP_VERSION_RE = re.compile(r"\s+HTTP/\d(?:\.\d)?$", re.IGNORECASE)

HTTP_METHODS = frozenset(
    {
        "GET", "POST", "PUT", "DELETE", "PATCH", "HEAD", "OPTIONS", "CONNECT",
        "TRACE", "LOCK", "UNLOCK", "PROPFIND", "PROPPATCH", "COPY", "MOVE",
        "MKCOL", "MKCALENDAR", "ACL", "SEARCH",
    }
)


@dataclass
class PromptVariable:
    name: str
    description: str = ""
    is_password: bool = False


@dataclass
class RequestMetadata:
    name: str = ""
    note: str = ""
    no_redirect: bool = False
    prompts: list[PromptVariable] = field(default_factory=list)


@dataclass
class HttpRequest:
    method: str
    url: str
    headers: dict[str, str] = field(default_factory=dict)
    body: str = ""
    metadata: RequestMetadata = field(default_factory=RequestMetadata)
    warnings: list[str] = field(default_factory=list)

    @property
    def name(self) -> str:
        return self.metadata.name


@dataclass
class ParseWarning:
    block_index: int
    message: str


@dataclass
class DuplicateVariable:
    name: str
    old_value: str
    new_value: str


@dataclass
class ParseResult:
    requests: list[HttpRequest]
    warnings: list[ParseWarning]
    file_variables: dict[str, str]
    duplicate_variables: list[DuplicateVariable]


# ── File variables ──────────────────────────────────────────────────────


def parse_file_variables(content: str) -> tuple[dict[str, str], list[DuplicateVariable]]:
    """Collect ``@name = value`` declarations. Later ones win; overwrites are reported."""
    variables: dict[str, str] = {}
    duplicates: list[DuplicateVariable] = []
    for m in FILE_VARIABLE_RE.finditer(content):
        name = m.group(1)
        value = process_escapes(m.group(2))
        if name in variables:
            duplicates.append(DuplicateVariable(name, variables[name], value))
        variables[name] = value
    return variables, duplicates


# ── Requests ────────────────────────────────────────────────────────────


def _is_comment(line: str) -> bool:
    return line.startswith("#") or line.startswith("//")


def _is_file_variable(line: str) -> bool:
    return line.startswith("@") and "=" in line


def _apply_metadata(metadata: RequestMetadata, key: str, value: str) -> None:
    if key == "name":
        metadata.name = value
    elif key == "note":
        metadata.note = f"{metadata.note}\n{value}" if metadata.note else value
    elif key == "no-redirect":
        metadata.no_redirect = True
    elif key == "prompt" and value:
        name, _, description = value.partition(" ")
        metadata.prompts.append(
            PromptVariable(name, description.strip(), is_password_name(name)),
        )


def parse_request_line(line: str) -> tuple[str, str]:
    """Split ``METHOD URL [HTTP/x.y]`` into (method, url). No method means GET."""
    line = HTTP_VERSION_RE.sub("", line.strip())
    first, _, rest = line.partition(" ")
    if first.upper() in HTTP_METHODS and rest.strip():
        return first.upper(), rest.strip()
    return "GET", line


def parse_request(block: str) -> HttpRequest:
    """Parse a single request block. Raises ParseError if it has no request line."""
    metadata = RequestMetadata()
    warnings: list[str] = []
    request_line: list[str] = []
    header_lines: list[str] = []
    body_lines: list[str] = []
    state = "url"

    for line in block.split("\n"):
        stripped = line.strip()

        if state == "body":
            body_lines.append(line.rstrip("\r"))
            continue

        meta = METADATA_RE.match(stripped)
        if meta:
            _apply_metadata(metadata, meta.group(1).lower(), (meta.group(2) or "").strip())
            continue

        if state == "url":
            if not stripped or _is_comment(stripped) or _is_file_variable(stripped):
                continue
            request_line.append(stripped)
            state = "headers"
        elif state == "headers":
            if not stripped:
                state = "body"
            elif stripped.startswith(("?", "&")) and not header_lines:
                request_line.append(stripped)
            elif _is_comment(stripped):
                continue
            else:
                header_lines.append(stripped)

    if not request_line:
        raise ParseError("no request line found")

    method, url = parse_request_line("".join(request_line))

    headers: dict[str, str] = {}
    for h in header_lines:
        name, sep, value = h.partition(":")
        if not sep or not name.strip():
            warnings.append(f"ignored malformed header line: {h}")
            continue
        headers[name.strip()] = value.strip()

    host = get_header(headers, "Host")
    if host and url.startswith("/"):
        scheme = "https" if host.endswith((":443", ":8443")) else "http"
        url = f"{scheme}://{host}{url}"

    while body_lines and not body_lines[-1].strip():
        body_lines.pop()

    return HttpRequest(
        method=method,
        url=url,
        headers=headers,
        body="\n".join(body_lines),
        metadata=metadata,
        warnings=warnings,
    )


def find_duplicate_names(requests: list[HttpRequest]) -> dict[str, list[int]]:
    """Map each request name used more than once to the 0-based indices using it."""
    seen: dict[str, list[int]] = {}
    for i, req in enumerate(requests):
        if req.name:
            seen.setdefault(req.name, []).append(i)
    return {name: idx for name, idx in seen.items() if len(idx) > 1}


def parse_content(content: str) -> ParseResult:
    """Parse every request block in content.

    Invalid blocks are skipped and reported as warnings, as are request
    names used more than once.
    """
    requests: list[HttpRequest] = []
    warnings: list[ParseWarning] = []

    for i, block in enumerate(BLOCK_SEPARATOR_RE.split(content)):
        if not block.strip():
            continue
        try:
            requests.append(parse_request(block))
        except ParseError as e:
            if _only_declarations(block):
                continue
            warnings.append(ParseWarning(i, f"skipped invalid request block: {e}"))

    for name, indices in find_duplicate_names(requests).items():
        details = "; ".join(
            f"request {j + 1}: {requests[j].method} {requests[j].url}" for j in indices
        )
        warnings.append(
            ParseWarning(
                indices[0],
                f"duplicate @name '{name}' found in {len(indices)} requests ({details}). "
                "First match will be used when selecting by name",
            ),
        )

    variables, duplicates = parse_file_variables(content)
    return ParseResult(requests, warnings, variables, duplicates)


def _only_declarations(block: str) -> bool:
    """True for blocks holding nothing but plain comments and file variables.

    Metadata such as ``# @name`` without a request is not a declaration.
    """
    for line in block.split("\n"):
        s = line.strip()
        if METADATA_RE.match(s):
            return False
        if s and not _is_comment(s) and not _is_file_variable(s):
            return False
    return True

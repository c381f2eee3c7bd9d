"""reqchain session - per-directory or named persistence of user inputs and variables."""

import hashlib
import json
from pathlib import Path
from typing import Any

from reqchain.logging import get_logger

log = get_logger(__name__)

SESSION_DIR = "session"
DIR_SESSIONS = "dirs"
NAMED_SESSIONS = "named"
VARIABLES_FILE = "variables.json"
USER_INPUTS_FILE = "user_inputs.json"


def hash_path(path: str) -> str:
    """Short stable hash of a directory path (16 hex chars)."""
    return hashlib.sha256(path.encode()).hexdigest()[:16]


def format_value(value: Any) -> str:
    """Stringify a stored session value.

    Integral floats render without a decimal point (3.0 -> "3"), booleans
    as true/false and None as null, matching JSON text.
    """
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    if value is None:
        return "null"
    if isinstance(value, float):
        if value.is_integer():
            return str(int(value))
        return repr(value)
    if isinstance(value, dict | list):
        return json.dumps(value)
    return str(value)


def session_path(base_dir: Path, http_file_path: str | None = None, session_name: str | None = None) -> Path:
    """Resolve the session directory.

    Resolution order:
      1. Named session: <base>/session/named/<name>
      2. Directory of the request file: <base>/session/dirs/<hash>
      3. <base>/session/named/default
    """
    root = Path(base_dir) / SESSION_DIR
    if session_name:
        return root / NAMED_SESSIONS / session_name
    if http_file_path:
        directory = Path(http_file_path).resolve().parent
        return root / DIR_SESSIONS / hash_path(str(directory))
    return root / NAMED_SESSIONS / "default"


class SessionManager:
    """Loads and saves session state as JSON files in one directory."""

    def __init__(self, base_dir: Path, http_file_path: str | None = None, session_name: str | None = None):
        self.path = session_path(base_dir, http_file_path, session_name)
        self.variables: dict[str, Any] = {}
        self.user_inputs: dict[str, dict[str, dict[str, Any]]] = {}

    def load(self) -> None:
        self.variables = self._read(VARIABLES_FILE)
        self.user_inputs = self._read(USER_INPUTS_FILE)

    def save(self) -> None:
        self.path.mkdir(parents=True, exist_ok=True)
        for name, data in ((VARIABLES_FILE, self.variables), (USER_INPUTS_FILE, self.user_inputs)):
            with open(self.path / name, "w") as f:
                json.dump(data, f, indent=2)

    def _read(self, name: str) -> dict:
        path = self.path / name
        if not path.exists():
            return {}
        try:
            with open(path) as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            log.warning("ignoring unreadable session file", path=str(path), error=str(e))
            return {}
        return data if isinstance(data, dict) else {}

    # ── Variables ────────────────────────────────────────────────────

    def get_variable_as_string(self, name: str) -> str | None:
        if name not in self.variables:
            return None
        return format_value(self.variables[name])

    def set_variable(self, name: str, value: Any) -> None:
        self.variables[name] = value

    # ── User inputs ──────────────────────────────────────────────────

    def get_user_inputs(self, url_key: str) -> dict[str, dict[str, Any]]:
        return dict(self.user_inputs.get(url_key) or {})

    def set_user_inputs(self, url_key: str, entries: dict[str, dict[str, Any]]) -> None:
        """Merge entries for url_key; existing names are overwritten."""
        self.user_inputs.setdefault(url_key, {}).update(entries)

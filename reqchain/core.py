"""reqchain core - config loading, environment table, processor wiring."""

import os
from pathlib import Path

import yaml
from dotenv import dotenv_values

from reqchain.variables import SHARED_ENVIRONMENT, VariableProcessor

GLOBAL_DIR = Path.home() / ".reqchain"
GLOBAL_CONFIG = GLOBAL_DIR / "config.yaml"

CWD_CONFIG_CANDIDATES = [
    ".reqchain.yaml",
    ".reqchain.yml",
    "reqchain.yaml",
    "reqchain.yml",
]

DEFAULT_TIMEOUT = 30


def resolve_path(
    candidates: list[Path],
    default: Path | None = None,
) -> Path | None:
    """Return the first existing path from candidates, else default."""
    for p in candidates:
        if p.exists():
            return p.resolve()
    return default


def resolve_config_path(config_file: str | None) -> Path | None:
    """Find the config file to use.

    Resolution order:
      1. Explicit -c flag (no fallthrough if missing)
      2. .reqchain.yaml (variants) in CWD
      3. ~/.reqchain/config.yaml
    """
    if config_file:
        return resolve_path([Path(config_file)])
    return resolve_path([Path(c) for c in CWD_CONFIG_CANDIDATES] + [GLOBAL_CONFIG])


def load_config(config_path: str | Path | None) -> dict:
    """Load YAML config file. Returns empty sections if not found.

    Returns {"defaults": {...}, "environments": {...}, "_config_dir": Path|None}.
    Environment values are stringified; a null value becomes "".
    """
    empty = {"defaults": {}, "environments": {}, "_config_dir": None}
    if config_path is None:
        return empty
    path = Path(config_path)
    if not path.exists():
        return empty
    with open(path) as f:
        data = yaml.safe_load(f) or {}

    environments: dict[str, dict[str, str]] = {}
    for env_name, values in (data.get("environments") or {}).items():
        environments[str(env_name)] = {
            str(k): "" if v is None else str(v) for k, v in (values or {}).items()
        }

    return {
        "defaults": data.get("defaults") or {},
        "environments": environments,
        "_config_dir": path.resolve().parent,
    }


def load_env(env_file: str | None, base_dir: str | Path = ".") -> dict[str, str]:
    """Load .env file and merge with os.environ.

    .env values take precedence over os.environ for the names they set.
    """
    env = dict(os.environ)
    if env_file:
        dotenv_path = Path(base_dir) / env_file
        if dotenv_path.exists():
            dotenv_vars = dotenv_values(str(dotenv_path))
            env.update({k: v for k, v in dotenv_vars.items() if v is not None})
    return env


def list_environments(config: dict) -> list[str]:
    """Environment names from the config, $shared excluded, in file order."""
    return [name for name in config.get("environments", {}) if name != SHARED_ENVIRONMENT]


def select_environment(config: dict, cli_env: str | None) -> str:
    """Pick the current environment: -e flag, then defaults.environment.

    Raises ValueError for a name the config does not define.
    """
    name = cli_env or config.get("defaults", {}).get("environment") or ""
    if name and name != SHARED_ENVIRONMENT and name not in config.get("environments", {}):
        raise ValueError(f"environment '{name}' not found")
    return name


def build_processor(
    config: dict,
    environment: str,
    file_variables: dict[str, str],
    http_file_path: str | Path,
    env: dict[str, str],
    prompt_handler=None,
) -> VariableProcessor:
    """Create the variable processor for one run of a request file."""
    return VariableProcessor(
        environment=environment,
        environments=config.get("environments", {}),
        file_variables=file_variables,
        current_dir=str(Path(http_file_path).resolve().parent),
        prompt_handler=prompt_handler,
        environ=env,
    )

"""Shared fixtures for reqchain tests."""

import json

import pytest
from click.testing import CliRunner

from reqchain import core
from reqchain.executor import RequestResult
from reqchain.logging import configure_logging


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def global_reqchain_dir(tmp_path, monkeypatch):
    """Override the global ~/.reqchain directory to a temp location."""
    fake_global = tmp_path / "fake_home" / ".reqchain"
    fake_global.mkdir(parents=True)
    monkeypatch.setattr(core, "GLOBAL_DIR", fake_global)
    monkeypatch.setattr(core, "GLOBAL_CONFIG", fake_global / "config.yaml")
    return fake_global


@pytest.fixture(autouse=True)
def reset_logging():
    """Undo --debug so log level does not leak between tests."""
    yield
    configure_logging()


@pytest.fixture
def workdir(tmp_path, monkeypatch, global_reqchain_dir):
    """Run from an empty project directory with an isolated global dir."""
    project = tmp_path / "project"
    project.mkdir()
    monkeypatch.chdir(project)
    return project


def make_request_result(
    status_code=200,
    body=None,
    headers=None,
    elapsed_ms=42.0,
    error=None,
    raw_text="",
):
    """Factory for mock RequestResult objects."""
    r = RequestResult()
    r.status_code = status_code
    r.headers = headers or {}
    r.body = body
    r.elapsed_ms = elapsed_ms
    r.error = error
    r.raw_text = raw_text or (
        json.dumps(body) if isinstance(body, dict | list) else str(body or "")
    )
    return r

"""Pytest configuration and fixtures."""

from __future__ import annotations

import os
import stat
import sys
from pathlib import Path

import pytest

# Project root
PROJECT_ROOT = Path(__file__).parent.parent

# Add src to the Python path
SRC_DIR = PROJECT_ROOT / "src"
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

FIXTURES_DIR = Path(__file__).parent / "fixtures"
FAKE_AGENT_PATH = FIXTURES_DIR / "fake_agent.py"

IS_WINDOWS = sys.platform == "win32"


@pytest.fixture
def temp_workspace(tmp_path: Path) -> Path:
    """Create a temporary workspace directory."""
    workspace = tmp_path / "workspace"
    workspace.mkdir()
    return workspace


@pytest.fixture
def fake_agent(tmp_path: Path) -> str:
    """Executable wrapper that runs the fake agent with this interpreter.

    The agent command line starts with "-p", so the interpreter cannot be
    the executable itself.
    """
    if IS_WINDOWS:
        pytest.skip("POSIX shell wrapper")
    wrapper = tmp_path / "fake-agent"
    wrapper.write_text(
        f'#!/bin/sh\nexec "{sys.executable}" "{FAKE_AGENT_PATH}" "$@"\n',
        encoding="utf-8",
    )
    wrapper.chmod(wrapper.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return str(wrapper)


@pytest.fixture
def script_agent(tmp_path: Path):
    """Factory for one-off shell agents: script_agent("echo hi; exit 3")."""
    if IS_WINDOWS:
        pytest.skip("POSIX shell wrapper")
    counter = iter(range(1000))

    def make(body: str) -> str:
        path = tmp_path / f"agent-{next(counter)}.sh"
        path.write_text(f"#!/bin/sh\n{body}\n", encoding="utf-8")
        path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
        return str(path)

    return make


@pytest.fixture(autouse=True)
def _isolated_config(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep CSUP_* variables from the outer environment out of tests."""
    for key in list(os.environ):
        if key.startswith("CSUP_"):
            monkeypatch.delenv(key, raising=False)

"""Runtime module for launching and supervising the agent CLI.

Builds the command line, spawns the process with stdin closed, and turns
its stream-json stdout into an ordered event queue while capturing stderr.
"""

from __future__ import annotations

from .args import build_args
from .errors import (
    LaunchError,
    ProcessExitError,
    StreamParseError,
    SupervisorError,
)
from .process import AgentProcess, launch
from .stderr import StderrCollector
from .stream import StreamEvent, decode_line, parse_stream_events
from .types import RUNNING_EXIT_CODE, LaunchConfig, PermissionMode, ProcessState

__all__ = [
    "AgentProcess",
    "LaunchConfig",
    "LaunchError",
    "PermissionMode",
    "ProcessExitError",
    "ProcessState",
    "RUNNING_EXIT_CODE",
    "StderrCollector",
    "StreamEvent",
    "StreamParseError",
    "SupervisorError",
    "build_args",
    "decode_line",
    "launch",
    "parse_stream_events",
]

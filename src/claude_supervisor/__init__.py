"""claude-supervisor - launch the agent CLI and stream its events.

Environment variables:
    CSUP_CLI_PATH: Default agent executable (default: claude)
    CSUP_LOG_DEBUG: Debug log to a temp file (default: false)

Usage:
    from claude_supervisor import LaunchConfig, launch

    proc = await launch(LaunchConfig(prompt="Summarise README.md", work_dir=repo))
    async for event in proc.events():
        ...
    await proc.wait()
"""

__version__ = "0.1.0"

from .runner import AgentRunError, RunResult, run_agent
from .runtime import (
    AgentProcess,
    LaunchConfig,
    LaunchError,
    PermissionMode,
    ProcessExitError,
    ProcessState,
    StreamEvent,
    StreamParseError,
    SupervisorError,
    build_args,
    launch,
)

__all__ = [
    "__version__",
    "AgentProcess",
    "AgentRunError",
    "LaunchConfig",
    "LaunchError",
    "PermissionMode",
    "ProcessExitError",
    "ProcessState",
    "RunResult",
    "StreamEvent",
    "StreamParseError",
    "SupervisorError",
    "build_args",
    "launch",
    "run_agent",
]

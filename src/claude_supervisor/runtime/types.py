"""Launch configuration and lifecycle types.

Defines the immutable value object a caller hands to ``launch()`` and the
enumerations the supervisor exposes.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from types import MappingProxyType

__all__ = [
    "LaunchConfig",
    "PermissionMode",
    "ProcessState",
    "RUNNING_EXIT_CODE",
]

# Exit code reported while the process has not been reaped yet
RUNNING_EXIT_CODE = -1


class PermissionMode(str, Enum):
    """Permission modes understood by the agent CLI.

    Any other string is accepted as a custom mode and passed through
    unchanged in ``LaunchConfig.permission_mode``.
    """

    BYPASS_PERMISSIONS = "bypassPermissions"
    ACCEPT_EDITS = "acceptEdits"
    DEFAULT = "default"

    @classmethod
    def parse(cls, value: "PermissionMode | str") -> "PermissionMode | str":
        """Map a known mode string onto the enum, keep custom strings as-is."""
        if isinstance(value, cls):
            return value
        for mode in cls:
            if mode.value == value:
                return mode
        return value


class ProcessState(str, Enum):
    """Lifecycle of a supervised process.

    - STARTING: handle created, process not spawned yet
    - RUNNING: pipes attached, background loops active
    - EXITED: the process has been reaped
    - DRAINED: event queue closed and completion signal fired
    """

    STARTING = "starting"
    RUNNING = "running"
    EXITED = "exited"
    DRAINED = "drained"


@dataclass(frozen=True)
class LaunchConfig:
    """Everything needed to launch one agent process.

    Attributes:
        prompt: Task text, passed as the final positional argument
        cli_path: Executable to run (empty = configured default)
        work_dir: Working directory for the child (None = inherit)
        session_id: Non-empty resumes that conversation
        model: Model identifier, forwarded on new and resumed sessions
        system_prompt: System prompt (new sessions only)
        allowed_tools: Tools to allow, one flag each (new sessions only)
        disallowed_tools: Tools to deny, one flag each (new sessions only)
        json_schema: Structured output schema
        mcp_config_path: Explicit MCP config file
        permission_mode: Requested permission mode
        env: Variables merged over the inherited environment
    """

    prompt: str = ""
    cli_path: str = ""
    work_dir: Path | None = None
    session_id: str = ""
    model: str = ""
    system_prompt: str = ""
    allowed_tools: tuple[str, ...] = ()
    disallowed_tools: tuple[str, ...] = ()
    json_schema: str = ""
    mcp_config_path: str = ""
    permission_mode: PermissionMode | str = PermissionMode.DEFAULT
    env: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        # frozen: normalise through object.__setattr__
        if isinstance(self.work_dir, str):
            object.__setattr__(self, "work_dir", Path(self.work_dir) if self.work_dir else None)
        object.__setattr__(self, "allowed_tools", tuple(self.allowed_tools))
        object.__setattr__(self, "disallowed_tools", tuple(self.disallowed_tools))
        object.__setattr__(self, "permission_mode", PermissionMode.parse(self.permission_mode))
        object.__setattr__(self, "env", MappingProxyType(dict(self.env)))

    @property
    def is_resume(self) -> bool:
        """True when this launch continues an existing conversation."""
        return bool(self.session_id)

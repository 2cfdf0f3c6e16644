"""Error types raised or recorded by the supervisor."""

from __future__ import annotations

import signal

__all__ = [
    "SupervisorError",
    "LaunchError",
    "StreamParseError",
    "ProcessExitError",
]


class SupervisorError(Exception):
    """Base class for all supervisor errors."""


class LaunchError(SupervisorError):
    """The process could not be started (pipes, missing executable, permissions)."""


class StreamParseError(SupervisorError):
    """A stdout line could not be framed as one JSON object.

    Attributes:
        line_no: 1-based line number in the stdout stream
        line: Offending line, truncated for display
        reason: Human readable cause
    """

    MAX_EXCERPT = 200

    def __init__(self, line_no: int, line: str, reason: str) -> None:
        self.line_no = line_no
        self.line = line[: self.MAX_EXCERPT]
        self.reason = reason
        message = f"stream parse error at line {line_no}: {reason}"
        if self.line:
            message += f" (line: {self.line!r})"
        super().__init__(message)


class ProcessExitError(SupervisorError):
    """The process exited with a non-zero code or was killed by a signal."""

    def __init__(self, returncode: int) -> None:
        self.returncode = returncode
        if returncode < 0:
            try:
                name = signal.Signals(-returncode).name
            except ValueError:
                name = f"signal {-returncode}"
            message = f"process killed by {name}"
        else:
            message = f"process exited with code {returncode}"
        super().__init__(message)

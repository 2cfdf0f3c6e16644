"""Environment-based configuration.

Environment variables:
    CSUP_CLI_PATH: Default agent executable
        - used when LaunchConfig.cli_path is empty
        - default: claude

    CSUP_EVENT_BUFFER: Event queue capacity
        - default 1024, minimum 1

    CSUP_MAX_LINE_BYTES: Longest stdout line accepted
        - default 10 MiB, minimum 64 KiB

    CSUP_CANCEL_POLL: Seconds between cancellation checks while reading pipes
        - default 0.1, clamped to 0.01-5

    CSUP_TERM_TIMEOUT: Seconds to wait after SIGTERM before SIGKILL
        - default 2.0

    CSUP_STDERR_DRAIN_TIMEOUT: Seconds to wait for stderr EOF after exit
        - default 2.0

    CSUP_LOG_DEBUG: Debug logging
        - true/1/yes/on = on (log to a temp file)
        - false/0/no = off (default, INFO to stderr)
"""

from __future__ import annotations

import os
import tempfile
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

__all__ = ["Config", "load_config", "get_config", "reload_config"]

DEFAULT_CLI_PATH = "claude"
DEFAULT_EVENT_BUFFER = 1024
DEFAULT_MAX_LINE_BYTES = 10 * 1024 * 1024  # 10 MiB
MIN_MAX_LINE_BYTES = 64 * 1024
DEFAULT_CANCEL_POLL = 0.1
DEFAULT_TERM_TIMEOUT = 2.0
DEFAULT_STDERR_DRAIN_TIMEOUT = 2.0


def _parse_bool(value: str | None, default: bool = False) -> bool:
    """Parse a boolean environment variable."""
    if value is None:
        return default
    return value.lower() in ("true", "1", "yes", "on")


def _parse_int(value: str | None, default: int, minimum: int) -> int:
    if not value:
        return default
    try:
        return max(minimum, int(value))
    except ValueError:
        return default


def _parse_float(
    value: str | None, default: float, minimum: float, maximum: float
) -> float:
    if not value:
        return default
    try:
        return max(minimum, min(float(value), maximum))
    except ValueError:
        return default


@dataclass
class Config:
    """Supervisor settings.

    Attributes:
        cli_path: Default executable when a launch does not name one
        event_buffer: Event queue capacity
        max_line_bytes: Longest stdout line accepted
        cancel_poll_interval: Seconds between cancellation checks
        term_timeout: Grace period between SIGTERM and SIGKILL
        stderr_drain_timeout: Bound on waiting for stderr EOF after exit
        log_debug: Debug logging to a file
        log_file: Log file path (set when log_debug is on)
    """

    cli_path: str = DEFAULT_CLI_PATH
    event_buffer: int = DEFAULT_EVENT_BUFFER
    max_line_bytes: int = DEFAULT_MAX_LINE_BYTES
    cancel_poll_interval: float = DEFAULT_CANCEL_POLL
    term_timeout: float = DEFAULT_TERM_TIMEOUT
    stderr_drain_timeout: float = DEFAULT_STDERR_DRAIN_TIMEOUT
    log_debug: bool = False
    log_file: str | None = None


def _generate_log_file_path() -> str:
    """Return a timestamped log file path in the temp directory."""
    log_dir = Path(tempfile.gettempdir()) / "claude-supervisor"
    log_dir.mkdir(parents=True, exist_ok=True)

    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    log_file = log_dir / f"csup_debug_{timestamp}.log"

    return str(log_file.resolve())


def load_config() -> Config:
    """Load configuration from environment variables."""
    log_debug = _parse_bool(os.environ.get("CSUP_LOG_DEBUG"), default=False)
    log_file = _generate_log_file_path() if log_debug else None

    return Config(
        cli_path=os.environ.get("CSUP_CLI_PATH", "").strip() or DEFAULT_CLI_PATH,
        event_buffer=_parse_int(
            os.environ.get("CSUP_EVENT_BUFFER"), DEFAULT_EVENT_BUFFER, 1
        ),
        max_line_bytes=_parse_int(
            os.environ.get("CSUP_MAX_LINE_BYTES"),
            DEFAULT_MAX_LINE_BYTES,
            MIN_MAX_LINE_BYTES,
        ),
        cancel_poll_interval=_parse_float(
            os.environ.get("CSUP_CANCEL_POLL"), DEFAULT_CANCEL_POLL, 0.01, 5.0
        ),
        term_timeout=_parse_float(
            os.environ.get("CSUP_TERM_TIMEOUT"), DEFAULT_TERM_TIMEOUT, 0.0, 60.0
        ),
        stderr_drain_timeout=_parse_float(
            os.environ.get("CSUP_STDERR_DRAIN_TIMEOUT"),
            DEFAULT_STDERR_DRAIN_TIMEOUT,
            0.0,
            60.0,
        ),
        log_debug=log_debug,
        log_file=log_file,
    )


# Global configuration (lazily loaded)
_config: Config | None = None


def get_config() -> Config:
    """Return the global configuration."""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def reload_config() -> Config:
    """Reload configuration from the environment (used by tests)."""
    global _config
    _config = load_config()
    return _config

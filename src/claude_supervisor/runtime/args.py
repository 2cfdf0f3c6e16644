"""Argument builder for the agent CLI.

Command format:
    claude \
      -p \
      --output-format stream-json \
      --verbose \
      [--resume {session_id}] \
      [--model {model}] \
      [--system-prompt "{system_prompt}"]        # new sessions only
      [--allowedTools {tool}]...                 # new sessions only
      [--disallowedTools {tool}]...              # new sessions only
      [--json-schema {json_schema}] \
      [--mcp-config {mcp_config_path}] \
      --dangerously-skip-permissions \
      [-- "{prompt}"]
"""

from __future__ import annotations

import logging

from .types import LaunchConfig, PermissionMode

__all__ = [
    "build_args",
    "END_OF_OPTIONS",
    "SKIP_PERMISSIONS_FLAG",
]

logger = logging.getLogger(__name__)

END_OF_OPTIONS = "--"
SKIP_PERMISSIONS_FLAG = "--dangerously-skip-permissions"


def build_args(config: LaunchConfig) -> list[str]:
    """Build the argument vector (without the executable) for one launch.

    Args:
        config: Launch configuration

    Returns:
        Ordered command line arguments
    """
    # Hardcoded: non-interactive mode with streaming JSON output (needs --verbose)
    args = ["-p", "--output-format", "stream-json", "--verbose"]

    is_resume = config.is_resume
    if is_resume:
        args.extend(["--resume", config.session_id])

    # Forwarded on resume too, it overrides the model stored with the session
    if config.model:
        args.extend(["--model", config.model])

    # A resumed session already carries its system prompt and tool rules
    if not is_resume:
        if config.system_prompt:
            args.extend(["--system-prompt", config.system_prompt])
        for tool in config.allowed_tools:
            args.extend(["--allowedTools", tool])
        for tool in config.disallowed_tools:
            args.extend(["--disallowedTools", tool])

    if config.json_schema:
        args.extend(["--json-schema", config.json_schema])

    if config.mcp_config_path:
        args.extend(["--mcp-config", config.mcp_config_path])

    # stdin is closed right after start, so nothing could ever answer an
    # approval prompt. Every mode is run without prompts.
    if config.permission_mode != PermissionMode.BYPASS_PERMISSIONS:
        mode = getattr(config.permission_mode, "value", config.permission_mode)
        logger.debug(f"Permission mode {mode!r} replaced by {SKIP_PERMISSIONS_FLAG}")
    args.append(SKIP_PERMISSIONS_FLAG)

    if config.prompt:
        args.extend([END_OF_OPTIONS, config.prompt])

    return args

"""Command-line front end.

Runs one agent process and streams its events to stdout as JSON lines.

Usage:
    claude-supervisor [options] PROMPT
    python -m claude_supervisor --resume SESSION_ID "Continue"
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys

from .config import Config, get_config
from .runner import AgentRunError, run_agent
from .runtime import LaunchConfig, LaunchError, StreamEvent, build_args

__all__ = ["build_parser", "config_from_args", "main"]

logger = logging.getLogger(__name__)


def _parse_env_pair(value: str) -> tuple[str, str]:
    key, sep, val = value.partition("=")
    if not sep or not key:
        raise argparse.ArgumentTypeError(f"expected KEY=VALUE, got {value!r}")
    return key, val


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="claude-supervisor",
        description="Run the agent CLI and stream its events as JSON lines",
    )
    parser.add_argument("prompt", nargs="?", default="", help="Task text")
    parser.add_argument("--cli-path", default="", help="Agent executable")
    parser.add_argument("--cwd", default=None, help="Working directory")
    parser.add_argument("--resume", default="", metavar="SESSION_ID", help="Resume a session")
    parser.add_argument("--model", default="", help="Model identifier")
    parser.add_argument("--system-prompt", default="", help="System prompt (new sessions)")
    parser.add_argument(
        "--allowed-tool", action="append", default=[], metavar="TOOL",
        help="Allow a tool (repeatable, new sessions)",
    )
    parser.add_argument(
        "--disallowed-tool", action="append", default=[], metavar="TOOL",
        help="Deny a tool (repeatable, new sessions)",
    )
    parser.add_argument("--json-schema", default="", help="Structured output schema")
    parser.add_argument("--mcp-config", default="", help="MCP config file")
    parser.add_argument("--permission-mode", default="default", help="Requested permission mode")
    parser.add_argument(
        "--env", action="append", default=[], type=_parse_env_pair, metavar="KEY=VALUE",
        help="Extra environment variable (repeatable)",
    )
    parser.add_argument(
        "--print-args", action="store_true",
        help="Print the agent command line and exit",
    )
    return parser


def config_from_args(args: argparse.Namespace) -> LaunchConfig:
    return LaunchConfig(
        prompt=args.prompt,
        cli_path=args.cli_path,
        work_dir=args.cwd,
        session_id=args.resume,
        model=args.model,
        system_prompt=args.system_prompt,
        allowed_tools=tuple(args.allowed_tool),
        disallowed_tools=tuple(args.disallowed_tool),
        json_schema=args.json_schema,
        mcp_config_path=args.mcp_config,
        permission_mode=args.permission_mode,
        env=dict(args.env),
    )


def _print_event(event: StreamEvent) -> None:
    sys.stdout.write(event.to_json() + "\n")
    sys.stdout.flush()


async def _run(config: LaunchConfig, settings: Config) -> int:
    try:
        result = await run_agent(config, on_event=_print_event, settings=settings)
    except LaunchError as e:
        print(f"error: {e}", file=sys.stderr)
        return 127
    except AgentRunError as e:
        print(f"error: {e}", file=sys.stderr)
        return e.exit_code if e.exit_code > 0 else 1
    if result.session_id:
        logger.info(f"session_id={result.session_id}")
    return result.exit_code


def _configure_logging(config: Config) -> None:
    log_handlers: list[logging.Handler] = []

    if config.log_debug and config.log_file:
        # LOG_DEBUG mode: write to a temp file
        file_handler = logging.FileHandler(config.log_file, encoding="utf-8")
        file_handler.setFormatter(
            logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s")
        )
        log_handlers.append(file_handler)
        log_level = logging.DEBUG
    else:
        stderr_handler = logging.StreamHandler(sys.stderr)
        stderr_handler.setFormatter(
            logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s")
        )
        log_handlers.append(stderr_handler)
        log_level = logging.INFO

    # Third-party loggers stay at WARNING
    logging.basicConfig(
        level=logging.WARNING,
        handlers=log_handlers,
    )
    logging.getLogger("claude_supervisor").setLevel(log_level)


def main(argv: list[str] | None = None) -> None:
    """Main entry point."""
    args = build_parser().parse_args(argv)
    settings = get_config()
    launch_config = config_from_args(args)

    if args.print_args:
        cli_path = launch_config.cli_path or settings.cli_path
        print(" ".join([cli_path, *build_args(launch_config)]))
        return

    _configure_logging(settings)
    if settings.log_file:
        logger.info(f"Debug log: {settings.log_file}")

    try:
        code = asyncio.run(_run(launch_config, settings))
    except KeyboardInterrupt:
        # 128 + SIGINT(2)
        code = 130
    sys.exit(code)


if __name__ == "__main__":
    main()

"""Run an agent to completion and summarise the outcome.

Wraps ``launch()`` for callers that want a single awaitable: drain all
events (optionally forwarding each one), wait for exit, and turn a failed
run into an ``AgentRunError`` carrying the captured stderr.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass, field

import anyio

from .config import Config
from .runtime import LaunchConfig, StreamEvent, SupervisorError, launch

__all__ = ["AgentRunError", "RunResult", "run_agent"]

logger = logging.getLogger(__name__)

STDERR_TAIL_LINES = 5


class AgentRunError(SupervisorError):
    """An agent run failed; the message embeds the stderr tail.

    Attributes:
        exit_code: Process exit code (-1 if it never exited)
        stderr: Full captured stderr
    """

    def __init__(self, message: str, exit_code: int = -1, stderr: str = "") -> None:
        super().__init__(message)
        self.exit_code = exit_code
        self.stderr = stderr


@dataclass
class RunResult:
    """Outcome of a successful run.

    Attributes:
        events: Every event, in stdout order
        exit_code: Process exit code
        stderr: Captured stderr (may be non-empty on success)
        session_id: Session id from the first system event carrying one
    """

    events: list[StreamEvent] = field(default_factory=list)
    exit_code: int = 0
    stderr: str = ""
    session_id: str = ""

    @property
    def event_count(self) -> int:
        return len(self.events)


def _with_stderr(message: str, stderr_tail: str) -> str:
    if stderr_tail:
        return f"{message}\nstderr:\n{stderr_tail}"
    return message


async def run_agent(
    config: LaunchConfig,
    *,
    on_event: Callable[[StreamEvent], None] | None = None,
    on_session_id: Callable[[str], None] | None = None,
    cancel_scope: anyio.CancelScope | None = None,
    settings: Config | None = None,
) -> RunResult:
    """Launch the agent, drain its events and wait for it to finish.

    Args:
        config: Launch configuration
        on_event: Called for every event as it arrives
        on_session_id: Called once with the session id from the system init event
        cancel_scope: Cancelling this scope kills the process
        settings: Supervisor settings (default: global config)

    Returns:
        The run result

    Raises:
        LaunchError: The process could not be started
        AgentRunError: The run recorded a terminal error or produced no events
    """
    proc = await launch(config, cancel_scope=cancel_scope, settings=settings)
    cli_name = proc.argv[0]

    result = RunResult()
    try:
        async for event in proc.events():
            result.events.append(event)
            count = len(result.events)
            if count <= 3 or count % 10 == 0:
                logger.debug(f"pid={proc.pid}: event #{count} type={event.type}")

            if not result.session_id and event.type == "system" and event.session_id:
                result.session_id = event.session_id
                if on_session_id:
                    on_session_id(event.session_id)

            if on_event:
                on_event(event)

        result.exit_code = await proc.wait()
    except asyncio.CancelledError:
        logger.warning(f"{cli_name} run cancelled, killing pid={proc.pid}")
        proc.kill()
        raise

    logger.info(
        f"{cli_name} finished pid={proc.pid} events={result.event_count} "
        f"exit_code={result.exit_code}"
    )

    result.stderr = proc.stderr
    tail = proc.stderr_tail(STDERR_TAIL_LINES)

    error = proc.error
    if error is not None:
        raise AgentRunError(
            _with_stderr(f"{cli_name} process failed: {error}", tail),
            exit_code=result.exit_code,
            stderr=result.stderr,
        ) from error

    # A clean exit with nothing on stdout is a silent failure
    if not result.events:
        raise AgentRunError(
            _with_stderr(f"{cli_name} process produced no output (0 events)", tail),
            exit_code=result.exit_code,
            stderr=result.stderr,
        )

    return result

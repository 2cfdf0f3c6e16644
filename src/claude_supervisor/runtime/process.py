"""Agent process supervisor.

claude-supervisor runtime module

This module provides:
- Launching the agent CLI with arguments built from a LaunchConfig
- Isolation in a new session/process group, stdin closed right after start
- Two background loops per process: stderr capture, stdout parse-and-wait
- A bounded, ordered event queue with a one-shot completion signal
- Thread-safe snapshots of the terminal error and captured stderr
- Forced (kill) and graceful (SIGTERM -> timeout -> SIGKILL) termination

Key design points:
- The terminal error is first-writer-wins: a parse error recorded while
  reading stdout is never replaced by the later exit status
- The event queue is closed before the completion signal fires, so a
  consumer that drained the queue never misses an event
- Cancellation (anyio.CancelScope) is polled between pipe reads; the first
  loop that sees it kills the process group
"""

from __future__ import annotations

import asyncio
import logging
import os
import signal
import subprocess
import sys
import threading
from collections.abc import AsyncIterator, Awaitable, Callable
from typing import Any, TypeVar

import anyio

from ..config import Config, get_config
from .args import build_args
from .errors import LaunchError, ProcessExitError, StreamParseError
from .stderr import StderrCollector
from .stream import StreamEvent, parse_stream_events
from .types import RUNNING_EXIT_CODE, LaunchConfig, ProcessState

__all__ = [
    "AgentProcess",
    "launch",
]

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Platform detection
IS_WINDOWS = sys.platform == "win32"

STDERR_CHUNK_SIZE = 4096
DISCARD_CHUNK_SIZE = 64 * 1024

# Queue marker that wakes a consumer blocked on an empty queue at close time
_CLOSED: Any = object()


async def _run_cancellable(
    op: Callable[[], Awaitable[T]],
    cancel_scope: anyio.CancelScope | None,
    poll_interval: float,
) -> T | None:
    """Await ``op()``, re-checking ``cancel_scope`` every ``poll_interval``.

    Returns None once the scope has been cancelled. ``op`` is restarted
    after each poll timeout, so it must be safe to abandon mid-wait
    (StreamReader reads and Process.wait are).
    """
    if cancel_scope is None:
        return await op()
    while not cancel_scope.cancel_called:
        with anyio.move_on_after(poll_interval):
            return await op()
    return None


class _CancellableReader:
    """StreamReader wrapper whose reads end (as EOF) once cancellation is seen."""

    def __init__(
        self,
        reader: asyncio.StreamReader,
        cancel_scope: anyio.CancelScope | None,
        poll_interval: float,
        on_cancel: Callable[[], None],
    ) -> None:
        self._reader = reader
        self._cancel_scope = cancel_scope
        self._poll_interval = poll_interval
        self._on_cancel = on_cancel

    async def readline(self) -> bytes:
        return await self._read(self._reader.readline)

    async def read(self, n: int) -> bytes:
        return await self._read(lambda: self._reader.read(n))

    async def _read(self, op: Callable[[], Awaitable[bytes]]) -> bytes:
        data = await _run_cancellable(op, self._cancel_scope, self._poll_interval)
        if data is None:
            self._on_cancel()
            return b""
        return data


class AgentProcess:
    """Handle for one supervised agent process.

    Created by ``launch()``; never restarted. Consumers either iterate the
    events or await completion (or both, in any order), then read the
    final error, exit code and stderr.

    Example:
        proc = await launch(LaunchConfig(prompt="List the files", work_dir=repo))

        async for event in proc.events():
            bridge.forward(event)

        exit_code = await proc.wait()
        if proc.error is not None:
            report(proc.error, proc.stderr)
    """

    def __init__(
        self,
        config: LaunchConfig,
        argv: list[str],
        settings: Config,
        cancel_scope: anyio.CancelScope | None = None,
    ) -> None:
        self._config = config
        self._argv = argv
        self._settings = settings
        self._cancel_scope = cancel_scope

        self._process: asyncio.subprocess.Process | None = None
        self._state = ProcessState.STARTING

        # Single producer (stdout loop), single logical consumer
        self._events: asyncio.Queue[Any] = asyncio.Queue(maxsize=settings.event_buffer)
        self._events_closed = False
        self._event_count = 0
        self._done = asyncio.Event()

        # Mutated from both loops, read from any thread
        self._error: BaseException | None = None
        self._error_lock = threading.Lock()
        self._stderr = StderrCollector()

        self._stderr_stream: asyncio.StreamReader | None = None
        self._stderr_transport: asyncio.ReadTransport | None = None
        self._stderr_task: asyncio.Task[None] | None = None
        self._stdout_task: asyncio.Task[None] | None = None

    # =========================================================================
    # Accessors
    # =========================================================================

    @property
    def config(self) -> LaunchConfig:
        return self._config

    @property
    def argv(self) -> list[str]:
        """Full command line, executable first."""
        return list(self._argv)

    @property
    def pid(self) -> int | None:
        return self._process.pid if self._process else None

    @property
    def state(self) -> ProcessState:
        return self._state

    @property
    def event_count(self) -> int:
        """Number of events pushed to the queue so far."""
        return self._event_count

    @property
    def error(self) -> BaseException | None:
        """Terminal error, or None if the run has (so far) been clean."""
        with self._error_lock:
            return self._error

    @property
    def stderr(self) -> str:
        """Captured stderr text; a prefix of the final text until done."""
        return self._stderr.text()

    @property
    def stderr_bytes(self) -> bytes:
        return self._stderr.snapshot()

    def stderr_tail(self, lines: int = 5) -> str:
        return self._stderr.tail(lines)

    @property
    def exit_code(self) -> int:
        """Exit code, or -1 while the process has not been reaped.

        A negative code -N means the process was killed by signal N.
        """
        if self._process is None or self._process.returncode is None:
            return RUNNING_EXIT_CODE
        return self._process.returncode

    def done(self) -> bool:
        """True once the event queue is closed and the process has been waited on."""
        return self._done.is_set()

    async def wait(self) -> int:
        """Wait for the completion signal and return the exit code."""
        await self._done.wait()
        return self.exit_code

    async def events(self) -> AsyncIterator[StreamEvent]:
        """Yield events in stdout order until the queue is closed and empty."""
        while True:
            if self._events_closed and self._events.empty():
                return
            item = await self._events.get()
            if item is _CLOSED:
                # Leave the marker for any other consumer blocked in get()
                self._events.put_nowait(_CLOSED)
                return
            yield item

    def __aiter__(self) -> AsyncIterator[StreamEvent]:
        return self.events()

    def __repr__(self) -> str:
        return (
            f"AgentProcess(pid={self.pid}, state={self._state.value}, "
            f"events={self._event_count}, exit_code={self.exit_code})"
        )

    # =========================================================================
    # Termination
    # =========================================================================

    def kill(self) -> None:
        """Send SIGKILL to the process group.

        No-op if the process never started or has already been reaped.
        """
        process = self._process
        if process is None or process.returncode is not None:
            return

        pid = process.pid
        logger.debug(f"Killing agent pid={pid}")
        try:
            if IS_WINDOWS:
                process.kill()
            else:
                self._posix_signal(process, signal.SIGKILL)
        except ProcessLookupError:
            logger.debug(f"Agent already exited pid={pid}")

    async def terminate(self, timeout: float | None = None) -> None:
        """Stop the process gracefully, then forcefully if needed.

        Termination strategy:
        1. Send SIGTERM to the process group (CTRL_BREAK_EVENT on Windows)
        2. Wait up to ``timeout`` for the process to exit
        3. If still running, kill()

        Args:
            timeout: Grace period in seconds (default: Config.term_timeout)
        """
        process = self._process
        if process is None or process.returncode is not None:
            return
        if timeout is None:
            timeout = self._settings.term_timeout

        pid = process.pid
        try:
            if IS_WINDOWS:
                try:
                    os.kill(pid, signal.CTRL_BREAK_EVENT)
                except OSError:
                    process.terminate()
            else:
                self._posix_signal(process, signal.SIGTERM)
        except ProcessLookupError:
            return

        try:
            await asyncio.wait_for(process.wait(), timeout=timeout)
            logger.debug(f"Agent terminated gracefully pid={pid}")
        except asyncio.TimeoutError:
            logger.debug(f"Agent ignored SIGTERM, killing pid={pid}")
            self.kill()

    @staticmethod
    def _posix_signal(process: asyncio.subprocess.Process, sig: signal.Signals) -> None:
        """Signal the whole process group, falling back to the process alone."""
        try:
            # Same as pid, the child leads its own session
            pgid = os.getpgid(process.pid)
            os.killpg(pgid, sig)
        except ProcessLookupError:
            raise
        except OSError as e:
            logger.debug(f"killpg failed, falling back to send_signal: {e}")
            process.send_signal(sig)

    # =========================================================================
    # Startup
    # =========================================================================

    def _build_subprocess_kwargs(self) -> dict[str, Any]:
        """Build platform-specific subprocess kwargs."""
        kwargs: dict[str, Any] = {}

        if self._config.work_dir is not None:
            kwargs["cwd"] = self._config.work_dir

        # Overrides merged over the inherited environment
        if self._config.env:
            env = dict(os.environ)
            env.update(self._config.env)
            kwargs["env"] = env

        if IS_WINDOWS:
            kwargs["creationflags"] = subprocess.CREATE_NEW_PROCESS_GROUP
        else:
            # POSIX: start_new_session (equivalent to setsid)
            kwargs["start_new_session"] = True

        return kwargs

    async def _start(self) -> None:
        """Spawn the process, close stdin and start both background loops.

        Raises:
            LaunchError: Cancelled before start, pipes unavailable, or the
                executable could not be run
        """
        cli_path = self._argv[0]
        if self._cancel_scope is not None and self._cancel_scope.cancel_called:
            raise LaunchError(f"start process ({cli_path}): cancelled before start")

        # POSIX: stderr runs through a pipe we own, so it can be closed even
        # while a descendant still holds the write end
        stderr_fds: tuple[int, int] | None = None
        try:
            if not IS_WINDOWS:
                stderr_fds = os.pipe()
            self._process = await asyncio.create_subprocess_exec(
                *self._argv,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=stderr_fds[1] if stderr_fds else asyncio.subprocess.PIPE,
                limit=self._settings.max_line_bytes,
                **self._build_subprocess_kwargs(),
            )
        except (OSError, ValueError) as e:
            if stderr_fds:
                os.close(stderr_fds[0])
            raise LaunchError(f"start process ({cli_path}): {e}") from e
        finally:
            if stderr_fds:
                os.close(stderr_fds[1])

        logger.info(f"Agent started pid={self._process.pid}")

        try:
            if stderr_fds:
                await self._connect_stderr(stderr_fds[0])
            else:
                self._stderr_stream = self._process.stderr
            await self._close_stdin()
        except BaseException:
            self.kill()
            self._close_stderr_pipe()
            await asyncio.shield(self._process.wait())
            raise

        self._state = ProcessState.RUNNING
        self._stderr_task = asyncio.create_task(
            self._capture_stderr(), name=f"agent-stderr-{self._process.pid}"
        )
        self._stdout_task = asyncio.create_task(
            self._consume_stdout(), name=f"agent-stdout-{self._process.pid}"
        )

    async def _connect_stderr(self, read_fd: int) -> None:
        loop = asyncio.get_running_loop()
        pipe = os.fdopen(read_fd, "rb", buffering=0)
        try:
            reader = asyncio.StreamReader()
            transport, _ = await loop.connect_read_pipe(
                lambda: asyncio.StreamReaderProtocol(reader), pipe
            )
        except BaseException:
            pipe.close()
            raise
        self._stderr_stream = reader
        self._stderr_transport = transport

    def _close_stderr_pipe(self) -> None:
        if self._stderr_transport is not None:
            self._stderr_transport.close()

    async def _close_stdin(self) -> None:
        # The prompt travels in argv; nothing is ever written here
        stdin = self._process.stdin if self._process else None
        if stdin is None:
            return
        stdin.close()
        try:
            await stdin.wait_closed()
        except (BrokenPipeError, ConnectionResetError):
            pass

    def _reader(self, stream: asyncio.StreamReader) -> _CancellableReader:
        return _CancellableReader(
            stream,
            self._cancel_scope,
            self._settings.cancel_poll_interval,
            self._on_cancelled,
        )

    def _on_cancelled(self) -> None:
        if self._process is not None and self._process.returncode is None:
            logger.info(f"Launch cancelled, killing agent pid={self._process.pid}")
        self.kill()

    def _record_error(self, error: BaseException) -> None:
        with self._error_lock:
            if self._error is None:
                self._error = error

    def _close_events(self) -> None:
        if self._events_closed:
            return
        self._events_closed = True
        try:
            self._events.put_nowait(_CLOSED)
        except asyncio.QueueFull:
            # A full queue is drained before the consumer checks the flag
            pass

    # =========================================================================
    # Background loops
    # =========================================================================

    async def _capture_stderr(self) -> None:
        """Append stderr chunks to the collector until EOF or cancellation."""
        process = self._process
        if process is None or self._stderr_stream is None:
            return

        reader = self._reader(self._stderr_stream)
        while True:
            try:
                chunk = await reader.read(STDERR_CHUNK_SIZE)
            except OSError as e:
                logger.debug(f"stderr read failed pid={process.pid}: {e}")
                break
            if not chunk:
                break
            self._stderr.write(chunk)
            logger.debug(
                f"[agent stderr] {chunk.decode('utf-8', errors='replace').rstrip()}"
            )

    async def _consume_stdout(self) -> None:
        """Parse stdout into the event queue, then wait for the process.

        Closes the event queue and fires the completion signal, in that
        order, whether or not anything failed.
        """
        process = self._process
        assert process is not None and process.stdout is not None
        pid = process.pid
        reader = self._reader(process.stdout)

        try:
            try:
                async for event in parse_stream_events(reader):
                    await self._events.put(event)
                    self._event_count += 1
            except (StreamParseError, OSError) as e:
                logger.warning(f"Stream parse error pid={pid}: {e}")
                self._record_error(e)
                await self._discard(reader)
            except Exception as e:
                logger.exception(f"Stream reader failed pid={pid}")
                self._record_error(e)
                await self._discard(reader)

            logger.debug(f"Stream parser finished pid={pid} events={self._event_count}")

            returncode = await _run_cancellable(
                process.wait, self._cancel_scope, self._settings.cancel_poll_interval
            )
            if returncode is None:
                self._on_cancelled()
                returncode = await process.wait()
            self._state = ProcessState.EXITED

            if returncode != 0:
                error = ProcessExitError(returncode)
                logger.warning(f"Agent pid={pid}: {error}")
                self._record_error(error)
            else:
                logger.debug(f"Agent exited cleanly pid={pid}")

            await self._join_stderr()

            stderr_output = self._stderr.text()
            if stderr_output:
                logger.debug(f"[agent stderr] full output pid={pid}:\n{stderr_output}")
        finally:
            if process.returncode is None:
                self.kill()
                await process.wait()
            if self._stderr_task is not None and not self._stderr_task.done():
                self._stderr_task.cancel()
            if self._stderr_transport is not None and not self._stderr_transport.is_closing():
                self._stderr_transport.close()
                # The descriptor is released by the transport's close callback
                await asyncio.sleep(0)
            self._close_events()
            self._state = ProcessState.DRAINED
            self._done.set()

    async def _discard(self, reader: _CancellableReader) -> None:
        """Read and drop the rest of stdout so the child never blocks on a full pipe."""
        discarded = 0
        while True:
            try:
                chunk = await reader.read(DISCARD_CHUNK_SIZE)
            except OSError:
                break
            if not chunk:
                break
            discarded += len(chunk)
        if discarded:
            logger.debug(f"Discarded {discarded} bytes of stdout after parse error")

    async def _join_stderr(self) -> None:
        """Wait for stderr EOF, bounded by Config.stderr_drain_timeout.

        A descendant that inherited the pipe can hold it open after the
        agent itself exited; its capture is abandoned after the bound.
        """
        task = self._stderr_task
        if task is None:
            return

        done, _ = await asyncio.wait({task}, timeout=self._settings.stderr_drain_timeout)
        if not done:
            logger.warning(
                f"stderr still open {self._settings.stderr_drain_timeout}s after exit, "
                f"abandoning capture pid={self.pid}"
            )
            task.cancel()
            await asyncio.wait({task})


async def launch(
    config: LaunchConfig,
    *,
    cancel_scope: anyio.CancelScope | None = None,
    settings: Config | None = None,
) -> AgentProcess:
    """Launch the agent CLI and start supervising it.

    Returns as soon as the process is running; parsing and waiting happen
    in background tasks on the current event loop.

    Args:
        config: Launch configuration
        cancel_scope: Cancelling this scope kills the process
        settings: Supervisor settings (default: global config)

    Returns:
        The process handle

    Raises:
        LaunchError: The process could not be started
    """
    settings = settings or get_config()
    args = build_args(config)
    cli_path = config.cli_path or settings.cli_path
    argv = [cli_path, *args]

    logger.info(
        f"Starting agent: {cli_path} "
        f"(workdir: {config.work_dir or os.getcwd()}, resume: {config.is_resume})"
    )
    logger.debug(f"argv: {argv}")

    proc = AgentProcess(config, argv, settings, cancel_scope)
    await proc._start()
    return proc

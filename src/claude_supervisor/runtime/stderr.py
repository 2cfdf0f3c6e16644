"""Thread-safe accumulator for the agent's diagnostic output."""

from __future__ import annotations

import threading

__all__ = ["StderrCollector"]


class StderrCollector:
    """Append-only byte buffer guarded by a lock.

    No line framing is applied; partial lines are kept verbatim. Readers
    always see a prefix of what will finally be captured.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._buf = bytearray()

    def write(self, chunk: bytes) -> None:
        if not chunk:
            return
        with self._lock:
            self._buf += chunk

    def snapshot(self) -> bytes:
        """Return a copy of everything captured so far."""
        with self._lock:
            return bytes(self._buf)

    def text(self) -> str:
        """Return the captured output decoded as UTF-8 (invalid bytes replaced)."""
        return self.snapshot().decode("utf-8", errors="replace")

    def tail(self, lines: int = 5) -> str:
        """Return the last ``lines`` lines of the captured output."""
        content = self.text().strip()
        if not content:
            return ""
        return "\n".join(content.split("\n")[-lines:])

    def __len__(self) -> int:
        with self._lock:
            return len(self._buf)

import os
import logging
import threading
from pathlib import Path
from datetime import datetime

from gpconnect.local.errors import LogIOError

log = logging.getLogger(__name__)

NO_LOGS_MESSAGE = "No logs found."


class LogSink:
    """
    Append-only event log backed by a single plain-text file.

    All writers share one lock, so concurrent appends never interleave
    partial lines. The log directory is created on the first write.
    """

    def __init__(self, path: Path):
        self.path = Path(path)
        self._lock = threading.Lock()

    @staticmethod
    def _timestamp() -> str:
        return datetime.now().astimezone().strftime("%Y-%m-%d %H:%M:%S%z")

    def _write(self, text: str) -> None:
        with self._lock:
            try:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                with self.path.open("a", encoding="utf-8") as f:
                    f.write(text)
            except OSError as e:
                raise LogIOError(f"Failed to write log file '{self.path}': {e}") from e

    def append(self, line: str) -> None:
        """Appends one timestamped line. Embedded newlines are flattened."""
        clean = line.rstrip("\r\n").replace("\r", " ").replace("\n", " ")
        self._write(f"{self._timestamp()} {clean}\n")

    def mark(self, title: str) -> None:
        """Writes a separator banner, e.g. before each connection attempt."""
        self._write(f"\n--- {title}: {self._timestamp()} ---\n")

    def tail(self, max_bytes: int) -> str:
        """
        Returns at most the last `max_bytes` of the log, starting at a line boundary.

        :param max_bytes: Upper bound on the size of the returned text.
        :return: The log tail, or a placeholder message if no log exists yet.
        """
        with self._lock:
            if not self.path.exists():
                return NO_LOGS_MESSAGE
            try:
                with self.path.open("rb") as f:
                    size = f.seek(0, os.SEEK_END)
                    start = max(0, size - max_bytes)
                    # One extra byte tells whether the cut falls on a line boundary.
                    f.seek(max(0, start - 1))
                    data = f.read()
            except OSError as e:
                raise LogIOError(f"Failed to read log file '{self.path}': {e}") from e

        if start > 0:
            newline = data.find(b"\n")
            data = data[newline + 1:] if newline != -1 else b""
        return data.decode("utf-8", errors="replace")

    def clear(self) -> None:
        """Truncates the log file if it exists."""
        with self._lock:
            if not self.path.exists():
                return
            try:
                self.path.write_text("", encoding="utf-8")
            except OSError as e:
                raise LogIOError(f"Failed to clear log file '{self.path}': {e}") from e
        log.info("Event log cleared.")

import sys
import logging
from typing import Optional

from gpconnect.log.sink import LogSink
from gpconnect.log.handler import LogSinkHandler


class SubprocessLogFilter(logging.Filter):
    """
    This filter identifies logs coming from the subprocess logger
    and keeps raw tunnel client output off the console.
    """
    def filter(self, record):
        # The 'proc.' prefix is used by log_process_output in process_utils.py
        return not record.name.startswith('proc.')


class MainFormatter(logging.Formatter):
    """A custom formatter to handle regular logs and raw subprocess logs."""

    def format(self, record):
        # If the log is from a subprocess, just return the raw message.
        if record.name.startswith('proc.'):
            return record.getMessage()

        # Otherwise, use the default formatting.
        # Temporarily change the format string for the superclass call.
        original_format = self._style._fmt
        self._style._fmt = '%(asctime)s - %(levelname)-8s - [%(name)s] - %(message)s'
        formatted_message = super().format(record)
        self._style._fmt = original_format
        return formatted_message


def setup_logging(console_level: int = logging.INFO, sink: Optional[LogSink] = None) -> None:
    """
    Configures the root logger for the application.
    This sets up handlers for the console and, when given, the event log sink,
    clearing any previously configured handlers to prevent duplication.

    :param console_level: The logging level for the console output (e.g., logging.INFO).
    :param sink: The event log receiving application records.
    """
    root_logger = logging.getLogger()
    # Set root level to lowest to capture all messages for handler filtering
    root_logger.setLevel(logging.DEBUG)

    # Clear any existing handlers to prevent re-adding them on re-runs
    if root_logger.hasHandlers():
        root_logger.handlers.clear()

    # --- Console Handler ---
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(console_level)
    console_handler.setFormatter(MainFormatter())
    console_handler.addFilter(SubprocessLogFilter())
    root_logger.addHandler(console_handler)

    # --- Event Log Handler ---
    if sink is not None:
        sink_handler = LogSinkHandler(sink)
        # Tunnel client output reaches the sink directly from its pipe readers.
        sink_handler.addFilter(SubprocessLogFilter())
        root_logger.addHandler(sink_handler)

    # Suppress noisy third-party loggers
    logging.getLogger("urllib3").setLevel(logging.WARNING)

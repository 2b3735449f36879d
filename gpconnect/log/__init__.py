"""
Logging module for the application.
This module provides the logging setup and the append-only event log.
"""

from .sink import LogSink
from .setup import setup_logging
from .handler import LogSinkHandler

__all__ = ["LogSink", "LogSinkHandler", "setup_logging"]

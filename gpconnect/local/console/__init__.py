"""
This module initializes the console package, exposing key functionalities for command execution,
state notifications, toggling verbose logging, and printing help information.
"""

from .process import execute_command
from .handler import make_notifier, toggle_verbose_logging, print_help

__all__ = ["execute_command", "make_notifier", "toggle_verbose_logging", "print_help"]

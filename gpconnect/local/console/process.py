import logging
from typing import List

from gpconnect.local.commands import CommandService
from gpconnect.local.console.handler import (
    display_status, handle_check_command, handle_clear_logs_command, handle_config_command,
    handle_connect_command, handle_disconnect_command, handle_logs_command, print_help,
    toggle_verbose_logging,
)

log = logging.getLogger(__name__)


def execute_command(service: CommandService, command: str, args: List[str]) -> bool:
    """
    Executes a single command from the user.

    :param service: The command service driving the supervisor.
    :param command: The main command string (e.g., 'connect', 'config').
    :param args: A list of arguments for the command.
    :return bool: True if the console should exit, False otherwise.
    """
    log.debug(f"Executing command: {command}, args: {args}")
    command_map = {
        "connect": lambda: handle_connect_command(service, args),
        "disconnect": lambda: handle_disconnect_command(service),
        "status": lambda: display_status(service),
        "logs": lambda: handle_logs_command(service, args),
        "clear-logs": lambda: handle_clear_logs_command(service),
        "config": lambda: handle_config_command(service, args),
        "check": lambda: handle_check_command(service),
        "verbose": toggle_verbose_logging,
        "help": print_help,
        "exit": lambda: True,
        "quit": lambda: True,
    }

    if command not in command_map:
        print(f"Unknown command: '{command}'. Type 'help' for a list of commands.")
        return False

    return command_map[command]() is True

import sys
import logging
import threading

import setproctitle

# Basic console logger for messages BEFORE full setup is complete.
# This logger will be replaced by the full setup later.
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(levelname)-8s - [console] - %(message)s',
    stream=sys.stdout
)
log = logging.getLogger("console")

import gpconnect.local.console as console
from gpconnect.log.setup import setup_logging
from gpconnect.local.commands import CommandService

# --- Global State ---
CONSOLE_LOCK = threading.Lock()
ONE_SHOT_COMMANDS = {"status", "logs", "clear-logs", "config", "check", "help"}


def main() -> None:
    """The main entry point for the console application."""
    setproctitle.setproctitle("GPConnect - Console")

    service = CommandService.create()
    setup_logging(logging.INFO, service.sink)

    # Non-interactive mode for one-off commands that don't need a live tunnel
    if len(sys.argv) > 1:
        command, args = sys.argv[1].lower(), sys.argv[2:]
        if "--verbose" in args:
            console.toggle_verbose_logging()
            args.remove("--verbose")
        if command in ONE_SHOT_COMMANDS:
            console.execute_command(service, command, args)
            return
        print(f"'{command}' keeps the tunnel supervised; run it from the interactive console.")
        return

    service.supervisor.add_listener(console.make_notifier(service))

    print("--- GPConnect Management Console ---")
    print("Type 'help' for a list of commands.")

    try:
        stored = service.start()
        if stored:
            print(f"Loaded configuration for {stored.username}@{stored.portal}.")
        if not service.check_installed():
            print("WARNING: tunnel client not found. Run 'check' for details.")

        while True:
            try:
                # The input prompt must be outside the lock to not block background threads
                command_line_str = input("> ")
                with CONSOLE_LOCK:
                    if not command_line_str.strip():
                        continue
                    command_line = command_line_str.strip().split()
                    command, args = command_line[0].lower(), command_line[1:]

                    log.debug(f"Received command: {command}, args: {args}")

                    if console.execute_command(service, command, args):
                        break

            except (KeyboardInterrupt, EOFError):
                with CONSOLE_LOCK:
                    log.warning("\nExiting console due to interrupt.")
                    break
            except Exception as e:
                with CONSOLE_LOCK:
                    log.error(f"An unexpected error occurred in the console: {e}", exc_info=True)
    finally:
        log.info("Stopping supervision and the tunnel client...")
        service.shutdown()

if __name__ == "__main__":
    main()
    print("Exiting GPConnect console. See you next time!")

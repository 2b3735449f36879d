import getpass
import logging
from dataclasses import replace
from typing import List, Optional

from gpconnect.local.config import effective_settings as app_settings
from gpconnect.local.commands import CommandService
from gpconnect.local.store import VpnConfig
from gpconnect.local.supervisor import ConnectionState

log = logging.getLogger(__name__)

TRUE_VALUES = ('true', '1', 't', 'yes', 'y', 'on')
CONFIG_KEYS = {
    "portal": "portal",
    "username": "username",
    "notifications": "notifications_enabled",
    "auto-connect": "auto_connect",
}


def _prompt(label: str, default: Optional[str] = None) -> str:
    suffix = f" [{default}]" if default else ""
    value = input(f"{label}{suffix}: ").strip()
    return value or (default or "")

def handle_connect_command(service: CommandService, args: List[str]) -> None:
    """
    Connects using stored values where available and prompts for the rest.
    Usage: connect [portal] [username] [--forget]
    """
    remember = "--forget" not in args
    args = [a for a in args if a != "--forget"]
    stored = service.load_config()

    portal = args[0] if args else (stored.portal if stored else "")
    if not portal:
        portal = _prompt("Portal")
    username = args[1] if len(args) > 1 else (stored.username if stored and stored.portal == portal else "")
    if not username:
        username = _prompt("Username")

    password = None
    if stored and stored.portal == portal and stored.username == username:
        password = stored.password
    if not password:
        password = getpass.getpass("Password: ")

    print(f"Connecting to {portal}...")
    ok, message = service.connect(portal, username, password, remember=remember)
    print(message if ok else f"ERROR: {message}")

def handle_disconnect_command(service: CommandService) -> None:
    ok, message = service.disconnect()
    print(message if ok else f"ERROR: {message}")

def display_status(service: CommandService) -> None:
    """Shows the connection state, retry progress and any pending problem."""
    status = service.status()
    print("\n--- Connection Status ---")
    print(f"  State          : {status['state'].upper()}")
    if status["portal"]:
        print(f"  Portal         : {status['portal']}")
    if status["waiting_for_network"]:
        print("  Network        : offline, waiting to reconnect")
    print(f"  Retries        : {status['retry_count']}/{status['max_retries']}"
          + (" (reconnect pending)" if status["retry_pending"] else ""))
    if status["last_error"]:
        print(f"  Last error     : {status['last_error']}")
    if status["has_permission_issue"]:
        print("  WARNING: the tunnel client cannot run without a password. Run 'check' for the fix.")
    print("-" * 25 + "\n")

def handle_logs_command(service: CommandService, args: List[str]) -> None:
    max_bytes = None
    if args:
        try:
            max_bytes = int(args[0])
        except ValueError:
            print("Usage: logs [max_bytes]")
            return
    print(service.read_logs(max_bytes))

def handle_clear_logs_command(service: CommandService) -> None:
    ok, message = service.clear_logs()
    print(message if ok else f"ERROR: {message}")

def _config_show(service: CommandService) -> None:
    print("\n--- Current VPN Configuration ---")
    stored = service.load_config()
    if stored is None:
        print("  (nothing saved yet)")
    else:
        prefs = stored.preferences
        print(f"  portal        = {stored.portal}")
        print(f"  username      = {stored.username}")
        print(f"  password      = {'(remembered)' if stored.password else '(not remembered)'}")
        print(f"  notifications = {prefs.notifications_enabled}")
        print(f"  auto-connect  = {prefs.auto_connect}")
    print("--- Effective Settings ---")
    for key, value in app_settings.as_dict().items():
        print(f"  {key} = {value}")
    print("---------------------------------\n")

def _config_set(service: CommandService, args: List[str]) -> None:
    if len(args) < 2 or args[0].lower() not in CONFIG_KEYS:
        print(f"Usage: config set <{'|'.join(CONFIG_KEYS)}> <VALUE>")
        return

    field = CONFIG_KEYS[args[0].lower()]
    raw = " ".join(args[1:])
    value = raw.lower() in TRUE_VALUES if field in ("notifications_enabled", "auto_connect") else raw

    stored = service.load_config() or VpnConfig(portal="", username="")
    ok, message = service.save_config(replace(stored, **{field: value}))
    print(message if ok else f"ERROR: {message}")

def _config_forget_password(service: CommandService) -> None:
    stored = service.load_config()
    if stored is None or stored.password is None:
        print("No password is remembered.")
        return
    ok, message = service.save_config(replace(stored, password=None))
    print("Remembered password removed." if ok else f"ERROR: {message}")

def _config_help():
    """Displays help for the config command."""
    print("\nConfig Command Help:")
    print("  config show                - Display the saved VPN configuration and settings.")
    print("  config set KEY VALUE       - Change portal, username, notifications or auto-connect.")
    print("  config forget-password     - Remove the remembered password.")
    print("  config help                - Show this help message.")

def handle_config_command(service: CommandService, args: List[str]) -> None:
    """
    Handles all sub-commands for the 'config' command-line interface.

    :param service: The command service.
    :param args: A list of string arguments following the 'config' command.
    """
    sub_command = args[0].lower() if args else "show"

    if sub_command == "show":
        _config_show(service)
    elif sub_command == "set":
        _config_set(service, args[1:])
    elif sub_command == "forget-password":
        _config_forget_password(service)
    elif sub_command == "help":
        _config_help()
    else:
        print(f"Unknown config sub-command: '{sub_command}'. Type 'config help' for available commands.")

def handle_check_command(service: CommandService) -> None:
    """Checks installation and elevation, printing the fix when something is missing."""
    installed = service.check_installed()
    print(f"Tunnel client installed : {'yes' if installed else 'NO'}")
    if not installed:
        print("  Install it first, e.g.: sudo apt install openconnect")
        return
    permitted = service.check_permissions()
    print(f"Passwordless elevation  : {'yes' if permitted else 'NO'}")
    if not permitted:
        print("  Add this rule with 'sudo visudo -f /etc/sudoers.d/gpconnect':")
        print(f"  {service.probe.remediation_hint()}")

def make_notifier(service: CommandService):
    """Returns a state listener printing desktop-style notifications when enabled."""
    def notify(previous: ConnectionState, current: ConnectionState) -> None:
        if current == ConnectionState.DISCONNECTED and previous not in (ConnectionState.CONNECTED, ConnectionState.DISCONNECTING):
            return
        if current not in (ConnectionState.CONNECTED, ConnectionState.DISCONNECTED):
            return
        stored = service.load_config()
        if stored is not None and not stored.preferences.notifications_enabled:
            return
        if current == ConnectionState.CONNECTED:
            portal = stored.portal if stored else "portal"
            print(f"\n[VPN Connected] Successfully connected to {portal}")
        else:
            print("\n[VPN Disconnected] The VPN connection has been closed.")
    return notify

def toggle_verbose_logging() -> None:
    """Toggles verbose (DEBUG level) logging for the console handler."""
    app_settings.VERBOSE_LOGGING = not app_settings.VERBOSE_LOGGING
    new_level = logging.DEBUG if app_settings.VERBOSE_LOGGING else logging.INFO

    # Reconfigure the console handler's level directly
    root_logger = logging.getLogger()
    found_handler = False
    for handler in root_logger.handlers:
        if type(handler) is logging.StreamHandler:
            handler.setLevel(new_level)
            found_handler = True
            break

    status = "ON" if app_settings.VERBOSE_LOGGING else "OFF"
    if found_handler:
        print(f"Verbose console logging is now {status}.")
    else:
        print("Could not find console handler to modify level.")

def print_help():
    """Prints the main help text for the console."""
    print("\nAvailable commands:")
    print("  connect [portal] [user] - Connect; add --forget to not remember the password.")
    print("  disconnect              - Disconnect and stop automatic reconnects.")
    print("  status                  - Show connection state, retries and errors.")
    print("  logs [max_bytes]        - Show the end of the VPN event log.")
    print("  clear-logs              - Empty the VPN event log.")
    print("  config <cmd>            - Manage the saved configuration. Use 'config help'.")
    print("  check                   - Check installation and passwordless elevation.")
    print("  verbose                 - Toggle detailed DEBUG log output in the console.")
    print("  exit                    - Disconnect and exit the console.")
    print()

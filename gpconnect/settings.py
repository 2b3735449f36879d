"""
This module contains the configuration settings for the GPConnect application.
It defines paths, tunnel client invocation, supervisor timing and logging settings.
It is used throughout the application to ensure consistent settings and paths.
"""

import os
import shlex
import pathlib
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv(override=True)

#* --- Core Paths ---
BASE_DIR = pathlib.Path(__file__).resolve().parent.parent  # Project Root
DATA_DIR = pathlib.Path(os.getenv("GPCONNECT_DATA_DIR", pathlib.Path.home() / ".local" / "share" / "gpconnect"))
LOGS_DIR = DATA_DIR / "logs"

#* --- Application File Paths ---
CONFIG_PATH = DATA_DIR / "vpn_config.json"
VPN_LOG_PATH = LOGS_DIR / "vpn.log"
OVERRIDES_JSON_PATH = DATA_DIR / "overrides.json"

#* --- Tunnel Client ---
TUNNEL_CLIENT_BINARY = os.getenv("TUNNEL_CLIENT_BINARY", "openconnect")
TUNNEL_PROTOCOL = os.getenv("TUNNEL_PROTOCOL", "gp")
# Prefix used for every privileged invocation. '-n' makes sudo fail instead of prompting.
ELEVATION_COMMAND = shlex.split(os.getenv("ELEVATION_COMMAND", "sudo -n"))
ELEVATED_KILL_BINARY = os.getenv("ELEVATED_KILL_BINARY", "/usr/bin/kill")
PERMISSION_PROBE_TIMEOUT = 10  # seconds

#* --- Supervisor Settings ---
SUPERVISOR_TICK_INTERVAL = 2
CONNECT_CONFIRM_ATTEMPTS = 15
CONNECT_CONFIRM_INTERVAL = 1   # seconds between liveness polls while connecting
MAX_RETRY_ATTEMPTS = 5         # not overridable, the retry budget is fixed
RETRY_DELAY_SECONDS = 5        # fixed, not exponential
GRACEFUL_SHUTDOWN_TIMEOUT = 2  # seconds before force-killing
AUTO_CONNECT_SETTLE_DELAY = 1

#* --- Network Watcher Settings ---
NETWORK_POLL_INTERVAL = 1
NETWORK_RESTORE_DEBOUNCE = 1
NETWORK_SETTLE_DELAY = 1
# Optional HTTP probe confirming real reachability. Empty disables it.
CONNECTIVITY_CHECK_URL = os.getenv("CONNECTIVITY_CHECK_URL", "")
CONNECTIVITY_CHECK_TIMEOUT = 2
# Interfaces that never count as host connectivity (loopback and tunnels).
IGNORED_INTERFACE_PREFIXES = ("lo", "tun", "tap", "utun", "ppp", "wg", "docker", "veth", "virbr")

#* --- Logging ---
LOG_TAIL_MAX_BYTES = 256 * 1024
VERBOSE_LOGGING = False

#* --- MODIFIABLE SETTINGS (Changeable through overrides.json) ---
MODIFIABLE_SETTINGS = {
    "TUNNEL_CLIENT_BINARY", "TUNNEL_PROTOCOL",
    "RETRY_DELAY_SECONDS", "CONNECT_CONFIRM_ATTEMPTS",
    "GRACEFUL_SHUTDOWN_TIMEOUT", "CONNECTIVITY_CHECK_URL", "LOG_TAIL_MAX_BYTES",
}

"""
Error taxonomy for the connection supervisor.

User-visible errors must be clear and actionable. Each exception class
carries a `retryable` flag: transient failures are retried automatically
within the retry budget, everything else needs the user.
"""
from typing import Iterable, Tuple


class AppErrors:
    """Centralized actionable error messages."""

    PORTAL_REQUIRED = "Portal URL is required"

    CREDENTIALS_REQUIRED = "Please enter username and password"

    NOT_INSTALLED = (
        "Tunnel client '{binary}' not found. Install it first (e.g. 'sudo apt install openconnect')."
    )

    PERMISSION_DENIED = (
        "'{binary}' cannot run without a password prompt. Add this sudoers rule: {hint}"
    )

    RETRYING = "Connection lost. Retrying ({attempt}/{limit})..."

    RETRIES_EXHAUSTED = "Connection failed after {limit} attempts. Please check your network."

    CONNECT_TIMEOUT = "Tunnel client did not come up within {seconds} seconds."

    STOP_FAILED = "The previous tunnel client could not be stopped. See logs for details."

    UNEXPECTED = "Unexpected error: {error}. See logs for details."


class VpnError(Exception):
    """Base class for all supervisor errors."""
    retryable = False


class InstallationMissingError(VpnError):
    """The tunnel client binary is absent."""


class PermissionDeniedError(VpnError):
    """Privilege elevation for the tunnel client is not configured."""


class InvalidInputError(VpnError):
    """Input rejected before any connection was attempted."""


class InvalidCredentialsError(InvalidInputError):
    """Username and/or password missing. The caller should prompt for `missing_fields`."""

    def __init__(self, missing_fields: Iterable[str]):
        self.missing_fields: Tuple[str, ...] = tuple(missing_fields)
        super().__init__(AppErrors.CREDENTIALS_REQUIRED)


class NetworkUnavailableError(VpnError):
    retryable = True


class ConnectTimeoutError(VpnError):
    retryable = True


class ProcessSpawnError(VpnError):
    retryable = True


class ConfigIOError(VpnError):
    """Reading or writing the persisted config failed."""


class LogIOError(VpnError):
    """Reading or writing the event log failed."""

import getpass
import logging
import subprocess
from typing import List, Optional, Sequence

from gpconnect.local.config import effective_settings as config
from gpconnect.local.supervisor.process_utils import resolve_binary

log = logging.getLogger(__name__)


class PermissionProbe:
    """
    Tells whether the tunnel client can run elevated without a password prompt.

    The probe only reports. Fixing the elevation policy is left to the user,
    who gets the matching sudoers rule from `remediation_hint()`.
    """

    def __init__(self, binary: Optional[str] = None, elevation: Optional[Sequence[str]] = None,
                 timeout: Optional[float] = None):
        self.binary = binary or config.TUNNEL_CLIENT_BINARY
        self.elevation: List[str] = list(config.ELEVATION_COMMAND if elevation is None else elevation)
        self.timeout = config.PERMISSION_PROBE_TIMEOUT if timeout is None else timeout

    def check_installed(self) -> bool:
        """Checks that the tunnel client binary can be found."""
        path = resolve_binary(self.binary)
        if path is None:
            log.warning(f"Tunnel client '{self.binary}' not found on PATH.")
            return False
        log.debug(f"Found tunnel client at '{path}'")
        return True

    def check(self) -> bool:
        """
        Runs a no-op privileged invocation (`--version`) of the tunnel client.

        :return: True if it succeeded without asking for a password.
        """
        binary = resolve_binary(self.binary) or self.binary
        cmd = [*self.elevation, binary, "--version"]
        try:
            result = subprocess.run(cmd, stdin=subprocess.DEVNULL, capture_output=True,
                                    timeout=self.timeout, check=False)
        except FileNotFoundError as e:
            log.warning(f"Permission probe could not run '{cmd[0]}': {e}")
            return False
        except subprocess.TimeoutExpired:
            log.warning(f"Permission probe timed out after {self.timeout}s; assuming a password prompt.")
            return False

        if result.returncode != 0:
            log.warning(
                f"Permission probe failed (exit {result.returncode}): "
                f"{result.stderr.decode('utf-8', errors='replace').strip()}"
            )
            return False
        return True

    def remediation_hint(self) -> str:
        """Returns the sudoers rule that would let the tunnel client run non-interactively."""
        binary = resolve_binary(self.binary) or f"/usr/sbin/{self.binary}"
        return f"{getpass.getuser()} ALL=(root) NOPASSWD: {binary}"

import sys
import atexit
import shutil
import psutil
import logging
import threading
import subprocess
from typing import Any, Callable, Dict, List, Optional, Sequence

from gpconnect.log.sink import LogSink
from gpconnect.local.config import effective_settings as config
from gpconnect.local.errors import LogIOError, ProcessSpawnError
from gpconnect.local.store import Credentials
from gpconnect.local.supervisor import shutdown

log = logging.getLogger(__name__)


#* --- Process Status ---
def resolve_binary(binary: str) -> Optional[str]:
    """Returns the full path of the tunnel client binary, or None if it is not installed."""
    return shutil.which(binary)

def _is_alive(proc: psutil.Process) -> bool:
    try:
        return proc.is_running() and proc.status() != psutil.STATUS_ZOMBIE
    except psutil.NoSuchProcess:
        return False
    except psutil.AccessDenied:
        # Exists, but owned by someone else.
        return True

#* --- Process Creation ---
def _get_popen_creation_flags() -> Dict[str, Any]:
    """Returns platform-specific creation flags for subprocess.Popen."""
    if sys.platform == "win32":
        return {"creationflags": subprocess.CREATE_NO_WINDOW}
    # Own process group, so terminal signals aimed at the console don't hit the tunnel.
    return {"start_new_session": True}

def _read_pipe(pipe, process_name: str, level: int, line_handler: Optional[Callable] = None):
    """Target function for reader threads. Reads and logs lines from a subprocess pipe."""
    proc_logger = logging.getLogger(f"proc.{process_name}")
    try:
        for line_bytes in iter(pipe.readline, b""):
            line = line_bytes.decode("utf-8", errors="replace").strip()
            if not line:
                continue
            if line_handler:
                line_handler(line)
            else:
                proc_logger.log(level, line)
    except (OSError, ValueError, LogIOError) as e:
        proc_logger.debug(f"Pipe reader for {process_name} stream exited: {e}")
    finally:
        pipe.close()

def log_process_output(process: subprocess.Popen, name: str, sink: Optional[LogSink] = None):
    """Starts background threads to stream a process's stdout/stderr into the event log."""
    def handler_for(stream: str) -> Optional[Callable]:
        if sink is None:
            return None
        return lambda line: sink.append(f"[{name}:{stream}] {line}")

    if process.stdout:
        threading.Thread(target=_read_pipe, args=(process.stdout, name, logging.INFO, handler_for("stdout")),
                         daemon=True, name=f"{name}-stdout").start()
    if process.stderr:
        threading.Thread(target=_read_pipe, args=(process.stderr, name, logging.ERROR, handler_for("stderr")),
                         daemon=True, name=f"{name}-stderr").start()


class TunnelProcessController:
    """
    Owns the one tunnel client process: spawning it, checking whether it is
    alive and stopping it. Liveness and termination key off the PID this
    controller started, never off a process name.
    """

    def __init__(self, binary: Optional[str] = None, protocol: Optional[str] = None,
                 elevation: Optional[Sequence[str]] = None, sink: Optional[LogSink] = None,
                 grace_period: Optional[float] = None, kill_binary: Optional[str] = None,
                 register_shutdown_hook: bool = True):
        self.binary = binary or config.TUNNEL_CLIENT_BINARY
        self.protocol = protocol or config.TUNNEL_PROTOCOL
        self.elevation: List[str] = list(config.ELEVATION_COMMAND if elevation is None else elevation)
        self.sink = sink
        self.grace_period = config.GRACEFUL_SHUTDOWN_TIMEOUT if grace_period is None else grace_period
        self.kill_binary = kill_binary or config.ELEVATED_KILL_BINARY
        self.name = "tunnel-client"

        self._lock = threading.RLock()
        self._popen: Optional[subprocess.Popen] = None
        self._proc: Optional[psutil.Process] = None

        if register_shutdown_hook:
            atexit.register(self.shutdown)

    @property
    def pid(self) -> Optional[int]:
        with self._lock:
            return self._popen.pid if self._popen else None

    def is_installed(self) -> bool:
        return resolve_binary(self.binary) is not None

    def build_command(self, credentials: Credentials) -> List[str]:
        """
        Returns the argument list for the tunnel client. The password is not
        part of it: it travels over stdin so process listings never show it.
        """
        binary = resolve_binary(self.binary) or self.binary
        return [
            *self.elevation,
            binary,
            f"--protocol={self.protocol}",
            "--passwd-on-stdin",
            credentials.portal,
            "--user", credentials.username,
        ]

    def spawn(self, credentials: Credentials) -> psutil.Process:
        """
        Launches the tunnel client, replacing any process still tracked.

        :param credentials: Portal and login used for this session.
        :return: The psutil handle of the started process.
        :raises ProcessSpawnError: If the OS fails to start the process, or a
            still-running client cannot be stopped first.
        """
        with self._lock:
            if self.is_running():
                log.warning(f"A tunnel client (PID {self.pid}) is still running. Stopping it before spawning a new one.")
                if not self.terminate():
                    raise ProcessSpawnError(
                        f"Tunnel client (PID {self.pid}) is still running and could not be stopped. Not starting another."
                    )

            if self.sink is not None:
                try:
                    self.sink.mark("Connection Attempt")
                except LogIOError as e:
                    log.error(f"Could not write connection banner: {e}")

            args = self.build_command(credentials)
            log.info(f"Starting {self.name} for portal '{credentials.portal}' as user '{credentials.username}'...")
            try:
                p = subprocess.Popen(args, stdin=subprocess.PIPE, stdout=subprocess.PIPE,
                                     stderr=subprocess.PIPE, **_get_popen_creation_flags())
            except (OSError, ValueError) as e:
                log.error(f"Failed to start {self.name}: {e}")
                raise ProcessSpawnError(f"Failed to start {self.binary}: {e}") from e

            self._send_password(p, credentials.password)
            log_process_output(p, self.name, self.sink)

            self._popen = p
            try:
                self._proc = psutil.Process(p.pid)
            except psutil.NoSuchProcess as e:
                self._proc = None
                raise ProcessSpawnError(f"{self.binary} exited immediately after start.") from e
            log.info(f"{self.name} started with PID: {p.pid}")
            return self._proc

    def _send_password(self, p: subprocess.Popen, password: Optional[str]) -> None:
        if p.stdin is None:
            return
        try:
            if password:
                p.stdin.write(f"{password}\n".encode("utf-8"))
                p.stdin.flush()
        except (BrokenPipeError, OSError) as e:
            log.warning(f"{self.name} closed its stdin before the password was sent: {e}")
        finally:
            try:
                p.stdin.close()
            except OSError:
                pass

    def is_running(self) -> bool:
        """Returns True while the tracked process is alive and not a zombie."""
        with self._lock:
            if self._popen is None or self._proc is None:
                return False
            if self._popen.poll() is not None:
                return False
            return _is_alive(self._proc)

    def terminate(self) -> bool:
        """
        Stops the tracked process and its children: SIGTERM first, SIGKILL
        after the grace period.

        :return: True when no tracked process is left alive.
        """
        with self._lock:
            if self._popen is None:
                return True

            pid = self._popen.pid
            survivors = []
            if self._proc is not None:
                processes = shutdown.identify_processes_to_stop(self._proc)
                if processes:
                    log.info(f"Stopping {self.name} (PID {pid})...")
                    survivors = shutdown.graceful_shutdown_sequence(
                        processes, self.grace_period, self.elevation, self.kill_binary
                    )

            try:
                self._popen.wait(timeout=self.grace_period)
            except subprocess.TimeoutExpired:
                log.error(f"{self.name} (PID {pid}) could not be reaped.")
                return False

            if survivors:
                log.error(f"{len(survivors)} child processes of PID {pid} are still alive.")
                return False

            self._popen = None
            self._proc = None
            log.info(f"{self.name} (PID {pid}) stopped.")
            return True

    def shutdown(self) -> None:
        """Shutdown hook: makes sure no tunnel client outlives the application."""
        try:
            self.terminate()
        except Exception as e:
            log.error(f"Failed to stop {self.name} during shutdown: {e}", exc_info=True)

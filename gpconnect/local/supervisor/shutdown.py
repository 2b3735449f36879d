import signal
import psutil
import logging
import subprocess
from typing import List, Sequence, Set

log = logging.getLogger(__name__)


def identify_processes_to_stop(proc: psutil.Process) -> Set[psutil.Process]:
    """
    Identifies the tracked process and all of its children.

    With an elevation wrapper the tracked PID belongs to the wrapper and the
    tunnel client itself is one of its children.

    :param proc: The tracked process.
    :return: A set of psutil.Process objects to be stopped.
    """
    all_procs_to_stop: Set[psutil.Process] = set()
    try:
        if proc.is_running():
            all_procs_to_stop.add(proc)
        all_procs_to_stop.update(proc.children(recursive=True))
    except psutil.NoSuchProcess:
        log.debug(f"Process {proc.pid} no longer exists, skipping children retrieval.")
    except psutil.AccessDenied:
        log.warning(f"Access denied while listing children of PID {proc.pid}.")
    return all_procs_to_stop


def _send_elevated_signal(pid: int, sig: signal.Signals, elevation: Sequence[str], kill_binary: str) -> None:
    """Signals a process we do not own through the elevation wrapper, by PID."""
    cmd = [*elevation, kill_binary, "-s", sig.name.replace("SIG", ""), str(pid)]
    try:
        result = subprocess.run(cmd, timeout=5, check=False, capture_output=True)
        if result.returncode != 0:
            log.warning(f"Elevated {sig.name} for PID {pid} failed: {result.stderr.decode(errors='replace').strip()}")
    except (OSError, subprocess.TimeoutExpired) as e:
        log.error(f"Failed to run elevated {sig.name} for PID {pid}: {e}")


def _signal_processes(processes: Set[psutil.Process], sig: signal.Signals,
                      elevation: Sequence[str], kill_binary: str) -> None:
    """Sends `sig` to every process, falling back to an elevated kill when refused."""
    for proc in processes:
        try:
            log.debug(f"Sending {sig.name} to PID {proc.pid}")
            proc.send_signal(sig)
        except psutil.NoSuchProcess:
            continue
        except psutil.AccessDenied:
            if elevation:
                _send_elevated_signal(proc.pid, sig, elevation, kill_binary)
            else:
                log.error(f"Not allowed to send {sig.name} to PID {proc.pid}.")


def _forceful_kill(processes: List[psutil.Process], elevation: Sequence[str], kill_binary: str) -> None:
    """Forcefully kills processes that didn't terminate gracefully."""
    if not processes:
        return

    log.warning(f"{len(processes)} processes did not terminate gracefully. Forcing shutdown...")
    _signal_processes(set(processes), signal.SIGKILL, elevation, kill_binary)


def graceful_shutdown_sequence(processes: Set[psutil.Process], timeout: float,
                               elevation: Sequence[str] = (), kill_binary: str = "kill") -> List[psutil.Process]:
    """
    Runs the full graceful shutdown sequence for the given processes.

    :param processes: A set of psutil.Process objects to shut down.
    :param timeout: Grace period in seconds before force-killing.
    :param elevation: Command prefix used when a process refuses our signals.
    :param kill_binary: Absolute path of the kill binary allowed by the elevation policy.
    :return: Processes still alive after the forced kill.
    """
    _signal_processes(processes, signal.SIGTERM, elevation, kill_binary)

    # Wait and verify
    procs_list = list(processes)
    try:
        _, alive = psutil.wait_procs(procs_list, timeout=timeout)
    except psutil.TimeoutExpired:
        alive = procs_list
    except psutil.NoSuchProcess:
        alive = []

    # If any processes are still alive after the timeout, forcefully kill them.
    _forceful_kill(alive, elevation, kill_binary)
    if not alive:
        return []
    try:
        _, still_alive = psutil.wait_procs(alive, timeout=timeout)
    except psutil.NoSuchProcess:
        still_alive = []
    for proc in still_alive:
        log.error(f"PID {proc.pid} survived SIGKILL.")
    return still_alive

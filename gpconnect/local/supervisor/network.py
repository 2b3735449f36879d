import time
import socket
import psutil
import logging
import requests
import threading
from enum import Enum
from typing import Callable, List, Optional

from gpconnect.local.config import effective_settings as config

log = logging.getLogger(__name__)


class NetworkEvent(str, Enum):
    LOST = "network-lost"
    RESTORED = "network-restored"


def _is_routable(addr) -> bool:
    if addr.family == socket.AF_INET:
        return bool(addr.address) and not addr.address.startswith(("127.", "169.254."))
    if addr.family == socket.AF_INET6:
        return bool(addr.address) and not addr.address.lower().startswith(("fe80", "::1"))
    return False


def host_has_connectivity(check_url: str = "", timeout: float = 2) -> bool:
    """
    Returns True if a physical interface is up with a routable address and,
    when `check_url` is set, that URL answers over HTTP.
    """
    if_stats = psutil.net_if_stats()
    if_addrs = psutil.net_if_addrs()

    link_up = False
    for iface, stats in if_stats.items():
        if not stats.isup or iface.lower().startswith(config.IGNORED_INTERFACE_PREFIXES):
            continue
        if any(_is_routable(addr) for addr in if_addrs.get(iface, [])):
            link_up = True
            break

    if not link_up or not check_url:
        return link_up

    try:
        requests.head(check_url, timeout=timeout, allow_redirects=True)
        return True
    except requests.RequestException as e:
        log.debug(f"Connectivity check against '{check_url}' failed: {e}")
        return False


class NetworkWatcher:
    """
    Polls host connectivity and publishes a two-event protocol:
    `network-lost` on a drop (only while `should_report_loss()` holds) and
    `network-restored` once connectivity has stayed up for the debounce window.
    What to do about either event is up to the subscriber.
    """

    def __init__(self, probe: Optional[Callable[[], bool]] = None,
                 poll_interval: Optional[float] = None, debounce: Optional[float] = None,
                 should_report_loss: Optional[Callable[[], bool]] = None,
                 clock: Callable[[], float] = time.monotonic):
        self._probe = probe or (lambda: host_has_connectivity(config.CONNECTIVITY_CHECK_URL, config.CONNECTIVITY_CHECK_TIMEOUT))
        self.poll_interval = config.NETWORK_POLL_INTERVAL if poll_interval is None else poll_interval
        self.debounce = config.NETWORK_RESTORE_DEBOUNCE if debounce is None else debounce
        self._should_report_loss = should_report_loss or (lambda: True)
        self._clock = clock

        self._listeners: List[Callable[[NetworkEvent], None]] = []
        self._online: Optional[bool] = None
        self._restore_pending_since: Optional[float] = None
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def online(self) -> Optional[bool]:
        return self._online

    def subscribe(self, callback: Callable[[NetworkEvent], None]) -> None:
        self._listeners.append(callback)

    def set_loss_filter(self, should_report_loss: Callable[[], bool]) -> None:
        self._should_report_loss = should_report_loss

    def _emit(self, event: NetworkEvent) -> None:
        log.info(f"Network event: {event.value}")
        for callback in list(self._listeners):
            try:
                callback(event)
            except Exception as e:
                log.error(f"Network event subscriber failed on '{event.value}': {e}", exc_info=True)

    def poll_once(self) -> Optional[NetworkEvent]:
        """
        Takes one connectivity sample and emits an event if it completes a transition.

        :return: The emitted event, if any.
        """
        try:
            online = self._probe()
        except (psutil.Error, OSError) as e:
            log.warning(f"Connectivity probe failed: {e}")
            return None
        now = self._clock()

        if self._online is None:
            self._online = online
            log.debug(f"Initial connectivity: {'online' if online else 'offline'}")
            return None

        if not online:
            self._restore_pending_since = None
            if self._online:
                self._online = False
                if self._should_report_loss():
                    self._emit(NetworkEvent.LOST)
                    return NetworkEvent.LOST
                log.debug("Connectivity lost while no tunnel is up. Not reported.")
            return None

        if self._online:
            return None
        if self._restore_pending_since is None:
            self._restore_pending_since = now
            log.debug("Connectivity is back. Waiting for it to settle...")
        if now - self._restore_pending_since >= self.debounce:
            self._online = True
            self._restore_pending_since = None
            self._emit(NetworkEvent.RESTORED)
            return NetworkEvent.RESTORED
        return None

    def _run(self) -> None:
        log.info("Network watcher started.")
        while not self._stop_event.is_set():
            try:
                self.poll_once()
            except Exception as e:
                log.error(f"Unexpected error in network watcher: {e}", exc_info=True)
            self._stop_event.wait(self.poll_interval)
        log.info("Network watcher stopped.")

    def start(self) -> None:
        if self._thread and self._thread.is_alive():
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run, daemon=True, name="NetworkWatcherThread")
        self._thread.start()

    def stop(self) -> None:
        self._stop_event.set()
        if self._thread and self._thread is not threading.current_thread():
            self._thread.join(timeout=self.poll_interval + 1)
        self._thread = None

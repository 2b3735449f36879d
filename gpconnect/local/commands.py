import logging
import threading
from typing import Any, Callable, Dict, Optional, Tuple

from gpconnect.log.sink import LogSink
from gpconnect.local.config import effective_settings as config
from gpconnect.local.errors import AppErrors, ConfigIOError, LogIOError, VpnError
from gpconnect.local.store import ConfigStore, Credentials, VpnConfig
from gpconnect.local.supervisor import (
    ConnectionState, ConnectionSupervisor, NetworkWatcher, PermissionProbe, TunnelProcessController,
)

log = logging.getLogger(__name__)

Result = Tuple[bool, str]


class CommandService:
    """
    The command surface a front-end talks to. Every call returns plain
    values or an (ok, message) tuple; errors never escape as exceptions.
    """

    def __init__(self, supervisor: ConnectionSupervisor, store: ConfigStore, sink: LogSink,
                 probe: PermissionProbe, watcher: Optional[NetworkWatcher] = None,
                 auto_connect_delay: Optional[float] = None,
                 timer_factory: Callable[..., Any] = threading.Timer) -> None:
        self.supervisor = supervisor
        self.store = store
        self.sink = sink
        self.probe = probe
        self.watcher = watcher
        self.auto_connect_delay = config.AUTO_CONNECT_SETTLE_DELAY if auto_connect_delay is None else auto_connect_delay
        self._timer_factory = timer_factory
        self._auto_connect_timer = None

        if self.watcher is not None:
            self.watcher.set_loss_filter(lambda: self.supervisor.state == ConnectionState.CONNECTED)
            self.watcher.subscribe(self.supervisor.on_network_event)

    @classmethod
    def create(cls) -> "CommandService":
        """Wires up the production collaborators from the effective settings."""
        sink = LogSink(config.VPN_LOG_PATH)
        store = ConfigStore(config.CONFIG_PATH)
        probe = PermissionProbe()
        controller = TunnelProcessController(sink=sink)
        supervisor = ConnectionSupervisor(controller, store, probe)
        return cls(supervisor, store, sink, probe, NetworkWatcher())

    #* --- Lifecycle ---
    def start(self) -> Optional[VpnConfig]:
        """
        Starts supervision and applies the auto-connect policy.

        :return: The loaded config, if any.
        """
        self.supervisor.start()
        if self.watcher is not None:
            self.watcher.start()

        stored = self.load_config()
        if stored and stored.preferences.auto_connect and stored.has_complete_credentials():
            log.info(f"Auto-connect enabled. Connecting to '{stored.portal}' in {self.auto_connect_delay}s.")
            timer = self._timer_factory(self.auto_connect_delay, self._auto_connect, args=(stored.credentials,))
            timer.daemon = True
            self._auto_connect_timer = timer
            timer.start()
        return stored

    def _auto_connect(self, credentials: Credentials) -> None:
        self._auto_connect_timer = None
        ok, message = self.connect(credentials.portal, credentials.username, credentials.password)
        if not ok:
            log.error(f"Auto-connect failed: {message}")

    def shutdown(self) -> None:
        """Stops everything and makes sure the tunnel client is gone."""
        if self._auto_connect_timer is not None:
            self._auto_connect_timer.cancel()
            self._auto_connect_timer = None
        if self.watcher is not None:
            self.watcher.stop()
        self.supervisor.shutdown()

    #* --- Commands ---
    def check_installed(self) -> bool:
        return self.probe.check_installed()

    def check_permissions(self) -> bool:
        permitted = self.probe.check()
        self.supervisor.has_permission_issue = not permitted
        return permitted

    def connect(self, portal: str, username: str, password: Optional[str], remember: bool = True) -> Result:
        portal, username = portal.strip(), username.strip()
        try:
            state = self.supervisor.connect(Credentials(portal, username, password), remember=remember)
        except VpnError as e:
            return False, str(e)
        except Exception as e:
            log.error(f"Unexpected error in connect command: {e}", exc_info=True)
            return False, AppErrors.UNEXPECTED.format(error=e)
        if state == ConnectionState.CONNECTED:
            return True, f"Connected to {portal}."
        return False, self.supervisor.last_error or f"Connection is {state.value}."

    def disconnect(self) -> Result:
        try:
            self.supervisor.disconnect()
        except VpnError as e:
            return False, str(e)
        except Exception as e:
            log.error(f"Unexpected error in disconnect command: {e}", exc_info=True)
            return False, AppErrors.UNEXPECTED.format(error=e)
        return True, "Disconnected."

    def get_vpn_status(self) -> bool:
        return self.supervisor.state == ConnectionState.CONNECTED

    def status(self) -> Dict[str, Any]:
        return self.supervisor.snapshot()

    def read_logs(self, max_bytes: Optional[int] = None) -> str:
        try:
            return self.sink.tail(max_bytes or config.LOG_TAIL_MAX_BYTES)
        except LogIOError as e:
            log.error(str(e))
            return str(e)

    def clear_logs(self) -> Result:
        try:
            self.sink.clear()
        except LogIOError as e:
            return False, str(e)
        return True, "Logs cleared."

    def load_config(self) -> Optional[VpnConfig]:
        try:
            return self.store.load()
        except ConfigIOError as e:
            log.error(f"Failed to load config: {e}")
            return None

    def save_config(self, cfg: VpnConfig) -> Result:
        try:
            self.store.save(cfg)
        except ConfigIOError as e:
            return False, str(e)
        return True, "Configuration saved."

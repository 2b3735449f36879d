import logging
import threading
from typing import Any, Callable, Dict, List, Optional

from gpconnect.local.config import effective_settings as config
from gpconnect.local.errors import (
    AppErrors, ConfigIOError, ConnectTimeoutError, InstallationMissingError,
    InvalidCredentialsError, InvalidInputError, PermissionDeniedError, VpnError,
)
from gpconnect.local.store import ConfigStore, Credentials, VpnConfig
from gpconnect.local.supervisor.network import NetworkEvent
from gpconnect.local.supervisor.permissions import PermissionProbe
from gpconnect.local.supervisor.process_utils import TunnelProcessController
from gpconnect.local.supervisor.state import ConnectionState, RetryState

log = logging.getLogger(__name__)

StateListener = Callable[[ConnectionState, ConnectionState], None]


class ConnectionSupervisor:
    """
    Owns the connection state machine and the reconnect policy.

    Three inputs drive it: user commands (`connect`/`disconnect`), the
    periodic `tick`, and network events. All of them apply their transitions
    under one lock and always act on the state as it is when they run, so a
    retry timer can never undo a disconnect issued after it was scheduled.
    Process work and waiting happen outside the lock.
    """

    def __init__(self, controller: TunnelProcessController, store: Optional[ConfigStore] = None,
                 probe: Optional[PermissionProbe] = None, *,
                 max_retries: Optional[int] = None, retry_delay: Optional[float] = None,
                 confirm_attempts: Optional[int] = None, confirm_interval: Optional[float] = None,
                 tick_interval: Optional[float] = None, network_settle_delay: Optional[float] = None,
                 timer_factory: Callable[..., Any] = threading.Timer) -> None:
        """Initializes the supervisor in the Disconnected state."""
        self.controller = controller
        self.store = store
        self.probe = probe

        self.max_retries = config.MAX_RETRY_ATTEMPTS if max_retries is None else max_retries
        self.retry_delay = config.RETRY_DELAY_SECONDS if retry_delay is None else retry_delay
        self.confirm_attempts = config.CONNECT_CONFIRM_ATTEMPTS if confirm_attempts is None else confirm_attempts
        self.confirm_interval = config.CONNECT_CONFIRM_INTERVAL if confirm_interval is None else confirm_interval
        self.tick_interval = config.SUPERVISOR_TICK_INTERVAL if tick_interval is None else tick_interval
        self.network_settle_delay = config.NETWORK_SETTLE_DELAY if network_settle_delay is None else network_settle_delay
        self._timer_factory = timer_factory

        self._lock = threading.RLock()
        self._state = ConnectionState.DISCONNECTED
        self._retry = RetryState()
        # Bumped by every disconnect; in-flight connects compare against it to notice they were superseded.
        self._generation = 0
        self._connect_in_flight = False
        self._waiting_for_network = False
        self._retry_timer = None
        self._settle_timer = None
        self._last_credentials: Optional[Credentials] = None
        self._remember_password = True
        self._listeners: List[StateListener] = []

        self.last_error: Optional[str] = None
        self.has_permission_issue = False

        self._shutdown_event = threading.Event()
        self._tick_thread: Optional[threading.Thread] = None

    #* --- Queries ---
    @property
    def state(self) -> ConnectionState:
        with self._lock:
            return self._state

    @property
    def retry_count(self) -> int:
        with self._lock:
            return self._retry.count

    @property
    def manually_disconnected(self) -> bool:
        with self._lock:
            return self._retry.manually_disconnected

    @property
    def waiting_for_network(self) -> bool:
        with self._lock:
            return self._waiting_for_network

    @property
    def retry_pending(self) -> bool:
        with self._lock:
            return self._retry_timer is not None

    def snapshot(self) -> Dict[str, Any]:
        """Returns a consistent view of the supervisor for display."""
        with self._lock:
            return {
                "state": self._state.value,
                "retry_count": self._retry.count,
                "max_retries": self.max_retries,
                "manually_disconnected": self._retry.manually_disconnected,
                "waiting_for_network": self._waiting_for_network,
                "retry_pending": self._retry_timer is not None,
                "last_error": self.last_error,
                "has_permission_issue": self.has_permission_issue,
                "portal": self._last_credentials.portal if self._last_credentials else None,
            }

    def add_listener(self, listener: StateListener) -> None:
        """Registers a callback receiving (previous, current) on every state change."""
        self._listeners.append(listener)

    #* --- Internal helpers (call with the lock held) ---
    def _transition(self, new_state: ConnectionState) -> None:
        previous = self._state
        if previous == new_state:
            return
        self._state = new_state
        log.info(f"Connection state: {previous.value} -> {new_state.value}")
        for listener in list(self._listeners):
            try:
                listener(previous, new_state)
            except Exception as e:
                log.error(f"State listener failed: {e}", exc_info=True)

    def _start_timer(self, delay: float, callback: Callable[[], None]):
        timer = self._timer_factory(delay, callback)
        timer.daemon = True
        timer.start()
        return timer

    def _cancel_timers(self) -> None:
        if self._retry_timer is not None:
            self._retry_timer.cancel()
            self._retry_timer = None
            log.debug("Pending reconnect cancelled.")
        if self._settle_timer is not None:
            self._settle_timer.cancel()
            self._settle_timer = None

    def _schedule_retry(self) -> bool:
        """Consumes one unit of retry budget and arms the reconnect timer."""
        if self._retry.manually_disconnected or self._shutdown_event.is_set():
            return False
        if self._retry.count >= self.max_retries:
            self.last_error = AppErrors.RETRIES_EXHAUSTED.format(limit=self.max_retries)
            log.error(f"Giving up after {self._retry.count} reconnect attempts.")
            return False

        self._retry.count += 1
        self.last_error = AppErrors.RETRYING.format(attempt=self._retry.count, limit=self.max_retries)
        log.warning(f"Reconnect {self._retry.count}/{self.max_retries} scheduled in {self.retry_delay}s.")
        if self._retry_timer is not None:
            self._retry_timer.cancel()
        self._retry_timer = self._start_timer(self.retry_delay, self._on_retry_timer)
        return True

    #* --- Commands ---
    def connect(self, credentials: Credentials, is_retry: bool = False, remember: bool = True) -> ConnectionState:
        """
        Starts the tunnel client and waits for it to come up.

        A user connect (is_retry=False) clears the manual-disconnect flag and
        the retry budget. Automatic retries are skipped once the user has
        disconnected, and report failures by scheduling the next retry
        instead of raising.

        :param credentials: Portal, username and password.
        :param is_retry: True when called by the reconnect machinery.
        :param remember: Whether the password is persisted with the config.
        :return: The state after the attempt.
        :raises InvalidInputError: If the portal is empty.
        :raises InvalidCredentialsError: If username or password are missing.
        :raises VpnError: For any other failure of a user-initiated connect.
        """
        if not credentials.portal:
            with self._lock:
                self.last_error = AppErrors.PORTAL_REQUIRED
            raise InvalidInputError(AppErrors.PORTAL_REQUIRED)
        missing = credentials.missing_fields()
        if missing:
            with self._lock:
                self.last_error = AppErrors.CREDENTIALS_REQUIRED
            raise InvalidCredentialsError(missing)

        with self._lock:
            if not is_retry:
                self._cancel_timers()
                self._retry.manually_disconnected = False
                self._retry.count = 0
                self.last_error = None
            elif self._retry.manually_disconnected or self._shutdown_event.is_set():
                log.info("Skipping automatic reconnect: disconnected by user.")
                return self._state
            if self._connect_in_flight:
                log.warning("A connection attempt is already in progress.")
                return self._state
            self._connect_in_flight = True
            self._waiting_for_network = False
            generation = self._generation

        try:
            return self._run_connect(credentials, generation, remember)
        except VpnError as e:
            self._connect_failed(e, is_retry, generation)
            if not is_retry:
                raise
            return self.state
        except Exception as e:
            log.error(f"Unexpected error while connecting: {e}", exc_info=True)
            self._connect_failed(VpnError(AppErrors.UNEXPECTED.format(error=e)), is_retry, generation)
            if not is_retry:
                raise
            return self.state
        finally:
            with self._lock:
                self._connect_in_flight = False

    def _run_connect(self, credentials: Credentials, generation: int, remember: bool) -> ConnectionState:
        self._check_prerequisites()

        with self._lock:
            if generation != self._generation:
                return self._state
            self._last_credentials = credentials
            self._remember_password = remember
            self._transition(ConnectionState.CONNECTING)

        self.controller.spawn(credentials)

        with self._lock:
            superseded = generation != self._generation
        if superseded:
            log.info("Disconnect requested while the tunnel client was starting. Stopping it.")
            self.controller.terminate()
            return self.state

        self._persist_credentials(credentials, remember)
        return self._await_confirmation(generation)

    def _check_prerequisites(self) -> None:
        if not self.controller.is_installed():
            raise InstallationMissingError(AppErrors.NOT_INSTALLED.format(binary=self.controller.binary))
        if self.probe is None:
            return
        permitted = self.probe.check()
        with self._lock:
            self.has_permission_issue = not permitted
        if not permitted:
            raise PermissionDeniedError(
                AppErrors.PERMISSION_DENIED.format(binary=self.controller.binary, hint=self.probe.remediation_hint())
            )

    def _persist_credentials(self, credentials: Credentials, remember: bool) -> None:
        if self.store is None:
            return
        try:
            existing = self.store.load()
        except ConfigIOError as e:
            log.warning(f"Existing config unreadable, preferences reset: {e}")
            existing = None
        record = VpnConfig(
            portal=credentials.portal,
            username=credentials.username,
            password=credentials.password if remember else None,
            notifications_enabled=existing.notifications_enabled if existing else None,
            auto_connect=existing.auto_connect if existing else None,
        )
        try:
            self.store.save(record)
        except ConfigIOError as e:
            # The tunnel is already starting; a storage failure must not tear it down.
            with self._lock:
                self.last_error = str(e)

    def _await_confirmation(self, generation: int) -> ConnectionState:
        for attempt in range(1, self.confirm_attempts + 1):
            if self._shutdown_event.wait(self.confirm_interval):
                return self.state
            with self._lock:
                if generation != self._generation:
                    return self._state
            if self.controller.is_running():
                with self._lock:
                    if generation != self._generation:
                        return self._state
                    self._retry.count = 0
                    self.last_error = None
                    self._transition(ConnectionState.CONNECTED)
                    log.info(f"Tunnel up after {attempt} liveness checks.")
                    return self._state
            log.debug(f"Tunnel client not confirmed yet ({attempt}/{self.confirm_attempts}).")

        # Only a fresh liveness observation may still promote us to Connected here.
        running = self.controller.is_running()
        with self._lock:
            if generation != self._generation:
                return self._state
            if running:
                self._retry.count = 0
                self._transition(ConnectionState.CONNECTED)
                return self._state
        seconds = self.confirm_attempts * self.confirm_interval
        message = AppErrors.CONNECT_TIMEOUT.format(seconds=seconds)
        if not self.controller.terminate():
            log.error("Unconfirmed tunnel client could not be stopped.")
            message = f"{message} {AppErrors.STOP_FAILED}"
        raise ConnectTimeoutError(message)

    def _connect_failed(self, error: VpnError, is_retry: bool, generation: int) -> None:
        log.error(f"Connection attempt failed: {error}")
        with self._lock:
            if generation != self._generation:
                return
            self.last_error = str(error)
            self._waiting_for_network = False
            self._transition(ConnectionState.DISCONNECTED)
            if not is_retry:
                return
            if error.retryable:
                self._schedule_retry()
            else:
                log.error(f"Not retrying: {type(error).__name__} needs user action.")

    def disconnect(self) -> ConnectionState:
        """
        Stops the tunnel client on user request. Cancels any pending
        reconnect and blocks automatic retries until the next user connect.

        :return: The final state, always Disconnected.
        :raises VpnError: If the tunnel client could not be stopped.
        """
        with self._lock:
            self._retry.manually_disconnected = True
            self._retry.count = 0
            self._cancel_timers()
            self._waiting_for_network = False
            self._generation += 1
            self.last_error = None
            self._transition(ConnectionState.DISCONNECTING)

        stopped = False
        try:
            stopped = self.controller.terminate()
        except Exception as e:
            log.error(f"Error while stopping the tunnel client: {e}", exc_info=True)
        finally:
            with self._lock:
                self._transition(ConnectionState.DISCONNECTED)

        if not stopped:
            with self._lock:
                self.last_error = "Tunnel client did not stop cleanly. See logs for details."
            raise VpnError(self.last_error)
        return ConnectionState.DISCONNECTED

    #* --- Periodic and event-driven inputs ---
    def tick(self) -> ConnectionState:
        """
        Reconciles the state with the tunnel client's liveness. Connecting
        and Disconnecting belong to the in-flight command and are left alone.
        """
        with self._lock:
            generation = self._generation
        try:
            running = self.controller.is_running()
        except Exception as e:
            log.error(f"Liveness check failed: {e}", exc_info=True)
            running = False

        with self._lock:
            state = self._state
            if generation != self._generation:
                log.debug("Liveness reading superseded by a disconnect. Ignoring it.")
                return state
            if state in (ConnectionState.CONNECTING, ConnectionState.DISCONNECTING):
                return state
            if running:
                if state != ConnectionState.CONNECTED:
                    self.last_error = None
                self._retry.count = 0
                self._transition(ConnectionState.CONNECTED)
                return self._state
            if state == ConnectionState.CONNECTED:
                log.warning("Tunnel client is no longer running.")
                self._transition(ConnectionState.DISCONNECTED)
                self._schedule_retry()
            return self._state

    def _on_retry_timer(self) -> None:
        with self._lock:
            self._retry_timer = None
            if self._retry.manually_disconnected or self._shutdown_event.is_set():
                return
            if self._state != ConnectionState.DISCONNECTED:
                log.info(f"Reconnect skipped: state is already {self._state.value}.")
                return
            credentials = self._last_credentials
            remember = self._remember_password
            attempt = self._retry.count
        if credentials is None:
            return
        log.info(f"Reconnect attempt {attempt}/{self.max_retries}...")
        self.connect(credentials, is_retry=True, remember=remember)

    def on_network_event(self, event: NetworkEvent) -> None:
        if event == NetworkEvent.LOST:
            self.on_network_lost()
        elif event == NetworkEvent.RESTORED:
            self.on_network_restored()

    def on_network_lost(self) -> None:
        """Parks a connected tunnel in the waiting sub-state without touching the retry budget."""
        with self._lock:
            if self._state != ConnectionState.CONNECTED:
                return
            self._waiting_for_network = True
            self._transition(ConnectionState.CONNECTING)
            log.warning("Network lost. Waiting for connectivity before reconnecting.")

    def on_network_restored(self) -> None:
        """Schedules exactly one reconnect after the settle delay."""
        with self._lock:
            if not self._waiting_for_network or self._retry.manually_disconnected:
                return
            if self._settle_timer is not None:
                self._settle_timer.cancel()
            log.info(f"Network restored. Reconnecting in {self.network_settle_delay}s.")
            self._settle_timer = self._start_timer(self.network_settle_delay, self._on_network_settled)

    def _on_network_settled(self) -> None:
        with self._lock:
            self._settle_timer = None
            if not self._waiting_for_network or self._retry.manually_disconnected or self._shutdown_event.is_set():
                return
            credentials = self._last_credentials
            remember = self._remember_password
            if credentials is None:
                self._waiting_for_network = False
                self._transition(ConnectionState.DISCONNECTED)
                return
        self.connect(credentials, is_retry=True, remember=remember)

    #* --- Lifecycle ---
    def _tick_loop(self) -> None:
        log.info("Supervisor started. Monitoring the tunnel client.")
        while not self._shutdown_event.wait(self.tick_interval):
            try:
                self.tick()
            except Exception as e:
                log.critical(f"Critical error in supervisor loop: {e}", exc_info=True)
                with self._lock:
                    self._transition(ConnectionState.DISCONNECTED)
        log.info("Supervisor loop stopped.")

    def start(self) -> None:
        """Starts the background tick loop."""
        if self._tick_thread and self._tick_thread.is_alive():
            return
        self._shutdown_event.clear()
        self._tick_thread = threading.Thread(target=self._tick_loop, daemon=True, name="SupervisorTickThread")
        self._tick_thread.start()

    def shutdown(self) -> None:
        """Stops the tick loop, cancels timers and terminates the tunnel client."""
        self._shutdown_event.set()
        with self._lock:
            self._cancel_timers()
            self._generation += 1
        if self._tick_thread and self._tick_thread is not threading.current_thread():
            self._tick_thread.join(timeout=self.tick_interval + 1)
        self._tick_thread = None
        try:
            self.controller.terminate()
        except Exception as e:
            log.error(f"Failed to stop the tunnel client during shutdown: {e}", exc_info=True)
        with self._lock:
            self._transition(ConnectionState.DISCONNECTED)

"""
Shared fixtures: a scripted tunnel controller and a manual timer factory,
so supervisor scheduling can be asserted without real delays.
"""
from unittest.mock import MagicMock

import pytest

from gpconnect.log.sink import LogSink
from gpconnect.local.commands import CommandService
from gpconnect.local.store import ConfigStore, Credentials
from gpconnect.local.supervisor import ConnectionSupervisor


class FakeTimer:
    """Stands in for threading.Timer; only runs when the test fires it."""

    def __init__(self, interval, function, args=None, kwargs=None):
        self.interval = interval
        self.function = function
        self.args = args or ()
        self.kwargs = kwargs or {}
        self.daemon = False
        self.started = False
        self.cancelled = False
        self.fired = False

    def start(self):
        self.started = True

    def cancel(self):
        self.cancelled = True

    def fire(self):
        if self.cancelled or self.fired:
            return
        self.fired = True
        self.function(*self.args, **self.kwargs)


class TimerFactory:
    def __init__(self):
        self.timers = []

    def __call__(self, interval, function, args=None, kwargs=None):
        timer = FakeTimer(interval, function, args, kwargs)
        self.timers.append(timer)
        return timer

    @property
    def pending(self):
        return [t for t in self.timers if t.started and not t.cancelled and not t.fired]


class FakeController:
    """Scripted tunnel controller. `liveness` optionally feeds is_running() results in order."""

    binary = "openconnect"

    def __init__(self):
        self.installed = True
        self.running = False
        self.come_up = True
        self.spawn_error = None
        self.on_spawn = None
        self.on_is_running = None
        self.terminate_result = True
        self.liveness = []
        self.spawned = []
        self.terminate_calls = 0

    def is_installed(self):
        return self.installed

    def spawn(self, credentials):
        self.spawned.append(credentials)
        if self.spawn_error is not None:
            raise self.spawn_error
        self.running = self.come_up
        if self.on_spawn is not None:
            self.on_spawn()
        return object()

    def is_running(self):
        if self.on_is_running is not None:
            hook, self.on_is_running = self.on_is_running, None
            hook()
        if self.liveness:
            return self.liveness.pop(0)
        return self.running

    def terminate(self):
        self.terminate_calls += 1
        self.running = not self.terminate_result and self.running
        return self.terminate_result


@pytest.fixture
def timers():
    return TimerFactory()


@pytest.fixture
def controller():
    return FakeController()


@pytest.fixture
def store(tmp_path):
    return ConfigStore(tmp_path / "vpn_config.json")


@pytest.fixture
def sink(tmp_path):
    return LogSink(tmp_path / "logs" / "vpn.log")


@pytest.fixture
def credentials():
    return Credentials("vpn.example.com", "alice", "s3cret")


@pytest.fixture
def supervisor(controller, store, timers):
    sup = ConnectionSupervisor(
        controller, store, None,
        max_retries=5, retry_delay=5, confirm_attempts=3, confirm_interval=0,
        tick_interval=60, network_settle_delay=1, timer_factory=timers,
    )
    yield sup
    sup.shutdown()


@pytest.fixture
def probe():
    probe = MagicMock()
    probe.check.return_value = True
    probe.check_installed.return_value = True
    probe.remediation_hint.return_value = "alice ALL=(root) NOPASSWD: /usr/sbin/openconnect"
    return probe


@pytest.fixture
def service(supervisor, store, sink, probe, timers):
    svc = CommandService(supervisor, store, sink, probe, auto_connect_delay=1, timer_factory=timers)
    yield svc
    svc.shutdown()

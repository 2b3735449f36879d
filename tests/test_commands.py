"""
Command surface: result tuples, config and log commands, the auto-connect
policy and the network watcher wiring.
"""
from gpconnect.local.commands import CommandService
from gpconnect.local.store import VpnConfig
from gpconnect.local.supervisor import ConnectionState, NetworkWatcher


def test_connect_and_disconnect_results(service, controller):
    assert service.connect(" vpn.example.com ", "alice", "s3cret") == (True, "Connected to vpn.example.com.")
    assert controller.spawned[0].portal == "vpn.example.com"
    assert service.get_vpn_status() is True

    assert service.disconnect() == (True, "Disconnected.")
    assert service.get_vpn_status() is False


def test_connect_reports_missing_password(service, controller):
    ok, message = service.connect("vpn.example.com", "alice", None)
    assert ok is False
    assert message == "Please enter username and password"
    assert controller.spawned == []


def test_connect_failure_message(service, controller):
    controller.come_up = False
    ok, message = service.connect("vpn.example.com", "alice", "s3cret")
    assert ok is False
    assert "did not come up" in message
    assert service.status()["last_error"] == message


def test_status_snapshot(service):
    status = service.status()
    assert status["state"] == "disconnected"
    assert status["max_retries"] == 5


def test_logs_commands(service, sink):
    assert service.read_logs() == "No logs found."
    sink.append("tunnel up")
    assert "tunnel up" in service.read_logs()

    assert service.clear_logs() == (True, "Logs cleared.")
    assert service.read_logs() == ""


def test_config_commands(service, store):
    assert service.load_config() is None
    cfg = VpnConfig("vpn.example.com", "alice", auto_connect=True)
    assert service.save_config(cfg) == (True, "Configuration saved.")
    assert service.load_config() == cfg

    store.path.write_text("{broken", encoding="utf-8")
    assert service.load_config() is None


def test_check_permissions_updates_flag(service, probe):
    probe.check.return_value = False
    assert service.check_permissions() is False
    assert service.status()["has_permission_issue"] is True

    probe.check.return_value = True
    assert service.check_permissions() is True
    assert service.status()["has_permission_issue"] is False


def test_auto_connect_on_start(service, store, timers):
    store.save(VpnConfig("vpn.example.com", "alice", "s3cret", auto_connect=True))
    seen = []
    service.supervisor.add_listener(lambda prev, cur: seen.append(cur))

    stored = service.start()

    assert stored.portal == "vpn.example.com"
    assert len(timers.pending) == 1
    assert timers.pending[0].interval == 1
    timers.pending[0].fire()
    assert seen[:2] == [ConnectionState.CONNECTING, ConnectionState.CONNECTED]


def test_no_auto_connect_without_password(service, store, timers):
    store.save(VpnConfig("vpn.example.com", "alice", auto_connect=True))
    service.start()
    assert timers.pending == []


def test_no_auto_connect_when_disabled(service, store, timers):
    store.save(VpnConfig("vpn.example.com", "alice", "s3cret"))
    service.start()
    assert timers.pending == []


def test_shutdown_cancels_auto_connect(service, store, timers, controller):
    store.save(VpnConfig("vpn.example.com", "alice", "s3cret", auto_connect=True))
    service.start()
    timer = timers.pending[0]

    service.shutdown()

    assert timer.cancelled is True
    assert controller.spawned == []


def test_watcher_feeds_supervisor(supervisor, store, sink, probe, timers, controller):
    samples = [True]
    watcher = NetworkWatcher(probe=lambda: samples.pop(0), poll_interval=0, debounce=0)
    service = CommandService(supervisor, store, sink, probe, watcher=watcher, timer_factory=timers)

    # Disconnected: a drop is not reported.
    watcher.poll_once()
    samples[:] = [False]
    watcher.poll_once()
    assert supervisor.state == ConnectionState.DISCONNECTED

    samples[:] = [True]
    watcher.poll_once()
    service.connect("vpn.example.com", "alice", "s3cret")

    samples[:] = [False]
    watcher.poll_once()
    assert supervisor.state == ConnectionState.CONNECTING
    assert supervisor.waiting_for_network is True

    samples[:] = [True]
    watcher.poll_once()
    assert len(timers.pending) == 1
    timers.pending[0].fire()
    assert supervisor.state == ConnectionState.CONNECTED
    assert len(controller.spawned) == 2

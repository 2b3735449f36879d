from gpconnect.local.console import execute_command, make_notifier
from gpconnect.local.console import handler
from gpconnect.local.store import VpnConfig
from gpconnect.local.supervisor import ConnectionState


def test_unknown_command(service, capsys):
    assert execute_command(service, "frobnicate", []) is False
    assert "Unknown command: 'frobnicate'" in capsys.readouterr().out


def test_exit_commands(service):
    assert execute_command(service, "exit", []) is True
    assert execute_command(service, "quit", []) is True


def test_connect_prompts_for_password(service, controller, store, monkeypatch, capsys):
    monkeypatch.setattr(handler.getpass, "getpass", lambda prompt: "s3cret")

    execute_command(service, "connect", ["vpn.example.com", "alice", "--forget"])

    assert "Connected to vpn.example.com." in capsys.readouterr().out
    assert controller.spawned[0].password == "s3cret"
    assert store.load().password is None


def test_connect_uses_remembered_password(service, controller, store, monkeypatch):
    store.save(VpnConfig("vpn.example.com", "alice", "stored-pw"))

    def no_prompt(prompt):
        raise AssertionError("password should not be asked for")

    monkeypatch.setattr(handler.getpass, "getpass", no_prompt)
    execute_command(service, "connect", [])

    assert controller.spawned[0].password == "stored-pw"


def test_status_output(service, capsys):
    execute_command(service, "status", [])
    out = capsys.readouterr().out
    assert "State          : DISCONNECTED" in out
    assert "Retries        : 0/5" in out


def test_config_set_and_forget_password(service, store, capsys):
    store.save(VpnConfig("vpn.example.com", "alice", "s3cret"))

    execute_command(service, "config", ["set", "notifications", "off"])
    execute_command(service, "config", ["set", "auto-connect", "yes"])
    execute_command(service, "config", ["set", "portal", "other.example.com"])
    execute_command(service, "config", ["forget-password"])

    saved = store.load()
    assert saved.notifications_enabled is False
    assert saved.auto_connect is True
    assert saved.portal == "other.example.com"
    assert saved.password is None
    assert "Remembered password removed." in capsys.readouterr().out


def test_config_set_rejects_unknown_key(service, store, capsys):
    execute_command(service, "config", ["set", "colour", "blue"])
    assert "Usage: config set" in capsys.readouterr().out
    assert store.load() is None


def test_check_prints_sudoers_rule(service, probe, capsys):
    probe.check.return_value = False
    execute_command(service, "check", [])
    out = capsys.readouterr().out
    assert "Passwordless elevation  : NO" in out
    assert "alice ALL=(root) NOPASSWD: /usr/sbin/openconnect" in out


def test_logs_command(service, sink, capsys):
    sink.append("portal handshake ok")
    execute_command(service, "logs", [])
    assert "portal handshake ok" in capsys.readouterr().out


def test_notifier_messages(service, store, capsys):
    store.save(VpnConfig("vpn.example.com", "alice"))
    notify = make_notifier(service)

    notify(ConnectionState.CONNECTING, ConnectionState.CONNECTED)
    notify(ConnectionState.CONNECTED, ConnectionState.DISCONNECTED)
    notify(ConnectionState.CONNECTING, ConnectionState.DISCONNECTED)

    out = capsys.readouterr().out
    assert "[VPN Connected] Successfully connected to vpn.example.com" in out
    assert out.count("[VPN Disconnected] The VPN connection has been closed.") == 1


def test_notifier_respects_preference(service, store, capsys):
    store.save(VpnConfig("vpn.example.com", "alice", notifications_enabled=False))
    notify = make_notifier(service)

    notify(ConnectionState.CONNECTING, ConnectionState.CONNECTED)

    assert capsys.readouterr().out == ""

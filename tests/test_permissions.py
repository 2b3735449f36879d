import subprocess
from types import SimpleNamespace

import pytest

from gpconnect.local.supervisor import permissions
from gpconnect.local.supervisor.permissions import PermissionProbe


@pytest.fixture
def probe(monkeypatch):
    monkeypatch.setattr(permissions, "resolve_binary", lambda binary: "/usr/sbin/openconnect")
    return PermissionProbe(binary="openconnect", elevation=["sudo", "-n"], timeout=3)


def _fake_run(calls, returncode=0, raises=None):
    def run(cmd, **kwargs):
        calls.append((cmd, kwargs))
        if raises is not None:
            raise raises
        return SimpleNamespace(returncode=returncode, stdout=b"", stderr=b"sudo: a password is required")
    return run


def test_check_runs_version_noninteractively(probe, monkeypatch):
    calls = []
    monkeypatch.setattr(permissions.subprocess, "run", _fake_run(calls))

    assert probe.check() is True

    cmd, kwargs = calls[0]
    assert cmd == ["sudo", "-n", "/usr/sbin/openconnect", "--version"]
    assert kwargs["stdin"] is subprocess.DEVNULL
    assert kwargs["timeout"] == 3


@pytest.mark.parametrize("returncode, raises", [
    (1, None),
    (0, subprocess.TimeoutExpired(cmd="sudo", timeout=3)),
    (0, FileNotFoundError("sudo")),
])
def test_check_fails_closed(probe, monkeypatch, returncode, raises):
    monkeypatch.setattr(permissions.subprocess, "run", _fake_run([], returncode, raises))
    assert probe.check() is False


def test_remediation_hint_names_only_the_tunnel_client(probe, monkeypatch):
    monkeypatch.setattr(permissions.getpass, "getuser", lambda: "alice")
    assert probe.remediation_hint() == "alice ALL=(root) NOPASSWD: /usr/sbin/openconnect"


def test_remediation_hint_without_installed_binary(monkeypatch):
    monkeypatch.setattr(permissions, "resolve_binary", lambda binary: None)
    monkeypatch.setattr(permissions.getpass, "getuser", lambda: "bob")
    hint = PermissionProbe(binary="openconnect", elevation=[]).remediation_hint()
    assert hint == "bob ALL=(root) NOPASSWD: /usr/sbin/openconnect"


def test_check_installed(monkeypatch):
    probe = PermissionProbe(binary="openconnect", elevation=[])
    monkeypatch.setattr(permissions, "resolve_binary", lambda binary: None)
    assert probe.check_installed() is False
    monkeypatch.setattr(permissions, "resolve_binary", lambda binary: "/usr/sbin/openconnect")
    assert probe.check_installed() is True

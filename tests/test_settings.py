import json
from pathlib import Path

from gpconnect.local.config import MergedSettings


def test_defaults_without_overrides(tmp_path):
    settings = MergedSettings(tmp_path / "overrides.json")
    assert settings.MAX_RETRY_ATTEMPTS == 5
    assert settings.RETRY_DELAY_SECONDS == 5
    assert settings.TUNNEL_PROTOCOL == "gp"


def test_only_modifiable_settings_are_overridden(tmp_path):
    path = tmp_path / "overrides.json"
    path.write_text(json.dumps({
        "RETRY_DELAY_SECONDS": 10,
        "CONFIG_PATH": "/tmp/elsewhere.json",
        "NOT_A_SETTING": 1,
    }), encoding="utf-8")

    settings = MergedSettings(path)

    assert settings.RETRY_DELAY_SECONDS == 10
    assert settings.CONFIG_PATH != Path("/tmp/elsewhere.json")
    assert not hasattr(settings, "NOT_A_SETTING")


def test_broken_overrides_file_keeps_defaults(tmp_path):
    path = tmp_path / "overrides.json"
    path.write_text("{oops", encoding="utf-8")
    assert MergedSettings(path).MAX_RETRY_ATTEMPTS == 5

    path.write_text("[]", encoding="utf-8")
    assert MergedSettings(path).MAX_RETRY_ATTEMPTS == 5


def test_as_dict_lists_modifiable_settings(tmp_path):
    values = MergedSettings(tmp_path / "overrides.json").as_dict()
    assert values["TUNNEL_CLIENT_BINARY"]
    assert "CONFIG_PATH" not in values


def test_retry_budget_cannot_be_overridden(tmp_path):
    path = tmp_path / "overrides.json"
    path.write_text(json.dumps({"MAX_RETRY_ATTEMPTS": 50}), encoding="utf-8")
    assert MergedSettings(path).MAX_RETRY_ATTEMPTS == 5

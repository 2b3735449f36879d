import os
import json
import logging
from pathlib import Path
from dataclasses import dataclass, fields
from typing import Any, Dict, Optional, Tuple

from gpconnect.local.errors import ConfigIOError

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class Credentials:
    """What the tunnel client needs to log in."""
    portal: str
    username: str = ""
    password: Optional[str] = None

    def missing_fields(self) -> Tuple[str, ...]:
        """Names of the login fields that still have to be asked for."""
        return tuple(name for name in ("username", "password") if not getattr(self, name))

    def __repr__(self) -> str:
        # Never leak the password into logs or tracebacks.
        masked = "***" if self.password else None
        return f"Credentials(portal={self.portal!r}, username={self.username!r}, password={masked!r})"


@dataclass(frozen=True)
class Preferences:
    notifications_enabled: bool = True
    auto_connect: bool = False


@dataclass(frozen=True)
class VpnConfig:
    """
    The persisted record. Optional fields that are None are omitted from
    the file, so a config saved without a remembered password loads back
    without one.
    """
    portal: str
    username: str
    password: Optional[str] = None
    notifications_enabled: Optional[bool] = None
    auto_connect: Optional[bool] = None

    @property
    def credentials(self) -> Credentials:
        return Credentials(self.portal, self.username, self.password)

    @property
    def preferences(self) -> Preferences:
        defaults = Preferences()
        return Preferences(
            notifications_enabled=defaults.notifications_enabled if self.notifications_enabled is None else self.notifications_enabled,
            auto_connect=defaults.auto_connect if self.auto_connect is None else self.auto_connect,
        )

    def has_complete_credentials(self) -> bool:
        return bool(self.portal and self.username and self.password)

    def to_dict(self) -> Dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in fields(self) if getattr(self, f.name) is not None}

    @classmethod
    def from_dict(cls, data: Any) -> "VpnConfig":
        """
        Builds a config from decoded JSON, validating every field.

        :raises ConfigIOError: If the record is not an object or a field has the wrong type.
        """
        if not isinstance(data, dict):
            raise ConfigIOError("Config file must contain a JSON object.")

        for key in ("portal", "username"):
            if not isinstance(data.get(key), str):
                raise ConfigIOError(f"Config field '{key}' must be a string.")
        password = data.get("password")
        if password is not None and not isinstance(password, str):
            raise ConfigIOError("Config field 'password' must be a string or absent.")
        for key in ("notifications_enabled", "auto_connect"):
            value = data.get(key)
            if value is not None and not isinstance(value, bool):
                raise ConfigIOError(f"Config field '{key}' must be a boolean or absent.")

        unknown = set(data) - {f.name for f in fields(cls)}
        if unknown:
            log.warning(f"Ignoring unknown config fields: {', '.join(sorted(unknown))}")

        return cls(
            portal=data["portal"],
            username=data["username"],
            password=password,
            notifications_enabled=data.get("notifications_enabled"),
            auto_connect=data.get("auto_connect"),
        )


class ConfigStore:
    """Loads and atomically saves the VPN config file."""

    def __init__(self, path: Path):
        self.path = Path(path)

    def load(self) -> Optional[VpnConfig]:
        """
        Reads the config file from disk.

        :return: The stored config, or None if nothing has been saved yet.
        :raises ConfigIOError: If the file cannot be read or is malformed.
        """
        if not self.path.exists():
            return None
        try:
            with self.path.open("r", encoding="utf-8") as f:
                data = json.load(f)
        except (json.JSONDecodeError, IOError) as e:
            log.error(f"Failed to read config file '{self.path}': {e}")
            raise ConfigIOError(f"Failed to read config: {e}") from e
        return VpnConfig.from_dict(data)

    def save(self, config: VpnConfig) -> None:
        """
        Atomically writes the config: the record goes to a temp file that
        then replaces the real one, so a crash never leaves a partial file.

        :raises ConfigIOError: If the file cannot be written.
        """
        temp_path = self.path.with_suffix(".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with temp_path.open("w", encoding="utf-8") as f:
                json.dump(config.to_dict(), f, indent=4)
                f.flush()
                os.fsync(f.fileno())
            # The record may hold a password.
            os.chmod(temp_path, 0o600)
            temp_path.replace(self.path)
            log.debug(f"Config saved to '{self.path}'.")
        except (IOError, OSError) as e:
            log.error(f"Failed to write config file '{self.path}': {e}", exc_info=True)
            raise ConfigIOError(f"Failed to save config: {e}") from e
        finally:
            if temp_path.exists():
                temp_path.unlink()

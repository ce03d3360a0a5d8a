#!/usr/bin/python3
"""
Persistent CLI configuration stored in ~/.config/mp/config.yaml.
"""
import os
import tempfile
from dataclasses import dataclass
from pathlib import Path

import yaml

import mp

KEY_PROJECT_ID = "project_id"
KEY_REGION = "region"
KEY_SERVICE_ACCOUNT = "service_account"
KEY_SERVICE_SECRET = "service_secret"

KNOWN_KEYS = {
    KEY_PROJECT_ID: "Mixpanel project ID",
    KEY_REGION: "API region (us, eu, in)",
    KEY_SERVICE_ACCOUNT: "Service account username",
    KEY_SERVICE_SECRET: "Service account secret",
}
_SENSITIVE_KEYS = {KEY_SERVICE_SECRET}


class ConfigError(mp.MPError):
    pass


@dataclass(frozen=True)
class Entry:
    key: str
    value: str

    def as_dict(self) -> dict:
        return {"key": self.key, "value": self.value}


def known_key_names() -> list[str]:
    return list(KNOWN_KEYS)


def default_config_path() -> Path:
    return Path.home() / ".config" / "mp" / "config.yaml"


def mask(value: str) -> str:
    if len(value) <= 4:
        return "****"
    return value[:4] + "****"


class Config:
    def __init__(self, path: Path | None = None):
        self._path = Path(path) if path is not None else default_config_path()
        self._values: dict[str, str] = {}
        self._load()

    @property
    def file_path(self) -> Path:
        return self._path

    def _load(self) -> None:
        try:
            text = self._path.read_text(encoding="utf-8")
        except FileNotFoundError:
            # Created on first write.
            return
        except OSError as e:
            raise ConfigError(f"reading config {self._path}: {e}") from e

        try:
            payload = yaml.safe_load(text)
        except yaml.YAMLError as e:
            raise ConfigError(f"reading config {self._path}: {e}") from e
        if payload is None:
            return
        if not isinstance(payload, dict):
            raise ConfigError(f"config {self._path} must be a mapping of key: value")
        self._values = {str(k): "" if v is None else str(v) for k, v in payload.items()}

    def get(self, key: str) -> str:
        return self._values.get(key, "")

    def set(self, key: str, value: str) -> str:
        """Validate, store and persist one key. Returns the stored value."""
        if key not in KNOWN_KEYS:
            raise ConfigError(
                f"unknown config key {key!r}; valid keys: {', '.join(known_key_names())}"
            )
        if key == KEY_REGION:
            try:
                value = mp.normalize_region(value)
            except mp.InvalidRegionError as e:
                raise ConfigError(str(e)) from e

        self._values[key] = value
        self._write()
        return value

    def list(self) -> list[Entry]:
        entries = []
        for key in known_key_names():
            value = self._values.get(key, "")
            if not value:
                continue
            if key in _SENSITIVE_KEYS:
                value = mask(value)
            entries.append(Entry(key=key, value=value))
        return entries

    def _write(self) -> None:
        directory = self._path.parent
        try:
            directory.mkdir(mode=0o700, parents=True, exist_ok=True)
        except OSError as e:
            raise ConfigError(f"creating config directory {directory}: {e}") from e

        data = yaml.safe_dump(dict(self._values), default_flow_style=False, sort_keys=True)
        tmp_fh = tempfile.NamedTemporaryFile(
            mode="w",
            encoding="utf-8",
            delete=False,
            dir=directory,
            prefix=f".{self._path.name}.",
            suffix=".tmp",
        )
        tmp_path = Path(tmp_fh.name)
        try:
            with tmp_fh:
                tmp_fh.write(data)
                tmp_fh.flush()
                try:
                    os.fsync(tmp_fh.fileno())
                except OSError:
                    pass
            os.chmod(tmp_path, 0o600)
            os.replace(tmp_path, self._path)
        except Exception:
            tmp_path.unlink(missing_ok=True)
            raise

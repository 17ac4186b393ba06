from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Optional

DEFAULT_SYNC_INTERVAL = 2.0
DEFAULT_PRUNE_INTERVAL = 10.0
DEFAULT_REGION = "us-east-1"


def default_config_dir() -> Path:
    config_home = os.environ.get("XDG_CONFIG_HOME")
    if config_home:
        base = Path(config_home).expanduser()
    else:
        base = Path.home() / ".config"
    return base / "drawsync"


def default_cache_dir() -> Path:
    cache_home = os.environ.get("XDG_CACHE_HOME")
    if cache_home:
        base = Path(cache_home).expanduser()
    else:
        base = Path.home() / ".cache"
    return base / "drawsync"


def write_json_atomic(path: Path, payload: object, mode: Optional[int] = None) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    temp_path = path.with_suffix(".tmp")
    temp_path.write_text(json.dumps(payload, indent=2))
    if mode is not None:
        os.chmod(temp_path, mode)
    temp_path.replace(path)


class AppConfig:
    def __init__(self, config_dir: Optional[Path] = None) -> None:
        self.config_dir = Path(config_dir) if config_dir else default_config_dir()
        self._config_path = self.config_dir / "config.json"

    @property
    def path(self) -> Path:
        return self._config_path

    def _read(self) -> dict[str, object]:
        try:
            payload = json.loads(self._config_path.read_text())
        except (OSError, ValueError):
            return {}
        if not isinstance(payload, dict):
            return {}
        return payload

    def _write(self, payload: dict[str, object]) -> None:
        write_json_atomic(self._config_path, payload)

    def load_targets(self) -> list[str]:
        values = self._read().get("targets")
        if not isinstance(values, list):
            return []
        targets: list[str] = []
        for value in values:
            if not isinstance(value, str):
                continue
            normalized = value.strip()
            if not normalized or normalized in targets:
                continue
            targets.append(normalized)
        return targets

    def save_targets(self, targets: list[str]) -> None:
        payload = self._read()
        payload["targets"] = list(targets)
        self._write(payload)

    def _float_setting(self, name: str, default: float) -> float:
        value = self._read().get(name)
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            return default
        if value <= 0:
            return default
        return float(value)

    @property
    def sync_interval(self) -> float:
        return self._float_setting("sync_interval", DEFAULT_SYNC_INTERVAL)

    @property
    def prune_interval(self) -> float:
        return self._float_setting("prune_interval", DEFAULT_PRUNE_INTERVAL)

    @property
    def region(self) -> str:
        value = self._read().get("region")
        if isinstance(value, str) and value.strip():
            return value.strip()
        return DEFAULT_REGION

    @property
    def cache_dir(self) -> Path:
        value = self._read().get("cache_dir")
        if isinstance(value, str) and value.strip():
            return Path(value.strip()).expanduser()
        return default_cache_dir()

    @property
    def editor(self) -> Optional[str]:
        value = self._read().get("editor")
        if isinstance(value, str) and value.strip():
            return value.strip()
        return None

from __future__ import annotations

import json
import threading
from pathlib import Path
from typing import Optional, Protocol

from .config import default_config_dir, write_json_atomic
from .errors import LocalIOError


class SecretStore(Protocol):
    def get(self, key: str) -> Optional[str]: ...

    def store(self, key: str, value: str) -> None: ...

    def delete(self, key: str) -> None: ...


class FileSecretStore:
    """Secrets kept in a JSON file readable only by the current user."""

    def __init__(self, path: Optional[Path] = None) -> None:
        self._path = Path(path) if path else default_config_dir() / "secrets.json"
        self._lock = threading.Lock()

    def _read(self) -> dict[str, str]:
        try:
            payload = json.loads(self._path.read_text())
        except FileNotFoundError:
            return {}
        except ValueError:
            return {}
        except OSError as exc:
            raise LocalIOError(self._path, exc) from exc
        if not isinstance(payload, dict):
            return {}
        return {
            key: value
            for key, value in payload.items()
            if isinstance(key, str) and isinstance(value, str)
        }

    def _write(self, payload: dict[str, str]) -> None:
        try:
            write_json_atomic(self._path, payload, mode=0o600)
        except OSError as exc:
            raise LocalIOError(self._path, exc) from exc

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            return self._read().get(key)

    def store(self, key: str, value: str) -> None:
        with self._lock:
            payload = self._read()
            payload[key] = value
            self._write(payload)

    def delete(self, key: str) -> None:
        with self._lock:
            payload = self._read()
            if payload.pop(key, None) is None:
                return
            self._write(payload)

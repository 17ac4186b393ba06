from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Optional

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError

from .config import DEFAULT_REGION, AppConfig
from .errors import (
    ConfigurationError,
    DrawsyncError,
    LocalIOError,
    NoTargetOrBucketSelected,
    NoTargetSelected,
)
from .secret_store import SecretStore

logger = logging.getLogger(__name__)

ACCESS_KEY_SUFFIX = "_s3AccessKeyId"
SECRET_KEY_SUFFIX = "_s3SecretAccessKey"
HOST_SUFFIX = "_s3Host"


@dataclass(frozen=True)
class Credentials:
    access_key_id: str
    secret_access_key: str = field(repr=False)
    host: str

    def is_complete(self) -> bool:
        return bool(self.access_key_id and self.secret_access_key and self.host)


CredentialPrompt = Callable[
    [str, Optional[Credentials]], Awaitable[Optional[Credentials]]
]


@dataclass
class SessionState:
    current_target: Optional[str] = None
    current_bucket: Optional[str] = None

    def select_target(self, name: Optional[str]) -> None:
        self.current_target = name
        self.current_bucket = None

    def select_bucket(self, name: Optional[str]) -> None:
        self.current_bucket = name

    def require_target(self) -> str:
        if self.current_target is None:
            raise NoTargetSelected()
        return self.current_target

    def location(self) -> Optional[tuple[str, str]]:
        if self.current_target is None or self.current_bucket is None:
            return None
        return self.current_target, self.current_bucket

    def require_location(self) -> tuple[str, str]:
        location = self.location()
        if location is None:
            raise NoTargetOrBucketSelected()
        return location


class TargetRegistry:
    def __init__(
        self,
        config: AppConfig,
        secrets: SecretStore,
        state: SessionState,
        region: str = DEFAULT_REGION,
    ) -> None:
        self._config = config
        self._secrets = secrets
        self._state = state
        self._region = region
        self._targets: list[str] = config.load_targets()
        self._settings: dict[str, Credentials] = {}
        self._clients: dict[str, object] = {}
        self._lock = threading.Lock()
        if self._state.current_target is None and self._targets:
            self._state.select_target(self._targets[0])

    @property
    def targets(self) -> list[str]:
        return list(self._targets)

    @property
    def state(self) -> SessionState:
        return self._state

    def _secret_keys(self, name: str) -> tuple[str, str, str]:
        return (
            f"{name}{ACCESS_KEY_SUFFIX}",
            f"{name}{SECRET_KEY_SUFFIX}",
            f"{name}{HOST_SUFFIX}",
        )

    def _normalize_name(self, name: str) -> str:
        normalized = name.strip() if isinstance(name, str) else ""
        if not normalized:
            raise ConfigurationError("Target name must not be empty")
        if "/" in normalized or normalized in {".", ".."}:
            raise ConfigurationError(f"Invalid target name: {normalized}")
        return normalized

    def _persist(self) -> None:
        try:
            self._config.save_targets(self._targets)
        except OSError as exc:
            raise LocalIOError(self._config.path, exc) from exc

    def verify(self, name: str) -> bool:
        if name in self._settings:
            return True
        values: list[str] = []
        for key in self._secret_keys(name):
            value = self._secrets.get(key)
            if not value:
                return False
            values.append(value)
        access_key_id, secret_access_key, host = values
        self._settings[name] = Credentials(
            access_key_id=access_key_id,
            secret_access_key=secret_access_key,
            host=host,
        )
        return True

    def credentials(self, name: str) -> Optional[Credentials]:
        if not self.verify(name):
            return None
        return self._settings.get(name)

    def connect(self, name: str):
        if not self.verify(name):
            raise ConfigurationError(f"S3 settings not configured for {name}")
        with self._lock:
            client = self._clients.get(name)
            if client is not None:
                return client
            settings = self._settings.get(name)
            if settings is None:
                raise ConfigurationError(f"S3 settings not configured for {name}")
            logger.info("Connecting to S3 target %s at %s", name, settings.host)
            client = self._build_client(settings)
            self._clients[name] = client
            return client

    def _build_client(self, settings: Credentials):
        session = boto3.session.Session(
            aws_access_key_id=settings.access_key_id,
            aws_secret_access_key=settings.secret_access_key,
            region_name=self._region,
        )
        try:
            return session.client(
                "s3",
                endpoint_url=settings.host,
                config=Config(
                    s3={"addressing_style": "path"},
                    retries={"max_attempts": 1, "mode": "standard"},
                ),
            )
        except (BotoCoreError, ValueError) as exc:
            raise ConfigurationError(f"Invalid S3 settings: {exc}") from exc

    def current_client(self):
        return self.connect(self._state.require_target())

    def _store_credentials(self, name: str, credentials: Credentials) -> None:
        if not credentials.is_complete():
            raise ConfigurationError("All fields are required.")
        access_key, secret_key, host_key = self._secret_keys(name)
        self._secrets.store(access_key, credentials.access_key_id)
        self._secrets.store(secret_key, credentials.secret_access_key)
        self._secrets.store(host_key, credentials.host)
        self._settings[name] = credentials

    def _forget(self, name: str) -> None:
        self._settings.pop(name, None)
        with self._lock:
            self._clients.pop(name, None)
        for key in self._secret_keys(name):
            self._secrets.delete(key)

    def _rollback_add(self, name: str, forget_secrets: bool) -> None:
        self._targets.remove(name)
        if forget_secrets:
            self._forget(name)
        self._persist()

    async def add(self, name: str, prompt: CredentialPrompt) -> bool:
        name = self._normalize_name(name)
        if name in self._targets:
            raise ConfigurationError(f"Target {name} already exists")
        self._targets.append(name)
        storing = False
        try:
            self._persist()
            result = await prompt(name, None)
            if result is not None:
                storing = True
                self._store_credentials(name, result)
        except BaseException:
            try:
                self._rollback_add(name, storing)
            except DrawsyncError as exc:
                logger.error("Rolling back target %s failed: %s", name, exc)
            raise
        if result is None:
            logger.info("Adding target %s cancelled", name)
            self._rollback_add(name, False)
            return False
        if self._state.current_target is None:
            self._state.select_target(name)
        logger.info("Added target %s", name)
        return True

    async def edit(self, name: str, prompt: CredentialPrompt) -> bool:
        if name not in self._targets:
            raise ConfigurationError(f"Unknown target {name}")
        existing = self.credentials(name)
        result = await prompt(name, existing)
        if result is None:
            return False
        stored = False
        try:
            self._store_credentials(name, result)
            stored = True
        finally:
            # settings reload from the store after a failed write
            if not stored:
                self._settings.pop(name, None)
            with self._lock:
                self._clients.pop(name, None)
        logger.info("Updated settings for target %s", name)
        return True

    def remove(self, name: str) -> None:
        if name in self._targets:
            self._targets.remove(name)
            self._persist()
        self._forget(name)
        if self._state.current_target == name:
            self._state.select_target(self._targets[0] if self._targets else None)
        logger.info("Removed target %s", name)

    def select(self, name: str) -> None:
        if name not in self._targets:
            raise ConfigurationError(f"Unknown target {name}")
        self._state.select_target(name)

from __future__ import annotations

import logging
from pathlib import Path
from typing import Callable, Optional

from .cache import CacheSync, Notify
from .config import AppConfig
from .editors import EditorVisibility, identity_for
from .errors import DrawsyncError
from .nodes import Directory, FileNode, LogicalNode
from .s3 import BucketCatalog, Namespace, ObjectStore
from .secret_store import FileSecretStore, SecretStore
from .targets import CredentialPrompt, SessionState, TargetRegistry
from .watch import WatchEntry, WatchLoop

logger = logging.getLogger(__name__)


class SyncEngine:
    """Everything the front end calls.

    Each public operation reports its own failures through ``notify`` and
    returns a neutral value, so one failed call never takes down the
    session. Successful state changes fire the refresh listeners.
    """

    def __init__(
        self,
        config: AppConfig,
        editors: EditorVisibility,
        secrets: Optional[SecretStore] = None,
        cache_root: Optional[Path] = None,
        notify: Optional[Notify] = None,
        sync_interval: Optional[float] = None,
        prune_interval: Optional[float] = None,
    ) -> None:
        self.config = config
        self.state = SessionState()
        self._notify_callback = notify
        self._refresh_listeners: list[Callable[[], None]] = []
        self._watch_listeners: list[Callable[[WatchEntry], None]] = []
        self.secrets = secrets or FileSecretStore(config.config_dir / "secrets.json")
        self.registry = TargetRegistry(
            config, self.secrets, self.state, region=config.region
        )
        self.buckets = BucketCatalog(self.registry)
        self.namespace = Namespace(self.registry)
        self.cache = CacheSync(
            self.state,
            ObjectStore(self.registry),
            cache_root or config.cache_dir,
            notify=self.notify,
        )
        self.watch = WatchLoop(
            self.cache,
            editors,
            sync_interval=sync_interval or config.sync_interval,
            prune_interval=prune_interval or config.prune_interval,
            notify=self.notify,
            on_change=self._watch_changed,
        )

    def set_notify(self, notify: Optional[Notify]) -> None:
        self._notify_callback = notify

    def notify(self, message: str, severity: str = "information") -> None:
        if self._notify_callback is not None:
            self._notify_callback(message, severity)

    def add_refresh_listener(self, listener: Callable[[], None]) -> None:
        self._refresh_listeners.append(listener)

    def add_watch_listener(self, listener: Callable[[WatchEntry], None]) -> None:
        self._watch_listeners.append(listener)

    def _refresh(self) -> None:
        for listener in list(self._refresh_listeners):
            listener()

    def _watch_changed(self, entry: WatchEntry) -> None:
        for listener in list(self._watch_listeners):
            listener(entry)

    def _report(self, action: str, exc: DrawsyncError) -> None:
        logger.warning("%s: %s", action, exc)
        self.notify(str(exc), exc.severity)

    # ── Targets ────────────────────────────────────────────────────────

    @property
    def targets(self) -> list[str]:
        return self.registry.targets

    def select_target(self, name: str) -> bool:
        try:
            self.registry.select(name)
        except DrawsyncError as exc:
            self._report("Selecting target", exc)
            return False
        self.watch.clear()
        self.notify(f"Selected S3 Target: {name}")
        self._refresh()
        return True

    async def add_target(self, name: str, prompt: CredentialPrompt) -> bool:
        try:
            added = await self.registry.add(name, prompt)
        except DrawsyncError as exc:
            self._report("Adding target", exc)
            return False
        if added:
            self._refresh()
        return added

    async def edit_target(self, name: str, prompt: CredentialPrompt) -> bool:
        try:
            edited = await self.registry.edit(name, prompt)
        except DrawsyncError as exc:
            self._report("Editing target", exc)
            return False
        if edited:
            self.notify(f"Edited S3 Target: {name}")
            self._refresh()
        return edited

    def remove_target(self, name: str) -> bool:
        was_current = self.state.current_target == name
        try:
            self.registry.remove(name)
        except DrawsyncError as exc:
            self._report("Removing target", exc)
            return False
        if was_current:
            self.watch.clear()
        self.notify(f"Removed S3 Target: {name}")
        self._refresh()
        return True

    # ── Buckets ────────────────────────────────────────────────────────

    async def list_buckets(self) -> list[str]:
        try:
            return await self.buckets.list()
        except DrawsyncError as exc:
            self._report("Listing buckets", exc)
            return []

    def select_bucket(self, name: str) -> None:
        self.state.select_bucket(name)
        self.watch.clear()
        self.notify(f"Selected S3 Bucket: {name}")
        self._refresh()

    async def create_bucket(self, name: str) -> bool:
        try:
            await self.buckets.create(name)
        except DrawsyncError as exc:
            self._report("Creating bucket", exc)
            return False
        self._refresh()
        return True

    async def delete_bucket(self, name: str) -> bool:
        try:
            await self.buckets.delete(name)
        except DrawsyncError as exc:
            self._report("Deleting bucket", exc)
            return False
        if self.state.current_bucket == name:
            self.state.select_bucket(None)
            self.watch.clear()
        self.notify(f"Deleted bucket {name}")
        self._refresh()
        return True

    # ── Files & folders ────────────────────────────────────────────────

    async def list_nodes(self, parent: Optional[Directory] = None) -> list[LogicalNode]:
        try:
            return await self.namespace.list(parent)
        except DrawsyncError as exc:
            self._report("Listing files", exc)
            return []

    async def create_directory(
        self, parent: Optional[Directory], name: str
    ) -> Optional[Directory]:
        try:
            directory = Directory(name.strip(), parent)
        except ValueError as exc:
            self.notify(str(exc), "warning")
            return None
        try:
            await self.cache.create_empty(directory)
        except DrawsyncError as exc:
            self._report("Creating folder", exc)
            return None
        self._refresh()
        return directory

    async def create_diagram(
        self, parent: Optional[Directory], name: str
    ) -> Optional[FileNode]:
        try:
            file = await self.cache.create_file(parent, name)
        except ValueError as exc:
            self.notify(str(exc), "warning")
            return None
        except DrawsyncError as exc:
            self._report("Creating diagram", exc)
            return None
        self._refresh()
        return file

    async def delete_file(self, file: FileNode) -> bool:
        try:
            path = self.cache.local_path(file)
            await self.cache.delete_remote_and_local(file)
        except DrawsyncError as exc:
            self._report("Deleting file", exc)
            return False
        self.watch.unwatch(identity_for(path))
        self._refresh()
        return True

    async def open(self, file: FileNode) -> Optional[Path]:
        try:
            entry = await self.watch.open(file)
        except DrawsyncError as exc:
            self._report("Opening file", exc)
            return None
        return entry.path

    # ── Lifecycle ──────────────────────────────────────────────────────

    def start(self) -> None:
        self.watch.start()

    async def stop(self) -> None:
        await self.watch.stop()

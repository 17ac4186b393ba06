from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Awaitable, Callable, Optional

from .cache import CacheSync, Notify
from .config import DEFAULT_PRUNE_INTERVAL, DEFAULT_SYNC_INTERVAL
from .editors import EditorVisibility, identity_for
from .nodes import FileNode

logger = logging.getLogger(__name__)


@dataclass
class WatchEntry:
    identity: str
    node: FileNode
    path: Path
    last_synced: float
    syncing: bool = False


class WatchLoop:
    """Open files and the two periodic tasks that keep them uploaded.

    The sync task pushes any watched file whose modification time moved past
    the time of its last push or pull. The prune task drops files whose
    editor has gone away. An entry that is already syncing is skipped, so a
    file never has two uploads in flight.
    """

    def __init__(
        self,
        cache: CacheSync,
        editors: EditorVisibility,
        sync_interval: float = DEFAULT_SYNC_INTERVAL,
        prune_interval: float = DEFAULT_PRUNE_INTERVAL,
        notify: Optional[Notify] = None,
        on_change: Optional[Callable[[WatchEntry], None]] = None,
    ) -> None:
        self._cache = cache
        self._editors = editors
        self.sync_interval = sync_interval
        self.prune_interval = prune_interval
        self._notify = notify
        self._on_change = on_change
        self._entries: dict[str, WatchEntry] = {}
        self._tasks: list[asyncio.Task] = []
        self._stopping: Optional[asyncio.Event] = None

    @property
    def entries(self) -> dict[str, WatchEntry]:
        return dict(self._entries)

    @property
    def running(self) -> bool:
        return any(not task.done() for task in self._tasks)

    def get(self, identity: str) -> Optional[WatchEntry]:
        return self._entries.get(identity)

    def syncing(self) -> list[WatchEntry]:
        return [entry for entry in self._entries.values() if entry.syncing]

    def register(self, file: FileNode, path: Path) -> WatchEntry:
        identity = identity_for(path)
        existing = self._entries.get(identity)
        if existing is not None:
            return existing
        entry = WatchEntry(
            identity=identity,
            node=file,
            path=Path(path),
            last_synced=time.time(),
        )
        self._entries[identity] = entry
        logger.debug("Watching %s", path)
        return entry

    async def open(self, file: FileNode) -> WatchEntry:
        path, fetched = await self._cache.pull(file)
        entry = self._entries.get(identity_for(path))
        if entry is None:
            return self.register(file, path)
        # a re-open keeps pending edits; only a fetch moves the baseline
        if fetched and not entry.syncing:
            entry.last_synced = self._cache.local_mtime(path)
        return entry

    def unwatch(self, identity: str) -> None:
        self._entries.pop(identity, None)

    def clear(self) -> None:
        self._entries.clear()

    async def prune_cycle(self) -> list[str]:
        visible = self._editors.open_identities()
        removed = [identity for identity in self._entries if identity not in visible]
        for identity in removed:
            del self._entries[identity]
            logger.debug("Stopped watching %s", identity)
        return removed

    async def sync_cycle(self) -> int:
        entries = list(self._entries.values())
        if not entries:
            return 0
        results = await asyncio.gather(
            *(self._sync_entry(entry) for entry in entries),
            return_exceptions=True,
        )
        pushed = 0
        for entry, result in zip(entries, results):
            if isinstance(result, Exception):
                logger.error("Syncing %s failed: %s", entry.node.key, result)
                if self._notify is not None:
                    self._notify(f"Syncing {entry.node.key} failed: {result}", "error")
            elif result:
                pushed += 1
        return pushed

    async def _sync_entry(self, entry: WatchEntry) -> bool:
        if entry.syncing:
            return False
        mtime = self._cache.local_mtime(entry.path)
        if mtime <= entry.last_synced:
            return False
        self._set_syncing(entry, True)
        try:
            content = self._cache.read_local(entry.path)
            if not await self._cache.push(entry.node, content):
                return False
            entry.last_synced = mtime
            return True
        finally:
            self._set_syncing(entry, False)

    def _set_syncing(self, entry: WatchEntry, value: bool) -> None:
        entry.syncing = value
        if self._on_change is not None:
            self._on_change(entry)

    def start(self) -> None:
        if self.running:
            return
        self._stopping = asyncio.Event()
        self._tasks = [
            asyncio.create_task(
                self._run_periodic(self.sync_interval, self.sync_cycle)
            ),
            asyncio.create_task(
                self._run_periodic(self.prune_interval, self.prune_cycle)
            ),
        ]

    async def stop(self) -> None:
        if self._stopping is not None:
            self._stopping.set()
        tasks, self._tasks = self._tasks, []
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def _run_periodic(
        self, interval: float, cycle: Callable[[], Awaitable[object]]
    ) -> None:
        stopping = self._stopping
        if stopping is None:
            return
        while not stopping.is_set():
            try:
                await asyncio.wait_for(stopping.wait(), timeout=interval)
            except asyncio.TimeoutError:
                pass
            if stopping.is_set():
                break
            try:
                await cycle()
            except Exception:
                logger.exception("Periodic %s failed", cycle.__name__)

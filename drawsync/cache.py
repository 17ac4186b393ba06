from __future__ import annotations

import asyncio
import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Optional

from .errors import (
    LocalIOError,
    NoTargetOrBucketSelected,
    ObjectExistsError,
    RemoteOperationError,
)
from .nodes import Directory, FileNode
from .s3 import ObjectStore, is_missing_error
from .targets import SessionState

logger = logging.getLogger(__name__)

METADATA_LAST_MODIFIED = "lastmodified"
METADATA_UPLOADED_BY = "uploadedby"
UPLOADED_BY = "drawsync"
DIAGRAM_SUFFIXES = (".excalidraw", ".excalidraw.json")
DEFAULT_DIAGRAM_SUFFIX = ".excalidraw.json"

EMPTY_DIAGRAM = {
    "type": "excalidraw",
    "version": 2,
    "source": "drawsync",
    "elements": [],
    "appState": {"gridSize": None, "viewBackgroundColor": "#ffffff"},
    "files": {},
}

Notify = Callable[[str, str], None]


def format_timestamp(mtime: float) -> str:
    return datetime.fromtimestamp(mtime, tz=timezone.utc).isoformat(
        timespec="milliseconds"
    )


def parse_timestamp(value: object) -> Optional[float]:
    if not isinstance(value, str):
        return None
    text = value.strip()
    if not text:
        return None
    if text.endswith("Z"):
        text = f"{text[:-1]}+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.timestamp()


def diagram_name(name: str) -> str:
    name = name.strip()
    if name.endswith(DIAGRAM_SUFFIXES):
        return name
    return f"{name}{DEFAULT_DIAGRAM_SUFFIX}"


def _log_notice(message: str, severity: str) -> None:
    logger.info("%s: %s", severity, message)


class CacheSync:
    """Keeps cached copies under ``<root>/<target>/<bucket>/<key>`` in step
    with the store.

    The remote side of every freshness comparison is the ``lastmodified``
    metadata written by :meth:`push`, which carries the local modification
    time of the pushed file, so both sides of the comparison come from the
    local clock.
    """

    def __init__(
        self,
        state: SessionState,
        objects: ObjectStore,
        cache_root: Path,
        notify: Optional[Notify] = None,
    ) -> None:
        self._state = state
        self._objects = objects
        self._cache_root = Path(cache_root)
        self._notify = notify or _log_notice

    @property
    def cache_root(self) -> Path:
        return self._cache_root

    def local_path(
        self, file: FileNode, location: Optional[tuple[str, str]] = None
    ) -> Path:
        target, bucket = location or self._state.require_location()
        root = self._cache_root.joinpath(target, bucket)
        path = root.joinpath(*file.path)
        if ".." in file.path or not path.resolve().is_relative_to(root.resolve()):
            raise LocalIOError(path, ValueError("key escapes the cache directory"))
        return path

    def local_mtime(self, path: Path) -> float:
        try:
            return path.stat().st_mtime
        except OSError as exc:
            raise LocalIOError(path, exc) from exc

    def read_local(self, path: Path) -> bytes:
        try:
            return path.read_bytes()
        except OSError as exc:
            raise LocalIOError(path, exc) from exc

    def _write_local(self, path: Path, content: bytes) -> None:
        partial = path.with_name(f"{path.name}.part")
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            partial.write_bytes(content)
            partial.replace(path)
        except OSError as exc:
            raise LocalIOError(path, exc) from exc

    async def _fetch(
        self, file: FileNode, path: Path, target: str, bucket: str
    ) -> None:
        content = await asyncio.to_thread(self._objects.get, target, bucket, file.key)
        self._write_local(path, content)
        logger.debug("Fetched %s into %s", file.key, path)

    async def remote_timestamp(
        self, file: FileNode, target: str, bucket: str
    ) -> Optional[float]:
        try:
            metadata = await asyncio.to_thread(
                self._objects.head_metadata, target, bucket, file.key
            )
        except RemoteOperationError as exc:
            if exc.cause is not None and is_missing_error(exc.cause):
                return None
            raise
        return parse_timestamp(metadata.get(METADATA_LAST_MODIFIED))

    async def pull(self, file: FileNode) -> tuple[Path, bool]:
        """Like :meth:`resolve`, also reporting whether the remote copy was
        written into the cache."""
        target, bucket = self._state.require_location()
        path = self.local_path(file, (target, bucket))
        if not path.exists():
            await self._fetch(file, path, target, bucket)
            return path, True
        local_mtime = self.local_mtime(path)
        remote_mtime = await self.remote_timestamp(file, target, bucket)
        if remote_mtime is None:
            logger.debug("No remote timestamp for %s, keeping local copy", file.key)
            return path, False
        # metadata timestamps carry millisecond precision
        if round(local_mtime * 1000) < round(remote_mtime * 1000):
            logger.info("Remote copy of %s is newer, refreshing cache", file.key)
            await self._fetch(file, path, target, bucket)
            return path, True
        return path, False

    async def resolve(self, file: FileNode) -> Path:
        path, _ = await self.pull(file)
        return path

    async def push(self, file: FileNode, content: bytes) -> bool:
        location = self._state.location()
        if location is None:
            logger.warning("Not uploading %s: no target or bucket selected", file.key)
            self._notify(
                "Could not update file due to not having a target or bucket selected",
                "warning",
            )
            return False
        target, bucket = location
        path = self.local_path(file, location)
        mtime = self.local_mtime(path)
        metadata = {
            METADATA_UPLOADED_BY: UPLOADED_BY,
            METADATA_LAST_MODIFIED: format_timestamp(mtime),
        }
        await asyncio.to_thread(
            self._objects.put, target, bucket, file.key, content, metadata
        )
        logger.info("Uploaded %s (%d bytes)", file.key, len(content))
        return True

    async def create_empty(self, directory: Directory) -> None:
        target, bucket = self._state.require_location()
        await asyncio.to_thread(self._objects.put, target, bucket, directory.key, b"")

    async def create_file(
        self,
        directory: Optional[Directory],
        name: str,
        content: Optional[bytes] = None,
    ) -> FileNode:
        target, bucket = self._state.require_location()
        file = FileNode(diagram_name(name), directory)
        try:
            await asyncio.to_thread(
                self._objects.head_metadata, target, bucket, file.key
            )
        except RemoteOperationError as exc:
            if exc.cause is None or not is_missing_error(exc.cause):
                raise
        else:
            raise ObjectExistsError(f"{file.key} already exists")
        if content is None:
            content = json.dumps(EMPTY_DIAGRAM, indent=2).encode("utf-8")
        path = self.local_path(file, (target, bucket))
        self._write_local(path, content)
        if not await self.push(file, content):
            raise NoTargetOrBucketSelected()
        file.size = len(content)
        return file

    async def delete_remote_and_local(self, file: FileNode) -> bool:
        target, bucket = self._state.require_location()
        path = self.local_path(file, (target, bucket))
        await asyncio.to_thread(self._objects.delete, target, bucket, file.key)
        try:
            path.unlink(missing_ok=True)
        except OSError as exc:
            logger.error("Failed to delete local file %s: %s", path, exc)
            self._notify(f"Failed to delete local file: {path}", "error")
            return False
        return True

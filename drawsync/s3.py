from __future__ import annotations

import asyncio
import logging
from contextlib import contextmanager
from typing import Iterator, Optional

from botocore.exceptions import BotoCoreError, ClientError

from .errors import RemoteOperationError
from .nodes import DELIMITER, Directory, FileNode, LogicalNode, derive_key
from .targets import TargetRegistry

logger = logging.getLogger(__name__)

PAGE_SIZE = 1000


@contextmanager
def remote_operation(operation: str) -> Iterator[None]:
    try:
        yield
    except (ClientError, BotoCoreError) as exc:
        logger.warning("%s failed: %s", operation, exc)
        raise RemoteOperationError(operation, exc) from exc


def is_missing_error(exc: BaseException) -> bool:
    if not isinstance(exc, ClientError):
        return False
    code = str(exc.response.get("Error", {}).get("Code", ""))
    return code in {"404", "NoSuchKey", "NotFound"}


class BucketCatalog:
    def __init__(self, registry: TargetRegistry) -> None:
        self._registry = registry

    async def list(self) -> list[str]:
        return await asyncio.to_thread(self._list)

    def _list(self) -> list[str]:
        client = self._registry.current_client()
        with remote_operation("Listing buckets"):
            response = client.list_buckets()
        return [
            bucket["Name"]
            for bucket in response.get("Buckets", [])
            if bucket.get("Name")
        ]

    async def create(self, name: str) -> None:
        await asyncio.to_thread(self._create, name)

    def _create(self, name: str) -> None:
        client = self._registry.current_client()
        with remote_operation(f"Creating bucket {name}"):
            client.create_bucket(Bucket=name)
        logger.info("Created bucket %s", name)

    async def delete(self, name: str) -> int:
        return await asyncio.to_thread(self._delete, name)

    def _delete(self, name: str) -> int:
        """Empty the bucket one object at a time, then delete it.

        Buckets must be empty before they can be deleted. Objects are removed
        with single DeleteObject calls because DeleteObjects needs a
        Content-MD5 header. A failure part way leaves the bucket partially
        emptied; calling this again picks up where it stopped.
        """
        client = self._registry.current_client()
        deleted = 0
        continuation: Optional[str] = None
        with remote_operation(f"Emptying bucket {name}"):
            while True:
                kwargs = {"Bucket": name, "MaxKeys": PAGE_SIZE}
                if continuation:
                    kwargs["ContinuationToken"] = continuation
                response = client.list_objects_v2(**kwargs)
                for entry in response.get("Contents", []):
                    key = entry.get("Key")
                    if not key:
                        continue
                    client.delete_object(Bucket=name, Key=key)
                    deleted += 1
                continuation = response.get("NextContinuationToken")
                if not response.get("IsTruncated") or not continuation:
                    break
        with remote_operation(f"Deleting bucket {name}"):
            client.delete_bucket(Bucket=name)
        logger.info("Deleted bucket %s after removing %d objects", name, deleted)
        return deleted


class Namespace:
    def __init__(self, registry: TargetRegistry) -> None:
        self._registry = registry

    async def list(self, parent: Optional[Directory] = None) -> list[LogicalNode]:
        return await asyncio.to_thread(self._list, parent)

    def _list(self, parent: Optional[Directory]) -> list[LogicalNode]:
        target, bucket = self._registry.state.require_location()
        client = self._registry.connect(target)
        prefix = derive_key(parent) if parent is not None else ""
        directories: list[LogicalNode] = []
        files: list[LogicalNode] = []
        continuation: Optional[str] = None
        with remote_operation(f"Listing {bucket}/{prefix}"):
            while True:
                kwargs = {
                    "Bucket": bucket,
                    "Delimiter": DELIMITER,
                    "Prefix": prefix,
                    "MaxKeys": PAGE_SIZE,
                }
                if continuation:
                    kwargs["ContinuationToken"] = continuation
                response = client.list_objects_v2(**kwargs)
                for entry in response.get("CommonPrefixes", []):
                    value = entry.get("Prefix")
                    if not value or not value.startswith(prefix):
                        continue
                    name = value[len(prefix) :]
                    if name.endswith(DELIMITER):
                        name = name[:-1]
                    if not name:
                        continue
                    directories.append(Directory(name, parent))
                for entry in response.get("Contents", []):
                    key = entry.get("Key")
                    if not key or key == prefix or key.endswith(DELIMITER):
                        continue
                    if not key.startswith(prefix):
                        continue
                    files.append(
                        FileNode(
                            key[len(prefix) :],
                            parent,
                            size=int(entry.get("Size", 0)),
                        )
                    )
                continuation = response.get("NextContinuationToken")
                if not response.get("IsTruncated") or not continuation:
                    break
        items = directories + files
        if parent is not None:
            parent.children = items
        return items


class ObjectStore:
    """Single-object calls against an explicit target and bucket."""

    def __init__(self, registry: TargetRegistry) -> None:
        self._registry = registry

    def get(self, target: str, bucket: str, key: str) -> bytes:
        client = self._registry.connect(target)
        with remote_operation(f"Downloading {key}"):
            response = client.get_object(Bucket=bucket, Key=key)
            body = response.get("Body")
            if body is None:
                return b""
            try:
                return body.read()
            finally:
                body.close()

    def head_metadata(self, target: str, bucket: str, key: str) -> dict[str, str]:
        client = self._registry.connect(target)
        with remote_operation(f"Reading metadata of {key}"):
            response = client.head_object(Bucket=bucket, Key=key)
        metadata = response.get("Metadata") or {}
        return {str(name).lower(): value for name, value in metadata.items()}

    def put(
        self,
        target: str,
        bucket: str,
        key: str,
        body: bytes,
        metadata: Optional[dict[str, str]] = None,
    ) -> None:
        client = self._registry.connect(target)
        kwargs = {"Bucket": bucket, "Key": key, "Body": body}
        if metadata:
            kwargs["Metadata"] = metadata
        with remote_operation(f"Uploading {key}"):
            client.put_object(**kwargs)

    def delete(self, target: str, bucket: str, key: str) -> None:
        client = self._registry.connect(target)
        with remote_operation(f"Deleting {key}"):
            client.delete_object(Bucket=bucket, Key=key)

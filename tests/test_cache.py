import json
import os
import tempfile
import unittest
from pathlib import Path

from drawsync.cache import (
    EMPTY_DIAGRAM,
    CacheSync,
    diagram_name,
    format_timestamp,
    parse_timestamp,
)
from drawsync.errors import LocalIOError, ObjectExistsError, RemoteOperationError
from drawsync.nodes import Directory, FileNode
from drawsync.s3 import ObjectStore

from fakes import FakeS3Client, client_error, connected_registry


class TestTimestamps(unittest.TestCase):
    def test_parse_accepts_iso_forms(self) -> None:
        self.assertEqual(parse_timestamp("1970-01-01T00:00:10+00:00"), 10.0)
        self.assertEqual(parse_timestamp("1970-01-01T00:00:10Z"), 10.0)
        self.assertEqual(parse_timestamp("1970-01-01T00:00:10"), 10.0)
        self.assertEqual(parse_timestamp(format_timestamp(1234.5)), 1234.5)

    def test_parse_rejects_missing_values(self) -> None:
        for value in (None, "", "  ", "yesterday", 42):
            with self.subTest(value=value):
                self.assertIsNone(parse_timestamp(value))

    def test_diagram_name(self) -> None:
        self.assertEqual(diagram_name("a"), "a.excalidraw.json")
        self.assertEqual(diagram_name("a.excalidraw"), "a.excalidraw")
        self.assertEqual(diagram_name(" a.excalidraw.json "), "a.excalidraw.json")


class TestCacheSync(unittest.IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        temp_dir = tempfile.TemporaryDirectory()
        self.addCleanup(temp_dir.cleanup)
        root = Path(temp_dir.name)
        self.client = FakeS3Client()
        self.client.buckets["b1"] = {}
        self.registry = connected_registry(root / "config", self.client, bucket="b1")
        self.notices: list[tuple[str, str]] = []
        self.cache = CacheSync(
            self.registry.state,
            ObjectStore(self.registry),
            root / "cache",
            notify=lambda message, severity: self.notices.append((message, severity)),
        )
        self.file = FileNode("a.excalidraw.json", Directory("docs"))

    def _fetches(self) -> int:
        return len(self.client.calls_to("GetObject"))

    def test_local_path_layout(self) -> None:
        path = self.cache.local_path(self.file)
        self.assertEqual(
            path, self.cache.cache_root / "t1" / "b1" / "docs" / "a.excalidraw.json"
        )

    def test_local_path_stays_inside_cache(self) -> None:
        with self.assertRaises(LocalIOError):
            self.cache.local_path(FileNode("x.json", Directory("..")))

    async def test_resolve_fetches_missing_copy(self) -> None:
        self.client.add_object("b1", self.file.key, b"remote")

        path = await self.cache.resolve(self.file)

        self.assertEqual(path.read_bytes(), b"remote")
        self.assertEqual(self._fetches(), 1)
        self.assertFalse(path.with_name(f"{path.name}.part").exists())

    async def test_resolve_twice_fetches_at_most_once(self) -> None:
        self.client.add_object("b1", self.file.key, b"remote")

        first = await self.cache.resolve(self.file)
        second = await self.cache.resolve(self.file)

        self.assertEqual(first, second)
        self.assertEqual(self._fetches(), 1)

    async def test_resolve_after_push_does_not_refetch(self) -> None:
        path = self.cache.local_path(self.file)
        path.parent.mkdir(parents=True)
        path.write_bytes(b"local")
        await self.cache.push(self.file, b"local")

        await self.cache.resolve(self.file)

        self.assertEqual(self._fetches(), 0)

    async def test_resolve_refetches_when_remote_is_newer(self) -> None:
        path = self.cache.local_path(self.file)
        path.parent.mkdir(parents=True)
        path.write_bytes(b"old")
        os.utime(path, (1000, 1000))
        self.client.add_object(
            "b1", self.file.key, b"new", {"lastmodified": format_timestamp(2000)}
        )

        await self.cache.resolve(self.file)

        self.assertEqual(path.read_bytes(), b"new")
        self.assertEqual(self._fetches(), 1)

    async def test_resolve_keeps_local_when_it_is_newer(self) -> None:
        path = self.cache.local_path(self.file)
        path.parent.mkdir(parents=True)
        path.write_bytes(b"mine")
        os.utime(path, (3000, 3000))
        self.client.add_object(
            "b1", self.file.key, b"theirs", {"lastmodified": format_timestamp(2000)}
        )

        await self.cache.resolve(self.file)

        self.assertEqual(path.read_bytes(), b"mine")
        self.assertEqual(self._fetches(), 0)

    async def test_resolve_prefers_local_without_remote_timestamp(self) -> None:
        path = self.cache.local_path(self.file)
        path.parent.mkdir(parents=True)
        path.write_bytes(b"mine")
        self.client.add_object("b1", self.file.key, b"theirs")

        await self.cache.resolve(self.file)

        self.assertEqual(path.read_bytes(), b"mine")
        self.assertEqual(self._fetches(), 0)

    async def test_resolve_prefers_local_when_remote_is_gone(self) -> None:
        path = self.cache.local_path(self.file)
        path.parent.mkdir(parents=True)
        path.write_bytes(b"mine")

        self.assertEqual(await self.cache.resolve(self.file), path)

    async def test_resolve_surfaces_other_store_errors(self) -> None:
        path = self.cache.local_path(self.file)
        path.parent.mkdir(parents=True)
        path.write_bytes(b"mine")
        self.client.fail["HeadObject"] = client_error("AccessDenied", "HeadObject", 403)

        with self.assertRaises(RemoteOperationError):
            await self.cache.resolve(self.file)

    async def test_push_records_local_mtime(self) -> None:
        path = self.cache.local_path(self.file)
        path.parent.mkdir(parents=True)
        path.write_bytes(b"content")
        os.utime(path, (1500, 1500))

        self.assertTrue(await self.cache.push(self.file, b"content"))

        stored = self.client.buckets["b1"][self.file.key]
        self.assertEqual(stored["Body"], b"content")
        self.assertEqual(
            stored["Metadata"],
            {"uploadedby": "drawsync", "lastmodified": format_timestamp(1500)},
        )

    async def test_push_without_selection_warns(self) -> None:
        self.registry.state.select_bucket(None)

        self.assertFalse(await self.cache.push(self.file, b"content"))

        self.assertEqual(self.client.calls_to("PutObject"), [])
        self.assertEqual(
            self.notices,
            [
                (
                    "Could not update file due to not having a target or bucket "
                    "selected",
                    "warning",
                )
            ],
        )

    async def test_create_empty_writes_directory_marker(self) -> None:
        await self.cache.create_empty(Directory("docs"))
        self.assertEqual(self.client.buckets["b1"]["docs/"]["Body"], b"")

    async def test_create_file_writes_empty_diagram(self) -> None:
        file = await self.cache.create_file(Directory("docs"), "a")

        self.assertEqual(file.key, "docs/a.excalidraw.json")
        body = self.client.buckets["b1"]["docs/a.excalidraw.json"]["Body"]
        self.assertEqual(json.loads(body), EMPTY_DIAGRAM)
        self.assertEqual(self.cache.local_path(file).read_bytes(), body)
        self.assertEqual(file.size, len(body))

    async def test_create_file_refuses_existing_key(self) -> None:
        self.client.add_object("b1", "docs/a.excalidraw.json", b"{}")

        with self.assertRaises(ObjectExistsError):
            await self.cache.create_file(Directory("docs"), "a.excalidraw.json")

        self.assertEqual(self.client.calls_to("PutObject"), [])

    async def test_delete_remote_and_local(self) -> None:
        self.client.add_object("b1", self.file.key, b"remote")
        path = await self.cache.resolve(self.file)

        self.assertTrue(await self.cache.delete_remote_and_local(self.file))

        self.assertNotIn(self.file.key, self.client.buckets["b1"])
        self.assertFalse(path.exists())

    async def test_delete_without_local_copy(self) -> None:
        self.client.add_object("b1", self.file.key, b"remote")

        self.assertTrue(await self.cache.delete_remote_and_local(self.file))
        self.assertNotIn(self.file.key, self.client.buckets["b1"])

    async def test_delete_local_failure_keeps_remote_delete(self) -> None:
        self.client.add_object("b1", self.file.key, b"remote")
        path = self.cache.local_path(self.file)
        path.mkdir(parents=True)

        self.assertFalse(await self.cache.delete_remote_and_local(self.file))

        self.assertNotIn(self.file.key, self.client.buckets["b1"])
        self.assertEqual(self.notices[-1][1], "error")


if __name__ == "__main__":
    unittest.main()

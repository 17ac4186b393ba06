import tempfile
import unittest
from pathlib import Path

from drawsync.app import CURRENT_MARK, NameDialog, SyncBrowser
from drawsync.config import AppConfig
from drawsync.engine import SyncEngine

from fakes import FakeEditors, FakeS3Client, MemorySecretStore, store_credentials


class TestTuiMount(unittest.IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        temp_dir = tempfile.TemporaryDirectory()
        self.addCleanup(temp_dir.cleanup)
        root = Path(temp_dir.name)
        config = AppConfig(root / "config")
        config.save_targets(["t1"])
        secrets = MemorySecretStore()
        store_credentials(secrets, "t1")
        self.client = FakeS3Client()
        self.client.buckets["b1"] = {}
        self.client.add_object("b1", "docs/", b"")
        self.client.add_object("b1", "top.excalidraw.json", b"{}")
        self.editors = FakeEditors()
        self.engine = SyncEngine(
            config,
            self.editors,
            secrets=secrets,
            cache_root=root / "cache",
            sync_interval=60,
            prune_interval=60,
        )
        self.engine.registry._clients["t1"] = self.client

    def _app(self) -> SyncBrowser:
        return SyncBrowser(self.engine, self.editors)

    def _labels(self, node) -> list[str]:
        return [str(child.label) for child in node.children]

    async def _wait_for(self, pilot, condition) -> None:
        for _ in range(100):
            if condition():
                return
            await pilot.pause(0.02)

    async def test_app_mounts_headless(self) -> None:
        app = self._app()
        async with app.run_test() as pilot:
            await pilot.pause()
            sections = app.sync_tree.root.children
            self.assertEqual(
                self._labels(app.sync_tree.root),
                ["Targets", "Buckets", "Files & Folders"],
            )
            self.assertEqual(self._labels(sections[0]), [f"{CURRENT_MARK}t1"])
            self.assertEqual(self._labels(sections[1]), ["b1"])
            self.assertTrue(self.engine.watch.running)
        self.assertFalse(self.engine.watch.running)

    async def test_selecting_bucket_rebuilds_tree(self) -> None:
        app = self._app()
        async with app.run_test() as pilot:
            await pilot.pause()
            self.engine.select_bucket("b1")
            await app.workers.wait_for_complete()

            def bucket_labels() -> list[str]:
                return self._labels(app.sync_tree.root.children[1])

            expected = [f"{CURRENT_MARK}b1"]
            await self._wait_for(pilot, lambda: bucket_labels() == expected)
            self.assertEqual(bucket_labels(), expected)

    async def test_expanding_files_lists_bucket(self) -> None:
        self.engine.select_bucket("b1")
        app = self._app()
        async with app.run_test() as pilot:
            await pilot.pause()
            files = app.sync_tree.root.children[2]
            files.expand()
            await self._wait_for(pilot, lambda: len(files.children) == 2)
            self.assertEqual(self._labels(files), ["docs", "top.excalidraw.json"])
            self.assertEqual(files.children[0].data.kind, "directory")
            self.assertEqual(files.children[1].data.kind, "file")

    async def test_add_target_opens_name_dialog(self) -> None:
        app = self._app()
        async with app.run_test() as pilot:
            await pilot.pause()
            await pilot.press("t")
            await pilot.pause()
            self.assertIsInstance(app.screen, NameDialog)
            await pilot.press("escape")
            await pilot.pause()
            self.assertNotIsInstance(app.screen, NameDialog)
        self.assertEqual(self.engine.targets, ["t1"])


if __name__ == "__main__":
    unittest.main()

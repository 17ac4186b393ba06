import unittest

from drawsync.nodes import Directory, FileNode, derive_key, parse_key


class TestKeyMapping(unittest.TestCase):
    def test_derive_key_for_nested_file(self) -> None:
        docs = Directory("docs")
        drafts = Directory("drafts", docs)
        file = FileNode("a.excalidraw.json", drafts)

        self.assertEqual(derive_key(file), "docs/drafts/a.excalidraw.json")
        self.assertEqual(file.path, ("docs", "drafts", "a.excalidraw.json"))

    def test_directory_keys_end_with_delimiter(self) -> None:
        self.assertEqual(Directory("docs").key, "docs/")
        self.assertEqual(Directory("b", Directory("a")).key, "a/b/")
        self.assertFalse(FileNode("a.json", Directory("docs")).key.endswith("/"))

    def test_root_level_file_uses_its_name(self) -> None:
        self.assertEqual(FileNode("notes.excalidraw").key, "notes.excalidraw")

    def test_parse_key_round_trips(self) -> None:
        nodes = [
            FileNode("a.json"),
            Directory("docs"),
            FileNode("a.excalidraw.json", Directory("docs")),
            Directory("c", Directory("b", Directory("a"))),
        ]
        for node in nodes:
            with self.subTest(key=node.key):
                parsed = parse_key(derive_key(node))
                self.assertEqual(parsed, node)
                self.assertEqual(parsed.is_directory, node.is_directory)
                self.assertEqual(derive_key(parsed), derive_key(node))

    def test_parse_key_builds_ancestor_directories(self) -> None:
        node = parse_key("a/b/c.json", size=12)

        self.assertIsInstance(node, FileNode)
        self.assertEqual(node.size, 12)
        self.assertIsInstance(node.parent, Directory)
        self.assertEqual(node.parent.key, "a/b/")
        self.assertEqual(node.parent.parent.key, "a/")
        self.assertIsNone(node.parent.parent.parent)

    def test_parse_key_rejects_malformed_keys(self) -> None:
        for key in ("", "/", "a//b", "/a", "a//"):
            with self.subTest(key=key):
                with self.assertRaises(ValueError):
                    parse_key(key)

    def test_names_are_validated(self) -> None:
        with self.assertRaises(ValueError):
            FileNode("")
        with self.assertRaises(ValueError):
            Directory("a/b")
        with self.assertRaises(ValueError):
            FileNode("x.json", FileNode("not-a-directory"))

    def test_equality_and_hash_follow_the_key(self) -> None:
        first = FileNode("a.json", Directory("docs"))
        second = FileNode("a.json", Directory("docs"))

        self.assertEqual(first, second)
        self.assertEqual(len({first, second}), 1)
        self.assertNotEqual(Directory("a"), FileNode("a"))

    def test_repr_shows_kind_and_key(self) -> None:
        self.assertEqual(repr(Directory("docs")), "Directory('docs/')")


if __name__ == "__main__":
    unittest.main()

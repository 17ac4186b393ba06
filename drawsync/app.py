from __future__ import annotations

import argparse
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from rich.text import Text
from textual.app import App, ComposeResult
from textual.containers import Horizontal, Vertical
from textual.screen import ModalScreen
from textual.widgets import Button, Footer, Header, Input, Static, Tree

from .config import AppConfig, default_config_dir
from .editors import EditorSessions, editor_command, identity_for
from .engine import SyncEngine
from .errors import LocalIOError
from .nodes import Directory, FileNode, LogicalNode
from .targets import Credentials
from .watch import WatchEntry

CURRENT_MARK = "✔ "


@dataclass(frozen=True)
class NodeData:
    kind: str
    name: Optional[str] = None
    node: Optional[LogicalNode] = None


DIALOG_CSS = """
.dialog {
    width: 60;
    max-width: 80;
    min-width: 40;
    height: auto;
    margin: 1 2;
    padding: 1 2;
    border: round $panel;
    background: $panel;
    color: $text;
}

.dialog-actions {
    width: 100%;
    height: auto;
    align: center middle;
    margin-top: 1;
}

.dialog-actions Button {
    margin-left: 1;
}

.dialog-error {
    color: $error;
    height: auto;
}
"""


class NameDialog(ModalScreen[Optional[str]]):
    BINDINGS = [("escape", "cancel", "Cancel")]
    CSS = "NameDialog { align: center middle; }" + DIALOG_CSS

    def __init__(self, label: str, value: str = "") -> None:
        super().__init__()
        self._label = label
        self._value = value

    def compose(self) -> ComposeResult:
        with Vertical(classes="dialog"):
            yield Static(self._label, markup=False)
            yield Input(value=self._value, id="name-input")
            with Horizontal(classes="dialog-actions"):
                yield Button("Cancel", id="name-cancel", compact=True)
                yield Button("OK", id="name-ok", compact=True)

    def on_mount(self) -> None:
        self.query_one("#name-input", Input).focus()

    def on_button_pressed(self, event: Button.Pressed) -> None:
        if event.button.id == "name-cancel":
            self.dismiss(None)
        elif event.button.id == "name-ok":
            self._submit()

    def on_input_submitted(self, event: Input.Submitted) -> None:
        self._submit()

    def _submit(self) -> None:
        value = self.query_one("#name-input", Input).value.strip()
        if not value:
            return
        self.dismiss(value)

    def action_cancel(self) -> None:
        self.dismiss(None)


class ConfirmDialog(ModalScreen[bool]):
    BINDINGS = [("escape", "cancel", "Cancel")]
    CSS = "ConfirmDialog { align: center middle; }" + DIALOG_CSS

    def __init__(self, message: str) -> None:
        super().__init__()
        self._message = message

    def compose(self) -> ComposeResult:
        with Vertical(classes="dialog"):
            yield Static(self._message, markup=False)
            with Horizontal(classes="dialog-actions"):
                yield Button("Cancel", id="confirm-cancel", compact=True)
                yield Button(
                    "Delete", id="confirm-ok", variant="error", compact=True
                )

    def on_mount(self) -> None:
        self.query_one("#confirm-cancel", Button).focus()

    def on_button_pressed(self, event: Button.Pressed) -> None:
        self.dismiss(event.button.id == "confirm-ok")

    def action_cancel(self) -> None:
        self.dismiss(False)


class CredentialsDialog(ModalScreen[Optional[Credentials]]):
    BINDINGS = [("escape", "cancel", "Cancel")]
    CSS = "CredentialsDialog { align: center middle; }" + DIALOG_CSS

    def __init__(self, target: str, existing: Optional[Credentials] = None) -> None:
        super().__init__()
        self._target = target
        self._existing = existing

    def compose(self) -> ComposeResult:
        existing = self._existing
        with Vertical(classes="dialog"):
            yield Static(Text(f"S3 Settings for {self._target}", style="bold"))
            yield Static("Access Key ID:")
            yield Input(
                value=existing.access_key_id if existing else "", id="access-key-id"
            )
            yield Static("Secret Access Key:")
            yield Input(
                value=existing.secret_access_key if existing else "",
                password=True,
                id="secret-access-key",
            )
            yield Static("Host:")
            yield Input(
                value=existing.host if existing else "",
                placeholder="https://s3.example.com",
                id="host",
            )
            yield Static("", id="credentials-error", classes="dialog-error")
            with Horizontal(classes="dialog-actions"):
                yield Button("Cancel", id="credentials-cancel", compact=True)
                yield Button("Save", id="credentials-save", compact=True)

    def on_mount(self) -> None:
        self.query_one("#access-key-id", Input).focus()

    def on_button_pressed(self, event: Button.Pressed) -> None:
        if event.button.id == "credentials-cancel":
            self.dismiss(None)
        elif event.button.id == "credentials-save":
            self._submit()

    def on_input_submitted(self, event: Input.Submitted) -> None:
        self._submit()

    def _submit(self) -> None:
        values = {
            field_id: self.query_one(f"#{field_id}", Input).value.strip()
            for field_id in ("access-key-id", "secret-access-key", "host")
        }
        credentials = Credentials(
            access_key_id=values["access-key-id"],
            secret_access_key=values["secret-access-key"],
            host=values["host"],
        )
        if not credentials.is_complete():
            self.query_one("#credentials-error", Static).update(
                "All fields are required."
            )
            return
        self.dismiss(credentials)

    def action_cancel(self) -> None:
        self.dismiss(None)


class SyncBrowser(App):
    TITLE = "drawsync"

    CSS = """
    #sync-tree {
        height: 1fr;
        border: round $panel;
    }

    #sync-status {
        height: 1;
        padding: 0 1;
        background: $surface;
        color: $text-muted;
    }
    """

    BINDINGS = [
        ("q", "quit", "Quit"),
        ("r", "refresh", "Refresh"),
        ("t", "add_target", "Add target"),
        ("e", "edit_target", "Edit target"),
        ("b", "new_bucket", "New bucket"),
        ("n", "new_folder", "New folder"),
        ("f", "new_diagram", "New diagram"),
        ("d", "delete", "Delete"),
    ]

    def __init__(self, engine: SyncEngine, editors: EditorSessions) -> None:
        super().__init__()
        self.engine = engine
        self.editors = editors
        self.loaded_nodes: set[int] = set()

    def compose(self) -> ComposeResult:
        yield Header()
        yield Tree("drawsync", id="sync-tree")
        yield Static("", id="sync-status", markup=False)
        yield Footer()

    async def on_mount(self) -> None:
        self.sync_tree = self.query_one("#sync-tree", Tree)
        self.sync_tree.show_root = False
        self.sync_status = self.query_one("#sync-status", Static)
        self.engine.set_notify(self._notify_from_engine)
        self.engine.add_refresh_listener(self._schedule_rebuild)
        self.engine.add_watch_listener(self._on_watch_change)
        await self.rebuild_tree()
        self.engine.start()
        self.set_focus(self.sync_tree)

    async def on_unmount(self) -> None:
        await self.engine.stop()

    def _notify_from_engine(self, message: str, severity: str) -> None:
        self.notify(message, severity=severity)

    def _schedule_rebuild(self) -> None:
        self.run_worker(self.rebuild_tree(), exclusive=True, group="tree")

    def _on_watch_change(self, _entry: WatchEntry) -> None:
        self._update_status()

    def _update_status(self) -> None:
        syncing = self.engine.watch.syncing()
        if syncing:
            names = ", ".join(entry.node.name for entry in syncing)
            self.sync_status.update(f"Syncing {names}")
            return
        watched = len(self.engine.watch.entries)
        if watched:
            self.sync_status.update(f"Watching {watched} file(s)")
        else:
            self.sync_status.update("")

    def _label(self, name: str, current: bool) -> Text:
        if current:
            return Text(f"{CURRENT_MARK}{name}", style="bold")
        return Text(name)

    async def rebuild_tree(self) -> None:
        state = self.engine.state
        tree = self.sync_tree
        tree.clear()
        self.loaded_nodes.clear()
        targets_node = tree.root.add(
            "Targets", data=NodeData("section", "targets"), expand=True
        )
        for name in self.engine.targets:
            targets_node.add_leaf(
                self._label(name, name == state.current_target),
                data=NodeData("target", name),
            )
        buckets_node = tree.root.add(
            "Buckets", data=NodeData("section", "buckets"), expand=True
        )
        if state.current_target is not None:
            for name in await self.engine.list_buckets():
                buckets_node.add_leaf(
                    self._label(name, name == state.current_bucket),
                    data=NodeData("bucket", name),
                )
        tree.root.add(
            "Files & Folders", data=NodeData("files"), allow_expand=True
        )
        tree.root.expand()
        self._update_status()

    async def on_tree_node_expanded(self, event: Tree.NodeExpanded) -> None:
        node = event.node
        data: Optional[NodeData] = node.data
        if data is None or data.kind not in {"files", "directory"}:
            return
        if node.id in self.loaded_nodes:
            return
        if self.engine.state.location() is None:
            node.remove_children()
            node.add_leaf(Text("Select a target and bucket", style="dim"))
            return
        parent = data.node if isinstance(data.node, Directory) else None
        items = await self.engine.list_nodes(parent)
        self.loaded_nodes.add(node.id)
        node.remove_children()
        for item in items:
            if item.is_directory:
                node.add(
                    Text(item.name),
                    data=NodeData("directory", item.name, item),
                    allow_expand=True,
                )
            else:
                node.add_leaf(Text(item.name), data=NodeData("file", item.name, item))

    def on_tree_node_selected(self, event: Tree.NodeSelected) -> None:
        data: Optional[NodeData] = event.node.data
        if data is None:
            return
        if data.kind == "target" and data.name:
            self.engine.select_target(data.name)
        elif data.kind == "bucket" and data.name:
            self.engine.select_bucket(data.name)
        elif data.kind == "file" and isinstance(data.node, FileNode):
            self.run_worker(self.open_file(data.node))

    async def open_file(self, file: FileNode) -> None:
        path = await self.engine.open(file)
        if path is None:
            return
        try:
            self.editors.launch(path)
        except LocalIOError as exc:
            self.engine.watch.unwatch(identity_for(path))
            self.notify(f"{exc}", severity="error")
            return
        self.notify(f"Opened {file.key}", severity="information")
        self._update_status()

    def _cursor_data(self) -> Optional[NodeData]:
        node = self.sync_tree.cursor_node
        if node is None:
            return None
        return node.data

    def _cursor_directory(self) -> Optional[Directory]:
        data = self._cursor_data()
        if data is None or data.node is None:
            return None
        if isinstance(data.node, Directory):
            return data.node
        return data.node.parent

    async def prompt_credentials(
        self, target: str, existing: Optional[Credentials]
    ) -> Optional[Credentials]:
        return await self.push_screen_wait(CredentialsDialog(target, existing))

    def action_refresh(self) -> None:
        self._schedule_rebuild()

    def action_add_target(self) -> None:
        self.run_worker(self._add_target_flow(), exclusive=True)

    async def _add_target_flow(self) -> None:
        name = await self.push_screen_wait(
            NameDialog("Enter a name for the new S3 Target")
        )
        if not name:
            return
        await self.engine.add_target(name, self.prompt_credentials)

    def action_edit_target(self) -> None:
        data = self._cursor_data()
        if data is None or data.kind != "target" or not data.name:
            self.notify("Select a target to edit.", severity="warning")
            return
        self.run_worker(
            self.engine.edit_target(data.name, self.prompt_credentials),
            exclusive=True,
        )

    def action_new_bucket(self) -> None:
        if self.engine.state.current_target is None:
            self.notify("Select a target first.", severity="warning")
            return
        self.run_worker(self._new_bucket_flow(), exclusive=True)

    async def _new_bucket_flow(self) -> None:
        name = await self.push_screen_wait(
            NameDialog("Enter a name for the new bucket")
        )
        if not name:
            return
        await self.engine.create_bucket(name)

    def action_new_folder(self) -> None:
        self.run_worker(
            self._new_folder_flow(self._cursor_directory()), exclusive=True
        )

    async def _new_folder_flow(self, parent: Optional[Directory]) -> None:
        name = await self.push_screen_wait(
            NameDialog("Enter a name for the new folder")
        )
        if not name:
            return
        await self.engine.create_directory(parent, name)

    def action_new_diagram(self) -> None:
        self.run_worker(
            self._new_diagram_flow(self._cursor_directory()), exclusive=True
        )

    async def _new_diagram_flow(self, parent: Optional[Directory]) -> None:
        name = await self.push_screen_wait(
            NameDialog("Enter a name for the new diagram")
        )
        if not name:
            return
        file = await self.engine.create_diagram(parent, name)
        if file is not None:
            await self.open_file(file)

    def action_delete(self) -> None:
        data = self._cursor_data()
        if data is None or data.kind not in {"target", "bucket", "file"}:
            self.notify(
                "Select a target, bucket or file to delete.", severity="warning"
            )
            return
        self.run_worker(self._delete_flow(data), exclusive=True)

    async def _delete_flow(self, data: NodeData) -> None:
        if data.kind == "target" and data.name:
            message = f"Remove target {data.name}?"
            if await self.push_screen_wait(ConfirmDialog(message)):
                self.engine.remove_target(data.name)
        elif data.kind == "bucket" and data.name:
            message = f"Delete bucket {data.name} and every object in it?"
            if await self.push_screen_wait(ConfirmDialog(message)):
                self.notify(f"Deleting bucket {data.name}...", severity="information")
                await self.engine.delete_bucket(data.name)
        elif data.kind == "file" and isinstance(data.node, FileNode):
            if await self.push_screen_wait(ConfirmDialog(f"Delete {data.node.key}?")):
                await self.engine.delete_file(data.node)


def _configure_logging(config_dir: Path, verbose: bool) -> None:
    config_dir.mkdir(parents=True, exist_ok=True)
    logging.basicConfig(
        filename=str(config_dir / "drawsync.log"),
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    for name in ("boto3", "botocore", "s3transfer", "urllib3"):
        logging.getLogger(name).setLevel(logging.WARNING)


def _run_browser_command(
    config_dir: Path,
    cache_dir: Optional[Path] = None,
    sync_interval: Optional[float] = None,
    prune_interval: Optional[float] = None,
    editor: Optional[str] = None,
) -> int:
    config = AppConfig(config_dir)
    editors = EditorSessions(editor_command(editor or config.editor))
    engine = SyncEngine(
        config,
        editors,
        cache_root=cache_dir,
        sync_interval=sync_interval,
        prune_interval=prune_interval,
    )
    SyncBrowser(engine, editors).run()
    return 0


def _positive_float(value: str) -> float:
    try:
        parsed = float(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"not a number: {value}") from None
    if parsed <= 0:
        raise argparse.ArgumentTypeError(f"must be positive: {value}")
    return parsed


def main(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        description="Keep Excalidraw diagrams in sync with S3-compatible storage"
    )
    parser.add_argument("--config-dir", help="Directory for config, secrets and logs")
    parser.add_argument("--cache-dir", help="Directory for cached diagram files")
    parser.add_argument(
        "--sync-interval",
        type=_positive_float,
        help="Seconds between checks for local changes",
    )
    parser.add_argument(
        "--prune-interval",
        type=_positive_float,
        help="Seconds between checks for closed editors",
    )
    parser.add_argument(
        "--editor",
        help="Editor command; must stay in the foreground while the file is open",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    args = parser.parse_args(argv)

    config_dir = (
        Path(args.config_dir).expanduser() if args.config_dir else default_config_dir()
    )
    cache_dir = Path(args.cache_dir).expanduser() if args.cache_dir else None
    _configure_logging(config_dir, args.verbose)
    return _run_browser_command(
        config_dir,
        cache_dir=cache_dir,
        sync_interval=args.sync_interval,
        prune_interval=args.prune_interval,
        editor=args.editor,
    )


if __name__ == "__main__":
    raise SystemExit(main())

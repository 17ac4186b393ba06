from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

DELIMITER = "/"


@dataclass(eq=False)
class LogicalNode:
    name: str
    parent: Optional["Directory"] = None
    is_directory: bool = field(default=False, init=False)

    def __post_init__(self) -> None:
        if not isinstance(self.name, str) or not self.name:
            raise ValueError("Node name must be a non-empty string")
        if DELIMITER in self.name:
            raise ValueError(f"Node name may not contain '{DELIMITER}': {self.name!r}")
        if self.parent is not None and not self.parent.is_directory:
            raise ValueError("Parent node must be a directory")

    @property
    def path(self) -> tuple[str, ...]:
        names: list[str] = []
        current: Optional[LogicalNode] = self
        while current is not None:
            names.append(current.name)
            current = current.parent
        return tuple(reversed(names))

    @property
    def key(self) -> str:
        return derive_key(self)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, LogicalNode):
            return NotImplemented
        return derive_key(self) == derive_key(other)

    def __hash__(self) -> int:
        return hash(derive_key(self))

    def __repr__(self) -> str:
        return f"{type(self).__name__}({derive_key(self)!r})"


@dataclass(eq=False, repr=False)
class Directory(LogicalNode):
    children: list[LogicalNode] = field(default_factory=list, compare=False)

    def __post_init__(self) -> None:
        super().__post_init__()
        self.is_directory = True


@dataclass(eq=False, repr=False)
class FileNode(LogicalNode):
    size: int = 0

    def __post_init__(self) -> None:
        super().__post_init__()
        self.is_directory = False


def derive_key(node: LogicalNode) -> str:
    key = DELIMITER.join(node.path)
    if node.is_directory:
        key = f"{key}{DELIMITER}"
    return key


def parse_key(key: str, size: int = 0) -> LogicalNode:
    """Rebuild the node (and its ancestor directories) an object key names."""
    if not key or key == DELIMITER:
        raise ValueError("Object key must not be empty")
    is_directory = key.endswith(DELIMITER)
    parts = key[:-1].split(DELIMITER) if is_directory else key.split(DELIMITER)
    if any(not part for part in parts):
        raise ValueError(f"Object key has an empty path segment: {key!r}")
    parent: Optional[Directory] = None
    for part in parts[:-1]:
        parent = Directory(part, parent)
    if is_directory:
        return Directory(parts[-1], parent)
    return FileNode(parts[-1], parent, size=size)

from __future__ import annotations

import logging
import os
import shlex
import subprocess
from pathlib import Path
from typing import Optional, Protocol

from .errors import LocalIOError

logger = logging.getLogger(__name__)

DEFAULT_EDITOR = "code --wait"


class EditorVisibility(Protocol):
    def open_identities(self) -> set[str]: ...


def identity_for(path: Path) -> str:
    return str(Path(path).resolve())


def editor_command(configured: Optional[str] = None) -> list[str]:
    value = (
        configured
        or os.environ.get("DRAWSYNC_EDITOR")
        or os.environ.get("VISUAL")
        or os.environ.get("EDITOR")
        or DEFAULT_EDITOR
    )
    return shlex.split(value)


class EditorSessions:
    """External editor processes, one per cached file.

    A file counts as open for as long as the editor process launched for it
    keeps running, so the editor command must stay in the foreground
    (``code --wait``, ``subl -w`` and the like).
    """

    def __init__(self, command: Optional[list[str]] = None) -> None:
        self._command = command or editor_command()
        self._processes: dict[str, subprocess.Popen] = {}

    @property
    def command(self) -> list[str]:
        return list(self._command)

    def launch(self, path: Path) -> str:
        identity = identity_for(path)
        process = self._processes.get(identity)
        if process is not None and process.poll() is None:
            return identity
        try:
            self._processes[identity] = subprocess.Popen(
                [*self._command, str(path)],
                stdin=subprocess.DEVNULL,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
                start_new_session=True,
            )
        except OSError as exc:
            raise LocalIOError(path, exc) from exc
        logger.info("Opened %s with %s", path, self._command[0])
        return identity

    def open_identities(self) -> set[str]:
        identities: set[str] = set()
        for identity, process in list(self._processes.items()):
            if process.poll() is None:
                identities.add(identity)
            else:
                del self._processes[identity]
        return identities

from __future__ import annotations

from pathlib import Path
from typing import Optional, Union


class DrawsyncError(Exception):
    severity = "error"


class ConfigurationError(DrawsyncError):
    pass


class NoTargetOrBucketSelected(DrawsyncError):
    severity = "warning"

    def __init__(self, message: str = "No S3 target or bucket selected") -> None:
        super().__init__(message)


class NoTargetSelected(NoTargetOrBucketSelected):
    def __init__(self, message: str = "No S3 target selected") -> None:
        super().__init__(message)


class RemoteOperationError(DrawsyncError):
    def __init__(self, operation: str, cause: Optional[BaseException] = None) -> None:
        self.operation = operation
        self.cause = cause
        if cause is None:
            message = f"{operation} failed"
        else:
            message = f"{operation} failed: {cause}"
        super().__init__(message)


class LocalIOError(DrawsyncError):
    def __init__(
        self, path: Union[str, Path], cause: Optional[BaseException] = None
    ) -> None:
        self.path = Path(path)
        self.cause = cause
        if cause is None:
            message = f"Local file operation failed: {path}"
        else:
            message = f"Local file operation failed: {path}: {cause}"
        super().__init__(message)


class ObjectExistsError(DrawsyncError):
    severity = "warning"

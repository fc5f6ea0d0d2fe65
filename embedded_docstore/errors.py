from __future__ import annotations


class DocStoreError(Exception):
    """Base class for all store errors."""


class ValidationError(DocStoreError):
    pass


class InvalidNameError(ValidationError):
    """Collection name does not match [A-Za-z0-9_-]+."""


class InvalidRecordError(ValidationError):
    """Record contains a value outside the supported value model."""


class StoreIOError(DocStoreError, OSError):
    """
    Filesystem-level failure opening or reading the store.
    Subclasses OSError so callers catching IOError/OSError keep working.
    """


class WriteFailedError(StoreIOError):
    """Append or compaction could not complete durably; on-disk state is unchanged."""


class CorruptFrameError(StoreIOError):
    """Checksum mismatch or undecodable payload on a frame that is not the tail."""

    def __init__(self, msg: str, *, path: str | None = None, offset: int | None = None) -> None:
        super().__init__(msg)
        self.path = path
        self.offset = offset

    def __str__(self) -> str:
        base = super().__str__()
        if self.path is not None and self.offset is not None:
            return f"{base} ({self.path} @ {self.offset})"
        return base


class StoreClosedError(DocStoreError):
    pass

"""Exception taxonomy for the library pipeline and query layer."""
from __future__ import annotations

from typing import Any


class LibraryError(Exception):
    """Base class; carries a human readable message."""

    def __init__(self, message: str, *args: Any) -> None:
        super().__init__(message, *args)
        self.message = message


class ProbeError(LibraryError):
    """Duration could not be read. Callers leave the duration unset."""


class ThumbnailError(LibraryError):
    """Thumbnail extraction failed. Callers leave the thumbnail unset."""


class PreviewError(LibraryError):
    """Preview extraction failed. Never escapes media.generate_preview()."""


class StoreConflict(LibraryError):
    """A row with the same natural key already exists."""

    def __init__(self, entity: str, key: Any) -> None:
        super().__init__(f"{entity} already exists: {key}")
        self.entity = entity
        self.key = key


class ValidationError(LibraryError):
    """Request rejected before it reached the store."""


class NotFound(LibraryError):
    def __init__(self, entity: str, key: Any) -> None:
        super().__init__(f"{entity} {key} not found")
        self.entity = entity
        self.key = key

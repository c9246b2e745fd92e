from __future__ import annotations

from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from .models import BookMetadata


class InspectionError(Exception):
    """Base class for everything that can go wrong while reading a book archive."""


class NotAnArchive(InspectionError):
    pass


class UnsupportedExtension(InspectionError):
    pass


class ResolveError(InspectionError):
    """Raised by a format resolver; carries whatever metadata was read before failing."""

    def __init__(self, message: str, metadata: Optional["BookMetadata"] = None) -> None:
        super().__init__(message)
        self.metadata = metadata


class MissingContainerDescriptor(ResolveError):
    pass


class MalformedContainerDescriptor(ResolveError):
    pass


class MissingPackageDocument(ResolveError):
    pass


class MissingFictionBookDocument(ResolveError):
    pass


class CoverNotResolved(ResolveError):
    pass


class CoverEntryMissing(ResolveError):
    pass

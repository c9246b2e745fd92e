from __future__ import annotations

import datetime as dt
from dataclasses import dataclass, field, fields
from enum import Enum
from typing import Optional

METADATA_FIELDS = (
    "title",
    "creator",
    "identifier",
    "language",
    "publisher",
    "subject",
    "description",
    "date",
)


class InspectMode(str, Enum):
    COVER = "cover"
    INFO = "info"


class SortMode(str, Enum):
    NAME_ASC = "name-asc"
    NAME_DESC = "name-desc"
    DATE_ASC = "date-asc"
    DATE_DESC = "date-desc"


@dataclass
class Book:
    title: str
    filename: str
    size: int
    mime_type: str
    last_updated: dt.datetime
    simple_mime: str = ""


@dataclass
class CoverResult:
    data: bytes
    media_type: str


@dataclass
class BookMetadata:
    title: Optional[str] = None
    creator: Optional[str] = None
    identifier: Optional[str] = None
    language: Optional[str] = None
    publisher: Optional[str] = None
    subject: Optional[str] = None
    description: Optional[str] = None
    date: Optional[str] = None
    cover: Optional[bytes] = None
    cover_media_type: Optional[str] = None

    def has_fields(self) -> bool:
        return any(getattr(self, name) is not None for name in METADATA_FIELDS)

    def is_empty(self) -> bool:
        return self.cover is None and not self.has_fields()

    def cover_result(self) -> Optional[CoverResult]:
        if self.cover is None:
            return None
        return CoverResult(data=self.cover, media_type=self.cover_media_type or "image/jpeg")


@dataclass
class ManifestItem:
    item_id: str
    href: str
    media_type: str
    properties: Optional[str] = None


@dataclass
class ContainerDescriptor:
    rootfile_paths: list[str] = field(default_factory=list)

    @property
    def package_path(self) -> Optional[str]:
        return self.rootfile_paths[0] if self.rootfile_paths else None


@dataclass
class MetaEntry:
    name: Optional[str]
    content: Optional[str]


@dataclass
class PackageDocument:
    path: str
    manifest: list[ManifestItem] = field(default_factory=list)
    meta: list[MetaEntry] = field(default_factory=list)
    metadata: BookMetadata = field(default_factory=BookMetadata)

    @property
    def directory(self) -> str:
        head, _, _ = self.path.rpartition("/")
        return head

    def item_by_id(self, item_id: str) -> Optional[ManifestItem]:
        for item in self.manifest:
            if item.item_id == item_id:
                return item
        return None


def metadata_to_dict(meta: BookMetadata) -> dict:
    return {item.name: getattr(meta, item.name) for item in fields(meta) if item.name != "cover"}

from __future__ import annotations

import logging
import re
import zipfile
from io import BytesIO
from pathlib import Path
from typing import Callable, Optional, Union

from .container import guess_image_media_type, iter_content_entries
from .epub import resolve_epub
from .errors import NotAnArchive, ResolveError, UnsupportedExtension
from .fb2 import resolve_fb2_zip
from .models import BookMetadata, CoverResult, InspectMode

COVER_NAME_RE = re.compile(r"^cover\.(jpe?g|png)$", re.IGNORECASE)
IMAGE_NAME_RE = re.compile(r"\.(jpe?g|png)$", re.IGNORECASE)

InspectResult = Union[CoverResult, BookMetadata, None]

logger = logging.getLogger("opdshelf.archive")


def _last_segment(name: str) -> str:
    return name.replace("\\", "/").rstrip("/").rsplit("/", 1)[-1]


def named_cover_entry(entries: list[zipfile.ZipInfo]) -> Optional[zipfile.ZipInfo]:
    for info in entries:
        if COVER_NAME_RE.match(_last_segment(info.filename)):
            return info
    return None


def largest_image_entry(entries: list[zipfile.ZipInfo]) -> Optional[zipfile.ZipInfo]:
    images = [info for info in entries if IMAGE_NAME_RE.search(info.filename)]
    if not images:
        return None
    # max() keeps the first of equally sized entries.
    return max(images, key=lambda info: info.file_size)


# A cover named as such beats any size comparison.
HEURISTIC_STRATEGIES: tuple[Callable[[list[zipfile.ZipInfo]], Optional[zipfile.ZipInfo]], ...] = (
    named_cover_entry,
    largest_image_entry,
)


def find_heuristic_cover(zf: zipfile.ZipFile) -> Optional[zipfile.ZipInfo]:
    entries = list(iter_content_entries(zf))
    for strategy in HEURISTIC_STRATEGIES:
        info = strategy(entries)
        if info is not None:
            return info
    return None


def _as_result(metadata: BookMetadata, mode: InspectMode) -> InspectResult:
    if mode is InspectMode.COVER:
        return metadata.cover_result()
    return None if metadata.is_empty() else metadata


def _heuristic_result(zf: zipfile.ZipFile, mode: InspectMode, metadata: BookMetadata) -> InspectResult:
    info = find_heuristic_cover(zf)
    if info is not None:
        metadata.cover = zf.read(info)
        metadata.cover_media_type = guess_image_media_type(info.filename)
    return _as_result(metadata, mode)


class GenericZipContainer:
    """Any zip of images: pick the cover by name, else by size."""

    kind = "zip"

    def extract(self, zf: zipfile.ZipFile, mode: InspectMode) -> InspectResult:
        return _heuristic_result(zf, mode, BookMetadata())


class _ResolvedContainer(GenericZipContainer):
    def resolve(self, zf: zipfile.ZipFile) -> BookMetadata:
        raise NotImplementedError

    def extract(self, zf: zipfile.ZipFile, mode: InspectMode) -> InspectResult:
        try:
            metadata = self.resolve(zf)
        except ResolveError as exc:
            logger.debug("%s resolver gave up, scanning images instead: %s", self.kind, exc)
            partial = exc.metadata if mode is InspectMode.INFO and exc.metadata is not None else BookMetadata()
            return _heuristic_result(zf, mode, partial)
        except Exception:
            logger.warning("%s resolver failed, scanning images instead", self.kind, exc_info=True)
            return _heuristic_result(zf, mode, BookMetadata())
        return _as_result(metadata, mode)


class EpubContainer(_ResolvedContainer):
    kind = "epub"

    def resolve(self, zf: zipfile.ZipFile) -> BookMetadata:
        return resolve_epub(zf)


class FictionBookZipContainer(_ResolvedContainer):
    kind = "fb2.zip"

    def resolve(self, zf: zipfile.ZipFile) -> BookMetadata:
        return resolve_fb2_zip(zf)


# Longest suffix first so ".fb2.zip" is not taken for a plain ".zip".
CONTAINER_KINDS: tuple[tuple[str, GenericZipContainer], ...] = (
    (".fb2.zip", FictionBookZipContainer()),
    (".epub", EpubContainer()),
    (".cbz", GenericZipContainer()),
    (".zip", GenericZipContainer()),
)
SUPPORTED_ARCHIVES = tuple(suffix for suffix, _ in CONTAINER_KINDS)


def is_supported_archive(file_path: Union[str, Path]) -> bool:
    name = Path(file_path).name.lower()
    return name.endswith(SUPPORTED_ARCHIVES)


def container_for(file_path: Union[str, Path]) -> GenericZipContainer:
    name = Path(file_path).name.lower()
    for suffix, container in CONTAINER_KINDS:
        if name.endswith(suffix):
            return container
    raise UnsupportedExtension(f"{Path(file_path).name} is not a supported archive")


def open_archive(file_path: Union[str, Path]) -> zipfile.ZipFile:
    # The central directory sits at the end of the file, so read it whole.
    data = Path(file_path).read_bytes()
    try:
        return zipfile.ZipFile(BytesIO(data))
    except (zipfile.BadZipFile, zipfile.LargeZipFile, ValueError, EOFError) as exc:
        raise NotAnArchive(f"{Path(file_path).name}: {exc}") from exc


def inspect(file_path: Union[str, Path], mode: InspectMode = InspectMode.COVER) -> InspectResult:
    """Extract a cover (``COVER``) or metadata (``INFO``) from a book archive.

    Never raises: unsupported extensions, unreadable files, broken archives and
    archives without any usable image all come back as ``None``.
    """

    mode = InspectMode(mode)
    try:
        container = container_for(file_path)
    except UnsupportedExtension:
        return None

    try:
        with open_archive(file_path) as zf:
            return container.extract(zf, mode)
    except NotAnArchive as exc:
        logger.warning("cannot open %s as zip archive: %s", file_path, exc)
    except OSError as exc:
        logger.warning("cannot read %s: %s", file_path, exc)
    except Exception:
        logger.warning("extraction from %s failed", file_path, exc_info=True)
    return None


def extract_cover(file_path: Union[str, Path]) -> Optional[CoverResult]:
    result = inspect(file_path, InspectMode.COVER)
    return result if isinstance(result, CoverResult) else None


def extract_metadata(file_path: Union[str, Path]) -> Optional[BookMetadata]:
    result = inspect(file_path, InspectMode.INFO)
    return result if isinstance(result, BookMetadata) else None

from __future__ import annotations

import datetime as dt
import logging
import mimetypes
import os
from pathlib import Path, PurePosixPath
from typing import Optional

from .models import Book, SortMode

DEFAULT_MIME = "application/octet-stream"
DEFAULT_SORT = SortMode.DATE_DESC

BOOK_MIME_TYPES = {
    ".fb2.zip": "application/x-zip-compressed-fb2",
    ".epub": "application/epub+zip",
    ".cbz": "application/vnd.comicbook+zip",
    ".cbr": "application/vnd.comicbook-rar",
    ".fb2": "application/x-fictionbook+xml",
    ".mobi": "application/x-mobipocket-ebook",
    ".azw": "application/vnd.amazon.ebook",
    ".azw3": "application/vnd.amazon.ebook",
    ".djvu": "image/vnd.djvu",
    ".pdf": "application/pdf",
    ".zip": "application/zip",
    ".txt": "text/plain",
}

SIMPLE_MIME_LABELS = {
    "application/epub+zip": "EPUB",
    "application/pdf": "PDF",
    "application/x-fictionbook+xml": "FB2",
    "application/x-zip-compressed-fb2": "FB2",
    "application/zip": "ZIP",
    "application/x-zip-compressed": "ZIP",
    "application/x-cbz": "CBZ",
    "application/vnd.comicbook+zip": "CBZ",
    "application/x-cbr": "CBR",
    "application/vnd.comicbook-rar": "CBR",
    "application/x-mobi": "MOBI",
    "application/x-mobipocket-ebook": "MOBI",
    "application/vnd.amazon.ebook": "AZW",
    "image/vnd.djvu": "DJVU",
    "text/plain": "TXT",
    "text/rtf": "RTF",
    "application/rtf": "RTF",
    "text/html": "HTML",
}

SIZE_UNITS = ("B", "KB", "MB", "GB", "TB")

logger = logging.getLogger("opdshelf.library")


class BookPathError(ValueError):
    pass


def guess_mime_type(filename: str) -> str:
    name = filename.lower()
    for suffix, mime_type in BOOK_MIME_TYPES.items():
        if name.endswith(suffix):
            return mime_type
    guessed, _ = mimetypes.guess_type(name)
    return guessed or DEFAULT_MIME


def simple_mime(mime_type: str) -> str:
    label = SIMPLE_MIME_LABELS.get(mime_type)
    if label:
        return label
    lower = mime_type.lower()
    if "azw" in lower:
        return "AZW"
    if "djvu" in lower:
        return "DJVU"
    return f"{mime_type[:10]}..." if len(mime_type) > 12 else mime_type


def format_size(size: int) -> str:
    value = float(size)
    unit = 0
    while value >= 1024 and unit < len(SIZE_UNITS) - 1:
        value /= 1024
        unit += 1
    return f"{value:.1f} {SIZE_UNITS[unit]}"


def title_from_filename(filename: str) -> str:
    name = PurePosixPath(filename).name
    lower = name.lower()
    if lower.endswith(".fb2.zip"):
        return name[: -len(".fb2.zip")]
    return PurePosixPath(name).stem


def normalize_sort(value: Optional[str]) -> SortMode:
    try:
        return SortMode(value or DEFAULT_SORT.value)
    except ValueError:
        return DEFAULT_SORT


def list_books(books_dir: Path) -> list[Book]:
    """Scan the library recursively; hidden files and directories are skipped."""

    if not books_dir.exists():
        books_dir.mkdir(parents=True, exist_ok=True)
        return []

    books: list[Book] = []
    for root, dirs, files in os.walk(books_dir):
        dirs[:] = sorted(name for name in dirs if not name.startswith("."))
        for name in sorted(files):
            if name.startswith("."):
                continue
            path = Path(root) / name
            try:
                stat = path.stat()
            except OSError:
                logger.warning("cannot stat %s", path, exc_info=True)
                continue
            relative = path.relative_to(books_dir).as_posix()
            mime_type = guess_mime_type(name)
            books.append(
                Book(
                    title=title_from_filename(name),
                    filename=relative,
                    size=stat.st_size,
                    mime_type=mime_type,
                    last_updated=dt.datetime.fromtimestamp(stat.st_mtime, tz=dt.timezone.utc),
                    simple_mime=simple_mime(mime_type),
                )
            )
    return books


def sort_books(books: list[Book], mode: SortMode) -> list[Book]:
    if mode is SortMode.NAME_ASC:
        return sorted(books, key=lambda book: book.title.casefold())
    if mode is SortMode.NAME_DESC:
        return sorted(books, key=lambda book: book.title.casefold(), reverse=True)
    if mode is SortMode.DATE_ASC:
        return sorted(books, key=lambda book: book.last_updated)
    return sorted(books, key=lambda book: book.last_updated, reverse=True)


def resolve_book_path(books_dir: Path, filename: str) -> Path:
    """Map an untrusted, library-relative filename onto a path inside ``books_dir``."""

    cleaned = (filename or "").replace("\\", "/").strip("/")
    if not cleaned:
        raise BookPathError("empty filename")
    parts = cleaned.split("/")
    if any(part in {"", ".", ".."} for part in parts):
        raise BookPathError(f"invalid path segment in {filename!r}")

    base = books_dir.resolve()
    target = (base / Path(*parts)).resolve()
    if target != base and base not in target.parents:
        raise BookPathError(f"{filename!r} escapes the library")
    return target


def _safe_basename(filename: str) -> str:
    name = PurePosixPath((filename or "").replace("\\", "/")).name.strip()
    if name in {"", ".", ".."} or name.startswith("."):
        raise BookPathError(f"invalid filename {filename!r}")
    return name


def save_upload(books_dir: Path, filename: str, data: bytes) -> Path:
    target = books_dir / _safe_basename(filename)
    books_dir.mkdir(parents=True, exist_ok=True)
    target.write_bytes(data)
    return target


def delete_book(books_dir: Path, filename: str) -> bool:
    path = resolve_book_path(books_dir, filename)
    if not path.is_file():
        return False
    path.unlink()
    return True


def rename_book(books_dir: Path, old_filename: str, new_filename: str) -> Optional[Path]:
    """Rename within the book's own directory; never overwrites an existing file.

    A new name without an extension keeps the old one.
    """

    old_path = resolve_book_path(books_dir, old_filename)
    new_name = _safe_basename(new_filename)
    if not Path(new_name).suffix:
        old_name = old_path.name
        extension = ".fb2.zip" if old_name.lower().endswith(".fb2.zip") else old_path.suffix
        new_name = f"{new_name}{extension}"
    new_path = old_path.parent / new_name
    if not old_path.is_file() or new_path.exists():
        return None
    old_path.rename(new_path)
    return new_path

import datetime as dt
import os
import tempfile
import unittest
from pathlib import Path

from opdshelf.library import (
    BookPathError,
    delete_book,
    format_size,
    guess_mime_type,
    list_books,
    normalize_sort,
    rename_book,
    resolve_book_path,
    save_upload,
    simple_mime,
    sort_books,
    title_from_filename,
)
from opdshelf.models import Book, SortMode


def _touch(path: Path, data: bytes, mtime: float) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(data)
    os.utime(path, (mtime, mtime))
    return path


def _book(title: str, day: int) -> Book:
    return Book(
        title=title,
        filename=f"{title}.epub",
        size=1,
        mime_type="application/epub+zip",
        last_updated=dt.datetime(2024, 1, day, tzinfo=dt.timezone.utc),
    )


class ListBooksTests(unittest.TestCase):
    def test_scan_is_recursive_and_skips_hidden_entries(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            base = Path(tmp)
            _touch(base / "Dune.epub", b"e" * 10, 1_700_000_000)
            _touch(base / "comics" / "Saga 01.cbz", b"c" * 2048, 1_700_000_100)
            _touch(base / "Picnic.fb2.zip", b"f", 1_700_000_200)
            _touch(base / ".opdshelf.db", b"db", 1_700_000_300)
            _touch(base / ".trash" / "old.epub", b"old", 1_700_000_400)

            books = {book.filename: book for book in list_books(base)}
            self.assertEqual(set(books), {"Dune.epub", "comics/Saga 01.cbz", "Picnic.fb2.zip"})

            saga = books["comics/Saga 01.cbz"]
            self.assertEqual(saga.title, "Saga 01")
            self.assertEqual(saga.size, 2048)
            self.assertEqual(saga.mime_type, "application/vnd.comicbook+zip")
            self.assertEqual(saga.simple_mime, "CBZ")
            self.assertEqual(saga.last_updated.tzinfo, dt.timezone.utc)

            picnic = books["Picnic.fb2.zip"]
            self.assertEqual(picnic.title, "Picnic")
            self.assertEqual(picnic.simple_mime, "FB2")

    def test_missing_directory_is_created(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            target = Path(tmp) / "books"
            self.assertEqual(list_books(target), [])
            self.assertTrue(target.is_dir())


class SortBooksTests(unittest.TestCase):
    def setUp(self) -> None:
        self.books = [_book("banana", 2), _book("Apple", 3), _book("cherry", 1)]

    def test_name_sorting_ignores_case(self) -> None:
        self.assertEqual([b.title for b in sort_books(self.books, SortMode.NAME_ASC)], ["Apple", "banana", "cherry"])
        self.assertEqual([b.title for b in sort_books(self.books, SortMode.NAME_DESC)], ["cherry", "banana", "Apple"])

    def test_date_sorting(self) -> None:
        self.assertEqual([b.title for b in sort_books(self.books, SortMode.DATE_ASC)], ["cherry", "banana", "Apple"])
        self.assertEqual([b.title for b in sort_books(self.books, SortMode.DATE_DESC)], ["Apple", "banana", "cherry"])

    def test_normalize_sort_defaults_to_newest_first(self) -> None:
        self.assertIs(normalize_sort("name-asc"), SortMode.NAME_ASC)
        self.assertIs(normalize_sort(None), SortMode.DATE_DESC)
        self.assertIs(normalize_sort("random"), SortMode.DATE_DESC)


class FormattingTests(unittest.TestCase):
    def test_format_size(self) -> None:
        self.assertEqual(format_size(0), "0.0 B")
        self.assertEqual(format_size(512), "512.0 B")
        self.assertEqual(format_size(1536), "1.5 KB")
        self.assertEqual(format_size(5 * 1024 * 1024), "5.0 MB")

    def test_mime_types(self) -> None:
        self.assertEqual(guess_mime_type("a.EPUB"), "application/epub+zip")
        self.assertEqual(guess_mime_type("a.fb2.zip"), "application/x-zip-compressed-fb2")
        self.assertEqual(guess_mime_type("a.zip"), "application/zip")
        self.assertEqual(guess_mime_type("a.unknownext"), "application/octet-stream")

    def test_simple_mime(self) -> None:
        self.assertEqual(simple_mime("application/epub+zip"), "EPUB")
        self.assertEqual(simple_mime("application/pdf"), "PDF")
        self.assertEqual(simple_mime("application/x-azw3"), "AZW")
        self.assertEqual(simple_mime("image/png"), "image/png")
        self.assertEqual(simple_mime("application/something-long"), "applicatio...")

    def test_title_from_filename(self) -> None:
        self.assertEqual(title_from_filename("dir/Some Book.epub"), "Some Book")
        self.assertEqual(title_from_filename("Novel.FB2.ZIP"), "Novel")


class PathSafetyTests(unittest.TestCase):
    def test_rejects_parent_segments(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            base = Path(tmp)
            for name in ("../etc/passwd", "a/../../b.epub", "..", "", "./x.epub", "a//b.epub"):
                with self.assertRaises(BookPathError, msg=name):
                    resolve_book_path(base, name)

    def test_accepts_nested_path(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            base = Path(tmp)
            resolved = resolve_book_path(base, "comics/Saga 01.cbz")
            self.assertEqual(resolved, (base / "comics" / "Saga 01.cbz").resolve())

    def test_rejects_symlink_escape(self) -> None:
        with tempfile.TemporaryDirectory() as tmp, tempfile.TemporaryDirectory() as outside:
            base = Path(tmp)
            (Path(outside) / "secret.epub").write_bytes(b"secret")
            (base / "link").symlink_to(outside, target_is_directory=True)
            with self.assertRaises(BookPathError):
                resolve_book_path(base, "link/secret.epub")


class FileActionTests(unittest.TestCase):
    def test_save_upload_keeps_basename_only(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            base = Path(tmp)
            target = save_upload(base, "../../nested/Dune.epub", b"data")
            self.assertEqual(target, base / "Dune.epub")
            self.assertEqual(target.read_bytes(), b"data")
            with self.assertRaises(BookPathError):
                save_upload(base, ".hidden.epub", b"data")

    def test_delete_book(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            base = Path(tmp)
            (base / "Dune.epub").write_bytes(b"data")
            self.assertTrue(delete_book(base, "Dune.epub"))
            self.assertFalse((base / "Dune.epub").exists())
            self.assertFalse(delete_book(base, "Dune.epub"))

    def test_rename_keeps_extension(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            base = Path(tmp)
            (base / "sub").mkdir()
            (base / "sub" / "old.epub").write_bytes(b"e")
            (base / "Picnic.fb2.zip").write_bytes(b"f")

            renamed = rename_book(base, "sub/old.epub", "New Title")
            self.assertEqual(renamed, (base / "sub" / "New Title.epub").resolve())
            self.assertTrue(renamed.is_file())

            renamed = rename_book(base, "Picnic.fb2.zip", "Roadside Picnic")
            self.assertEqual(renamed.name, "Roadside Picnic.fb2.zip")

    def test_rename_never_overwrites(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            base = Path(tmp)
            (base / "a.epub").write_bytes(b"a")
            (base / "b.epub").write_bytes(b"b")
            self.assertIsNone(rename_book(base, "a.epub", "b.epub"))
            self.assertEqual((base / "b.epub").read_bytes(), b"b")
            self.assertIsNone(rename_book(base, "missing.epub", "c"))
            with self.assertRaises(BookPathError):
                rename_book(base, "../a.epub", "c")


if __name__ == "__main__":
    unittest.main()

import io
import unittest
import zipfile

from opdshelf.container import (
    canonical_member,
    guess_image_media_type,
    iter_content_entries,
    locate_member,
    member_index,
    node_text,
    resolve_relative,
    xml_root_from_bytes,
)


def _zip(names: list[str]) -> zipfile.ZipFile:
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as zf:
        for name in names:
            zf.writestr(name, b"" if name.endswith("/") else name.encode("utf-8"))
    buffer.seek(0)
    return zipfile.ZipFile(buffer)


class MemberPathTests(unittest.TestCase):
    def test_canonical_member(self) -> None:
        self.assertEqual(canonical_member("/OEBPS//Text/./ch1.xhtml"), "OEBPS/Text/ch1.xhtml")
        self.assertEqual(canonical_member("OEBPS\\Images\\a.jpg"), "OEBPS/Images/a.jpg")
        self.assertEqual(canonical_member("../../a.jpg"), "a.jpg")
        self.assertEqual(canonical_member(".."), "")

    def test_resolve_relative(self) -> None:
        self.assertEqual(resolve_relative("OEBPS", "images/cover.jpg"), "OEBPS/images/cover.jpg")
        self.assertEqual(resolve_relative("OEBPS/Text", "../Images/c.png#top"), "OEBPS/Images/c.png")
        self.assertEqual(resolve_relative("", "cover.jpg"), "cover.jpg")
        self.assertEqual(resolve_relative("OEBPS", "#only-fragment"), "")

    def test_locate_member_handles_percent_encoding(self) -> None:
        with _zip(["OEBPS/Images/Cover Art.jpg", "OEBPS/Images/"]) as zf:
            index = member_index(zf)
            self.assertNotIn("OEBPS/Images", index)
            info = locate_member(index, "OEBPS/Images/Cover%20Art.jpg")
            self.assertIsNotNone(info)
            self.assertEqual(info.filename, "OEBPS/Images/Cover Art.jpg")
            self.assertIsNone(locate_member(index, "OEBPS/Images/missing.jpg"))

    def test_content_entries_skip_macos_metadata(self) -> None:
        with _zip(["__MACOSX/", "__MACOSX/._a.jpg", "pages/", "pages/a.jpg"]) as zf:
            self.assertEqual([info.filename for info in iter_content_entries(zf)], ["pages/a.jpg"])

    def test_guess_image_media_type(self) -> None:
        self.assertEqual(guess_image_media_type("a/B.PNG"), "image/png")
        self.assertEqual(guess_image_media_type("a.jpeg"), "image/jpeg")
        self.assertEqual(guess_image_media_type("a.webp"), "image/webp")
        self.assertEqual(guess_image_media_type("cover"), "image/jpeg")


class XmlHelperTests(unittest.TestCase):
    def test_entities_are_not_expanded(self) -> None:
        raw = (
            b"<?xml version=\"1.0\"?>"
            b"<!DOCTYPE r [<!ENTITY e SYSTEM \"file:///etc/passwd\">]>"
            b"<r><t>&e;safe</t></r>"
        )
        root = xml_root_from_bytes(raw)
        self.assertIsNotNone(root)
        self.assertNotIn("root:", node_text(root) or "")

    def test_node_text_joins_fragments(self) -> None:
        root = xml_root_from_bytes(b"<p>  Hello <b>brave</b>\n new   world </p>")
        self.assertEqual(node_text(root), "Hello brave new   world")
        self.assertIsNone(node_text(None))


if __name__ == "__main__":
    unittest.main()

from __future__ import annotations

import base64
import binascii
import logging
import zipfile
from typing import Optional

from lxml import etree as LXML_ET

from .container import (
    child_by_local_name,
    find_path,
    iter_children_by_local_name,
    iter_content_entries,
    local_attrs,
    node_text,
    tag_local_name,
    xml_root_from_bytes,
)
from .errors import CoverNotResolved, MissingFictionBookDocument
from .models import BookMetadata

logger = logging.getLogger("opdshelf.fb2")


def _author_name(author: Optional[LXML_ET._Element]) -> Optional[str]:
    if author is None:
        return None
    parts = [
        node_text(child_by_local_name(author, name))
        for name in ("first-name", "middle-name", "last-name")
    ]
    joined = " ".join(part for part in parts if part)
    return joined or node_text(child_by_local_name(author, "nickname"))


def _read_title_info(root: LXML_ET._Element) -> BookMetadata:
    result = BookMetadata()
    title_info = find_path(root, "description", "title-info")
    if title_info is not None:
        result.title = node_text(child_by_local_name(title_info, "book-title"))
        result.creator = _author_name(child_by_local_name(title_info, "author"))
        result.language = node_text(child_by_local_name(title_info, "lang"))
        result.subject = node_text(child_by_local_name(title_info, "genre"))
        result.description = node_text(child_by_local_name(title_info, "annotation"))
        result.date = node_text(child_by_local_name(title_info, "date"))

    publish_info = find_path(root, "description", "publish-info")
    if publish_info is not None:
        result.publisher = node_text(child_by_local_name(publish_info, "publisher"))
        result.identifier = node_text(child_by_local_name(publish_info, "isbn"))
    if result.identifier is None:
        result.identifier = node_text(find_path(root, "description", "document-info", "id"))
    return result


def _coverpage_ref(root: LXML_ET._Element) -> Optional[str]:
    coverpage = find_path(root, "description", "title-info", "coverpage")
    if coverpage is None:
        return None
    for image in coverpage.iter():
        if tag_local_name(image.tag) != "image":
            continue
        href = local_attrs(image).get("href", "").strip()
        if href:
            return href.lstrip("#")
    return None


def _pick_binary(binaries: list[LXML_ET._Element], cover_ref: Optional[str]) -> Optional[LXML_ET._Element]:
    if cover_ref:
        for node in binaries:
            if node.attrib.get("id") == cover_ref:
                return node
        return None
    for node in binaries:
        if "cover" in str(node.attrib.get("id") or "").lower():
            return node
    for node in binaries:
        if str(node.attrib.get("content-type") or "").lower().startswith("image/"):
            return node
    return None


def find_fb2_member(zf: zipfile.ZipFile) -> Optional[zipfile.ZipInfo]:
    for info in iter_content_entries(zf):
        if info.filename.lower().endswith(".fb2"):
            return info
    return None


def resolve_fb2_zip(zf: zipfile.ZipFile) -> BookMetadata:
    """Read the FictionBook document inside a ``.fb2.zip`` and decode its cover binary."""

    info = find_fb2_member(zf)
    if info is None:
        raise MissingFictionBookDocument("no .fb2 document in archive")
    root = xml_root_from_bytes(zf.read(info))
    if root is None:
        raise MissingFictionBookDocument(f"{info.filename} is not well-formed XML")

    metadata = _read_title_info(root)
    cover_ref = _coverpage_ref(root)
    node = _pick_binary(iter_children_by_local_name(root, "binary"), cover_ref)
    if node is None:
        raise CoverNotResolved(f"no cover binary in {info.filename}", metadata=metadata)

    try:
        data = base64.b64decode("".join((node.text or "").split()), validate=True)
    except (binascii.Error, ValueError) as exc:
        raise CoverNotResolved(f"cover binary in {info.filename} is not valid base64", metadata=metadata) from exc
    if not data:
        raise CoverNotResolved(f"cover binary in {info.filename} is empty", metadata=metadata)

    logger.debug("fb2 cover %r decoded from %s", node.attrib.get("id"), info.filename)
    metadata.cover = data
    metadata.cover_media_type = str(node.attrib.get("content-type") or "").strip() or "image/jpeg"
    return metadata

from __future__ import annotations

import posixpath
import zipfile
from pathlib import PurePosixPath
from typing import Iterator, Optional
from urllib.parse import unquote

from lxml import etree as LXML_ET

MACOSX_MARKER = "__MACOSX"

IMAGE_MEDIA_TYPES = {
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png": "image/png",
    ".gif": "image/gif",
    ".webp": "image/webp",
    ".svg": "image/svg+xml",
}


def canonical_member(name: str) -> str:
    normalized = posixpath.normpath((name or "").replace("\\", "/")).lstrip("/")
    while normalized.startswith("../"):
        normalized = normalized[3:]
    return "" if normalized in {"", ".", ".."} else normalized


def resolve_relative(base_dir: str, href: str) -> str:
    """Join an href onto the directory of the document that referenced it."""

    raw = (href or "").replace("\\", "/").split("#", 1)[0].strip()
    if not raw:
        return ""
    base = base_dir if base_dir not in {"", "."} else "."
    return canonical_member(posixpath.join(base, raw))


def member_index(zf: zipfile.ZipFile) -> dict[str, zipfile.ZipInfo]:
    mapping: dict[str, zipfile.ZipInfo] = {}
    for info in zf.infolist():
        if info.is_dir():
            continue
        canonical = canonical_member(info.filename)
        if canonical and canonical not in mapping:
            mapping[canonical] = info
    return mapping


def locate_member(index: dict[str, zipfile.ZipInfo], member_path: str) -> Optional[zipfile.ZipInfo]:
    canonical = canonical_member(member_path)
    if not canonical:
        return None
    info = index.get(canonical)
    if info is None and "%" in canonical:
        info = index.get(canonical_member(unquote(canonical)))
    return info


def iter_content_entries(zf: zipfile.ZipFile) -> Iterator[zipfile.ZipInfo]:
    """Yield file entries in archive order, skipping directories and macOS resource forks."""

    for info in zf.infolist():
        if info.is_dir():
            continue
        if MACOSX_MARKER in info.filename:
            continue
        yield info


def guess_image_media_type(name: str) -> str:
    suffix = PurePosixPath((name or "").replace("\\", "/")).suffix.lower()
    return IMAGE_MEDIA_TYPES.get(suffix, "image/jpeg")


def xml_root_from_bytes(raw: bytes) -> Optional[LXML_ET._Element]:
    parser = LXML_ET.XMLParser(resolve_entities=False, no_network=True, recover=True, huge_tree=True)
    try:
        return LXML_ET.fromstring(raw, parser=parser)
    except LXML_ET.XMLSyntaxError:
        return None


def tag_local_name(tag: object) -> str:
    if not tag or not isinstance(tag, str):
        return ""
    if "}" in tag:
        return tag.split("}", 1)[1]
    return tag


def local_attrs(node: LXML_ET._Element) -> dict[str, str]:
    return {tag_local_name(key): str(value) for key, value in node.attrib.items()}


def child_by_local_name(node: LXML_ET._Element, local_name: str) -> Optional[LXML_ET._Element]:
    for child in list(node):
        if tag_local_name(child.tag) == local_name:
            return child
    return None


def iter_children_by_local_name(node: LXML_ET._Element, local_name: str) -> list[LXML_ET._Element]:
    return [child for child in list(node) if tag_local_name(child.tag) == local_name]


def find_path(node: LXML_ET._Element, *local_names: str) -> Optional[LXML_ET._Element]:
    current: Optional[LXML_ET._Element] = node
    for name in local_names:
        if current is None:
            return None
        current = child_by_local_name(current, name)
    return current


def node_text(node: Optional[LXML_ET._Element]) -> Optional[str]:
    if node is None:
        return None
    text = " ".join(part.strip() for part in node.itertext() if part and part.strip())
    return text or None

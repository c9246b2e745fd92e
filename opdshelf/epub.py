from __future__ import annotations

import logging
import zipfile
from pathlib import PurePosixPath
from typing import Callable, Optional

from lxml import etree as LXML_ET

from .container import (
    IMAGE_MEDIA_TYPES,
    canonical_member,
    child_by_local_name,
    guess_image_media_type,
    iter_children_by_local_name,
    local_attrs,
    locate_member,
    member_index,
    node_text,
    resolve_relative,
    tag_local_name,
    xml_root_from_bytes,
)
from .errors import (
    CoverEntryMissing,
    CoverNotResolved,
    MalformedContainerDescriptor,
    MissingContainerDescriptor,
    MissingPackageDocument,
)
from .models import METADATA_FIELDS, BookMetadata, ContainerDescriptor, ManifestItem, MetaEntry, PackageDocument

CONTAINER_PATH = "META-INF/container.xml"
DC_NS = "http://purl.org/dc/elements/1.1/"

logger = logging.getLogger("opdshelf.epub")


def _tag_namespace(tag: object) -> str:
    if isinstance(tag, str) and tag.startswith("{"):
        return tag[1:].split("}", 1)[0]
    return ""


def parse_container_descriptor(raw: bytes) -> ContainerDescriptor:
    root = xml_root_from_bytes(raw)
    if root is None:
        raise MalformedContainerDescriptor(f"{CONTAINER_PATH} is not well-formed XML")
    paths = [
        canonical_member((node.attrib.get("full-path") or "").strip())
        for node in root.iter()
        if tag_local_name(node.tag) == "rootfile"
    ]
    return ContainerDescriptor(rootfile_paths=paths)


def _read_manifest(root: LXML_ET._Element) -> list[ManifestItem]:
    manifest = child_by_local_name(root, "manifest")
    if manifest is None:
        return []
    items: list[ManifestItem] = []
    for node in iter_children_by_local_name(manifest, "item"):
        properties = node.attrib.get("properties")
        items.append(
            ManifestItem(
                item_id=str(node.attrib.get("id") or "").strip(),
                href=str(node.attrib.get("href") or "").strip(),
                media_type=str(node.attrib.get("media-type") or "").strip().lower(),
                properties=properties.strip() if properties is not None else None,
            )
        )
    return items


def _read_meta_entries(metadata: Optional[LXML_ET._Element]) -> list[MetaEntry]:
    if metadata is None:
        return []
    entries: list[MetaEntry] = []
    for node in metadata.iter():
        if tag_local_name(node.tag) != "meta":
            continue
        attrs = local_attrs(node)
        entries.append(
            MetaEntry(
                name=attrs.get("name"),
                content=attrs.get("content"),
            )
        )
    return entries


def _read_dublin_core(metadata: Optional[LXML_ET._Element]) -> BookMetadata:
    result = BookMetadata()
    if metadata is None:
        return result

    dc_values: dict[str, list[str]] = {}
    plain_values: dict[str, list[str]] = {}
    # OPF 1.x nests the elements under dc-metadata, so walk the whole subtree.
    for node in metadata.iter():
        local = tag_local_name(node.tag)
        if local not in METADATA_FIELDS:
            continue
        text = node_text(node)
        if text is None:
            continue
        if _tag_namespace(node.tag) == DC_NS:
            dc_values.setdefault(local, []).append(text)
        else:
            # An unprefixed element inherits the package (OPF) namespace.
            plain_values.setdefault(local, []).append(text)

    for name in METADATA_FIELDS:
        values = dc_values.get(name)
        if values:
            setattr(result, name, values[0])

    if result.description is None and plain_values.get("description"):
        result.description = plain_values["description"][0]
    return result


def parse_package_document(path: str, raw: bytes) -> PackageDocument:
    root = xml_root_from_bytes(raw)
    if root is None:
        raise MissingPackageDocument(f"package document {path} is not well-formed XML")
    metadata = child_by_local_name(root, "metadata")
    return PackageDocument(
        path=path,
        manifest=_read_manifest(root),
        meta=_read_meta_entries(metadata),
        metadata=_read_dublin_core(metadata),
    )


def load_package_document(zf: zipfile.ZipFile, index: Optional[dict[str, zipfile.ZipInfo]] = None) -> PackageDocument:
    """Follow META-INF/container.xml to the package document and parse it."""

    if index is None:
        index = member_index(zf)
    container_info = locate_member(index, CONTAINER_PATH)
    if container_info is None:
        raise MissingContainerDescriptor(f"{CONTAINER_PATH} not found")
    descriptor = parse_container_descriptor(zf.read(container_info))

    package_path = descriptor.package_path
    if not package_path:
        raise MalformedContainerDescriptor(f"{CONTAINER_PATH} declares no rootfile full-path")

    package_info = locate_member(index, package_path)
    if package_info is None:
        raise MissingPackageDocument(f"package document {package_path} not found")
    return parse_package_document(package_path, zf.read(package_info))


def cover_from_meta_declaration(package: PackageDocument) -> Optional[ManifestItem]:
    for entry in package.meta:
        if (entry.name or "").strip() != "cover":
            continue
        cover_id = (entry.content or "").strip()
        if not cover_id:
            continue
        item = package.item_by_id(cover_id)
        if item is not None:
            return item
    return None


def cover_from_manifest_properties(package: PackageDocument) -> Optional[ManifestItem]:
    for item in package.manifest:
        if item.properties == "cover-image":
            return item
    return None


def cover_from_item_id(package: PackageDocument) -> Optional[ManifestItem]:
    for item in package.manifest:
        if "cover" in item.item_id.lower():
            return item
    return None


# Tried in order; the first strategy that yields an item wins.
COVER_STRATEGIES: tuple[Callable[[PackageDocument], Optional[ManifestItem]], ...] = (
    cover_from_meta_declaration,
    cover_from_manifest_properties,
    cover_from_item_id,
)


def is_image_item(item: ManifestItem) -> bool:
    if item.media_type.startswith("image/"):
        return True
    return PurePosixPath(item.href.split("#", 1)[0]).suffix.lower() in IMAGE_MEDIA_TYPES


def resolve_cover_item(package: PackageDocument) -> ManifestItem:
    for strategy in COVER_STRATEGIES:
        item = strategy(package)
        if item is not None and item.href:
            logger.debug("cover item %r found by %s", item.item_id, strategy.__name__)
            return item
    raise CoverNotResolved(f"no cover declared in {package.path}", metadata=package.metadata)


def resolve_epub(zf: zipfile.ZipFile) -> BookMetadata:
    """Resolve cover bytes and Dublin Core metadata of an opened EPUB container.

    Raises a ``ResolveError`` subclass when the container descriptor, the
    package document, the cover declaration or the cover entry is missing,
    and when the declared cover item is not an image.
    Cover failures carry the metadata read so far on ``error.metadata``.
    """

    index = member_index(zf)
    package = load_package_document(zf, index)
    item = resolve_cover_item(package)
    if not is_image_item(item):
        raise CoverNotResolved(
            f"cover item {item.item_id!r} in {package.path} is not an image ({item.media_type or item.href})",
            metadata=package.metadata,
        )

    cover_path = resolve_relative(package.directory, item.href)
    cover_info = locate_member(index, cover_path)
    if cover_info is None:
        raise CoverEntryMissing(f"cover entry {cover_path} not in archive", metadata=package.metadata)

    metadata = package.metadata
    metadata.cover = zf.read(cover_info)
    metadata.cover_media_type = guess_image_media_type(cover_path)
    return metadata

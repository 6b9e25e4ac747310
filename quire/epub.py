from __future__ import annotations

import html
import logging
import re
import zipfile
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath
from typing import Optional, Union
import xml.etree.ElementTree as ET

from lxml import etree as LXML_ET

from .errors import InvalidEpubError
from .models import ChapterRecord, TocEntry
from .paths import canonical_member, resolve_relative_path, split_href

logger = logging.getLogger("quire.epub")

CONTAINER_NS = "urn:oasis:names:tc:opendocument:xmlns:container"
OPF_NS = "http://www.idpf.org/2007/opf"
DC_NS = "http://purl.org/dc/elements/1.1/"
NCX_MEDIA_TYPE = "application/x-dtbncx+xml"


@dataclass
class _ManifestItem:
    item_id: str
    href: str
    media_type: str
    properties: set[str]
    member_path: str


@dataclass
class ParsedBook:
    title: str
    authors: list[str] = field(default_factory=list)
    language: str = ""
    chapters: list[ChapterRecord] = field(default_factory=list)
    table_of_contents: list[TocEntry] = field(default_factory=list)
    has_cover: bool = False


def _tag_local_name(tag: object) -> str:
    if not tag or not isinstance(tag, str):
        return ""
    if "}" in tag:
        return tag.split("}", 1)[1]
    return tag


def _child_by_local_name(node: LXML_ET._Element, local_name: str) -> Optional[LXML_ET._Element]:
    for child in list(node):
        if _tag_local_name(child.tag) == local_name:
            return child
    return None


def _iter_children_by_local_name(node: LXML_ET._Element, local_name: str) -> list[LXML_ET._Element]:
    return [child for child in list(node) if _tag_local_name(child.tag) == local_name]


def _node_text(node: Optional[LXML_ET._Element]) -> Optional[str]:
    if node is None:
        return None
    text = re.sub(r"\s+", " ", "".join(node.itertext())).strip()
    return text or None


def _xml_root_from_bytes(raw: bytes) -> LXML_ET._Element:
    parser = LXML_ET.XMLParser(resolve_entities=False, no_network=True, recover=True)
    root = LXML_ET.fromstring(raw, parser=parser)
    if root is None:
        raise ValueError("Empty XML document")
    return root


class _ArchiveReader:
    """Case-tolerant member access for one open EPUB archive."""

    def __init__(self, zf: zipfile.ZipFile) -> None:
        self.zf = zf
        self.index: dict[str, str] = {}
        self.folded: dict[str, str] = {}
        for info in zf.infolist():
            canonical = canonical_member(info.filename)
            if not canonical or canonical in self.index:
                continue
            self.index[canonical] = info.filename
            self.folded.setdefault(canonical.lower(), info.filename)

    def locate(self, member_path: str) -> Optional[str]:
        canonical = canonical_member(member_path)
        if not canonical:
            return None
        return self.index.get(canonical) or self.folded.get(canonical.lower())

    def read(self, member_path: str) -> Optional[bytes]:
        actual = self.locate(member_path)
        if actual is None:
            return None
        return self.zf.read(actual)


def _opf_path_from_container(reader: _ArchiveReader) -> str:
    container_raw = reader.read("META-INF/container.xml")
    if container_raw is None:
        raise KeyError("Missing META-INF/container.xml")
    root = ET.fromstring(container_raw)
    rootfile = root.find(f".//{{{CONTAINER_NS}}}rootfile")
    full_path = ""
    if rootfile is not None:
        full_path = (rootfile.attrib.get("full-path") or "").strip()
    if not full_path:
        for node in root.iter():
            if _tag_local_name(node.tag) != "rootfile":
                continue
            candidate = (node.attrib.get("full-path") or "").strip()
            if candidate:
                full_path = candidate
                break
    normalized = canonical_member(full_path)
    if not normalized:
        raise KeyError("Missing OPF path in container.xml")
    return normalized


def _is_document_media_type(media_type: str) -> bool:
    return (media_type or "").strip().lower() in {"application/xhtml+xml", "text/html"}


def _is_nav_item(item: _ManifestItem) -> bool:
    if "nav" in item.properties:
        return True
    return PurePosixPath(item.member_path).name.lower() in {"nav.xhtml", "nav.html"}


def _manifest_from_opf(opf_path: str, root: LXML_ET._Element) -> tuple[list[_ManifestItem], dict[str, _ManifestItem]]:
    manifest = root.find(f"{{{OPF_NS}}}manifest")
    if manifest is None:
        manifest = _child_by_local_name(root, "manifest")
    if manifest is None:
        return [], {}

    items: list[_ManifestItem] = []
    by_id: dict[str, _ManifestItem] = {}
    for node in _iter_children_by_local_name(manifest, "item"):
        href = str(node.attrib.get("href") or "").strip()
        item = _ManifestItem(
            item_id=str(node.attrib.get("id") or "").strip(),
            href=href,
            media_type=str(node.attrib.get("media-type") or "").strip().lower(),
            properties={part for part in str(node.attrib.get("properties") or "").split() if part},
            member_path=resolve_relative_path(opf_path, href) if href else "",
        )
        items.append(item)
        if item.item_id:
            by_id[item.item_id] = item
    return items, by_id


def _spine_document_items(
    root: LXML_ET._Element, manifest_items: list[_ManifestItem], items_by_id: dict[str, _ManifestItem]
) -> list[_ManifestItem]:
    spine = root.find(f"{{{OPF_NS}}}spine")
    if spine is None:
        spine = _child_by_local_name(root, "spine")

    docs: list[_ManifestItem] = []
    if spine is not None:
        for itemref in _iter_children_by_local_name(spine, "itemref"):
            item = items_by_id.get(str(itemref.attrib.get("idref") or "").strip())
            if not item or not _is_document_media_type(item.media_type) or _is_nav_item(item):
                continue
            docs.append(item)
    if docs:
        return docs
    return [
        item
        for item in manifest_items
        if _is_document_media_type(item.media_type) and not _is_nav_item(item)
    ]


def _opf_metadata(root: LXML_ET._Element) -> tuple[Optional[str], list[str], str]:
    metadata = root.find(f"{{{OPF_NS}}}metadata")
    if metadata is None:
        metadata = _child_by_local_name(root, "metadata")
    if metadata is None:
        return None, [], ""
    title = _node_text(metadata.find(f"{{{DC_NS}}}title"))
    authors = [text for text in (_node_text(node) for node in metadata.findall(f"{{{DC_NS}}}creator")) if text]
    language = _node_text(metadata.find(f"{{{DC_NS}}}language")) or ""
    return title, authors, language


def _has_cover(root: LXML_ET._Element, manifest_items: list[_ManifestItem], items_by_id: dict[str, _ManifestItem]) -> bool:
    if any("cover-image" in item.properties for item in manifest_items):
        return True
    for node in root.xpath(".//*[local-name()='meta'][@name='cover']"):  # noqa: S320
        cover_id = str(node.attrib.get("content") or "").strip()
        if cover_id in items_by_id:
            return True
    return False


def _toc_entry_id(content_src: str, play_order: int) -> str:
    return content_src or f"toc-{play_order}"


class _TocBuilder:
    def __init__(self) -> None:
        self.play_order = 0

    def next_order(self) -> int:
        self.play_order += 1
        return self.play_order


def _content_src(base_member: str, href: str) -> str:
    _, suffix = split_href(href.strip())
    target = resolve_relative_path(base_member, href)
    if not target:
        return ""
    fragment = suffix.split("#", 1)[1] if "#" in suffix else ""
    return f"{target}#{fragment}" if fragment else target


def _nav_entries(nav_member: str, ol: LXML_ET._Element, depth: int, builder: _TocBuilder) -> list[TocEntry]:
    entries: list[TocEntry] = []
    for li in _iter_children_by_local_name(ol, "li"):
        label = _child_by_local_name(li, "a")
        if label is None:
            label = _child_by_local_name(li, "span")
        title = _node_text(label) or ""
        href = str(label.attrib.get("href") or "") if label is not None else ""
        content_src = _content_src(nav_member, href) if href.strip() else ""
        order = builder.next_order()
        nested = _child_by_local_name(li, "ol")
        children = _nav_entries(nav_member, nested, depth + 1, builder) if nested is not None else []
        if not title and not content_src and not children:
            continue
        entries.append(
            TocEntry(
                id=_toc_entry_id(content_src, order),
                title=title,
                content_src=content_src,
                play_order=order,
                depth=depth,
                children=tuple(children),
            )
        )
    return entries


def _toc_from_nav(reader: _ArchiveReader, nav_item: _ManifestItem) -> list[TocEntry]:
    raw = reader.read(nav_item.member_path)
    if raw is None:
        return []
    root = _xml_root_from_bytes(raw)
    for nav in root.xpath(".//*[local-name()='nav']"):  # noqa: S320
        nav_type = ""
        for key, value in nav.attrib.items():
            if _tag_local_name(key) == "type":
                nav_type = str(value or "").strip().lower()
                break
        if nav_type and nav_type != "toc":
            continue
        ol = nav.xpath(".//*[local-name()='ol'][1]")  # noqa: S320
        if ol:
            return _nav_entries(nav_item.member_path, ol[0], 0, _TocBuilder())
    return []


def _ncx_entries(ncx_member: str, parent: LXML_ET._Element, depth: int, builder: _TocBuilder) -> list[TocEntry]:
    entries: list[TocEntry] = []
    for point in _iter_children_by_local_name(parent, "navPoint"):
        label = point.xpath("./*[local-name()='navLabel']/*[local-name()='text'][1]")  # noqa: S320
        content = _child_by_local_name(point, "content")
        src = str(content.attrib.get("src") or "") if content is not None else ""
        content_src = _content_src(ncx_member, src) if src.strip() else ""
        declared = str(point.attrib.get("playOrder") or "").strip()
        order = builder.next_order()
        play_order = int(declared) if declared.isdigit() else order
        children = _ncx_entries(ncx_member, point, depth + 1, builder)
        entries.append(
            TocEntry(
                id=str(point.attrib.get("id") or "").strip() or _toc_entry_id(content_src, play_order),
                title=_node_text(label[0]) if label else "",
                content_src=content_src,
                play_order=play_order,
                depth=depth,
                children=tuple(children),
            )
        )
    return entries


def _toc_from_ncx(reader: _ArchiveReader, ncx_item: _ManifestItem) -> list[TocEntry]:
    raw = reader.read(ncx_item.member_path)
    if raw is None:
        return []
    root = _xml_root_from_bytes(raw)
    nav_map = root.xpath(".//*[local-name()='navMap'][1]")  # noqa: S320
    if not nav_map:
        return []
    return _ncx_entries(ncx_item.member_path, nav_map[0], 0, _TocBuilder())


def _table_of_contents(reader: _ArchiveReader, manifest_items: list[_ManifestItem]) -> list[TocEntry]:
    sources: list[tuple[str, _ManifestItem]] = []
    for item in manifest_items:
        if _is_document_media_type(item.media_type) and _is_nav_item(item):
            sources.append(("nav", item))
    for item in manifest_items:
        if item.media_type == NCX_MEDIA_TYPE or item.href.lower().endswith(".ncx"):
            sources.append(("ncx", item))

    for kind, item in sources:
        try:
            entries = _toc_from_nav(reader, item) if kind == "nav" else _toc_from_ncx(reader, item)
        except (LXML_ET.LxmlError, ValueError) as exc:
            logger.warning("Skipping unreadable %s document %s: %s", kind, item.member_path, exc)
            continue
        if entries:
            return entries
    return []


def _extract_title_from_html(html_text: str) -> Optional[str]:
    for pattern in (r"<title[^>]*>(.*?)</title>", r"<h1[^>]*>(.*?)</h1>", r"<h2[^>]*>(.*?)</h2>"):
        match = re.search(pattern, html_text, flags=re.IGNORECASE | re.DOTALL)
        if match:
            text = re.sub(r"<[^>]+>", "", match.group(1))
            text = html.unescape(text).strip()
            if text:
                return text
    return None


def _stylesheet_hrefs(member_path: str, html_text: str) -> tuple[str, ...]:
    hrefs: list[str] = []
    for tag in re.findall(r"<link\b[^>]*>", html_text, flags=re.IGNORECASE):
        if not re.search(r"\brel\s*=\s*['\"][^'\"]*stylesheet", tag, flags=re.IGNORECASE):
            continue
        match = re.search(r"\bhref\s*=\s*['\"]([^'\"]+)['\"]", tag, flags=re.IGNORECASE)
        if not match:
            continue
        target = resolve_relative_path(member_path, match.group(1))
        if target and target not in hrefs:
            hrefs.append(target)
    return tuple(hrefs)


def _toc_titles(entries: list[TocEntry]) -> dict[str, str]:
    titles: dict[str, str] = {}
    for root in entries:
        for entry in root.flatten():
            if entry.has_content and entry.title:
                titles.setdefault(entry.content_src.split("#", 1)[0].lower(), entry.title)
    return titles


def _fallback_toc(chapters: list[ChapterRecord]) -> list[TocEntry]:
    return [
        TocEntry(id=chapter.id, title=chapter.title, content_src=chapter.id, play_order=chapter.order + 1)
        for chapter in chapters
    ]


def parse_epub(path: Union[str, Path]) -> ParsedBook:
    """Read chapters and navigation from an EPUB file.

    Chapter ids are full archive paths (``OEBPS/Text/ch01.xhtml``) and TOC
    entries point at the same paths, optionally with ``#anchor``. Books with
    no usable nav or NCX document get a flat TOC built from the spine.
    """
    epub_file = Path(path)
    try:
        with zipfile.ZipFile(epub_file, "r") as zf:
            reader = _ArchiveReader(zf)
            opf_path = _opf_path_from_container(reader)
            opf_raw = reader.read(opf_path)
            if opf_raw is None:
                raise KeyError(f"Missing package document {opf_path}")
            root = _xml_root_from_bytes(opf_raw)
            manifest_items, items_by_id = _manifest_from_opf(opf_path, root)
            title, authors, language = _opf_metadata(root)
            toc = _table_of_contents(reader, manifest_items)
            toc_titles = _toc_titles(toc)

            chapters: list[ChapterRecord] = []
            for item in _spine_document_items(root, manifest_items, items_by_id):
                content = reader.read(item.member_path)
                if content is None:
                    logger.warning("Spine item %s is missing from %s", item.member_path, epub_file)
                    continue
                html_text = content.decode("utf-8", errors="replace")
                chapter_title = (
                    toc_titles.get(item.member_path.lower())
                    or _extract_title_from_html(html_text)
                    or PurePosixPath(item.member_path).stem
                )
                chapters.append(
                    ChapterRecord(
                        id=item.member_path,
                        title=chapter_title,
                        html_content=html_text,
                        order=len(chapters),
                        css_resources=_stylesheet_hrefs(item.member_path, html_text),
                    )
                )
            has_cover = _has_cover(root, manifest_items, items_by_id)
    except (OSError, KeyError, ValueError, zipfile.BadZipFile, LXML_ET.LxmlError, ET.ParseError) as exc:
        raise InvalidEpubError(epub_file, str(exc)) from exc

    return ParsedBook(
        title=title or epub_file.stem,
        authors=authors,
        language=language,
        chapters=chapters,
        table_of_contents=toc or _fallback_toc(chapters),
        has_cover=has_cover,
    )

from __future__ import annotations

import base64
import logging
import re
import zipfile
import zlib
from pathlib import Path
from typing import Optional, Union

from .paths import canonical_member, resolve_relative_path

logger = logging.getLogger("quire.images")

_IMG_RE = re.compile(
    r"<img\b[^>]*\bsrc\s*=\s*['\"](?P<src>[^'\"]+)['\"][^>]*>",
    re.IGNORECASE,
)
_EXTERNAL_PREFIXES = ("http://", "https://", "data:", "file://", "cid:")

_IMAGE_MIME_TYPES = {
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png": "image/png",
    ".gif": "image/gif",
    ".svg": "image/svg+xml",
    ".webp": "image/webp",
    ".bmp": "image/bmp",
}


def guess_image_mime_type(name: str) -> str:
    suffix = Path((name or "").split("?", 1)[0].split("#", 1)[0]).suffix.lower()
    return _IMAGE_MIME_TYPES.get(suffix, "application/octet-stream")


def is_external_source(src: str) -> bool:
    return (src or "").strip().lower().startswith(_EXTERNAL_PREFIXES)


class ArchiveImageResolver:
    """Looks up image entries of an open archive relative to a chapter document."""

    def __init__(self, archive: zipfile.ZipFile) -> None:
        self._archive = archive
        self._index: dict[str, str] = {}
        for info in archive.infolist():
            if info.is_dir():
                continue
            key = canonical_member(info.filename).lower()
            if key and key not in self._index:
                self._index[key] = info.filename

    def locate(self, chapter_path: str, src: str) -> Optional[str]:
        if not src or not src.strip() or is_external_source(src):
            return None
        target = resolve_relative_path(chapter_path, src)
        if not target:
            return None
        return self._index.get(target.lower())

    def resolve(self, chapter_path: str, src: str) -> Optional[bytes]:
        member = self.locate(chapter_path, src)
        if member is None:
            return None
        data = self._archive.read(member)
        return data or None


def _data_uri(data: bytes, mime_type: str) -> str:
    return f"data:{mime_type};base64,{base64.b64encode(data).decode('ascii')}"


def inline_images(html: str, resolver: ArchiveImageResolver, chapter_path: str) -> str:
    def _replace(match: re.Match[str]) -> str:
        tag = match.group(0)
        src = match.group("src")
        try:
            data = resolver.resolve(chapter_path, src)
        except (OSError, KeyError, EOFError, zipfile.BadZipFile, zlib.error) as exc:
            # Corrupt members fail with BadZipFile on a CRC mismatch, zlib.error on bad
            # deflate data and EOFError on truncated streams.
            logger.warning("Failed to read image %s for %s: %s", src, chapter_path, exc)
            return tag
        if data is None:
            return tag
        start = match.start("src") - match.start()
        end = match.end("src") - match.start()
        return f"{tag[:start]}{_data_uri(data, guess_image_mime_type(src))}{tag[end:]}"

    return _IMG_RE.sub(_replace, html)


def inline_chapter_images(html: str, archive_path: Union[str, Path, None], chapter_path: str) -> str:
    if not html or not archive_path or "<img" not in html.lower():
        return html or ""
    path = Path(archive_path)
    if not path.is_file():
        logger.debug("Archive %s is missing; leaving images untouched", path)
        return html
    try:
        with zipfile.ZipFile(path, "r") as archive:
            return inline_images(html, ArchiveImageResolver(archive), chapter_path)
    except (OSError, zipfile.BadZipFile) as exc:
        logger.warning("Unable to open archive %s for image inlining: %s", path, exc)
        return html

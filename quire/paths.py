"""Chapter identifier normalization shared by lookup, navigation and archive access.

The same chapter shows up as ``OEBPS/Text/ch01.xhtml`` in a chapter record,
``Text/ch01.xhtml#note3`` in a nav document and ``./ch01.xhtml`` in a UI event.
Everything that compares or resolves such strings goes through this module.
"""

from __future__ import annotations

from typing import Optional
from urllib.parse import unquote


def _resolve_segments(path: str) -> str:
    stack: list[str] = []
    for part in path.split("/"):
        if not part or part == ".":
            continue
        if part == "..":
            if stack:
                stack.pop()
            continue
        stack.append(part)
    return "/".join(stack)


def normalize_identifier(raw: Optional[str]) -> str:
    value = (raw or "").strip()
    value = value.split("#", 1)[0]
    value = value.replace("\\", "/")
    if value.startswith("./"):
        value = value[2:]
    if value.startswith("/"):
        value = value[1:]
    value = unquote(value)
    return _resolve_segments(value)


def identifiers_match(left: Optional[str], right: Optional[str]) -> bool:
    a = normalize_identifier(left).lower()
    b = normalize_identifier(right).lower()
    if not a or not b:
        return False
    if a == b:
        return True
    # Relative TOC paths vs. fully resolved archive paths, in either direction.
    return a.endswith("/" + b) or b.endswith("/" + a)


def extract_fragment(raw: Optional[str]) -> Optional[str]:
    value = raw or ""
    idx = value.find("#")
    if idx < 0:
        return None
    fragment = value[idx + 1 :].strip()
    if not fragment:
        return None
    return unquote(fragment)


def split_href(href: str) -> tuple[str, str]:
    cut = len(href)
    for marker in ("?", "#"):
        idx = href.find(marker)
        if 0 <= idx < cut:
            cut = idx
    return href[:cut], href[cut:]


def parent_dir(path: str) -> str:
    normalized = (path or "").split("#", 1)[0].strip().replace("\\", "/")
    if "/" not in normalized:
        return ""
    return normalized.rsplit("/", 1)[0]


def resolve_relative_path(base_path: str, href: str) -> str:
    target, _ = split_href((href or "").strip().replace("\\", "/"))
    target = unquote(target)
    if not target:
        return ""
    if target.startswith("/"):
        return _resolve_segments(target)
    directory = parent_dir(base_path)
    joined = f"{directory}/{target}" if directory else target
    return _resolve_segments(joined)


def canonical_member(name: str) -> str:
    return _resolve_segments((name or "").replace("\\", "/"))

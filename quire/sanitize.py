"""Minimal markup cleanup for chapter HTML.

This is not a general purpose sanitizer: it removes the obvious script vectors and
turns anchors that are not reader links into inert spans.
"""

from __future__ import annotations

import re

_SCRIPT_RE = re.compile(r"<script[^>]*>.*?</script>", re.IGNORECASE | re.DOTALL)
_EVENT_ATTR_RE = re.compile(r"\s(on\w+)\s*=\s*[\"'][^\"']*[\"']", re.IGNORECASE)
_JS_SCHEME_RE = re.compile(r"javascript:", re.IGNORECASE)

_ANCHOR_TAG_RE = re.compile(r"</?a\b[^>]*>", re.IGNORECASE)
_ATTR_RE = re.compile(r"(?P<name>[^\s=/>]+)\s*=\s*(?P<quote>[\"'])(?P<value>.*?)(?P=quote)", re.DOTALL)

_DROPPED_ATTRS = {"href", "target", "rel"}
_MARKER_ATTRS = {"class", "id"}


def strip_unsafe_markup(html: str) -> str:
    if not html:
        return html or ""
    cleaned = _SCRIPT_RE.sub("", html)
    cleaned = _EVENT_ATTR_RE.sub("", cleaned)
    return _JS_SCHEME_RE.sub("", cleaned)


def _parse_attributes(tag: str) -> list[tuple[str, str, str]]:
    # Skip the "<a" itself so the tag name never looks like an attribute.
    body = tag[2:]
    return [(m.group("name"), m.group("quote"), m.group("value")) for m in _ATTR_RE.finditer(body)]


def _is_reader_link(attributes: list[tuple[str, str, str]]) -> bool:
    for name, _, value in attributes:
        if name.lower() in _MARKER_ATTRS and "link" in value.lower():
            return True
    return False


def _span_open_tag(attributes: list[tuple[str, str, str]]) -> str:
    kept = [
        f"{name}={quote}{value}{quote}"
        for name, quote, value in attributes
        if name.lower() not in _DROPPED_ATTRS
    ]
    if not kept:
        return "<span>"
    return "<span " + " ".join(kept) + ">"


def normalize_anchors(html: str) -> str:
    """Rewrite ``<a>`` elements without breaking nesting.

    An anchor survives only if its ``class`` or ``id`` mentions ``link``; every
    other anchor becomes a ``<span>`` that keeps its attributes minus the
    navigation ones. Each opener pushes its decision so the matching closer is
    rewritten the same way, whatever the input balance looks like.
    """
    if not html:
        return html or ""

    out: list[str] = []
    stack: list[bool] = []
    cursor = 0
    for match in _ANCHOR_TAG_RE.finditer(html):
        out.append(html[cursor : match.start()])
        cursor = match.end()
        tag = match.group(0)
        if tag.startswith("</"):
            keep = stack.pop() if stack else False
            out.append("</a>" if keep else "</span>")
            continue
        attributes = _parse_attributes(tag)
        keep = _is_reader_link(attributes)
        stack.append(keep)
        out.append(tag if keep else _span_open_tag(attributes))
    out.append(html[cursor:])

    while stack:
        out.append("</a>" if stack.pop() else "</span>")
    return "".join(out)

from __future__ import annotations

import re
from typing import Optional

from .images import inline_chapter_images
from .models import Book, ChapterRecord, StyleDescriptor
from .sanitize import normalize_anchors
from .styles import DEFAULT_STYLE, render_stylesheet
from .templating import render_template

_HEAD_CLOSE_RE = re.compile(r"</head\s*>", re.IGNORECASE)


def escape_js_string(value: str) -> str:
    return (
        value.replace("\\", "\\\\")
        .replace("'", "\\'")
        .replace("\n", "\\n")
        .replace("\r", "\\r")
        .replace("</", "<\\/")
    )


def anchor_scroll_script(fragment: Optional[str]) -> str:
    if not fragment or not fragment.strip():
        return ""
    return render_template("anchor_scroll.js", anchor_id=escape_js_string(fragment))


def syntax_highlight_script() -> str:
    return render_template("syntax_highlight.js")


def inject_head_markup(html_text: str, markup: str) -> str:
    if not markup:
        return html_text
    match = _HEAD_CLOSE_RE.search(html_text)
    if match:
        idx = match.start()
        return f"{html_text[:idx]}{markup}{html_text[idx:]}"
    return f"{markup}{html_text}"


def render_chapter(
    book: Book,
    chapter: ChapterRecord,
    style: Optional[StyleDescriptor] = None,
    fragment: Optional[str] = None,
    *,
    include_syntax_highlight: bool = True,
) -> str:
    """Turn stored chapter markup into a standalone, styled document.

    Anchors are rewritten first, then archive images are inlined so the result
    needs nothing but itself to display. The stylesheet and the optional scripts
    go right before ``</head>`` when the chapter has one and in front otherwise.
    """
    html_text = chapter.html_content or ""
    if "<a" in html_text.lower():
        html_text = normalize_anchors(html_text)
    html_text = inline_chapter_images(html_text, book.file_path, chapter.id)

    parts = [f"<style>{render_stylesheet(style or DEFAULT_STYLE)}</style>"]
    if include_syntax_highlight:
        parts.append(syntax_highlight_script())
    parts.append(anchor_scroll_script(fragment))
    return inject_head_markup(html_text, "".join(parts))


def render_complete_book(book: Book) -> str:
    return render_template(
        "book.html",
        title=book.title,
        authors=book.authors,
        chapters=book.ordered_chapters(),
    )

from __future__ import annotations

import html
import re
from typing import Iterator, Optional

from .models import Book, ChapterRecord, SearchHit

CONTEXT_LENGTH = 100
MIN_SUGGESTION_QUERY = 2
MIN_SUGGESTION_WORD = 3

_SCRIPT_BLOCK_RE = re.compile(r"<script\b[^>]*>.*?</script>", re.IGNORECASE | re.DOTALL)
_STYLE_BLOCK_RE = re.compile(r"<style\b[^>]*>.*?</style>", re.IGNORECASE | re.DOTALL)
_TAG_RE = re.compile(r"<[^>]+>", re.DOTALL)
_SPACE_RE = re.compile(r"\s+")
_LEADING_PARTIAL_RE = re.compile(r"^\S*\s*")
_TRAILING_PARTIAL_RE = re.compile(r"\s*\S*$")
_WORD_SPLIT_RE = re.compile(r"\W+")


def normalize_search_text(text: str) -> str:
    return _SPACE_RE.sub(" ", text or "").strip()


def extract_plain_text(html_text: Optional[str]) -> str:
    if not html_text or not html_text.strip():
        return ""
    text = _SCRIPT_BLOCK_RE.sub(" ", html_text)
    text = _STYLE_BLOCK_RE.sub(" ", text)
    text = _TAG_RE.sub(" ", text)
    text = html.unescape(text)
    return normalize_search_text(text)


def _excerpt(text: str, position: int, length: int) -> tuple[str, str]:
    start = max(0, position - CONTEXT_LENGTH)
    end = min(len(text), position + length + CONTEXT_LENGTH)
    before = text[start:position]
    after = text[position + length : end]
    if start > 0 and not text[start - 1].isspace():
        before = _LEADING_PARTIAL_RE.sub("", before, count=1)
    if end < len(text) and not text[end].isspace():
        after = _TRAILING_PARTIAL_RE.sub("", after, count=1)
    return before, after


def _query_pattern(query: str, case_sensitive: bool, whole_word: bool) -> re.Pattern[str]:
    body = re.escape(query)
    if whole_word:
        body = rf"\b{body}\b"
    return re.compile(body, 0 if case_sensitive else re.IGNORECASE)


def search_chapter(
    chapter: ChapterRecord,
    query: str,
    case_sensitive: bool = False,
    whole_word: bool = False,
) -> Iterator[SearchHit]:
    if not query or not query.strip() or chapter.is_empty:
        return
    text = extract_plain_text(chapter.html_content)
    if not text:
        return
    for match in _query_pattern(query, case_sensitive, whole_word).finditer(text):
        before, after = _excerpt(text, match.start(), len(match.group(0)))
        yield SearchHit(
            chapter_id=chapter.id,
            chapter_title=chapter.title,
            chapter_order=chapter.order,
            position=match.start(),
            matched_text=match.group(0),
            before_context=before,
            after_context=after,
        )


def search_book(
    book: Book,
    query: str,
    case_sensitive: bool = False,
    whole_word: bool = False,
) -> Iterator[SearchHit]:
    """Yield every occurrence of ``query`` across the book, chapter by chapter.

    Matches are non-overlapping. ``position`` is an offset into the chapter's
    plain text, not into its markup.
    """
    if not query or not query.strip():
        return
    for chapter in book.ordered_chapters():
        yield from search_chapter(chapter, query, case_sensitive, whole_word)


def suggest_words(book: Book, partial: Optional[str], max_results: int = 10) -> list[str]:
    prefix = (partial or "").strip()
    if len(prefix) < MIN_SUGGESTION_QUERY or max_results <= 0:
        return []
    prefix_lower = prefix.lower()
    seen: dict[str, str] = {}
    for chapter in book.ordered_chapters():
        for word in _WORD_SPLIT_RE.split(extract_plain_text(chapter.html_content)):
            if len(word) < MIN_SUGGESTION_WORD:
                continue
            lowered = word.lower()
            if lowered.startswith(prefix_lower) and lowered not in seen:
                seen[lowered] = word
    return sorted(seen.values(), key=lambda word: (len(word), word))[:max_results]

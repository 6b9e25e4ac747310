from __future__ import annotations

import datetime as dt
import itertools
import logging
import math
from pathlib import Path
from typing import Callable, Optional, Union

from . import config
from .cache import ContentCache
from .epub import ParsedBook, parse_epub
from .errors import BookNotFoundError, ChapterNotFoundError
from .healing import ConsistencyHealer
from .models import Book, BookStatistics, ChapterRecord, SearchHit, StyleDescriptor, TocEntry
from .paths import extract_fragment, identifiers_match
from .render import render_chapter, render_complete_book
from .sanitize import strip_unsafe_markup
from .search import extract_plain_text, search_book, suggest_words
from .storage import BookRepository, new_book_id
from .styles import DEFAULT_STYLE, style_cache_segment

logger = logging.getLogger("quire.service")

CHAPTER_KEY_PREFIX = "chapter-content"
STATS_KEY_PREFIX = "book-stats"
WORDS_PER_MINUTE = 200


def chapter_cache_prefix(book_id: str) -> str:
    return f"{CHAPTER_KEY_PREFIX}:{book_id}:"


def chapter_cache_key(book_id: str, chapter_id: str, style: StyleDescriptor) -> str:
    return f"{chapter_cache_prefix(book_id)}{chapter_id}:{style_cache_segment(style)}"


def stats_cache_key(book_id: str) -> str:
    return f"{STATS_KEY_PREFIX}:{book_id}"


def estimate_reading_minutes(chapters: list[ChapterRecord]) -> int:
    return sum(max(1, math.ceil(chapter.estimated_word_count / WORDS_PER_MINUTE)) for chapter in chapters)


def _now_iso() -> str:
    return dt.datetime.now(dt.timezone.utc).replace(microsecond=0).isoformat()


class BookContentService:
    """Application facade over the repository, the renderer and the cache."""

    def __init__(
        self,
        repository: BookRepository,
        cache: ContentCache,
        parser: Callable[[Union[str, Path]], ParsedBook] = parse_epub,
        *,
        chapter_ttl: float = config.DEFAULT_CACHE_TTL,
        stats_ttl: float = config.DEFAULT_STATS_TTL,
        syntax_highlight: bool = True,
    ) -> None:
        self.repository = repository
        self.cache = cache
        self.parser = parser
        self.healer = ConsistencyHealer(parser, repository)
        self.chapter_ttl = chapter_ttl
        self.stats_ttl = stats_ttl
        self.syntax_highlight = syntax_highlight

    def _require_book(self, book_id: str) -> Book:
        book = self.repository.get_by_id(book_id)
        if book is None:
            raise BookNotFoundError(book_id)
        return book

    def _require_chapter(self, book: Book, chapter_id: str) -> ChapterRecord:
        chapter = book.get_chapter_by_id(chapter_id)
        if chapter is None:
            raise ChapterNotFoundError(book.book_id, chapter_id)
        return chapter

    def get_chapter_content(self, book_id: str, chapter_id: str, style: Optional[StyleDescriptor] = None) -> str:
        style_to_use = style or DEFAULT_STYLE
        fragment = extract_fragment(chapter_id)
        key = chapter_cache_key(book_id, chapter_id, style_to_use)

        def _render() -> str:
            book = self._require_book(book_id)
            chapter = self._require_chapter(book, chapter_id)
            logger.debug("Rendering chapter %s of book %s", chapter.id, book_id)
            return render_chapter(
                book,
                chapter,
                style_to_use,
                fragment,
                include_syntax_highlight=self.syntax_highlight,
            )

        return self.cache.get_or_create(key, _render, ttl=self.chapter_ttl)

    def get_complete_book_content(self, book_id: str) -> str:
        return render_complete_book(self._require_book(book_id))

    def get_chapter_plain_text(self, book_id: str, chapter_id: str) -> str:
        book = self._require_book(book_id)
        return extract_plain_text(self._require_chapter(book, chapter_id).html_content)

    def search_in_book(
        self,
        book_id: str,
        query: str,
        case_sensitive: bool = False,
        whole_word: bool = False,
        limit: Optional[int] = None,
    ) -> list[SearchHit]:
        if not query or not query.strip():
            logger.warning("Empty search query for book %s", book_id)
            return []
        book = self._require_book(book_id)
        hits = search_book(book, query, case_sensitive, whole_word)
        if limit is not None:
            hits = itertools.islice(hits, max(0, limit))
        results = list(hits)
        logger.info("Found %d search results for %r in book %s", len(results), query, book_id)
        return results

    def get_suggestions(self, book_id: str, partial_query: str, max_results: int = 10) -> list[str]:
        if not partial_query or len(partial_query.strip()) < 2:
            return []
        book = self.repository.get_by_id(book_id)
        if book is None:
            logger.warning("Book not found for suggestions: %s", book_id)
            return []
        return suggest_words(book, partial_query, max_results)

    def get_table_of_contents(self, book_id: str) -> list[TocEntry]:
        book = self._require_book(book_id)
        if self.healer.heal_if_needed(book):
            self.cache.remove_by_prefix(chapter_cache_prefix(book_id))
            self.cache.remove(stats_cache_key(book_id))
        return list(book.table_of_contents)

    def get_book_statistics(self, book_id: str) -> BookStatistics:
        def _compute() -> BookStatistics:
            book = self._require_book(book_id)
            chapters = book.chapters
            return BookStatistics(
                total_chapters=len(chapters),
                total_words=sum(chapter.estimated_word_count for chapter in chapters),
                estimated_reading_minutes=estimate_reading_minutes(chapters),
                has_cover=book.has_cover,
                language=book.language,
            )

        return self.cache.get_or_create(stats_cache_key(book_id), _compute, ttl=self.stats_ttl)

    def find_toc_entry(self, book_id: str, chapter_id: str) -> Optional[TocEntry]:
        book = self._require_book(book_id)
        fragment = extract_fragment(chapter_id)
        fallback: Optional[TocEntry] = None
        for entry in book.iter_toc():
            if not entry.has_content or not identifiers_match(entry.content_src, chapter_id):
                continue
            if extract_fragment(entry.content_src) == fragment:
                return entry
            if fallback is None:
                fallback = entry
        return fallback

    def sanitize_html(self, html_text: Optional[str]) -> str:
        if not html_text or not html_text.strip():
            return ""
        return strip_unsafe_markup(html_text)

    def import_epub(self, path: Union[str, Path]) -> Book:
        source = Path(path)
        parsed = self.parser(source)
        book_id = new_book_id()
        stored = self.repository.store_epub(book_id, source)
        book = Book(
            book_id=book_id,
            title=parsed.title,
            file_path=str(stored),
            authors=list(parsed.authors),
            language=parsed.language,
            chapters=list(parsed.chapters),
            table_of_contents=list(parsed.table_of_contents),
            has_cover=parsed.has_cover,
            added_at=_now_iso(),
        )
        self.repository.add(book)
        logger.info("Imported %s as book %s (%d chapters)", source.name, book_id, len(book.chapters))
        return book

    def get_cached_items_count(self) -> int:
        return self.cache.count()

    def get_all_cache_keys(self) -> list[str]:
        return self.cache.keys()

    def invalidate_cache_prefix(self, prefix: str) -> int:
        return self.cache.remove_by_prefix(prefix)

    def clear_cache(self) -> None:
        self.cache.clear()


def create_service() -> BookContentService:
    return BookContentService(
        BookRepository(config.library_dir()),
        ContentCache(default_ttl=config.chapter_cache_ttl()),
        chapter_ttl=config.chapter_cache_ttl(),
        stats_ttl=config.stats_cache_ttl(),
        syntax_highlight=config.syntax_highlight_enabled(),
    )

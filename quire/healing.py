from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Protocol, Union

from .epub import ParsedBook
from .models import Book

logger = logging.getLogger("quire.healing")

ANCHOR_SLACK = 10

Parser = Callable[[Union[str, Path]], ParsedBook]


class BookUpdater(Protocol):
    def update(self, book: Book) -> None: ...


@dataclass(frozen=True)
class HealAssessment:
    missing_content: bool
    no_chapters: bool
    missing_anchors: bool

    @property
    def needs_heal(self) -> bool:
        return self.missing_content or self.no_chapters or self.missing_anchors


def assess(book: Book) -> HealAssessment:
    flat = list(book.iter_toc())
    with_content = [entry for entry in flat if entry.has_content]
    nested = any(entry.has_children for entry in book.table_of_contents)
    anchored = any("#" in entry.content_src for entry in with_content)
    return HealAssessment(
        missing_content=any(not entry.content_src for entry in book.table_of_contents),
        no_chapters=not book.chapters,
        missing_anchors=nested and not anchored and len(with_content) > len(book.chapters) + ANCHOR_SLACK,
    )


class ConsistencyHealer:
    """Re-parses books whose stored chapters or TOC look incomplete."""

    def __init__(self, parser: Parser, repository: BookUpdater) -> None:
        self.parser = parser
        self.repository = repository

    def heal_if_needed(self, book: Book) -> bool:
        verdict = assess(book)
        if not verdict.needs_heal:
            return False

        logger.warning(
            "Book %s has stale data, re-parsing %s (missing_content=%s no_chapters=%s missing_anchors=%s)",
            book.book_id,
            book.file_path,
            verdict.missing_content,
            verdict.no_chapters,
            verdict.missing_anchors,
        )
        parsed = self.parser(book.file_path)
        book.replace_contents(parsed.table_of_contents, parsed.chapters)
        self.repository.update(book)
        logger.info(
            "Healed book %s: %d TOC entries, %d chapters",
            book.book_id,
            len(parsed.table_of_contents),
            len(parsed.chapters),
        )
        return True

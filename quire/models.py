from __future__ import annotations

import re
from dataclasses import dataclass, field, replace
from typing import Iterator, Optional

from .paths import identifiers_match

_WORD_RE = re.compile(r"\w+")
_TAG_RE = re.compile(r"<[^>]+>")


@dataclass(frozen=True)
class ChapterRecord:
    id: str
    title: str
    html_content: str
    order: int
    css_resources: tuple[str, ...] = ()

    @property
    def is_empty(self) -> bool:
        return not (self.html_content or "").strip()

    @property
    def estimated_word_count(self) -> int:
        if self.is_empty:
            return 0
        return len(_WORD_RE.findall(_TAG_RE.sub(" ", self.html_content)))


@dataclass(frozen=True)
class TocEntry:
    id: str
    title: str
    content_src: str = ""
    play_order: int = 0
    depth: int = 0
    children: tuple["TocEntry", ...] = ()

    @property
    def has_content(self) -> bool:
        return bool((self.content_src or "").strip())

    @property
    def has_children(self) -> bool:
        return bool(self.children)

    def flatten(self) -> Iterator["TocEntry"]:
        yield self
        for child in self.children:
            yield from child.flatten()


@dataclass
class Book:
    book_id: str
    title: str
    file_path: str
    authors: list[str] = field(default_factory=list)
    language: str = ""
    chapters: list[ChapterRecord] = field(default_factory=list)
    table_of_contents: list[TocEntry] = field(default_factory=list)
    has_cover: bool = False
    added_at: str = ""
    last_opened_at: Optional[str] = None

    def ordered_chapters(self) -> list[ChapterRecord]:
        return sorted(self.chapters, key=lambda chapter: chapter.order)

    def get_chapter_by_id(self, raw_id: Optional[str]) -> Optional[ChapterRecord]:
        if not raw_id or not raw_id.strip():
            return None
        for chapter in self.chapters:
            if chapter.id == raw_id:
                return chapter
        for chapter in self.ordered_chapters():
            if identifiers_match(chapter.id, raw_id):
                return chapter
        return None

    def get_chapter_index(self, raw_id: Optional[str]) -> int:
        chapter = self.get_chapter_by_id(raw_id)
        if chapter is None:
            return -1
        for idx, candidate in enumerate(self.ordered_chapters()):
            if candidate is chapter:
                return idx
        return -1

    def iter_toc(self) -> Iterator[TocEntry]:
        for entry in self.table_of_contents:
            yield from entry.flatten()

    def replace_contents(self, table_of_contents: list[TocEntry], chapters: list[ChapterRecord]) -> None:
        # Both sides change together; a half-healed book is worse than a stale one.
        self.table_of_contents = list(table_of_contents)
        self.chapters = list(chapters)


@dataclass(frozen=True)
class ColorScheme:
    background: str
    text: str
    link: str
    selection: str
    surface: str
    border: str


LIGHT_COLORS = ColorScheme(
    background="#FFFFFF",
    text="#1A1A1A",
    link="#0066CC",
    selection="#B4D5FF",
    surface="#F5F5F5",
    border="#E0E0E0",
)
DRACULA_COLORS = ColorScheme(
    background="#0e0d11",
    text="#F8F8F2",
    link="#8BE9FD",
    selection="#44475A",
    surface="#282A36",
    border="#383645",
)
SEPIA_COLORS = ColorScheme(
    background="#F4ECD8",
    text="#3B2A1A",
    link="#8B4513",
    selection="#D4B896",
    surface="#EBE3D0",
    border="#D4C4A8",
)

MIN_FONT_SIZE = 8.0
MAX_FONT_SIZE = 48.0


def clamp_font_size(value: float) -> float:
    return max(MIN_FONT_SIZE, min(MAX_FONT_SIZE, float(value)))


@dataclass(frozen=True)
class StyleDescriptor:
    font_family: str = "Segoe UI, sans-serif"
    font_size: float = 16.0
    line_height: float = 1.6
    letter_spacing: float = 0.0
    margin_horizontal: float = 40.0
    margin_vertical: float = 20.0
    colors: ColorScheme = LIGHT_COLORS
    custom_css: Optional[str] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "font_size", clamp_font_size(self.font_size))

    def with_overrides(self, **changes: object) -> "StyleDescriptor":
        clean = {key: value for key, value in changes.items() if value is not None}
        if not clean:
            return self
        return replace(self, **clean)


@dataclass(frozen=True)
class SearchHit:
    chapter_id: str
    chapter_title: str
    chapter_order: int
    position: int
    matched_text: str
    before_context: str
    after_context: str

    @property
    def excerpt(self) -> str:
        return f"{self.before_context}{self.matched_text}{self.after_context}"


@dataclass(frozen=True)
class BookStatistics:
    total_chapters: int
    total_words: int
    estimated_reading_minutes: int
    has_cover: bool
    language: str


def chapter_to_dict(chapter: ChapterRecord) -> dict:
    return {
        "id": chapter.id,
        "title": chapter.title,
        "html_content": chapter.html_content,
        "order": chapter.order,
        "css_resources": list(chapter.css_resources),
    }


def chapter_from_dict(data: dict) -> ChapterRecord:
    return ChapterRecord(
        id=data.get("id", ""),
        title=data.get("title", ""),
        html_content=data.get("html_content", ""),
        order=int(data.get("order", 0)),
        css_resources=tuple(data.get("css_resources", [])),
    )


def toc_entry_to_dict(entry: TocEntry) -> dict:
    return {
        "id": entry.id,
        "title": entry.title,
        "content_src": entry.content_src,
        "play_order": entry.play_order,
        "depth": entry.depth,
        "children": [toc_entry_to_dict(child) for child in entry.children],
    }


def toc_entry_from_dict(data: dict) -> TocEntry:
    return TocEntry(
        id=data.get("id", ""),
        title=data.get("title", ""),
        content_src=data.get("content_src") or "",
        play_order=int(data.get("play_order", 0)),
        depth=int(data.get("depth", 0)),
        children=tuple(toc_entry_from_dict(child) for child in data.get("children", [])),
    )


def book_to_dict(book: Book) -> dict:
    return {
        "book_id": book.book_id,
        "title": book.title,
        "authors": list(book.authors),
        "language": book.language,
        "file_path": book.file_path,
        "has_cover": book.has_cover,
        "added_at": book.added_at,
        "last_opened_at": book.last_opened_at,
        "chapters": [chapter_to_dict(chapter) for chapter in book.chapters],
        "table_of_contents": [toc_entry_to_dict(entry) for entry in book.table_of_contents],
    }


def book_from_dict(data: dict) -> Book:
    return Book(
        book_id=data.get("book_id", ""),
        title=data.get("title", ""),
        file_path=data.get("file_path", ""),
        authors=list(data.get("authors", [])),
        language=data.get("language", ""),
        has_cover=bool(data.get("has_cover", False)),
        added_at=data.get("added_at", ""),
        last_opened_at=data.get("last_opened_at"),
        chapters=[chapter_from_dict(chapter) for chapter in data.get("chapters", [])],
        table_of_contents=[toc_entry_from_dict(entry) for entry in data.get("table_of_contents", [])],
    )

import unittest
from pathlib import Path
from typing import Union

from quire.epub import ParsedBook
from quire.errors import InvalidEpubError
from quire.healing import ConsistencyHealer, assess
from quire.models import Book, ChapterRecord, TocEntry


def _chapters(count: int) -> list[ChapterRecord]:
    return [
        ChapterRecord(id=f"OEBPS/ch{idx}.xhtml", title=f"Chapter {idx}", html_content="<p>x</p>", order=idx)
        for idx in range(count)
    ]


def _flat_toc(chapters: list[ChapterRecord]) -> list[TocEntry]:
    return [
        TocEntry(id=chapter.id, title=chapter.title, content_src=chapter.id, play_order=chapter.order + 1)
        for chapter in chapters
    ]


def _book(chapters: list[ChapterRecord], toc: list[TocEntry]) -> Book:
    return Book(book_id="c" * 32, title="Heal", file_path="/books/heal.epub", chapters=chapters, table_of_contents=toc)


class RecordingRepository:
    def __init__(self) -> None:
        self.updated: list[Book] = []

    def update(self, book: Book) -> None:
        self.updated.append(book)


class AssessTests(unittest.TestCase):
    def test_zero_chapters_needs_heal(self) -> None:
        verdict = assess(_book([], _flat_toc(_chapters(2))))
        self.assertTrue(verdict.no_chapters)
        self.assertTrue(verdict.needs_heal)

    def test_consistent_flat_book_is_left_alone(self) -> None:
        chapters = _chapters(3)
        self.assertFalse(assess(_book(chapters, _flat_toc(chapters))).needs_heal)

    def test_top_level_entry_without_content(self) -> None:
        chapters = _chapters(1)
        toc = [TocEntry(id="part", title="Part", children=tuple(_flat_toc(chapters)))]
        self.assertTrue(assess(_book(chapters, toc)).missing_content)

    def test_many_nested_entries_without_anchors(self) -> None:
        chapters = _chapters(2)
        children = tuple(
            TocEntry(id=f"n{idx}", title=f"Note {idx}", content_src="OEBPS/ch1.xhtml", depth=1) for idx in range(12)
        )
        toc = [TocEntry(id="root", title="Root", content_src="OEBPS/ch0.xhtml", children=children)]
        self.assertTrue(assess(_book(chapters, toc)).missing_anchors)

        anchored = children[:-1] + (TocEntry(id="n11", title="Note 11", content_src="OEBPS/ch1.xhtml#n11", depth=1),)
        toc = [TocEntry(id="root", title="Root", content_src="OEBPS/ch0.xhtml", children=anchored)]
        self.assertFalse(assess(_book(chapters, toc)).missing_anchors)


class ConsistencyHealerTests(unittest.TestCase):
    def test_heal_replaces_both_sides_and_persists(self) -> None:
        fresh_chapters = _chapters(2)
        fresh_toc = _flat_toc(fresh_chapters)
        seen_paths: list[str] = []

        def parser(path: Union[str, Path]) -> ParsedBook:
            seen_paths.append(str(path))
            return ParsedBook(title="Heal", chapters=fresh_chapters, table_of_contents=fresh_toc)

        repo = RecordingRepository()
        book = _book([], [TocEntry(id="x", title="Broken")])
        with self.assertLogs("quire.healing", level="WARNING"):
            healed = ConsistencyHealer(parser, repo).heal_if_needed(book)

        self.assertTrue(healed)
        self.assertEqual(seen_paths, ["/books/heal.epub"])
        self.assertEqual(book.chapters, fresh_chapters)
        self.assertEqual(book.table_of_contents, fresh_toc)
        self.assertEqual(repo.updated, [book])

    def test_healthy_book_is_not_reparsed(self) -> None:
        def parser(path: Union[str, Path]) -> ParsedBook:
            raise AssertionError("parser should not run")

        chapters = _chapters(2)
        repo = RecordingRepository()
        self.assertFalse(ConsistencyHealer(parser, repo).heal_if_needed(_book(chapters, _flat_toc(chapters))))
        self.assertEqual(repo.updated, [])

    def test_parse_failure_propagates_and_leaves_book_untouched(self) -> None:
        def parser(path: Union[str, Path]) -> ParsedBook:
            raise InvalidEpubError(path, "broken")

        toc = [TocEntry(id="x", title="Broken")]
        book = _book([], toc)
        repo = RecordingRepository()
        with self.assertRaises(InvalidEpubError):
            ConsistencyHealer(parser, repo).heal_if_needed(book)
        self.assertEqual(book.table_of_contents, toc)
        self.assertEqual(repo.updated, [])


if __name__ == "__main__":
    unittest.main()

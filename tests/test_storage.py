import tempfile
import unittest
from pathlib import Path

from quire.models import Book, ChapterRecord, TocEntry
from quire.storage import BOOK_FILE, BookRepository, is_valid_book_id, new_book_id


def _book(book_id: str) -> Book:
    return Book(
        book_id=book_id,
        title="Stored",
        file_path="/tmp/stored.epub",
        authors=["Ann"],
        language="en",
        chapters=[
            ChapterRecord(
                id="OEBPS/Text/ch1.xhtml",
                title="One",
                html_content="<p>Alpha</p>",
                order=0,
                css_resources=("OEBPS/Styles/book.css",),
            )
        ],
        table_of_contents=[
            TocEntry(
                id="OEBPS/Text/ch1.xhtml",
                title="One",
                content_src="OEBPS/Text/ch1.xhtml",
                play_order=1,
                children=(TocEntry(id="s1", title="Part", content_src="OEBPS/Text/ch1.xhtml#s1", play_order=2, depth=1),),
            )
        ],
        has_cover=True,
        added_at="2024-01-01T00:00:00+00:00",
    )


class BookIdTests(unittest.TestCase):
    def test_new_ids_are_valid(self) -> None:
        self.assertTrue(is_valid_book_id(new_book_id()))
        self.assertNotEqual(new_book_id(), new_book_id())

    def test_rejects_paths_and_blank(self) -> None:
        for value in (None, "", "../etc", "A" * 32, "a" * 31):
            self.assertFalse(is_valid_book_id(value))


class BookRepositoryTests(unittest.TestCase):
    def test_add_and_get_round_trip(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            repo = BookRepository(tmp)
            book = _book(new_book_id())
            repo.add(book)
            self.assertTrue((Path(tmp) / book.book_id / BOOK_FILE).exists())
            self.assertEqual(repo.get_by_id(book.book_id), book)

    def test_get_by_id_unknown_or_invalid(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            repo = BookRepository(tmp)
            self.assertIsNone(repo.get_by_id(new_book_id()))
            self.assertIsNone(repo.get_by_id("../outside"))
            self.assertIsNone(repo.get_by_id(None))

    def test_corrupt_record_reads_as_missing(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            repo = BookRepository(tmp)
            book_id = new_book_id()
            repo.book_dir(book_id).mkdir()
            (repo.book_dir(book_id) / BOOK_FILE).write_text("{not json", encoding="utf-8")
            self.assertIsNone(repo.get_by_id(book_id))

    def test_update_requires_existing_record(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            repo = BookRepository(tmp)
            book = _book(new_book_id())
            with self.assertRaises(FileNotFoundError):
                repo.update(book)
            repo.add(book)
            book.chapters = []
            repo.update(book)
            stored = repo.get_by_id(book.book_id)
            self.assertIsNotNone(stored)
            self.assertEqual(stored.chapters, [])

    def test_add_rejects_invalid_id(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            with self.assertRaises(ValueError):
                BookRepository(tmp).add(_book("not-an-id"))

    def test_list_store_and_delete(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            repo = BookRepository(Path(tmp) / "library")
            first, second = sorted([new_book_id(), new_book_id()])
            repo.add(_book(second))
            repo.add(_book(first))
            (repo.base / "scratch").mkdir()
            self.assertEqual(repo.list_ids(), [first, second])

            source = Path(tmp) / "upload.epub"
            source.write_bytes(b"epub-bytes")
            stored = repo.store_epub(first, source)
            self.assertEqual(stored, repo.epub_path(first))
            self.assertEqual(stored.read_bytes(), b"epub-bytes")

            self.assertTrue(repo.delete(first))
            self.assertFalse(repo.delete(first))
            self.assertFalse(repo.delete("../library"))
            self.assertEqual(repo.list_ids(), [second])


if __name__ == "__main__":
    unittest.main()

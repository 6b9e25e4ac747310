from __future__ import annotations

import json
import logging
import re
import shutil
import threading
import uuid
from pathlib import Path
from typing import Optional, Union

from .models import Book, book_from_dict, book_to_dict

logger = logging.getLogger("quire.storage")

BOOK_FILE = "book.json"
EPUB_FILE = "book.epub"
BOOK_ID_RE = re.compile(r"^[a-f0-9]{32}$")


def new_book_id() -> str:
    return uuid.uuid4().hex


def is_valid_book_id(book_id: Optional[str]) -> bool:
    return bool(book_id) and BOOK_ID_RE.match(book_id or "") is not None


def _write_json(path: Path, data: dict) -> None:
    tmp_path = path.with_name(f".{path.name}.tmp")
    tmp_path.write_text(json.dumps(data, ensure_ascii=False, indent=2), encoding="utf-8")
    tmp_path.replace(path)


def _read_json(path: Path) -> dict:
    return json.loads(path.read_text(encoding="utf-8"))


class BookRepository:
    """Stores each book as ``<base>/<book_id>/book.json`` next to its EPUB copy."""

    def __init__(self, base: Union[str, Path]) -> None:
        self.base = Path(base)
        self.base.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()

    def book_dir(self, book_id: str) -> Path:
        return self.base / book_id

    def epub_path(self, book_id: str) -> Path:
        return self.book_dir(book_id) / EPUB_FILE

    def get_by_id(self, book_id: Optional[str]) -> Optional[Book]:
        if not is_valid_book_id(book_id):
            return None
        path = self.book_dir(book_id or "") / BOOK_FILE
        if not path.exists():
            return None
        try:
            return book_from_dict(_read_json(path))
        except (json.JSONDecodeError, OSError) as exc:
            logger.warning("Unable to load book %s: %s", book_id, exc)
            return None

    def add(self, book: Book) -> None:
        if not is_valid_book_id(book.book_id):
            raise ValueError(f"Invalid book id: {book.book_id!r}")
        with self._lock:
            path = self.book_dir(book.book_id)
            path.mkdir(parents=True, exist_ok=True)
            _write_json(path / BOOK_FILE, book_to_dict(book))

    def update(self, book: Book) -> None:
        if not is_valid_book_id(book.book_id):
            raise ValueError(f"Invalid book id: {book.book_id!r}")
        with self._lock:
            path = self.book_dir(book.book_id) / BOOK_FILE
            if not path.exists():
                raise FileNotFoundError(f"Book {book.book_id} is not stored")
            _write_json(path, book_to_dict(book))

    def store_epub(self, book_id: str, src_path: Union[str, Path]) -> Path:
        target = self.epub_path(book_id)
        target.parent.mkdir(parents=True, exist_ok=True)
        shutil.copyfile(src_path, target)
        return target

    def list_ids(self) -> list[str]:
        if not self.base.exists():
            return []
        return sorted(
            entry.name
            for entry in self.base.iterdir()
            if entry.is_dir() and is_valid_book_id(entry.name) and (entry / BOOK_FILE).exists()
        )

    def delete(self, book_id: str) -> bool:
        if not is_valid_book_id(book_id):
            return False
        path = self.book_dir(book_id)
        with self._lock:
            if not path.exists():
                return False
            shutil.rmtree(path)
        return True

from __future__ import annotations

from pathlib import Path
from typing import Union


class QuireError(Exception):
    pass


class BookNotFoundError(QuireError):
    def __init__(self, book_id: str) -> None:
        super().__init__(f"Book with id '{book_id}' was not found.")
        self.book_id = book_id


class ChapterNotFoundError(QuireError):
    def __init__(self, book_id: str, chapter_id: str) -> None:
        super().__init__(f"Chapter '{chapter_id}' was not found in book '{book_id}'.")
        self.book_id = book_id
        self.chapter_id = chapter_id


class InvalidEpubError(QuireError):
    def __init__(self, path: Union[str, Path], reason: str) -> None:
        super().__init__(f"The file '{path}' is not a valid epub: {reason}")
        self.path = str(path)
        self.reason = reason

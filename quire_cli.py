#!/usr/bin/env python3
from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import Optional

from quire.config import configure_logging
from quire.errors import QuireError
from quire.models import TocEntry
from quire.service import BookContentService, create_service
from quire.styles import StyleError, preset


def parse_args(argv: list[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Import, inspect and render EPUB books from the quire library.")
    sub = parser.add_subparsers(dest="command", required=True)

    importer = sub.add_parser("import", help="Import an EPUB file into the library")
    importer.add_argument("input", help="EPUB file path")

    sub.add_parser("list", help="List stored book ids")

    toc = sub.add_parser("toc", help="Print the table of contents of a book")
    toc.add_argument("book_id")

    render = sub.add_parser("render", help="Render one chapter to HTML")
    render.add_argument("book_id")
    render.add_argument("chapter_id", help="Chapter path, optionally with #fragment")
    render.add_argument("--theme", default="default", help="default, dracula or sepia")
    render.add_argument("--font-size", type=float, default=None)
    render.add_argument("-o", "--output", help="Write the document to this file instead of stdout")

    search = sub.add_parser("search", help="Search the text of a book")
    search.add_argument("book_id")
    search.add_argument("query")
    search.add_argument("--case-sensitive", action="store_true")
    search.add_argument("--whole-word", action="store_true")
    search.add_argument("--limit", type=int, default=20)

    stats = sub.add_parser("stats", help="Print book statistics as JSON")
    stats.add_argument("book_id")

    serve = sub.add_parser("serve", help="Run the HTTP server")
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=8000)
    return parser.parse_args(argv)


def _print_toc(entries: list[TocEntry]) -> None:
    for entry in entries:
        for node in entry.flatten():
            target = node.content_src or "-"
            print(f"{'  ' * node.depth}{node.title or '(untitled)'}  [{target}]")


def _run(args: argparse.Namespace, service: BookContentService) -> int:
    if args.command == "import":
        input_path = Path(args.input)
        if not input_path.exists():
            print(f"Input file not found: {input_path}", file=sys.stderr)
            return 1
        book = service.import_epub(input_path)
        print(f"Imported '{book.title}' as {book.book_id} ({len(book.chapters)} chapters)")
        return 0

    if args.command == "list":
        for book_id in service.repository.list_ids():
            print(book_id)
        return 0

    if args.command == "toc":
        _print_toc(service.get_table_of_contents(args.book_id))
        return 0

    if args.command == "render":
        style = preset(args.theme).with_overrides(font_size=args.font_size)
        document = service.get_chapter_content(args.book_id, args.chapter_id, style)
        if args.output:
            Path(args.output).write_text(document, encoding="utf-8")
            print(f"Chapter saved to: {args.output}")
        else:
            sys.stdout.write(document)
        return 0

    if args.command == "search":
        hits = service.search_in_book(args.book_id, args.query, args.case_sensitive, args.whole_word, args.limit)
        for hit in hits:
            print(f"{hit.chapter_title} @{hit.position}: ...{hit.excerpt}...")
        if not hits:
            print("No matches.")
        return 0

    if args.command == "stats":
        stats = service.get_book_statistics(args.book_id)
        print(json.dumps(stats.__dict__, ensure_ascii=False, indent=2))
        return 0

    return 2


def main(argv: list[str], service: Optional[BookContentService] = None) -> int:
    args = parse_args(argv)
    configure_logging()

    if args.command == "serve":
        import uvicorn

        uvicorn.run("quire.web:app", host=args.host, port=args.port)
        return 0

    try:
        return _run(args, service or create_service())
    except (QuireError, StyleError) as exc:
        print(str(exc), file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))

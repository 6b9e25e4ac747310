from __future__ import annotations

import asyncio
import dataclasses
import functools
import logging
import shutil
import tempfile
from pathlib import Path
from typing import Callable, Optional, TypeVar

from fastapi import FastAPI, File, Form, HTTPException, Query, Request, UploadFile
from fastapi.responses import HTMLResponse, PlainTextResponse

from .config import configure_logging
from .errors import BookNotFoundError, ChapterNotFoundError, InvalidEpubError
from .models import StyleDescriptor, book_to_dict, toc_entry_to_dict
from .service import BookContentService, create_service
from .styles import StyleError, preset, validate_custom_css

T = TypeVar("T")

app = FastAPI()
logger = logging.getLogger("quire.web")


@app.on_event("startup")
async def startup() -> None:
    configure_logging()
    if getattr(app.state, "service", None) is None:
        app.state.service = create_service()
    logger.info("Library ready at %s", app.state.service.repository.base)


def _no_store_headers() -> dict[str, str]:
    return {
        "Cache-Control": "no-store, max-age=0",
        "CDN-Cache-Control": "no-store",
        "Pragma": "no-cache",
        "Expires": "0",
    }


def _service(request: Request) -> BookContentService:
    service = getattr(request.app.state, "service", None)
    if service is None:
        service = create_service()
        request.app.state.service = service
    return service


async def _call(request: Request, func: Callable[..., T], *args: object, **kwargs: object) -> T:
    # Archive and repository reads block; keep them off the event loop.
    loop = asyncio.get_running_loop()
    try:
        return await loop.run_in_executor(None, functools.partial(func, *args, **kwargs))
    except (BookNotFoundError, ChapterNotFoundError) as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc


def _resolve_style(
    theme: Optional[str],
    font_size: Optional[float],
    line_height: Optional[float],
    font_family: Optional[str],
    custom_css: Optional[str] = None,
) -> StyleDescriptor:
    try:
        base = preset(theme)
    except StyleError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    if custom_css:
        error = validate_custom_css(custom_css)
        if error:
            raise HTTPException(status_code=400, detail=error)
    return base.with_overrides(
        font_size=font_size,
        line_height=line_height,
        font_family=(font_family or "").strip() or None,
        custom_css=custom_css or None,
    )


@app.get("/books/{book_id}/chapters/{chapter_id:path}")
async def chapter_content(
    request: Request,
    book_id: str,
    chapter_id: str,
    theme: Optional[str] = Query(default=None, max_length=40),
    font_size: Optional[float] = Query(default=None, gt=0),
    line_height: Optional[float] = Query(default=None, gt=0),
    font_family: Optional[str] = Query(default=None, max_length=200),
    fragment: Optional[str] = Query(default=None, max_length=500),
) -> HTMLResponse:
    style = _resolve_style(theme, font_size, line_height, font_family)
    target = f"{chapter_id}#{fragment}" if fragment else chapter_id
    document = await _call(request, _service(request).get_chapter_content, book_id, target, style)
    return HTMLResponse(document, headers=_no_store_headers())


@app.get("/books/{book_id}/content")
async def book_content(request: Request, book_id: str) -> HTMLResponse:
    document = await _call(request, _service(request).get_complete_book_content, book_id)
    return HTMLResponse(document, headers=_no_store_headers())


@app.get("/books/{book_id}/plain/{chapter_id:path}")
async def chapter_plain_text(request: Request, book_id: str, chapter_id: str) -> PlainTextResponse:
    text = await _call(request, _service(request).get_chapter_plain_text, book_id, chapter_id)
    return PlainTextResponse(text)


@app.get("/books/{book_id}/toc")
async def table_of_contents(request: Request, book_id: str) -> list[dict]:
    entries = await _call(request, _service(request).get_table_of_contents, book_id)
    return [toc_entry_to_dict(entry) for entry in entries]


@app.get("/books/{book_id}/statistics")
async def book_statistics(request: Request, book_id: str) -> dict[str, object]:
    stats = await _call(request, _service(request).get_book_statistics, book_id)
    return dataclasses.asdict(stats)


@app.get("/books/{book_id}/search")
async def search(
    request: Request,
    book_id: str,
    q: str = Query(default="", max_length=200),
    case_sensitive: bool = Query(default=False),
    whole_word: bool = Query(default=False),
    limit: int = Query(default=50, ge=1, le=500),
) -> dict[str, object]:
    hits = await _call(
        request,
        _service(request).search_in_book,
        book_id,
        q,
        case_sensitive,
        whole_word,
        limit,
    )
    return {
        "query": q,
        "hits": [{**dataclasses.asdict(hit), "excerpt": hit.excerpt} for hit in hits],
    }


@app.get("/books/{book_id}/suggestions")
async def suggestions(
    request: Request,
    book_id: str,
    q: str = Query(default="", max_length=100),
    limit: int = Query(default=10, ge=1, le=50),
) -> dict[str, object]:
    words = await _call(request, _service(request).get_suggestions, book_id, q, limit)
    return {"query": q, "suggestions": words}


@app.post("/books")
async def import_book(request: Request, file: UploadFile = File(...)) -> dict[str, object]:
    filename = Path(file.filename or "upload.epub").name
    if not filename.lower().endswith(".epub"):
        raise HTTPException(status_code=400, detail="Only .epub files can be imported")
    with tempfile.TemporaryDirectory() as tmp:
        upload_path = Path(tmp) / filename
        with upload_path.open("wb") as handle:
            shutil.copyfileobj(file.file, handle)
        try:
            book = await _call(request, _service(request).import_epub, upload_path)
        except InvalidEpubError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
    data = book_to_dict(book)
    data.pop("chapters", None)
    return data


@app.get("/cache")
async def cache_status(request: Request) -> dict[str, object]:
    service = _service(request)
    return {"count": service.get_cached_items_count(), "keys": service.get_all_cache_keys()}


@app.post("/cache/clear")
async def cache_clear(request: Request) -> dict[str, object]:
    _service(request).clear_cache()
    return {"cleared": True}


@app.post("/cache/invalidate")
async def cache_invalidate(request: Request, prefix: str = Form(...)) -> dict[str, object]:
    removed = _service(request).invalidate_cache_prefix(prefix)
    return {"prefix": prefix, "removed": removed}

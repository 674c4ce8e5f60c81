from __future__ import annotations

import contextlib
from pathlib import Path
from typing import List, Optional

from fastapi import FastAPI, File, HTTPException, Query, Request, UploadFile
from fastapi.responses import HTMLResponse, JSONResponse, Response
from fastapi.templating import Jinja2Templates
from pydantic import BaseModel

from .config import ReaderConfig, load_config
from .export import EXPORT_FORMATS, ExportError
from .extract import InputValidationError, ParseError
from .session import NO_NOVEL_LOADED, ReaderSession
from .store import SessionStore
from .timer import AsyncioScheduler, Scheduler


def _no_store(data: dict) -> JSONResponse:
    return JSONResponse(data, headers={"Cache-Control": "no-store"})


class GoToPayload(BaseModel):
    index: int


class ScrollPayload(BaseModel):
    fraction: float
    client_height: Optional[float] = None
    scroll_height: Optional[float] = None
    chapter_version: Optional[int] = None


class RelativeScrollPayload(BaseModel):
    factor: Optional[float] = None


class SettingsPayload(BaseModel):
    theme: Optional[str] = None
    font: Optional[str] = None
    font_size: Optional[int] = None


def create_app(
    state_dir: Path,
    config: Optional[ReaderConfig] = None,
    scheduler: Optional[Scheduler] = None,
) -> FastAPI:
    templates = Jinja2Templates(directory=str(Path(__file__).parent / "templates"))
    state_dir = Path(state_dir).expanduser().resolve()
    state_dir.mkdir(parents=True, exist_ok=True)
    if config is None:
        config = load_config(state_dir=state_dir)
    messages: List[str] = []
    session = ReaderSession(
        store=SessionStore(state_dir),
        scheduler=scheduler or AsyncioScheduler(),
        config=config,
        notify=messages.append,
    )

    @contextlib.asynccontextmanager
    async def lifespan(_app: FastAPI):
        yield
        session.close()

    app = FastAPI(lifespan=lifespan)
    app.state.session = session

    def _drain() -> List[str]:
        drained = list(messages)
        messages.clear()
        return drained

    def _reply() -> JSONResponse:
        payload = session.state_payload()
        payload["messages"] = _drain()
        return _no_store(payload)

    def _require_novel() -> None:
        if not session.state.reading:
            raise HTTPException(status_code=409, detail=NO_NOVEL_LOADED)

    @app.get("/", response_class=HTMLResponse)
    async def index(request: Request) -> HTMLResponse:
        context = {
            "request": request,
            "notification_ms": config.notification_ms,
            "relative_scroll_step": config.relative_scroll_step,
        }
        return templates.TemplateResponse(request, "reader.html", context)

    @app.get("/api/state")
    async def get_state() -> JSONResponse:
        return _reply()

    @app.get("/api/chapter")
    async def get_chapter(index: Optional[int] = None) -> JSONResponse:
        _require_novel()
        novel = session.state.novel
        target = session.state.current_chapter if index is None else index
        if target < 0 or target >= len(novel.chapters):
            raise HTTPException(status_code=404, detail="Chapter not found.")
        chapter = novel.chapters[target]
        return _no_store(
            {
                "index": target,
                "title": chapter.title,
                "content": chapter.content,
                "current": target == session.state.current_chapter,
                "scroll_fraction": (
                    session.state.scroll_fraction
                    if target == session.state.current_chapter
                    else 0.0
                ),
                "chapter_version": session.chapter_version,
            }
        )

    @app.post("/api/novel")
    async def upload_novel(file: UploadFile = File(...)) -> JSONResponse:
        # One byte past the cap is enough to reject without reading the rest.
        data = await file.read(config.max_upload_bytes + 1)
        try:
            session.load_file(data, file.content_type, file.filename or "")
        except (InputValidationError, ParseError) as exc:
            _drain()
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        return _reply()

    @app.post("/api/snapshot")
    async def upload_snapshot(file: UploadFile = File(...)) -> JSONResponse:
        data = await file.read(config.max_upload_bytes + 1)
        if len(data) > config.max_upload_bytes:
            raise HTTPException(status_code=400, detail="Snapshot is too large.")
        try:
            session.import_snapshot(data)
        except ParseError as exc:
            _drain()
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        return _reply()

    @app.post("/api/unload")
    async def unload() -> JSONResponse:
        session.unload()
        return _reply()

    @app.post("/api/goto")
    async def goto(payload: GoToPayload) -> JSONResponse:
        session.go_to(payload.index)
        return _reply()

    @app.post("/api/next")
    async def next_chapter() -> JSONResponse:
        session.next_chapter()
        return _reply()

    @app.post("/api/prev")
    async def previous_chapter() -> JSONResponse:
        session.previous_chapter()
        return _reply()

    @app.post("/api/scroll")
    async def scroll(payload: ScrollPayload) -> JSONResponse:
        if not session.accepts_sample(payload.chapter_version):
            return _reply()
        if payload.client_height is not None and payload.scroll_height is not None:
            session.set_viewport(payload.client_height, payload.scroll_height)
        session.scroll_update(payload.fraction, payload.chapter_version)
        return _reply()

    @app.post("/api/scroll/top")
    async def scroll_top() -> JSONResponse:
        session.scroll_to_top()
        return _reply()

    @app.post("/api/scroll/bottom")
    async def scroll_bottom() -> JSONResponse:
        session.scroll_to_bottom()
        return _reply()

    @app.post("/api/scroll/relative")
    async def scroll_relative(payload: RelativeScrollPayload) -> JSONResponse:
        session.relative_scroll(payload.factor)
        return _reply()

    @app.post("/api/bookmark/toggle")
    async def bookmark_toggle() -> JSONResponse:
        session.toggle_bookmark()
        return _reply()

    @app.get("/api/bookmarks")
    async def list_bookmarks(all_novels: bool = False) -> JSONResponse:
        marks = session.bookmarks if all_novels else session.novel_bookmarks()
        return _no_store(
            {
                "bookmarks": [
                    {
                        "novel_title": mark.novel_title,
                        "chapter_index": mark.chapter_index,
                        "chapter_title": mark.chapter_title,
                        "created_at": mark.created_at,
                    }
                    for mark in marks
                ]
            }
        )

    @app.get("/api/settings")
    async def get_settings() -> JSONResponse:
        return _reply()

    @app.post("/api/settings")
    async def update_settings(payload: SettingsPayload) -> JSONResponse:
        if payload.theme is not None:
            session.set_theme(payload.theme)
        if payload.font is not None:
            session.set_font(payload.font)
        if payload.font_size is not None:
            session.set_font_size(payload.font_size)
        return _reply()

    @app.post("/api/sidebar/toggle")
    async def sidebar_toggle() -> JSONResponse:
        session.toggle_sidebar()
        return _reply()

    @app.post("/api/overlays/close")
    async def overlays_close() -> JSONResponse:
        session.close_overlays()
        return _reply()

    @app.get("/api/search")
    async def search(q: str = "") -> JSONResponse:
        result = session.search(q)
        result["messages"] = _drain()
        return _no_store(result)

    @app.get("/api/export")
    async def export(fmt: str = Query("json", alias="format")) -> Response:
        if fmt not in EXPORT_FORMATS:
            raise HTTPException(status_code=400, detail=f"Unknown export format: {fmt}")
        _require_novel()
        try:
            artifact = session.export(fmt)
        except ExportError as exc:
            _drain()
            raise HTTPException(status_code=500, detail=str(exc)) from exc
        _drain()
        return Response(
            content=artifact.content,
            media_type=artifact.media_type,
            headers={
                "Content-Disposition": f'attachment; filename="{artifact.filename}"',
                "Cache-Control": "no-store",
            },
        )

    return app


def run(state_dir: Path, host: str, port: int, config: Optional[ReaderConfig] = None) -> None:
    import uvicorn

    app = create_app(state_dir=state_dir, config=config)
    uvicorn.run(app, host=host, port=port)

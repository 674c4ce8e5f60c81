from __future__ import annotations

import json
import re
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import List, Optional, Sequence

from jinja2 import Environment, FileSystemLoader, TemplateError, select_autoescape

from .extract import PARSE_ERROR, Chapter, Novel, ParseError
from .sanitize import sanitize
from .store import (
    Bookmark,
    Progress,
    Settings,
    bookmarks_from_list,
    now_iso,
    progress_from_dict,
    settings_from_dict,
)

SNAPSHOT_FORMAT = "shiori-snapshot"
SNAPSHOT_VERSION = 1
EXPORT_FORMATS = ("json", "html")
EXPORT_FAILED = "Export failed"

_FILENAME_UNSAFE_RE = re.compile(r"[^A-Za-z0-9]")


class ExportError(RuntimeError):
    """No artifact could be produced."""


@dataclass(frozen=True)
class ExportArtifact:
    filename: str
    media_type: str
    content: bytes


@dataclass(frozen=True)
class Snapshot:
    novel: Novel
    bookmarks: List[Bookmark]
    progress: Optional[Progress]
    settings: Settings


def export_filename(title: str, suffix: str) -> str:
    stem = _FILENAME_UNSAFE_RE.sub("_", title.strip()) or "novel"
    return f"{stem}{suffix}"


def _novel_bookmarks(novel: Novel, bookmarks: Sequence[Bookmark]) -> List[Bookmark]:
    return [mark for mark in bookmarks if mark.novel_title == novel.title]


def _novel_progress(novel: Novel, progress: Optional[Progress]) -> Optional[Progress]:
    if progress is None or progress.novel_title != novel.title:
        return None
    return progress


def snapshot_payload(
    novel: Novel,
    bookmarks: Sequence[Bookmark],
    progress: Optional[Progress],
    settings: Settings,
) -> dict:
    matched = _novel_progress(novel, progress)
    return {
        "format": SNAPSHOT_FORMAT,
        "version": SNAPSHOT_VERSION,
        "exported_at": now_iso(),
        "novel": {
            "title": novel.title,
            "source_file_name": novel.source_file_name,
            "chapters": [asdict(chapter) for chapter in novel.chapters],
        },
        "bookmarks": [asdict(mark) for mark in _novel_bookmarks(novel, bookmarks)],
        "progress": asdict(matched) if matched is not None else None,
        "settings": asdict(settings),
    }


def export_snapshot(
    novel: Novel,
    bookmarks: Sequence[Bookmark],
    progress: Optional[Progress],
    settings: Settings,
) -> ExportArtifact:
    try:
        payload = snapshot_payload(novel, bookmarks, progress, settings)
        content = json.dumps(payload, ensure_ascii=False, indent=2) + "\n"
    except (TypeError, ValueError) as exc:
        raise ExportError(f"{EXPORT_FAILED}: {exc}") from exc
    return ExportArtifact(
        filename=export_filename(novel.title, "_snapshot.json"),
        media_type="application/json",
        content=content.encode("utf-8"),
    )


def _template_env() -> Environment:
    return Environment(
        loader=FileSystemLoader(str(Path(__file__).parent / "templates")),
        autoescape=select_autoescape(["html"]),
    )


def export_html(
    novel: Novel,
    bookmarks: Sequence[Bookmark],
    progress: Optional[Progress],
    settings: Settings,
) -> ExportArtifact:
    """Render every chapter into one standalone page with the font size inlined."""
    try:
        template = _template_env().get_template("export.html")
        content = template.render(
            novel=novel,
            chapters=novel.chapters,
            bookmarks=_novel_bookmarks(novel, bookmarks),
            progress=_novel_progress(novel, progress),
            settings=settings,
            exported_at=now_iso(),
        )
    except (OSError, TemplateError, TypeError, ValueError) as exc:
        raise ExportError(f"{EXPORT_FAILED}: {exc}") from exc
    return ExportArtifact(
        filename=export_filename(novel.title, "_enhanced.html"),
        media_type="text/html",
        content=content.encode("utf-8"),
    )


def export_novel(
    fmt: str,
    novel: Novel,
    bookmarks: Sequence[Bookmark],
    progress: Optional[Progress],
    settings: Settings,
) -> ExportArtifact:
    if fmt == "json":
        return export_snapshot(novel, bookmarks, progress, settings)
    if fmt == "html":
        return export_html(novel, bookmarks, progress, settings)
    raise ExportError(f"Unknown export format: {fmt}")


def write_artifact(artifact: ExportArtifact, out_dir: Path) -> Path:
    path = Path(out_dir) / artifact.filename
    tmp = path.with_suffix(path.suffix + ".tmp")
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp.write_bytes(artifact.content)
        tmp.replace(path)
    except OSError as exc:
        if tmp.exists():
            tmp.unlink()
        raise ExportError(f"{EXPORT_FAILED}: {exc}") from exc
    return path


def _chapters_from_payload(raw: object) -> List[Chapter]:
    if not isinstance(raw, list) or not raw:
        raise ParseError(PARSE_ERROR)
    chapters: List[Chapter] = []
    for position, entry in enumerate(raw):
        if not isinstance(entry, dict):
            raise ParseError(PARSE_ERROR)
        title = entry.get("title")
        content = entry.get("content")
        if not isinstance(title, str) or not isinstance(content, str):
            raise ParseError(PARSE_ERROR)
        source_index = entry.get("source_index", position)
        if not isinstance(source_index, int) or isinstance(source_index, bool):
            source_index = position
        chapters.append(
            Chapter(title=title, content=sanitize(content), source_index=source_index)
        )
    return chapters


def load_snapshot(data: bytes | str) -> Snapshot:
    """Parse a JSON snapshot produced by ``export_snapshot``."""
    try:
        payload = json.loads(data)
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise ParseError(PARSE_ERROR) from exc
    if not isinstance(payload, dict) or payload.get("format") != SNAPSHOT_FORMAT:
        raise ParseError(PARSE_ERROR)
    raw_novel = payload.get("novel")
    if not isinstance(raw_novel, dict):
        raise ParseError(PARSE_ERROR)
    title = raw_novel.get("title")
    if not isinstance(title, str) or not title.strip():
        raise ParseError(PARSE_ERROR)
    source_file_name = raw_novel.get("source_file_name")
    novel = Novel(
        title=title,
        source_file_name=source_file_name if isinstance(source_file_name, str) else "",
        chapters=tuple(_chapters_from_payload(raw_novel.get("chapters"))),
    )
    bookmarks = [
        mark
        for mark in bookmarks_from_list(payload.get("bookmarks"))
        if mark.novel_title == novel.title and mark.chapter_index < len(novel.chapters)
    ]
    progress = progress_from_dict(payload.get("progress"))
    if progress is not None and progress.novel_title != novel.title:
        progress = None
    return Snapshot(
        novel=novel,
        bookmarks=bookmarks,
        progress=progress,
        settings=settings_from_dict(payload.get("settings")),
    )

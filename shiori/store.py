from __future__ import annotations

import json
import math
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional, Sequence

THEMES = ("light", "dark", "sepia")
FONTS = ("serif", "sans", "mono")
FONT_SIZE_MIN = 12
FONT_SIZE_MAX = 24

SETTINGS_FILENAME = "settings.json"
PROGRESS_FILENAME = "progress.json"
BOOKMARKS_FILENAME = "bookmarks.json"


class StorageError(OSError):
    """A session record could not be written."""


@dataclass(frozen=True)
class Settings:
    theme: str = "light"
    font: str = "serif"
    font_size: int = 18


@dataclass(frozen=True)
class Progress:
    novel_title: str
    current_chapter: int
    scroll_fraction: float
    saved_at: str


@dataclass(frozen=True)
class Bookmark:
    novel_title: str
    chapter_index: int
    chapter_title: str
    created_at: str


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def clamp_fraction(value: float) -> float:
    if math.isnan(value):
        return 0.0
    return min(1.0, max(0.0, float(value)))


def clamp_font_size(value: int) -> int:
    return max(FONT_SIZE_MIN, min(FONT_SIZE_MAX, int(value)))


def _is_int(value: object) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _is_number(value: object) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def settings_from_dict(data: object) -> Settings:
    defaults = Settings()
    if not isinstance(data, dict):
        return defaults
    theme = data.get("theme")
    if theme not in THEMES:
        theme = defaults.theme
    font = data.get("font")
    if font not in FONTS:
        font = defaults.font
    font_size = data.get("font_size")
    if _is_int(font_size) and FONT_SIZE_MIN <= font_size <= FONT_SIZE_MAX:
        size = int(font_size)
    else:
        size = defaults.font_size
    return Settings(theme=str(theme), font=str(font), font_size=size)


def progress_from_dict(data: object) -> Optional[Progress]:
    if not isinstance(data, dict):
        return None
    title = data.get("novel_title")
    chapter = data.get("current_chapter")
    fraction = data.get("scroll_fraction", 0.0)
    if not isinstance(title, str) or not _is_int(chapter) or chapter < 0:
        return None
    if not _is_number(fraction):
        fraction = 0.0
    saved_at = data.get("saved_at")
    return Progress(
        novel_title=title,
        current_chapter=int(chapter),
        scroll_fraction=clamp_fraction(fraction),
        saved_at=saved_at if isinstance(saved_at, str) else "",
    )


def bookmarks_from_list(data: object) -> List[Bookmark]:
    if not isinstance(data, list):
        return []
    bookmarks: List[Bookmark] = []
    seen: set[tuple[str, int]] = set()
    for entry in data:
        if not isinstance(entry, dict):
            continue
        title = entry.get("novel_title")
        index = entry.get("chapter_index")
        if not isinstance(title, str) or not _is_int(index) or index < 0:
            continue
        key = (title, int(index))
        if key in seen:
            continue
        seen.add(key)
        chapter_title = entry.get("chapter_title")
        created_at = entry.get("created_at")
        bookmarks.append(
            Bookmark(
                novel_title=title,
                chapter_index=int(index),
                chapter_title=chapter_title if isinstance(chapter_title, str) else "",
                created_at=created_at if isinstance(created_at, str) else "",
            )
        )
    return bookmarks


def toggle_bookmark(
    bookmarks: Sequence[Bookmark],
    novel_title: str,
    chapter_index: int,
    chapter_title: str,
    created_at: Optional[str] = None,
) -> tuple[List[Bookmark], bool]:
    """Remove the bookmark for (novel_title, chapter_index) if present, else
    append one. Returns the new list and whether a bookmark was added."""
    remaining = [
        mark
        for mark in bookmarks
        if not (mark.novel_title == novel_title and mark.chapter_index == chapter_index)
    ]
    if len(remaining) != len(bookmarks):
        return remaining, False
    remaining.append(
        Bookmark(
            novel_title=novel_title,
            chapter_index=chapter_index,
            chapter_title=chapter_title,
            created_at=created_at or now_iso(),
        )
    )
    return remaining, True


def merge_bookmarks(existing: Sequence[Bookmark], incoming: Sequence[Bookmark]) -> List[Bookmark]:
    merged = list(existing)
    keys = {(mark.novel_title, mark.chapter_index) for mark in merged}
    for mark in incoming:
        key = (mark.novel_title, mark.chapter_index)
        if key in keys:
            continue
        keys.add(key)
        merged.append(mark)
    return merged


def _load_json(path: Path) -> object:
    """Parsed JSON, or None when the record is missing or corrupt.

    Raises StorageError when the record exists but cannot be read.
    """
    if not path.exists():
        return None
    try:
        raw = path.read_text(encoding="utf-8")
    except UnicodeDecodeError:
        return None
    except OSError as exc:
        raise StorageError(f"{path.name}: {exc}") from exc
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        return None


def _atomic_write_json(path: Path, payload: object) -> None:
    tmp = path.with_suffix(path.suffix + ".tmp")
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp.write_text(json.dumps(payload, ensure_ascii=False, indent=2) + "\n", encoding="utf-8")
        tmp.replace(path)
    except (OSError, TypeError, ValueError) as exc:
        raise StorageError(f"{path.name}: {exc}") from exc


class SessionStore:
    """Settings, progress and bookmarks as three independent JSON records."""

    def __init__(self, state_dir: Path) -> None:
        self.state_dir = Path(state_dir)

    def _path(self, filename: str) -> Path:
        return self.state_dir / filename

    def load_settings(self) -> Settings:
        return settings_from_dict(_load_json(self._path(SETTINGS_FILENAME)))

    def save_settings(self, settings: Settings) -> None:
        _atomic_write_json(self._path(SETTINGS_FILENAME), asdict(settings))

    def load_progress(self) -> Optional[Progress]:
        return progress_from_dict(_load_json(self._path(PROGRESS_FILENAME)))

    def save_progress(self, progress: Progress) -> None:
        _atomic_write_json(self._path(PROGRESS_FILENAME), asdict(progress))

    def load_bookmarks(self) -> List[Bookmark]:
        return bookmarks_from_list(_load_json(self._path(BOOKMARKS_FILENAME)))

    def save_bookmarks(self, bookmarks: Sequence[Bookmark]) -> None:
        _atomic_write_json(
            self._path(BOOKMARKS_FILENAME), [asdict(mark) for mark in bookmarks]
        )

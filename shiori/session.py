from __future__ import annotations

import sys
from dataclasses import asdict, dataclass, replace
from typing import Callable, List, Optional

from .config import ReaderConfig
from .export import EXPORT_FAILED, ExportArtifact, ExportError, export_novel, load_snapshot
from .extract import Chapter, InputValidationError, Novel, ParseError, read_novel
from .store import (
    FONTS,
    THEMES,
    Bookmark,
    Progress,
    SessionStore,
    Settings,
    StorageError,
    clamp_font_size,
    clamp_fraction,
    merge_bookmarks,
    now_iso,
    toggle_bookmark,
)
from .timer import Scheduler, Timer

BOOKMARK_ADDED = "Bookmark added"
BOOKMARK_REMOVED = "Bookmark removed"
SEARCH_NOT_IMPLEMENTED = "Search not yet implemented"
NO_NOVEL_LOADED = "No novel loaded"
EXPORT_SUCCESS = "Novel exported successfully!"

Notifier = Callable[[str], None]
ChapterListener = Callable[[int, int], None]


def _stderr_notify(message: str) -> None:
    sys.stderr.write(f"{message}\n")


@dataclass(frozen=True)
class Viewport:
    client_height: float
    scroll_height: float

    @property
    def max_scroll(self) -> float:
        return self.scroll_height - self.client_height


@dataclass(frozen=True)
class ReadingState:
    novel: Optional[Novel] = None
    current_chapter: int = 0
    scroll_fraction: float = 0.0

    @property
    def reading(self) -> bool:
        return self.novel is not None

    @property
    def chapter(self) -> Optional[Chapter]:
        if self.novel is None:
            return None
        return self.novel.chapters[self.current_chapter]

    @property
    def is_last_chapter(self) -> bool:
        return self.novel is None or self.current_chapter >= len(self.novel.chapters) - 1


class ReaderSession:
    """Owns the reading state for one reader and every transition on it.

    All methods are expected to run on a single logical thread: the scheduler
    callbacks and the host's event handlers must never interleave.
    """

    def __init__(
        self,
        store: SessionStore,
        scheduler: Scheduler,
        config: Optional[ReaderConfig] = None,
        notify: Optional[Notifier] = None,
        on_chapter_change: Optional[ChapterListener] = None,
    ) -> None:
        self.store = store
        self.scheduler = scheduler
        self.config = config or ReaderConfig()
        self.notify = notify or _stderr_notify
        self.on_chapter_change = on_chapter_change
        self.state = ReadingState()
        self.viewport: Optional[Viewport] = None
        self.sidebar_open = False
        self.chapter_version = 0
        self.settings = self._load_settings()
        self.bookmarks: List[Bookmark] = self._load_bookmarks()
        self._persist_timer = Timer(scheduler, self.config.scroll_debounce_ms)
        self._advance_timer = Timer(scheduler, self.config.auto_advance_delay_ms)

    # -- persistence -----------------------------------------------------

    def current_progress(self) -> Optional[Progress]:
        if self.state.novel is None:
            return None
        return Progress(
            novel_title=self.state.novel.title,
            current_chapter=self.state.current_chapter,
            scroll_fraction=self.state.scroll_fraction,
            saved_at=now_iso(),
        )

    def _load_settings(self) -> Settings:
        try:
            return self.store.load_settings()
        except StorageError as exc:
            self.notify(f"Failed to read settings: {exc}")
            return Settings()

    def _load_bookmarks(self) -> List[Bookmark]:
        try:
            return self.store.load_bookmarks()
        except StorageError as exc:
            self.notify(f"Failed to read bookmarks: {exc}")
            return []

    def _load_progress(self) -> Optional[Progress]:
        try:
            return self.store.load_progress()
        except StorageError as exc:
            self.notify(f"Failed to read reading progress: {exc}")
            return None

    def _save_progress(self) -> None:
        progress = self.current_progress()
        if progress is None:
            return
        try:
            self.store.save_progress(progress)
        except StorageError as exc:
            self.notify(f"Failed to save reading progress: {exc}")

    def _save_settings(self) -> None:
        try:
            self.store.save_settings(self.settings)
        except StorageError as exc:
            self.notify(f"Failed to save settings: {exc}")

    def _save_bookmarks(self) -> None:
        try:
            self.store.save_bookmarks(self.bookmarks)
        except StorageError as exc:
            self.notify(f"Failed to save bookmarks: {exc}")

    def _flush_pending_progress(self) -> None:
        if self._persist_timer.pending:
            self._persist_timer.cancel()
            self._save_progress()

    def _cancel_timers(self) -> None:
        self._advance_timer.cancel()
        self._flush_pending_progress()

    @property
    def auto_advance_pending(self) -> bool:
        return self._advance_timer.pending

    @property
    def progress_save_pending(self) -> bool:
        return self._persist_timer.pending

    # -- loading ---------------------------------------------------------

    def load(self, novel: Novel, progress: Optional[Progress] = None) -> ReadingState:
        """Install ``novel`` and jump to the stored position when it belongs to it."""
        self._cancel_timers()
        if progress is None:
            progress = self._load_progress()
        chapter, fraction = 0, 0.0
        if (
            progress is not None
            and progress.novel_title == novel.title
            and 0 <= progress.current_chapter < len(novel.chapters)
        ):
            chapter = progress.current_chapter
            fraction = clamp_fraction(progress.scroll_fraction)
        self.state = ReadingState(novel=novel, current_chapter=chapter, scroll_fraction=fraction)
        self.viewport = None
        self.chapter_version += 1
        return self.state

    def load_file(self, data: bytes, mime_type: Optional[str], file_name: str) -> Novel:
        try:
            novel = read_novel(data, mime_type, file_name, self.config.max_upload_bytes)
        except (InputValidationError, ParseError) as exc:
            self.notify(str(exc))
            raise
        self.load(novel)
        return novel

    def import_snapshot(self, data: bytes | str) -> Novel:
        try:
            snapshot = load_snapshot(data)
        except ParseError as exc:
            self.notify(str(exc))
            raise
        self.bookmarks = merge_bookmarks(self.bookmarks, snapshot.bookmarks)
        self._save_bookmarks()
        self.load(snapshot.novel, progress=snapshot.progress)
        return snapshot.novel

    def unload(self) -> None:
        self._cancel_timers()
        self.state = ReadingState()
        self.viewport = None
        self.sidebar_open = False
        self.chapter_version += 1

    def close(self) -> None:
        self._cancel_timers()

    # -- navigation ------------------------------------------------------

    def go_to(self, index: int) -> bool:
        novel = self.state.novel
        if novel is None:
            return False
        if isinstance(index, bool) or not isinstance(index, int):
            return False
        if index < 0 or index >= len(novel.chapters):
            return False
        previous = self.state.current_chapter
        self._advance_timer.cancel()
        self._persist_timer.cancel()
        self.state = replace(self.state, current_chapter=index, scroll_fraction=0.0)
        self.chapter_version += 1
        self._save_progress()
        if self.on_chapter_change is not None:
            self.on_chapter_change(previous, index)
        return True

    def next_chapter(self) -> bool:
        return self.go_to(self.state.current_chapter + 1)

    def previous_chapter(self) -> bool:
        return self.go_to(self.state.current_chapter - 1)

    # -- scrolling -------------------------------------------------------

    def set_viewport(self, client_height: float, scroll_height: float) -> None:
        if not self.state.reading:
            return
        self.viewport = Viewport(
            client_height=max(0.0, float(client_height)),
            scroll_height=max(0.0, float(scroll_height)),
        )

    @property
    def near_bottom_threshold(self) -> float:
        viewport = self.viewport
        if viewport is None:
            return self.config.default_near_bottom_threshold
        if viewport.max_scroll <= 0:
            return 0.0
        ratio = viewport.client_height / viewport.max_scroll
        return min(0.5, self.config.near_bottom_viewport_fraction * ratio)

    def accepts_sample(self, chapter_version: Optional[int]) -> bool:
        """Samples measured against an earlier chapter must not move the current one."""
        return chapter_version is None or chapter_version == self.chapter_version

    def scroll_update(self, fraction: float, chapter_version: Optional[int] = None) -> float:
        if not self.state.reading:
            return 0.0
        if not self.accepts_sample(chapter_version):
            return self.state.scroll_fraction
        if self.viewport is not None and self.viewport.max_scroll <= 0:
            fraction = 0.0
        else:
            fraction = clamp_fraction(fraction)
        self.state = replace(self.state, scroll_fraction=fraction)
        self._persist_timer.start(self._save_progress)
        self.auto_advance_check(fraction)
        return fraction

    def auto_advance_check(self, fraction: float) -> bool:
        """Arm (or re-arm) the advance timer while near the bottom, else cancel it."""
        if not self.state.reading:
            self._advance_timer.cancel()
            return False
        threshold = self.near_bottom_threshold
        if threshold > 0 and fraction > 1.0 - threshold and not self.state.is_last_chapter:
            armed_chapter = self.state.current_chapter
            self._advance_timer.start(lambda: self._auto_advance(armed_chapter))
            return True
        self._advance_timer.cancel()
        return False

    def _auto_advance(self, armed_chapter: int) -> None:
        if not self.state.reading or self.state.current_chapter != armed_chapter:
            return
        self.go_to(armed_chapter + 1)

    def scroll_to_top(self) -> None:
        if not self.state.reading:
            return
        self.scroll_update(0.0)
        self._flush_pending_progress()

    def scroll_to_bottom(self) -> None:
        if not self.state.reading:
            return
        self.scroll_update(1.0)
        self._flush_pending_progress()

    def relative_scroll(self, factor: Optional[float] = None) -> float:
        """Scroll by ``factor`` viewport heights (negative scrolls up)."""
        if not self.state.reading:
            return 0.0
        if factor is None:
            factor = self.config.relative_scroll_step
        viewport = self.viewport
        if viewport is None:
            # Unknown geometry: treat the chapter as a single viewport.
            delta = factor
        elif viewport.max_scroll <= 0:
            delta = 0.0
        else:
            delta = factor * viewport.client_height / viewport.max_scroll
        return self.scroll_update(self.state.scroll_fraction + delta)

    # -- bookmarks -------------------------------------------------------

    def novel_bookmarks(self) -> List[Bookmark]:
        novel = self.state.novel
        if novel is None:
            return []
        return [mark for mark in self.bookmarks if mark.novel_title == novel.title]

    @property
    def is_bookmarked(self) -> bool:
        novel = self.state.novel
        if novel is None:
            return False
        return any(
            mark.novel_title == novel.title and mark.chapter_index == self.state.current_chapter
            for mark in self.bookmarks
        )

    def toggle_bookmark(self) -> Optional[bool]:
        chapter = self.state.chapter
        if self.state.novel is None or chapter is None:
            return None
        self.bookmarks, added = toggle_bookmark(
            self.bookmarks,
            novel_title=self.state.novel.title,
            chapter_index=self.state.current_chapter,
            chapter_title=chapter.title,
        )
        self._save_bookmarks()
        self.notify(BOOKMARK_ADDED if added else BOOKMARK_REMOVED)
        return added

    # -- display settings ------------------------------------------------

    def toggle_sidebar(self) -> bool:
        if not self.state.reading:
            return self.sidebar_open
        self.sidebar_open = not self.sidebar_open
        return self.sidebar_open

    def close_overlays(self) -> None:
        self.sidebar_open = False

    def set_theme(self, theme: str) -> bool:
        if theme not in THEMES:
            return False
        self.settings = replace(self.settings, theme=theme)
        self._save_settings()
        return True

    def set_font(self, font: str) -> bool:
        if font not in FONTS:
            return False
        self.settings = replace(self.settings, font=font)
        self._save_settings()
        return True

    def set_font_size(self, size: object) -> bool:
        try:
            value = clamp_font_size(int(size))  # type: ignore[call-overload]
        except (TypeError, ValueError, OverflowError):
            return False
        self.settings = replace(self.settings, font_size=value)
        self._save_settings()
        return True

    # -- search / export -------------------------------------------------

    def search(self, term: str) -> dict:
        self.notify(SEARCH_NOT_IMPLEMENTED)
        return {"supported": False, "term": term, "message": SEARCH_NOT_IMPLEMENTED, "results": []}

    def export(self, fmt: str = "json") -> Optional[ExportArtifact]:
        novel = self.state.novel
        if novel is None:
            self.notify(NO_NOVEL_LOADED)
            return None
        try:
            artifact = export_novel(
                fmt, novel, self.bookmarks, self.current_progress(), self.settings
            )
        except ExportError:
            self.notify(EXPORT_FAILED)
            raise
        self.notify(EXPORT_SUCCESS)
        return artifact

    # -- views -----------------------------------------------------------

    def state_payload(self) -> dict:
        novel = self.state.novel
        payload = {
            "loaded": novel is not None,
            "settings": asdict(self.settings),
            "sidebar_open": self.sidebar_open,
            "chapter_version": self.chapter_version,
            "auto_advance_pending": self.auto_advance_pending,
        }
        if novel is None:
            return payload
        payload.update(
            {
                "title": novel.title,
                "source_file_name": novel.source_file_name,
                "chapters": [
                    {"index": index, "title": chapter.title}
                    for index, chapter in enumerate(novel.chapters)
                ],
                "current_chapter": self.state.current_chapter,
                "scroll_fraction": self.state.scroll_fraction,
                "bookmarked": self.is_bookmarked,
                "bookmarks": [asdict(mark) for mark in self.novel_bookmarks()],
            }
        )
        return payload

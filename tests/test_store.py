import json
from pathlib import Path

import pytest

from shiori import store as store_util


def test_load_settings_defaults_when_missing(tmp_path: Path) -> None:
    store = store_util.SessionStore(tmp_path)
    settings = store.load_settings()
    assert settings == store_util.Settings(theme="light", font="serif", font_size=18)


def test_load_settings_discards_corrupt_record(tmp_path: Path) -> None:
    (tmp_path / store_util.SETTINGS_FILENAME).write_text("{not json", encoding="utf-8")
    store = store_util.SessionStore(tmp_path)
    assert store.load_settings() == store_util.Settings()


def test_load_settings_replaces_invalid_fields_only(tmp_path: Path) -> None:
    (tmp_path / store_util.SETTINGS_FILENAME).write_text(
        json.dumps({"theme": "dark", "font": "comic", "font_size": 40}),
        encoding="utf-8",
    )
    settings = store_util.SessionStore(tmp_path).load_settings()
    assert settings == store_util.Settings(theme="dark", font="serif", font_size=18)


def test_settings_round_trip(tmp_path: Path) -> None:
    store = store_util.SessionStore(tmp_path)
    store.save_settings(store_util.Settings(theme="sepia", font="mono", font_size=22))
    assert store.load_settings() == store_util.Settings(theme="sepia", font="mono", font_size=22)


def test_progress_round_trip_and_clamps(tmp_path: Path) -> None:
    store = store_util.SessionStore(tmp_path)
    assert store.load_progress() is None
    store.save_progress(
        store_util.Progress(
            novel_title="Foo", current_chapter=3, scroll_fraction=0.42, saved_at="t"
        )
    )
    progress = store.load_progress()
    assert progress is not None
    assert (progress.novel_title, progress.current_chapter, progress.scroll_fraction) == (
        "Foo",
        3,
        0.42,
    )

    (tmp_path / store_util.PROGRESS_FILENAME).write_text(
        json.dumps({"novel_title": "Foo", "current_chapter": 1, "scroll_fraction": 3.5}),
        encoding="utf-8",
    )
    assert store.load_progress().scroll_fraction == 1.0


def test_progress_with_invalid_chapter_is_discarded(tmp_path: Path) -> None:
    (tmp_path / store_util.PROGRESS_FILENAME).write_text(
        json.dumps({"novel_title": "Foo", "current_chapter": "3"}),
        encoding="utf-8",
    )
    assert store_util.SessionStore(tmp_path).load_progress() is None


def test_bookmarks_round_trip_skips_bad_entries(tmp_path: Path) -> None:
    (tmp_path / store_util.BOOKMARKS_FILENAME).write_text(
        json.dumps(
            [
                {"novel_title": "A", "chapter_index": 0, "chapter_title": "One", "created_at": "t1"},
                {"novel_title": "A", "chapter_index": 0, "chapter_title": "Dup", "created_at": "t2"},
                {"novel_title": "B", "chapter_index": -1},
                "junk",
                {"novel_title": "B", "chapter_index": 2},
            ]
        ),
        encoding="utf-8",
    )
    store = store_util.SessionStore(tmp_path)
    marks = store.load_bookmarks()
    assert [(mark.novel_title, mark.chapter_index) for mark in marks] == [("A", 0), ("B", 2)]
    assert marks[0].chapter_title == "One"

    store.save_bookmarks(marks)
    assert store.load_bookmarks() == marks


def test_toggle_bookmark_is_its_own_inverse() -> None:
    original = [
        store_util.Bookmark(novel_title="A", chapter_index=1, chapter_title="x", created_at="t"),
    ]
    added, was_added = store_util.toggle_bookmark(original, "B", 4, "Four")
    assert was_added is True
    assert len(added) == 2
    removed, was_added = store_util.toggle_bookmark(added, "B", 4, "Four")
    assert was_added is False
    assert removed == original


def test_toggle_bookmark_is_scoped_by_novel() -> None:
    marks, _ = store_util.toggle_bookmark([], "A", 0, "One")
    marks, added = store_util.toggle_bookmark(marks, "B", 0, "One")
    assert added is True
    assert {(mark.novel_title, mark.chapter_index) for mark in marks} == {("A", 0), ("B", 0)}


def test_merge_bookmarks_keeps_uniqueness() -> None:
    a0 = store_util.Bookmark("A", 0, "One", "t1")
    a0_dup = store_util.Bookmark("A", 0, "Other", "t2")
    a1 = store_util.Bookmark("A", 1, "Two", "t3")
    assert store_util.merge_bookmarks([a0], [a0_dup, a1]) == [a0, a1]


def test_save_raises_storage_error_when_state_dir_is_a_file(tmp_path: Path) -> None:
    blocker = tmp_path / "state"
    blocker.write_text("not a directory", encoding="utf-8")
    store = store_util.SessionStore(blocker)
    with pytest.raises(store_util.StorageError):
        store.save_settings(store_util.Settings())
    assert store.load_settings() == store_util.Settings()


def test_unreadable_record_raises_storage_error(tmp_path: Path) -> None:
    (tmp_path / store_util.SETTINGS_FILENAME).mkdir()
    store = store_util.SessionStore(tmp_path)
    with pytest.raises(store_util.StorageError):
        store.load_settings()

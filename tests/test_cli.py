import argparse
import json
from pathlib import Path

import pytest

from shiori import cli

NOVEL_HTML = """
<html><head><title>Foo Bar</title></head><body>
  <article><h1>Start</h1><p>one</p></article>
  <article><h1>Finish</h1><p>two</p></article>
</body></html>
"""


def _write_novel(tmp_path: Path) -> Path:
    path = tmp_path / "foo.html"
    path.write_text(NOVEL_HTML, encoding="utf-8")
    return path


def test_cli_has_expected_commands() -> None:
    parser = cli.build_parser()
    subparsers = [
        action
        for action in parser._actions
        if isinstance(action, argparse._SubParsersAction)
    ]
    assert subparsers
    choices = set(subparsers[0].choices.keys())
    for name in ("extract", "export", "settings", "bookmarks", "serve"):
        assert name in choices


def test_serve_parser_defaults() -> None:
    args = cli.build_parser().parse_args(["serve"])
    assert args.host == "127.0.0.1"
    assert args.port == 1913


def test_extract_lists_chapters(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    novel = _write_novel(tmp_path)
    code = cli.main(["extract", "--input", str(novel), "--state-dir", str(tmp_path / "state")])
    assert code == 0
    out = capsys.readouterr().out.splitlines()
    assert out[0] == "Foo Bar"
    assert out[1].startswith("0001  Start")
    assert out[2].startswith("0002  Finish")


def test_extract_json(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    novel = _write_novel(tmp_path)
    code = cli.main(
        ["extract", "--input", str(novel), "--json", "--state-dir", str(tmp_path / "state")]
    )
    assert code == 0
    payload = json.loads(capsys.readouterr().out)
    assert payload["title"] == "Foo Bar"
    assert [chapter["title"] for chapter in payload["chapters"]] == ["Start", "Finish"]


def test_extract_rejects_non_html(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    path = tmp_path / "notes.txt"
    path.write_text("hello", encoding="utf-8")
    code = cli.main(["extract", "--input", str(path), "--state-dir", str(tmp_path / "state")])
    assert code == 2
    assert "Please select an HTML file." in capsys.readouterr().err


def test_extract_missing_input(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    code = cli.main(["extract", "--input", str(tmp_path / "nope.html")])
    assert code == 2
    assert "Input file not found" in capsys.readouterr().err


def test_export_writes_html(tmp_path: Path) -> None:
    novel = _write_novel(tmp_path)
    out_dir = tmp_path / "out"
    code = cli.main(
        [
            "export",
            "--input",
            str(novel),
            "--format",
            "html",
            "--out",
            str(out_dir),
            "--state-dir",
            str(tmp_path / "state"),
        ]
    )
    assert code == 0
    html = (out_dir / "Foo_Bar_enhanced.html").read_text(encoding="utf-8")
    assert "<p>one</p>" in html
    assert "<p>two</p>" in html


def test_export_snapshot_defaults_to_json(tmp_path: Path) -> None:
    novel = _write_novel(tmp_path)
    out_dir = tmp_path / "out"
    code = cli.main(
        ["export", "--input", str(novel), "--out", str(out_dir), "--state-dir", str(tmp_path / "s")]
    )
    assert code == 0
    payload = json.loads((out_dir / "Foo_Bar_snapshot.json").read_text(encoding="utf-8"))
    assert payload["novel"]["title"] == "Foo Bar"


def test_settings_command_persists(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    state_dir = tmp_path / "state"
    code = cli.main(
        ["settings", "--theme", "dark", "--font-size", "30", "--state-dir", str(state_dir)]
    )
    assert code == 0
    shown = json.loads(capsys.readouterr().out)
    assert shown == {"theme": "dark", "font": "serif", "font_size": 24}
    stored = json.loads((state_dir / "settings.json").read_text(encoding="utf-8"))
    assert stored == shown


def test_bookmarks_command(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    state_dir = tmp_path / "state"
    state_dir.mkdir()
    (state_dir / "bookmarks.json").write_text(
        json.dumps(
            [
                {"novel_title": "Foo", "chapter_index": 1, "chapter_title": "Two", "created_at": "t"},
                {"novel_title": "Bar", "chapter_index": 0, "chapter_title": "", "created_at": "t"},
            ]
        ),
        encoding="utf-8",
    )
    assert cli.main(["bookmarks", "--novel", "Bar", "--state-dir", str(state_dir)]) == 0
    out = capsys.readouterr().out
    assert out == "Bar\t1\tChapter 1\tt\n"

    assert cli.main(["bookmarks", "--state-dir", str(tmp_path / "empty")]) == 0
    assert capsys.readouterr().out == "No bookmarks.\n"


def test_invalid_config_is_reported(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    novel = _write_novel(tmp_path)
    config_path = tmp_path / "config.json"
    config_path.write_text(json.dumps({"max_upload_bytes": "big"}), encoding="utf-8")
    code = cli.main(["extract", "--input", str(novel), "--config", str(config_path)])
    assert code == 2
    assert "must be a number" in capsys.readouterr().err

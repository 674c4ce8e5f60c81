from __future__ import annotations

import argparse
import importlib
import json
import mimetypes
import sys
from dataclasses import asdict, replace
from pathlib import Path
from typing import Optional

from . import config as config_util
from . import export as export_util
from . import extract as extract_util
from .store import FONTS, THEMES, SessionStore, StorageError, clamp_font_size


def _state_dir(args: argparse.Namespace) -> Path:
    if args.state_dir:
        return Path(args.state_dir).expanduser()
    return config_util.default_state_dir()


def _load_config(args: argparse.Namespace) -> config_util.ReaderConfig:
    config_path = Path(args.config) if getattr(args, "config", None) else None
    return config_util.load_config(config_path=config_path, state_dir=_state_dir(args))


def _read_input(input_path: Path, max_bytes: int) -> extract_util.Novel:
    mime_type, _encoding = mimetypes.guess_type(input_path.name)
    data = input_path.read_bytes()
    return extract_util.read_novel(data, mime_type, input_path.name, max_bytes)


def _extract(args: argparse.Namespace) -> int:
    input_path = Path(args.input)
    if not input_path.exists():
        sys.stderr.write(f"Input file not found: {input_path}\n")
        return 2
    try:
        config = _load_config(args)
        novel = _read_input(input_path, config.max_upload_bytes)
    except (OSError, ValueError) as exc:
        sys.stderr.write(f"{exc}\n")
        return 2

    if args.json:
        payload = {
            "title": novel.title,
            "source_file_name": novel.source_file_name,
            "chapters": [asdict(chapter) for chapter in novel.chapters],
        }
        print(json.dumps(payload, ensure_ascii=False, indent=2))
        return 0

    print(novel.title)
    for chapter in novel.chapters:
        print(f"{chapter.source_index + 1:04d}  {chapter.title}  ({len(chapter.content)} chars)")
    return 0


def _export(args: argparse.Namespace) -> int:
    input_path = Path(args.input)
    if not input_path.exists():
        sys.stderr.write(f"Input file not found: {input_path}\n")
        return 2
    state_dir = _state_dir(args)
    try:
        config = _load_config(args)
        novel = _read_input(input_path, config.max_upload_bytes)
    except (OSError, ValueError) as exc:
        sys.stderr.write(f"{exc}\n")
        return 2

    store = SessionStore(state_dir)
    try:
        artifact = export_util.export_novel(
            args.format,
            novel,
            store.load_bookmarks(),
            store.load_progress(),
            store.load_settings(),
        )
        out_path = export_util.write_artifact(artifact, Path(args.out))
    except (export_util.ExportError, StorageError) as exc:
        sys.stderr.write(f"{exc}\n")
        return 2

    print(f"Wrote {out_path}")
    return 0


def _settings(args: argparse.Namespace) -> int:
    store = SessionStore(_state_dir(args))
    try:
        settings = store.load_settings()
    except StorageError as exc:
        sys.stderr.write(f"Failed to read settings: {exc}\n")
        return 2
    changed = False
    if args.theme:
        settings = replace(settings, theme=args.theme)
        changed = True
    if args.font:
        settings = replace(settings, font=args.font)
        changed = True
    if args.font_size is not None:
        settings = replace(settings, font_size=clamp_font_size(args.font_size))
        changed = True
    if changed:
        try:
            store.save_settings(settings)
        except StorageError as exc:
            sys.stderr.write(f"Failed to save settings: {exc}\n")
            return 2
    print(json.dumps(asdict(settings), indent=2))
    return 0


def _bookmarks(args: argparse.Namespace) -> int:
    store = SessionStore(_state_dir(args))
    try:
        marks = store.load_bookmarks()
    except StorageError as exc:
        sys.stderr.write(f"Failed to read bookmarks: {exc}\n")
        return 2
    if args.novel:
        marks = [mark for mark in marks if mark.novel_title == args.novel]
    if not marks:
        print("No bookmarks.")
        return 0
    for mark in marks:
        label = mark.chapter_title or f"Chapter {mark.chapter_index + 1}"
        print(f"{mark.novel_title}\t{mark.chapter_index + 1}\t{label}\t{mark.created_at}")
    return 0


def _serve(args: argparse.Namespace) -> int:
    reader_util = importlib.import_module("shiori.reader")
    try:
        config = _load_config(args)
    except ValueError as exc:
        sys.stderr.write(f"{exc}\n")
        return 2
    reader_util.run(_state_dir(args), host=args.host, port=args.port, config=config)
    return 0


def _add_state_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--state-dir",
        dest="state_dir",
        help=(
            "Directory holding settings/progress/bookmarks "
            f"(default: ${config_util.STATE_DIR_ENV} or ~/.shiori)"
        ),
    )


def _add_config_arg(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--config",
        help=(
            "Path to JSON config file (defaults to "
            f"{config_util.CONFIG_FILENAME} in the state directory if present)"
        ),
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="shiori")
    subparsers = parser.add_subparsers(dest="command")

    extract = subparsers.add_parser("extract", help="Split an HTML novel into chapters")
    extract.add_argument("--input", required=True, help="Path to input .html")
    extract.add_argument(
        "--json", action="store_true", help="Print chapters (with content) as JSON"
    )
    _add_state_args(extract)
    _add_config_arg(extract)
    extract.set_defaults(func=_extract)

    export = subparsers.add_parser(
        "export", help="Export a novel with stored bookmarks and progress"
    )
    export.add_argument("--input", required=True, help="Path to input .html")
    export.add_argument(
        "--format",
        choices=export_util.EXPORT_FORMATS,
        default="json",
        help="json: re-importable snapshot, html: standalone page (default: json)",
    )
    export.add_argument(
        "--out",
        "--output",
        dest="out",
        default=".",
        help="Output directory (default: current directory)",
    )
    _add_state_args(export)
    _add_config_arg(export)
    export.set_defaults(func=_export)

    settings = subparsers.add_parser("settings", help="Show or change display settings")
    settings.add_argument("--theme", choices=THEMES)
    settings.add_argument("--font", choices=FONTS)
    settings.add_argument(
        "--font-size", dest="font_size", type=int, help="Font size in px (clamped to 12-24)"
    )
    _add_state_args(settings)
    settings.set_defaults(func=_settings)

    bookmarks = subparsers.add_parser("bookmarks", help="List stored bookmarks")
    bookmarks.add_argument("--novel", help="Only show bookmarks for this novel title")
    _add_state_args(bookmarks)
    bookmarks.set_defaults(func=_bookmarks)

    serve = subparsers.add_parser("serve", help="Read novels in a web UI")
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=1913)
    _add_state_args(serve)
    _add_config_arg(serve)
    serve.set_defaults(func=_serve)

    return parser


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if not hasattr(args, "func"):
        parser.print_help()
        return 1

    return int(args.func(args))


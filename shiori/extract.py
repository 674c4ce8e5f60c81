from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Tuple

from bs4 import BeautifulSoup
from bs4.builder import ParserRejectedMarkup

from .sanitize import sanitize

# Most specific first. The first selector with any match wins outright.
CHAPTER_SELECTORS = (
    'section[class*="chapter"]',
    'div[class*="chapter"]',
    'section[id*="chapter"]',
    'div[id*="chapter"]',
    "article",
    "section",
    # Never reached: plain "section" above already matches these.
    "#content section",
    "#main section",
)
HTML_SUFFIXES = (".html", ".htm", ".xhtml")
GENERIC_MIME_TYPES = {"", "application/octet-stream"}
UNTITLED_NOVEL = "Untitled Novel"

FILE_TYPE_ERROR = "Please select an HTML file."
PARSE_ERROR = "Error processing the HTML file. Please make sure it's a valid HTML document."

_HEADING_TAGS = ("h1", "h2", "h3", "h4", "h5", "h6")
_TITLE_ATTRIBUTES = ("title", "data-title")
_WHITESPACE_RE = re.compile(r"\s+")
_IDENTIFIER_SEPARATORS_RE = re.compile(r"[-_]+")


class InputValidationError(ValueError):
    """The upload was rejected before any parsing happened."""


class ParseError(ValueError):
    """The upload could not be turned into a novel."""


@dataclass(frozen=True)
class Chapter:
    title: str
    content: str
    source_index: int


@dataclass(frozen=True)
class Novel:
    title: str
    source_file_name: str
    chapters: Tuple[Chapter, ...]


def parse_document(html: bytes | str) -> BeautifulSoup:
    if isinstance(html, bytes):
        try:
            html = html.decode("utf-8-sig")
        except UnicodeDecodeError as exc:
            raise ParseError(PARSE_ERROR) from exc
    try:
        return BeautifulSoup(html, "lxml")
    except ParserRejectedMarkup as exc:
        raise ParseError(PARSE_ERROR) from exc


def _normalize_space(value: str) -> str:
    return _WHITESPACE_RE.sub(" ", value).strip()


def _inner_html(node: object) -> str:
    contents = getattr(node, "contents", None) or []
    return "".join(str(child) for child in contents)


def _heading_title(node: object) -> str:
    find = getattr(node, "find", None)
    if not callable(find):
        return ""
    heading = find(_HEADING_TAGS)
    if heading is None:
        return ""
    return _normalize_space(heading.get_text(separator=" ", strip=True))


def _identifier_title(node: object) -> str:
    get = getattr(node, "get", None)
    if not callable(get):
        return ""
    for name in _TITLE_ATTRIBUTES:
        value = get(name)
        if isinstance(value, str) and value.strip():
            return _normalize_space(value)
    element_id = get("id")
    if isinstance(element_id, str) and element_id.strip():
        return _normalize_space(_IDENTIFIER_SEPARATORS_RE.sub(" ", element_id))
    return ""


def resolve_chapter_title(node: object, source_index: int) -> str:
    """Heading text, then title attributes or id, then a synthesized label."""
    return _heading_title(node) or _identifier_title(node) or f"Chapter {source_index + 1}"


def document_title(soup: BeautifulSoup) -> str:
    title_node = soup.find("title")
    if title_node is None:
        return ""
    return _normalize_space(title_node.get_text(separator=" ", strip=True))


def _select_chapter_nodes(soup: BeautifulSoup) -> List[object]:
    for selector in CHAPTER_SELECTORS:
        nodes = soup.select(selector)
        if nodes:
            return list(nodes)
    return []


def extract_chapters(soup: BeautifulSoup) -> List[Chapter]:
    nodes = _select_chapter_nodes(soup)
    if nodes:
        return [
            Chapter(
                title=resolve_chapter_title(node, index),
                content=sanitize(_inner_html(node)),
                source_index=index,
            )
            for index, node in enumerate(nodes)
        ]

    body = soup.body
    if body is None:
        return [Chapter(title=document_title(soup) or "Chapter 1", content="", source_index=0)]
    title = _heading_title(body) or document_title(soup) or "Chapter 1"
    return [Chapter(title=title, content=sanitize(_inner_html(body)), source_index=0)]


def _has_readable_content(chapter: Chapter) -> bool:
    if not chapter.content:
        return False
    fragment = BeautifulSoup(chapter.content, "html.parser")
    if fragment.get_text(strip=True):
        return True
    return fragment.find("img") is not None


def build_novel(soup: BeautifulSoup, source_file_name: str = "") -> Novel:
    chapters = extract_chapters(soup)
    title = document_title(soup) or Path(source_file_name).stem.strip() or UNTITLED_NOVEL
    return Novel(title=title, source_file_name=source_file_name, chapters=tuple(chapters))


def is_html_upload(mime_type: Optional[str], file_name: str) -> bool:
    declared = (mime_type or "").split(";", 1)[0].strip().lower()
    if "html" in declared:
        return True
    if declared in GENERIC_MIME_TYPES:
        return file_name.lower().endswith(HTML_SUFFIXES)
    return False


def validate_upload(size: int, mime_type: Optional[str], file_name: str, max_bytes: int) -> None:
    if not is_html_upload(mime_type, file_name):
        raise InputValidationError(FILE_TYPE_ERROR)
    if size > max_bytes:
        raise InputValidationError(f"File is too large ({size} bytes, limit {max_bytes}).")


def read_novel(
    data: bytes,
    mime_type: Optional[str],
    file_name: str,
    max_bytes: int,
) -> Novel:
    validate_upload(len(data), mime_type, file_name, max_bytes)
    soup = parse_document(data)
    novel = build_novel(soup, source_file_name=file_name)
    if not any(_has_readable_content(chapter) for chapter in novel.chapters):
        raise ParseError(PARSE_ERROR)
    return novel

from __future__ import annotations

import re
from typing import Iterable

from bs4 import BeautifulSoup, CData, Comment, Declaration, Doctype, ProcessingInstruction
from bs4.builder import ParserRejectedMarkup

UNSAFE_TAGS = ("script", "style", "iframe", "object", "embed")
ALLOWED_ATTRIBUTES = frozenset({"href", "src", "alt", "title", "class", "id"})
URL_ATTRIBUTES = frozenset({"href", "src"})
# Markup-like strings a browser may re-read as live markup once serialized.
NON_TEXT_STRINGS = (Comment, CData, Declaration, Doctype, ProcessingInstruction)

_UNSAFE_URL_RE = re.compile(r"^(?:javascript:|vbscript:|data:text/html)", re.IGNORECASE)
_URL_CONTROL_CHARS_RE = re.compile(r"[\x00-\x20]+")


def _parse_fragment(html: str) -> BeautifulSoup:
    # html.parser keeps fragments as-is; lxml would wrap them in <html><body>.
    return BeautifulSoup(html, "html.parser")


def _is_unsafe_url(value: str) -> bool:
    compact = _URL_CONTROL_CHARS_RE.sub("", value)
    return bool(_UNSAFE_URL_RE.match(compact))


def _attribute_value_text(value: object) -> str:
    if isinstance(value, (list, tuple)):
        return " ".join(str(item) for item in value)
    return str(value)


def _strip_attributes(tag: object, allowed: Iterable[str] = ALLOWED_ATTRIBUTES) -> None:
    attrs = getattr(tag, "attrs", None)
    if not attrs:
        return
    allowed_set = set(allowed)
    for name in list(attrs.keys()):
        key = str(name).lower()
        if key.startswith("data-") or key not in allowed_set:
            del attrs[name]
            continue
        if key in URL_ATTRIBUTES and _is_unsafe_url(_attribute_value_text(attrs[name])):
            del attrs[name]


def sanitize_soup(soup: BeautifulSoup) -> BeautifulSoup:
    """Remove unsafe elements, comments, declarations and attributes from
    ``soup`` in place."""
    for tag in soup.find_all(UNSAFE_TAGS):
        # Nested matches (an <embed> inside an <object>) go with their parent.
        if tag.decomposed:
            continue
        tag.decompose()
    for node in soup.find_all(string=lambda value: isinstance(value, NON_TEXT_STRINGS)):
        node.extract()
    for tag in soup.find_all(True):
        _strip_attributes(tag)
    return soup


def sanitize(html: str) -> str:
    """Return ``html`` with executable elements and non-allow-listed attributes
    removed. Unparseable markup yields an empty string rather than raw input."""
    if not html:
        return ""
    try:
        soup = _parse_fragment(html)
    except ParserRejectedMarkup:
        return ""
    return str(sanitize_soup(soup)).strip()

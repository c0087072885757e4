"""BeautifulSoup entry points and the text accessors shared by the extractors."""

from __future__ import annotations

import re

from bs4 import BeautifulSoup, Tag


def soup_html(html: str) -> BeautifulSoup:
    """Parse HTML with BeautifulSoup's builtin parser (tolerant of broken markup)."""
    return BeautifulSoup(html or "", "html.parser")


def soup_xml(xml: str) -> BeautifulSoup:
    """Parse XML feeds with the lxml-backed XML parser."""
    return BeautifulSoup(xml or "", "xml")


def node_text(node: Tag | None) -> str:
    if node is None:
        return ""
    return _collapse_ws(node.get_text(" ", strip=True))


def first_text(el: Tag, selector: str) -> str:
    """Text of the first descendant matching ``selector``, or ""."""
    return node_text(el.select_one(selector))


def first_attr(el: Tag, selector: str, attr: str) -> str:
    node = el.select_one(selector)
    if node is None:
        return ""
    value = node.get(attr)
    if isinstance(value, list):
        value = " ".join(value)
    return str(value or "").strip()


def _collapse_ws(s: str) -> str:
    return re.sub(r"\s+", " ", (s or "")).strip()

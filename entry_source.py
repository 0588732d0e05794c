"""Document record sources: turn a catalog page (or feed) into raw entry records.

The index builder only ever sees ``RawEntryRecord`` values, so the same
indexing and scoring code works for the rendered HTML page and for a JSON feed.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Iterable, Iterator, Protocol

import requests
from bs4 import BeautifulSoup, Tag

REQUEST_TIMEOUT_SECONDS = 20

ENTRY_SELECTOR = ".bib-entry"
CITATION_SELECTOR = ".bib-citation"
ANNOTATION_SELECTOR = ".annotation-text"
CONTEXT_HEADER_SELECTOR = ".topic-page-header h1"

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class RawEntryRecord:
    """One entry as found on the page, before normalization.

    ``citation_text`` is ``None`` when the entry has no citation sub-record;
    the index builder skips such records.
    """

    explicit_id: str | None
    source_title: str
    source_url: str
    citation_text: str | None
    annotation_text: str = ""
    tags_raw: str = ""
    context: str = ""
    paper_author: str | None = None
    contributor: str | None = None


class EntryRecordSource(Protocol):
    def records(self) -> Iterable[RawEntryRecord]:
        ...


class HtmlEntrySource:
    """Reads ``.bib-entry`` nodes out of the rendered bibliography page."""

    def __init__(self, html: str) -> None:
        self._soup = BeautifulSoup(html, "html.parser")

    def records(self) -> Iterator[RawEntryRecord]:
        for node in self._soup.select(ENTRY_SELECTOR):
            yield _record_from_node(node)


class JsonEntrySource:
    """Reads entry records from a structured feed (list of JSON objects)."""

    def __init__(self, items: Any) -> None:
        if not isinstance(items, list):
            raise RuntimeError("Unexpected entries payload shape: expected a list")
        self._items = items

    def records(self) -> Iterator[RawEntryRecord]:
        for item in self._items:
            if not isinstance(item, dict):
                LOGGER.warning("Skipping non-object entry in feed: %r", item)
                continue
            tags = item.get("tags")
            if isinstance(tags, list):
                tags = ",".join(str(tag) for tag in tags)
            citation = item.get("citation")
            yield RawEntryRecord(
                explicit_id=_as_str(item.get("id")),
                source_title=_as_str(item.get("title")) or "",
                source_url=_as_str(item.get("sourceUrl")) or "",
                citation_text=citation if isinstance(citation, str) else None,
                annotation_text=_as_str(item.get("annotation")) or "",
                tags_raw=tags if isinstance(tags, str) else "",
                context=_as_str(item.get("context")) or "",
                paper_author=_as_str(item.get("paperAuthor")),
                contributor=_as_str(item.get("contributor")),
            )


def fetch_page_html(url: str) -> str:
    """Download the catalog page so it can be indexed server-side."""
    response = requests.get(url, timeout=REQUEST_TIMEOUT_SECONDS)
    response.raise_for_status()
    LOGGER.info("Fetched catalog page url=%s bytes=%s", url, len(response.text))
    return response.text


def _record_from_node(node: Tag) -> RawEntryRecord:
    citation = node.select_one(CITATION_SELECTOR)
    annotation = node.select_one(ANNOTATION_SELECTOR)

    return RawEntryRecord(
        explicit_id=_as_str(node.get("id")),
        source_title=_attr(citation, "data-source-title"),
        source_url=_attr(citation, "data-source-url"),
        citation_text=citation.get_text() if citation is not None else None,
        annotation_text=annotation.get_text().strip() if annotation is not None else "",
        tags_raw=_attr(node, "data-tags"),
        context=_context_for(node),
        paper_author=_as_str(_attr(node, "data-paper-author") or _attr(citation, "data-paper-author")),
        contributor=_as_str(_attr(node, "data-contributor") or _attr(citation, "data-contributor")),
    )


def _context_for(node: Tag) -> str:
    """Header text of the nearest ancestor section that carries an id."""
    section = node.find_parent(attrs={"id": True})
    if section is None:
        return ""
    header = section.select_one(CONTEXT_HEADER_SELECTOR)
    return header.get_text().strip() if header is not None else ""


def _attr(node: Tag | None, name: str) -> str:
    if node is None:
        return ""
    value = node.get(name)
    if isinstance(value, list):
        # bs4 splits multi-valued attributes such as class
        return " ".join(value)
    return value or ""


def _as_str(value: Any) -> str | None:
    return value.strip() if isinstance(value, str) and value.strip() else None

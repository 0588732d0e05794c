"""Entries index: builds the in-memory catalog of research entries."""

from __future__ import annotations

import logging
import re
import threading
from typing import Callable, Iterable
from urllib.parse import urlsplit

from entry_source import EntryRecordSource, RawEntryRecord
from errors import IndexingError
from models import Catalog, Entry, ScoredEntry
from relevance import DEFAULT_WEIGHTS, ScoringWeights, score_entries

TITLE_MAX_LEN = 100
SNIPPET_MAX_LEN = 200
SLUG_MAX_LEN = 50
ELLIPSIS = "..."

_NON_ALNUM = re.compile(r"[^a-z0-9]+")

LOGGER = logging.getLogger(__name__)


def slugify(text: str, max_len: int = SLUG_MAX_LEN) -> str:
    """Lowercase, collapse non-alphanumeric runs to hyphens, trim edge hyphens, cap length."""
    slug = _NON_ALNUM.sub("-", text.lower()).strip("-")
    return slug[:max_len]


def truncate(text: str, max_len: int) -> str:
    """Keep the first max_len characters, appending '...' if clipped."""
    if len(text) <= max_len:
        return text
    return text[:max_len] + ELLIPSIS


def parse_tags(raw: str) -> tuple[str, ...]:
    seen: dict[str, None] = {}
    for tag in raw.split(","):
        tag = tag.strip()
        if tag:
            seen.setdefault(tag, None)
    return tuple(seen)


def entry_url(page_url: str, entry_id: str) -> str:
    """Canonical link to an entry: page origin + path with an #id fragment."""
    if not page_url:
        return f"#{entry_id}"
    parts = urlsplit(page_url)
    origin = f"{parts.scheme}://{parts.netloc}" if parts.scheme else parts.netloc
    return f"{origin}{parts.path}#{entry_id}"


def build_catalog(source: EntryRecordSource, page_url: str = "") -> Catalog:
    """Index every record of the source into a new catalog.

    Records that cannot be indexed are logged and skipped; the build itself
    never fails because of one bad entry.
    """
    entries: list[Entry] = []
    used_ids: set[str] = set()

    for position, record in enumerate(source.records()):
        try:
            entry = _build_entry(record, position, page_url, used_ids)
        except IndexingError as exc:
            LOGGER.warning("Skipping entry at position %s: %s", position, exc)
            continue
        except Exception as exc:  # one malformed record must not abort the build
            LOGGER.warning("Error indexing entry at position %s: %s", position, exc)
            continue
        used_ids.add(entry.entry_id)
        entries.append(entry)

    LOGGER.info("Indexed %s research entries", len(entries))
    return Catalog(entries=tuple(entries))


def _resolve_id(record: RawEntryRecord, position: int) -> str:
    if record.explicit_id:
        return record.explicit_id
    if record.citation_text is not None and record.source_title:
        slug = slugify(record.source_title)
        if slug:
            return slug
    return f"entry-{position}"


def _unique_id(candidate: str, used_ids: set[str]) -> str:
    if candidate not in used_ids:
        return candidate
    suffix = 2
    while f"{candidate}-{suffix}" in used_ids:
        suffix += 1
    return f"{candidate}-{suffix}"


def _build_entry(
    record: RawEntryRecord,
    position: int,
    page_url: str,
    used_ids: set[str],
) -> Entry:
    entry_id = _unique_id(_resolve_id(record, position), used_ids)

    if record.citation_text is None:
        raise IndexingError(f"entry {entry_id!r} has no citation")

    citation_text = record.citation_text
    title = truncate(record.source_title or citation_text.split(".")[0], TITLE_MAX_LEN)
    annotation_text = record.annotation_text.strip()
    snippet = truncate(annotation_text, SNIPPET_MAX_LEN)

    full_text = " ".join(
        [title, citation_text, annotation_text, record.tags_raw, record.context]
    ).lower()

    return Entry(
        entry_id=entry_id,
        title=title,
        snippet=snippet,
        url=entry_url(page_url, entry_id),
        full_text=full_text,
        tags=parse_tags(record.tags_raw),
        context=record.context,
        citation_text=citation_text,
        annotation_text=annotation_text,
        source_url=record.source_url,
        paper_author=record.paper_author,
        contributor=record.contributor,
    )


def catalog_from_shortlist(items: Iterable[dict]) -> Catalog:
    """Catalog of the already-normalized entries a chat client sends along.

    These carry no citation or annotation, so ``full_text`` is built from the
    fields that are present. Items without an id or title are skipped.
    """
    entries: list[Entry] = []
    used_ids: set[str] = set()
    for item in items:
        entry_id = _clean(item.get("id"))
        title = _clean(item.get("title"))
        if not entry_id or not title:
            LOGGER.warning("Skipping shortlist entry without id/title: %r", item)
            continue
        entry_id = _unique_id(entry_id, used_ids)
        used_ids.add(entry_id)
        snippet = _clean(item.get("snippet"))
        paper_author = _clean(item.get("paperAuthor")) or _clean(item.get("author")) or None
        contributor = _clean(item.get("contributor")) or None
        entries.append(
            Entry(
                entry_id=entry_id,
                title=truncate(title, TITLE_MAX_LEN),
                snippet=truncate(snippet, SNIPPET_MAX_LEN),
                url=_clean(item.get("url")) or f"#{entry_id}",
                full_text=" ".join([title, snippet, paper_author or "", contributor or ""]).lower(),
                paper_author=paper_author,
                contributor=contributor,
            )
        )
    return Catalog(entries=tuple(entries))


def _clean(value: object) -> str:
    return value.strip() if isinstance(value, str) else ""


class EntriesIndex:
    """Owns the current catalog snapshot and publishes rebuilds atomically.

    ``source_factory`` is called on every build so that a rebuild sees the
    current state of the page.
    """

    def __init__(
        self,
        source_factory: Callable[[], EntryRecordSource],
        page_url: str = "",
        weights: ScoringWeights = DEFAULT_WEIGHTS,
    ) -> None:
        self._source_factory = source_factory
        self._page_url = page_url
        self._weights = weights
        self._catalog: Catalog | None = None
        self._build_lock = threading.Lock()

    @property
    def is_ready(self) -> bool:
        return self._catalog is not None

    def catalog(self) -> Catalog:
        """Return the current snapshot, building it on first use."""
        catalog = self._catalog
        if catalog is not None:
            return catalog
        with self._build_lock:
            if self._catalog is None:
                self._catalog = build_catalog(self._source_factory(), self._page_url)
            return self._catalog

    def rebuild(self) -> Catalog:
        """Build a fresh catalog and swap it in; readers keep the old one until then."""
        with self._build_lock:
            catalog = build_catalog(self._source_factory(), self._page_url)
            self._catalog = catalog
        return catalog

    def all_entries(self) -> tuple[Entry, ...]:
        return self.catalog().entries

    def relevant_entries(self, query: str, limit: int = 5) -> list[ScoredEntry]:
        if not query or not query.strip():
            return []
        return score_entries(self.catalog(), query, limit=limit, weights=self._weights)

    @classmethod
    def from_records(cls, records: Iterable[RawEntryRecord], page_url: str = "") -> "EntriesIndex":
        frozen = tuple(records)
        return cls(lambda: _StaticSource(frozen), page_url=page_url)


class _StaticSource:
    def __init__(self, records: tuple[RawEntryRecord, ...]) -> None:
        self._records = records

    def records(self) -> tuple[RawEntryRecord, ...]:
        return self._records

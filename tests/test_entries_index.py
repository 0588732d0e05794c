from __future__ import annotations

import logging

import pytest

from entries_index import (
    EntriesIndex,
    build_catalog,
    catalog_from_shortlist,
    entry_url,
    parse_tags,
    slugify,
    truncate,
)
from entry_source import HtmlEntrySource, JsonEntrySource, RawEntryRecord

PAGE_URL = "https://vip.example.edu/research/index.html?tab=1#top"

SAMPLE_HTML = """
<html><body>
<section id="student-attitudes">
  <div class="topic-page-header"><h1>Student Attitudes</h1></div>
  <div class="bib-entry" id="smith-2023" data-tags="attitudes, survey, attitudes, ,higher-ed"
       data-paper-author="Smith, J." data-contributor="Alex">
    <p class="bib-citation" data-source-url="https://doi.org/10.1/abc"
       data-source-title="Student Perceptions of Generative AI">
      Smith, J. (2023). Student Perceptions of Generative AI. Journal of AI Ed.
    </p>
    <p class="annotation-text">  Surveys 500 undergraduates about chatbot use.  </p>
  </div>
  <div class="bib-entry" data-tags="ethics">
    <p class="bib-citation" data-source-title="Ethics &amp; AI: A Primer!">Doe, A. Ethics and AI.</p>
  </div>
  <div class="bib-entry" data-tags="orphan">
    <p class="annotation-text">No citation here.</p>
  </div>
  <div class="bib-entry">
    <p class="bib-citation">Lee, K. Tutoring systems revisited. Proc. 2022.</p>
  </div>
</section>
</body></html>
"""


def _catalog():
    return build_catalog(HtmlEntrySource(SAMPLE_HTML), PAGE_URL)


def test_build_catalog_from_html_smoke() -> None:
    catalog = _catalog()

    assert [entry.entry_id for entry in catalog] == ["smith-2023", "ethics-ai-a-primer", "entry-3"]

    first = catalog.get("smith-2023")
    assert first is not None
    assert first.title == "Student Perceptions of Generative AI"
    assert first.snippet == "Surveys 500 undergraduates about chatbot use."
    assert first.tags == ("attitudes", "survey", "higher-ed")
    assert first.context == "Student Attitudes"
    assert first.url == "https://vip.example.edu/research/index.html#smith-2023"
    assert first.source_url == "https://doi.org/10.1/abc"
    assert first.paper_author == "Smith, J."
    assert first.contributor == "Alex"


def test_full_text_is_lowercased_concatenation() -> None:
    first = _catalog().get("smith-2023")
    assert first is not None
    assert first.full_text == first.full_text.lower()
    assert "student perceptions of generative ai" in first.full_text
    assert "journal of ai ed." in first.full_text
    assert "surveys 500 undergraduates" in first.full_text
    assert "attitudes, survey" in first.full_text
    assert first.full_text.endswith("student attitudes")


def test_title_falls_back_to_citation_before_first_period() -> None:
    entry = _catalog().get("entry-3")
    assert entry is not None
    assert entry.title.strip() == "Lee, K"


def test_entry_without_citation_is_skipped_and_logged(caplog: pytest.LogCaptureFixture) -> None:
    with caplog.at_level(logging.WARNING):
        catalog = _catalog()

    assert len(catalog) == 3
    assert catalog.get("entry-2") is None
    assert "has no citation" in caplog.text


def test_empty_document_yields_empty_catalog() -> None:
    catalog = build_catalog(HtmlEntrySource("<html><body><p>nothing</p></body></html>"), PAGE_URL)
    assert len(catalog) == 0


def test_malformed_record_does_not_abort_build() -> None:
    class _Source:
        def records(self):
            yield RawEntryRecord(explicit_id="ok-1", source_title="Fine", source_url="", citation_text="Fine.")
            # citation is not text, so title extraction blows up
            yield RawEntryRecord(explicit_id="bad", source_title="", source_url="", citation_text=42)  # type: ignore[arg-type]
            yield RawEntryRecord(explicit_id="ok-2", source_title="Also fine", source_url="", citation_text="x")

    catalog = build_catalog(_Source(), PAGE_URL)
    assert [entry.entry_id for entry in catalog] == ["ok-1", "ok-2"]


def test_title_truncation_to_100_chars() -> None:
    long_title = "x" * 150
    record = RawEntryRecord(explicit_id="long", source_title=long_title, source_url="", citation_text="c")
    short = RawEntryRecord(explicit_id="short", source_title="y" * 90, source_url="", citation_text="c")

    catalog = build_catalog(JsonFeedLike([record, short]), PAGE_URL)

    assert catalog.get("long").title == "x" * 100 + "..."
    assert catalog.get("short").title == "y" * 90


def test_snippet_truncation_to_200_chars() -> None:
    record = RawEntryRecord(
        explicit_id="a", source_title="T", source_url="", citation_text="c", annotation_text="z" * 250
    )
    entry = build_catalog(JsonFeedLike([record]), PAGE_URL).get("a")
    assert entry.snippet == "z" * 200 + "..."
    assert entry.annotation_text == "z" * 250


def test_duplicate_ids_are_made_unique() -> None:
    records = [
        RawEntryRecord(explicit_id=None, source_title="Same Title", source_url="", citation_text="c"),
        RawEntryRecord(explicit_id=None, source_title="Same Title", source_url="", citation_text="c"),
    ]
    catalog = build_catalog(JsonFeedLike(records), PAGE_URL)
    assert [entry.entry_id for entry in catalog] == ["same-title", "same-title-2"]


@pytest.mark.parametrize(
    ("text", "expected"),
    [
        ("Student Perceptions of Generative AI", "student-perceptions-of-generative-ai"),
        ("  --Hello, World!--  ", "hello-world"),
        ("!!!", ""),
        ("a" * 80, "a" * 50),
    ],
)
def test_slugify(text: str, expected: str) -> None:
    assert slugify(text) == expected


def test_slug_of_only_symbols_falls_back_to_position() -> None:
    record = RawEntryRecord(explicit_id=None, source_title="???", source_url="", citation_text="c")
    catalog = build_catalog(JsonFeedLike([record]), PAGE_URL)
    assert catalog.entries[0].entry_id == "entry-0"


def test_truncate_and_parse_tags() -> None:
    assert truncate("abc", 3) == "abc"
    assert truncate("abcd", 3) == "abc..."
    assert parse_tags(" a, b ,,a, c ") == ("a", "b", "c")
    assert parse_tags("") == ()


def test_entry_url_drops_query_and_fragment() -> None:
    assert entry_url(PAGE_URL, "x") == "https://vip.example.edu/research/index.html#x"
    assert entry_url("", "x") == "#x"


def test_json_entry_source_builds_same_shape() -> None:
    source = JsonEntrySource(
        [
            {
                "id": "feed-1",
                "title": "Adaptive Tutoring",
                "citation": "Kim, H. Adaptive Tutoring. 2021.",
                "annotation": "Reviews adaptive tutors.",
                "tags": ["tutoring", "k-12"],
                "context": "Tools",
                "paperAuthor": "Kim, H.",
            },
            "not-an-object",
        ]
    )
    catalog = build_catalog(source, PAGE_URL)
    assert len(catalog) == 1
    entry = catalog.entries[0]
    assert entry.tags == ("tutoring", "k-12")
    assert entry.context == "Tools"
    assert entry.paper_author == "Kim, H."


def test_json_entry_source_rejects_non_list() -> None:
    with pytest.raises(RuntimeError, match="expected a list"):
        JsonEntrySource({"id": "x"})


def test_entries_index_builds_lazily_and_rebuild_replaces_catalog() -> None:
    pages = [SAMPLE_HTML, "<html><body></body></html>"]
    calls: list[int] = []

    def factory() -> HtmlEntrySource:
        calls.append(1)
        return HtmlEntrySource(pages[len(calls) - 1])

    index = EntriesIndex(factory, page_url=PAGE_URL)
    assert index.is_ready is False

    first = index.catalog()
    assert index.is_ready is True
    assert len(first) == 3
    assert index.catalog() is first
    assert len(calls) == 1

    second = index.rebuild()
    assert len(second) == 0
    assert index.catalog() is second
    assert len(first) == 3


def test_relevant_entries_blank_query_does_not_build() -> None:
    def factory() -> HtmlEntrySource:
        raise AssertionError("catalog should not be built for a blank query")

    index = EntriesIndex(factory)
    assert index.relevant_entries("   ") == []
    assert index.is_ready is False


def test_relevant_entries_ranks_from_catalog() -> None:
    index = EntriesIndex(lambda: HtmlEntrySource(SAMPLE_HTML), page_url=PAGE_URL)
    results = index.relevant_entries("generative AI", limit=5)
    assert results[0].entry_id == "smith-2023"


def test_catalog_from_shortlist() -> None:
    catalog = catalog_from_shortlist(
        [
            {"id": "a", "title": "Alpha", "url": "https://x/#a", "snippet": "first", "author": "Ann"},
            {"id": "b", "title": "", "url": "https://x/#b"},
            {"id": "a", "title": "Alpha again"},
        ]
    )
    assert [entry.entry_id for entry in catalog] == ["a", "a-2"]
    assert catalog.entries[0].paper_author == "Ann"
    assert catalog.entries[0].full_text == "alpha first ann "
    assert catalog.entries[1].url == "#a-2"


class JsonFeedLike:
    def __init__(self, records: list[RawEntryRecord]) -> None:
        self._records = records

    def records(self) -> list[RawEntryRecord]:
        return self._records

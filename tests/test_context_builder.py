from __future__ import annotations

from datetime import UTC, datetime

from context_builder import assemble, build_system_prompt, turns_as_messages
from models import Catalog, ChatTurn, Entry, MemberContribution, TeamAggregate

NOW = datetime(2026, 3, 1, tzinfo=UTC)


def _entry(entry_id: str, title: str, **kwargs: str) -> Entry:
    return Entry(
        entry_id=entry_id,
        title=title,
        snippet=kwargs.get("snippet", ""),
        url=f"https://vip.example.edu/#{entry_id}",
        full_text=f"{title} {kwargs.get('snippet', '')}".lower(),
        paper_author=kwargs.get("paper_author"),
        contributor=kwargs.get("contributor"),
    )


_CATALOG = Catalog(
    entries=tuple(_entry(f"tutor-{i}", f"Tutoring Study {i}") for i in range(8))
    + (_entry("ethics", "Ethics of AI", snippet="Fairness review.", paper_author="Doe, A.", contributor="Sam"),)
)

_TEAM = TeamAggregate(
    total_members=2,
    total_contributions=7,
    per_member=(MemberContribution("Sam", 5), MemberContribution("Alex", 2)),
)

_TURNS = [
    ChatTurn("msg-1", "user", "What about tutoring?", NOW),
    ChatTurn("msg-2", "assistant", "Here are some studies.", NOW),
    ChatTurn("loading-1", "pending", "...", NOW),
    ChatTurn("msg-3", "user", "And ethics?", NOW),
]


def test_assemble_caps_entries_at_five() -> None:
    context = assemble("tutoring", _CATALOG, None, [])
    assert len(context.entries) == 5
    assert [item.entry_id for item in context.entries] == [f"tutor-{i}" for i in range(5)]


def test_assemble_drops_pending_turns_and_keeps_order() -> None:
    context = assemble("ethics", _CATALOG, _TEAM, _TURNS)
    assert [turn.turn_id for turn in context.prior_turns] == ["msg-1", "msg-2", "msg-3"]
    assert context.team_aggregate is _TEAM
    assert context.query == "ethics"


def test_assemble_does_not_mutate_inputs() -> None:
    turns = list(_TURNS)
    entries_before = _CATALOG.entries
    assemble("ethics", _CATALOG, _TEAM, turns)
    assert turns == _TURNS
    assert _CATALOG.entries is entries_before


def test_system_prompt_lists_entries_and_team() -> None:
    context = assemble("ethics", _CATALOG, _TEAM, _TURNS)
    prompt = build_system_prompt(context)

    assert "Relevant entries on this site:" in prompt
    assert "1. Title: Ethics of AI" in prompt
    assert "URL: https://vip.example.edu/#ethics" in prompt
    assert "Summary: Fairness review." in prompt
    assert "Paper author: Doe, A." in prompt
    assert "Added by: Sam" in prompt
    assert "Total members: 2" in prompt
    assert "Total contributions: 7" in prompt
    assert "- Alex: 2 contributions" in prompt


def test_system_prompt_without_entries_or_team() -> None:
    context = assemble("quantum gardening", _CATALOG, None, [])
    prompt = build_system_prompt(context)
    assert "potentially relevant entries" not in prompt
    assert "Team contribution data" not in prompt


def test_turns_as_messages() -> None:
    assert turns_as_messages(_TURNS) == [
        {"role": "user", "content": "What about tutoring?"},
        {"role": "assistant", "content": "Here are some studies."},
        {"role": "user", "content": "And ethics?"},
    ]

"""Assemble the grounding context and system prompt for one chat reply."""

from __future__ import annotations

from typing import Iterable

from models import Catalog, ChatTurn, GroundingContext, TeamAggregate
from relevance import DEFAULT_WEIGHTS, ScoringWeights, score_entries

TOP_K = 5

SYSTEM_PROMPT = """You are a helpful AI assistant for the AI in Education VIP Research Exchange website. Your role is to answer questions about AI in education research and help users find relevant resources.

When answering questions:
1. Provide clear, concise, and accurate information
2. Always include a "Relevant entries on this site:" section at the end with links to specific entries
3. Format links as: • [Entry Title](ENTRY_URL)
4. Only reference entries that are actually relevant to the user's question
5. If no entries are relevant, say so clearly
6. When asked about the team, use only the team contribution data provided below
"""


def assemble(
    query: str,
    catalog: Catalog,
    team_aggregate: TeamAggregate | None,
    prior_turns: Iterable[ChatTurn],
    top_k: int = TOP_K,
    weights: ScoringWeights = DEFAULT_WEIGHTS,
) -> GroundingContext:
    """Rank entries for the query and bundle them with team data and history."""
    return GroundingContext(
        query=query,
        entries=tuple(score_entries(catalog, query, limit=top_k, weights=weights)),
        team_aggregate=team_aggregate,
        prior_turns=tuple(turn for turn in prior_turns if not turn.is_pending),
    )


def build_system_prompt(context: GroundingContext) -> str:
    parts = [SYSTEM_PROMPT]

    if context.entries:
        parts.append("\nHere are potentially relevant entries from the site:\n\n")
        for idx, scored in enumerate(context.entries, start=1):
            entry = scored.entry
            lines = [f"{idx}. Title: {entry.title}", f"   URL: {entry.url}"]
            if entry.snippet:
                lines.append(f"   Summary: {entry.snippet}")
            if entry.paper_author:
                lines.append(f"   Paper author: {entry.paper_author}")
            if entry.contributor:
                lines.append(f"   Added by: {entry.contributor}")
            parts.append("\n".join(lines) + "\n\n")

    team = context.team_aggregate
    if team is not None:
        parts.append("\nTeam contribution data:\n")
        parts.append(f"Total members: {team.total_members}\n")
        parts.append(f"Total contributions: {team.total_contributions}\n")
        for member in team.per_member:
            parts.append(f"- {member.name}: {member.contributions} contributions\n")

    return "".join(parts)


def turns_as_messages(turns: Iterable[ChatTurn]) -> list[dict[str, str]]:
    """Provider message list for the non-pending turns, oldest first."""
    return [
        {"role": "user" if turn.role == "user" else "assistant", "content": turn.content}
        for turn in turns
        if not turn.is_pending
    ]

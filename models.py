"""Shared typed models for the research assistant."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Iterator, Literal

Role = Literal["user", "assistant", "pending"]


@dataclass(frozen=True, slots=True)
class Entry:
    """Normalized research entry indexed from the catalog page."""

    entry_id: str
    title: str
    snippet: str
    url: str
    full_text: str
    tags: tuple[str, ...] = ()
    context: str = ""
    citation_text: str = ""
    annotation_text: str = ""
    source_url: str = ""
    paper_author: str | None = None
    contributor: str | None = None


@dataclass(frozen=True, slots=True)
class Catalog:
    """One immutable snapshot of indexed entries."""

    entries: tuple[Entry, ...] = ()
    built_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    def __len__(self) -> int:
        return len(self.entries)

    def __iter__(self) -> Iterator[Entry]:
        return iter(self.entries)

    def get(self, entry_id: str) -> Entry | None:
        for entry in self.entries:
            if entry.entry_id == entry_id:
                return entry
        return None


@dataclass(frozen=True, slots=True)
class ScoredEntry:
    entry: Entry
    score: int

    @property
    def entry_id(self) -> str:
        return self.entry.entry_id


@dataclass(frozen=True, slots=True)
class ChatTurn:
    turn_id: str
    role: Role
    content: str
    timestamp: datetime

    @property
    def is_pending(self) -> bool:
        return self.role == "pending"


@dataclass(slots=True)
class RateRecord:
    """Per-identity request counter; mutated only by the rate limiter."""

    identity: str
    count: int
    window_reset_at: datetime


@dataclass(frozen=True, slots=True)
class MemberContribution:
    name: str
    contributions: int


@dataclass(frozen=True, slots=True)
class TeamAggregate:
    total_members: int
    total_contributions: int
    per_member: tuple[MemberContribution, ...] = ()


@dataclass(frozen=True, slots=True)
class GroundingContext:
    """Everything the language model is given as factual context for one reply."""

    query: str
    entries: tuple[ScoredEntry, ...] = ()
    team_aggregate: TeamAggregate | None = None
    prior_turns: tuple[ChatTurn, ...] = ()


@dataclass(frozen=True, slots=True)
class AttemptResult:
    """Outcome of calling a single candidate model."""

    model: str
    reply: str | None = None
    usage: dict[str, Any] | None = None
    error: Exception | None = None

    @property
    def ok(self) -> bool:
        return self.error is None and self.reply is not None


@dataclass(frozen=True, slots=True)
class Completion:
    reply: str
    model_used: str
    usage: dict[str, Any]
    failed_attempts: tuple[AttemptResult, ...] = ()


@dataclass(frozen=True, slots=True)
class AdmitDecision:
    allowed: bool
    remaining: int
    retry_after_minutes: int | None = None

"""Chat orchestration: validate, gate, rate limit, ground, and call the models."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any, Callable, Sequence

import requests

from chat_history import ChatSessionStore
from context_builder import TOP_K, assemble, build_system_prompt, turns_as_messages
from entries_index import EntriesIndex, catalog_from_shortlist
from errors import APOLOGY_MESSAGE, AssistantError, InputError, RateLimitError
from identity import verify_identity
from model_fallback import ModelFallbackCaller, configured_models
from models import Catalog, ChatTurn, MemberContribution, TeamAggregate
from rate_limiter import RateLimiter
from relevance import ScoringWeights

REQUEST_TIMEOUT_SECONDS = 120
_ALLOWED_ROLES = ("user", "assistant")

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ChatRequest:
    messages: tuple[ChatTurn, ...]
    entries: tuple[dict[str, Any], ...]
    team: TeamAggregate | None
    user_email: Any

    @property
    def query(self) -> str:
        for turn in reversed(self.messages):
            if turn.role == "user":
                return turn.content
        return ""


def parse_chat_request(payload: Any, now: datetime | None = None) -> ChatRequest:
    """Validate the inbound JSON body. Raises InputError on malformed input."""
    if not isinstance(payload, dict):
        raise InputError("Request body must be a JSON object")

    raw_messages = payload.get("messages")
    if not isinstance(raw_messages, list):
        raise InputError("Messages array is required")
    if not raw_messages:
        raise InputError("Messages array must not be empty")

    now = now or datetime.now(UTC)
    messages: list[ChatTurn] = []
    for index, message in enumerate(raw_messages):
        if not isinstance(message, dict):
            raise InputError(f"Message {index} must be an object")
        role = message.get("role")
        content = message.get("content")
        if role not in _ALLOWED_ROLES:
            raise InputError(f"Invalid role for message {index}: {role!r}")
        if not isinstance(content, str) or not content.strip():
            raise InputError(f"Message {index} has empty content")
        messages.append(ChatTurn(turn_id=f"msg-{index}", role=role, content=content, timestamp=now))

    if messages[-1].role != "user":
        raise InputError("The last message must come from the user")

    raw_entries = payload.get("entries") or []
    if not isinstance(raw_entries, list):
        raise InputError("Entries must be an array")

    return ChatRequest(
        messages=tuple(messages),
        entries=tuple(item for item in raw_entries if isinstance(item, dict)),
        team=parse_team_data(payload.get("teamData")),
        user_email=payload.get("userEmail"),
    )


def parse_team_data(raw: Any) -> TeamAggregate | None:
    if raw is None:
        return None
    if not isinstance(raw, dict):
        raise InputError("teamData must be an object")
    try:
        members = tuple(
            MemberContribution(name=str(member["name"]), contributions=int(member.get("contributions", 0)))
            for member in raw.get("members") or []
        )
        return TeamAggregate(
            total_members=int(raw.get("totalMembers", len(members))),
            total_contributions=int(
                raw.get("totalContributions", sum(m.contributions for m in members))
            ),
            per_member=members,
        )
    except (KeyError, TypeError, ValueError) as exc:
        raise InputError(f"teamData is malformed: {exc}") from exc


class ChatService:
    """Server-side handler for one chat request.

    The rate-limit slot is consumed before the models are called and is not
    given back if every model fails.
    """

    def __init__(
        self,
        limiter: RateLimiter | None = None,
        caller: ModelFallbackCaller | None = None,
        index: EntriesIndex | None = None,
        models: Sequence[str] | None = None,
        allowed_domain: str | None = None,
        weights: ScoringWeights | None = None,
    ) -> None:
        self.limiter = limiter or RateLimiter()
        self.caller = caller or ModelFallbackCaller()
        self.index = index
        self.models = tuple(models) if models is not None else configured_models()
        self.allowed_domain = allowed_domain
        self.weights = weights or ScoringWeights.from_env()

    def handle(self, payload: Any) -> dict[str, Any]:
        request = parse_chat_request(payload)
        identity = verify_identity(request.user_email, self.allowed_domain)

        decision = self.limiter.admit(identity)
        if not decision.allowed:
            raise RateLimitError(decision.retry_after_minutes or 1)

        catalog = self._grounding_catalog(request)
        context = assemble(
            request.query, catalog, request.team, request.messages, top_k=TOP_K, weights=self.weights
        )
        LOGGER.info(
            "Chat request identity=%s turns=%s grounded_entries=%s remaining_quota=%s",
            identity,
            len(context.prior_turns),
            len(context.entries),
            decision.remaining,
        )

        completion = self.caller.complete(
            build_system_prompt(context),
            turns_as_messages(context.prior_turns),
            self.models,
        )
        return {
            "message": completion.reply,
            "usage": completion.usage,
            "modelUsed": completion.model_used,
        }

    def _grounding_catalog(self, request: ChatRequest) -> Catalog:
        """Server-side catalog when one is configured and builds, else the client's shortlist."""
        if self.index is not None:
            try:
                return self.index.catalog()
            except Exception as exc:  # an unreadable page must not abort the request
                LOGGER.warning("Server-side catalog unavailable, using client shortlist: %s", exc)
        return catalog_from_shortlist(request.entries)


class HttpChatClient:
    """Sends chat payloads to a running server's /api/chat endpoint."""

    def __init__(self, base_url: str) -> None:
        self.base_url = base_url.rstrip("/")

    def __call__(self, payload: dict[str, Any]) -> dict[str, Any]:
        response = requests.post(
            f"{self.base_url}/api/chat",
            json=payload,
            timeout=REQUEST_TIMEOUT_SECONDS,
        )
        if response.status_code == 429:
            body = response.json()
            raise RateLimitError(int(body.get("retryAfterMinutes") or 1))
        if not response.ok:
            raise AssistantError(f"API error: {response.status_code}")
        return response.json()


def rate_limit_message(minutes: int) -> str:
    unit = "minute" if minutes == 1 else "minutes"
    return f"You've reached the request limit. Please try again in {minutes} {unit}."


class ChatSession:
    """Client-side conversation flow around a send function.

    ``send`` is either ``ChatService.handle`` (in-process) or an
    ``HttpChatClient``.
    """

    def __init__(
        self,
        store: ChatSessionStore,
        index: EntriesIndex,
        send: Callable[[dict[str, Any]], dict[str, Any]],
        user_email: str,
        team_data: dict[str, Any] | None = None,
    ) -> None:
        self.store = store
        self.index = index
        self.send = send
        self.user_email = user_email
        self.team_data = team_data
        self._processing = False

    def ask(self, question: str) -> str | None:
        """Send one question; returns the text shown to the visitor.

        Returns None when the question is blank or another one is in flight.
        """
        message = question.strip()
        if not message or self._processing:
            return None

        self._processing = True
        self.store.append("user", message)
        pending_id = self.store.append_pending()
        try:
            relevant = self.index.relevant_entries(message, limit=TOP_K)
            payload: dict[str, Any] = {
                "messages": turns_as_messages(self.store.history()),
                "entries": [
                    {
                        "id": scored.entry.entry_id,
                        "title": scored.entry.title,
                        "url": scored.entry.url,
                        "snippet": scored.entry.snippet,
                        "paperAuthor": scored.entry.paper_author,
                        "contributor": scored.entry.contributor,
                    }
                    for scored in relevant
                ],
                "userEmail": self.user_email,
            }
            if self.team_data is not None:
                payload["teamData"] = self.team_data

            response = self.send(payload)
            reply = response["message"]
        except RateLimitError as exc:
            LOGGER.info("Chat rate limited: retry in %s minutes", exc.retry_after_minutes)
            text = rate_limit_message(exc.retry_after_minutes)
            self.store.replace(pending_id, "assistant", text)
            return text
        except Exception as exc:  # the visitor only ever sees the apology
            LOGGER.error("Chat error: %s", exc)
            self.store.replace(pending_id, "assistant", APOLOGY_MESSAGE)
            return APOLOGY_MESSAGE
        finally:
            self._processing = False

        self.store.replace(pending_id, "assistant", reply)
        self.store.persist()
        return reply

"""Chat session store: ordered turns with namespaced JSON persistence."""

from __future__ import annotations

import json
import logging
import os
import re
import uuid
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any, Protocol

from errors import PersistenceError
from models import ChatTurn, Role

HISTORY_NAMESPACE = "ai_vip_chat_history"
MAX_PERSISTED_TURNS = 20
HISTORY_MAX_AGE = timedelta(hours=24)
DEFAULT_HISTORY_DIR = ".chat_history"

_SAFE_KEY = re.compile(r"[^A-Za-z0-9_.-]+")

LOGGER = logging.getLogger(__name__)


class HistoryBackend(Protocol):
    def load(self, key: str) -> str | None:
        ...

    def save(self, key: str, blob: str) -> None:
        ...


class InMemoryHistoryBackend:
    def __init__(self) -> None:
        self.blobs: dict[str, str] = {}

    def load(self, key: str) -> str | None:
        return self.blobs.get(key)

    def save(self, key: str, blob: str) -> None:
        self.blobs[key] = blob


class JsonFileHistoryBackend:
    """Stores one JSON file per history key under ``directory``."""

    def __init__(self, directory: str | Path | None = None) -> None:
        if directory is None:
            directory = os.getenv("CHAT_HISTORY_DIR", DEFAULT_HISTORY_DIR)
        self.directory = Path(directory)

    def _path(self, key: str) -> Path:
        return self.directory / f"{_SAFE_KEY.sub('_', key)}.json"

    def load(self, key: str) -> str | None:
        path = self._path(key)
        if not path.exists():
            return None
        return path.read_text(encoding="utf-8")

    def save(self, key: str, blob: str) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        path = self._path(key)
        tmp = path.with_suffix(".tmp")
        tmp.write_text(blob, encoding="utf-8")
        tmp.replace(path)


class ChatSessionStore:
    """Append-only list of chat turns for one client.

    A pending placeholder may sit in the list while a model call is in flight;
    it is never written by ``persist``.
    """

    def __init__(
        self,
        client_id: str,
        backend: HistoryBackend | None = None,
        namespace: str = HISTORY_NAMESPACE,
    ) -> None:
        self.client_id = client_id
        self.namespace = namespace
        self.backend = backend if backend is not None else InMemoryHistoryBackend()
        self._turns: list[ChatTurn] = []

    @property
    def key(self) -> str:
        return f"{self.namespace}:{self.client_id}"

    def append(self, role: Role, content: str, now: datetime | None = None) -> str:
        turn_id = f"msg-{uuid.uuid4().hex}"
        self._turns.append(
            ChatTurn(turn_id=turn_id, role=role, content=content, timestamp=now or datetime.now(UTC))
        )
        return turn_id

    def append_pending(self, now: datetime | None = None) -> str:
        turn_id = f"loading-{uuid.uuid4().hex}"
        self._turns.append(
            ChatTurn(turn_id=turn_id, role="pending", content="...", timestamp=now or datetime.now(UTC))
        )
        return turn_id

    def remove(self, turn_id: str) -> bool:
        for index, turn in enumerate(self._turns):
            if turn.turn_id == turn_id:
                del self._turns[index]
                return True
        return False

    def replace(self, turn_id: str, role: Role, content: str) -> str:
        """Swap a turn (usually the pending one) for a real turn in the same slot."""
        for index, turn in enumerate(self._turns):
            if turn.turn_id == turn_id:
                new_id = f"msg-{uuid.uuid4().hex}"
                self._turns[index] = ChatTurn(
                    turn_id=new_id, role=role, content=content, timestamp=datetime.now(UTC)
                )
                return new_id
        return self.append(role, content)

    def turns(self) -> list[ChatTurn]:
        return list(self._turns)

    def history(self) -> list[ChatTurn]:
        return [turn for turn in self._turns if not turn.is_pending]

    def persist(self) -> bool:
        """Save the latest non-pending turns. Failures are logged, never raised."""
        recent = self.history()[-MAX_PERSISTED_TURNS:]
        try:
            self._save([_turn_to_dict(turn) for turn in recent])
        except PersistenceError as exc:
            LOGGER.error("Error saving chat history: %s", exc)
            return False
        return True

    def restore(self, now: datetime | None = None) -> list[ChatTurn]:
        """Load persisted turns if the most recent one is under 24 hours old.

        Stale or unreadable history leaves the session empty.
        """
        now = now or datetime.now(UTC)
        self._turns = []
        try:
            history = [turn for turn in self._load() if not turn.is_pending]
        except PersistenceError as exc:
            LOGGER.error("Error loading chat history: %s", exc)
            return []

        if not history:
            return []

        age = now - history[-1].timestamp
        if age >= HISTORY_MAX_AGE:
            LOGGER.info("Discarding stale chat history for %s (age=%s)", self.key, age)
            return []

        self._turns = history
        return list(history)

    def _save(self, items: list[dict[str, Any]]) -> None:
        try:
            self.backend.save(self.key, json.dumps(items))
        except (OSError, TypeError, ValueError) as exc:
            raise PersistenceError(f"could not save {self.key}: {exc}") from exc

    def _load(self) -> list[ChatTurn]:
        try:
            blob = self.backend.load(self.key)
            if not blob:
                return []
            items = json.loads(blob)
            if not isinstance(items, list):
                raise ValueError("expected a list of turns")
            return [_turn_from_dict(item) for item in items]
        except (OSError, ValueError, KeyError, TypeError) as exc:
            raise PersistenceError(f"could not load {self.key}: {exc}") from exc


def _turn_to_dict(turn: ChatTurn) -> dict[str, Any]:
    return {
        "id": turn.turn_id,
        "role": turn.role,
        "content": turn.content,
        "timestamp": turn.timestamp.isoformat(),
    }


def _turn_from_dict(item: dict[str, Any]) -> ChatTurn:
    role = item["role"]
    if role not in ("user", "assistant", "pending"):
        raise ValueError(f"Unknown chat role: {role!r}")
    return ChatTurn(
        turn_id=str(item["id"]),
        role=role,
        content=str(item["content"]),
        timestamp=_parse_timestamp(item["timestamp"]),
    )


def _parse_timestamp(raw: Any) -> datetime:
    if isinstance(raw, (int, float)):
        # epoch milliseconds, as written by the browser widget
        return datetime.fromtimestamp(raw / 1000, tz=UTC)
    parsed = datetime.fromisoformat(str(raw).replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)

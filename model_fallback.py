"""Ordered model-fallback calls against the chat completion providers."""

from __future__ import annotations

import logging
import os
import time
from typing import Any, Callable, Sequence

from errors import ExhaustedProvidersError, FallbackTimeoutError, ProviderError
from models import AttemptResult, Completion

OPENAI_PREFIX = "openai:"

# Tried in this order; earlier entries are preferred.
DEFAULT_MODELS: tuple[str, ...] = (
    "claude-3-5-sonnet-20241022",
    "claude-3-5-sonnet-20240620",
    "claude-3-5-sonnet-latest",
    "claude-3-opus-20240229",
    "claude-3-sonnet-20240229",
    "claude-3-haiku-20240307",
)

DEFAULT_MAX_TOKENS = 2048
DEFAULT_TOTAL_TIMEOUT_SECONDS = 90.0

# Marks "read CHAT_TOTAL_TIMEOUT_SECONDS", since None already means no deadline.
_FROM_ENV: Any = object()

LOGGER = logging.getLogger(__name__)

ModelCall = Callable[..., tuple[str, dict[str, Any]]]


def configured_models() -> tuple[str, ...]:
    """Model chain from CHAT_MODELS (comma separated), else the defaults."""
    raw = os.getenv("CHAT_MODELS", "")
    models = tuple(name.strip() for name in raw.split(",") if name.strip())
    return models or DEFAULT_MODELS


def call_provider(
    model: str,
    system: str,
    messages: list[dict[str, str]],
    max_tokens: int,
    timeout: float | None,
) -> tuple[str, dict[str, Any]]:
    """Route a model id to its provider: ``openai:<id>`` or a Claude model id."""
    if model.startswith(OPENAI_PREFIX):
        from openai_client import openai_complete  # noqa: PLC0415

        return openai_complete(
            model[len(OPENAI_PREFIX):], system, messages, max_tokens=max_tokens, timeout=timeout
        )

    from anthropic_client import claude_complete  # noqa: PLC0415

    return claude_complete(model, system, messages, max_tokens=max_tokens, timeout=timeout)


class ModelFallbackCaller:
    """Tries candidate models strictly in the given order until one answers.

    A failed model is never retried; the next candidate is tried instead. The
    whole chain shares one time budget: each attempt may use only what is
    left of it, and once it is spent no further models are tried.
    """

    def __init__(
        self,
        call_model: ModelCall | None = None,
        total_timeout_seconds: float | None = _FROM_ENV,
        max_tokens: int | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if total_timeout_seconds is _FROM_ENV:
            total_timeout_seconds = float(
                os.getenv("CHAT_TOTAL_TIMEOUT_SECONDS", str(DEFAULT_TOTAL_TIMEOUT_SECONDS))
            )
        if max_tokens is None:
            max_tokens = int(os.getenv("CHAT_MAX_TOKENS", str(DEFAULT_MAX_TOKENS)))
        self._call_model = call_model or call_provider
        self.total_timeout_seconds = total_timeout_seconds
        self.max_tokens = max_tokens
        self._clock = clock

    def complete(
        self,
        system_prompt: str,
        turns: list[dict[str, str]],
        models: Sequence[str],
    ) -> Completion:
        deadline = None
        if self.total_timeout_seconds is not None:
            deadline = self._clock() + self.total_timeout_seconds

        failed: list[AttemptResult] = []
        for model in models:
            remaining = None
            if deadline is not None:
                remaining = deadline - self._clock()
                if remaining <= 0:
                    raise self._timed_out(failed)

            result = self._attempt(model, system_prompt, turns, remaining)
            if result.ok:
                LOGGER.info("Chat completion succeeded with model=%s after %s failures", model, len(failed))
                return Completion(
                    reply=result.reply or "",
                    model_used=model,
                    usage=result.usage or {},
                    failed_attempts=tuple(failed),
                )

            failed.append(result)
            LOGGER.warning("Failed with model %s: %s", model, result.error)

        if deadline is not None and failed and self._clock() >= deadline:
            raise self._timed_out(failed)

        last_error = failed[-1].error if failed else None
        LOGGER.error("All %s candidate models failed; last error: %s", len(failed), last_error)
        raise ExhaustedProvidersError(last_error, failed)

    def _attempt(
        self,
        model: str,
        system_prompt: str,
        turns: list[dict[str, str]],
        timeout: float | None,
    ) -> AttemptResult:
        try:
            reply, usage = self._call_model(
                model, system_prompt, turns, max_tokens=self.max_tokens, timeout=timeout
            )
        except Exception as exc:  # any provider failure moves on to the next model
            return AttemptResult(model=model, error=ProviderError(model, exc))
        if not reply:
            return AttemptResult(model=model, error=ProviderError(model, "empty reply"))
        return AttemptResult(model=model, reply=reply, usage=dict(usage or {}))

    def _timed_out(self, failed: list[AttemptResult]) -> FallbackTimeoutError:
        last_error: Exception | None = failed[-1].error if failed else None
        if last_error is None:
            last_error = TimeoutError(
                f"model fallback chain exceeded {self.total_timeout_seconds}s"
            )
        LOGGER.error(
            "Model fallback chain timed out after %s attempts (budget=%ss)",
            len(failed),
            self.total_timeout_seconds,
        )
        return FallbackTimeoutError(last_error, failed)

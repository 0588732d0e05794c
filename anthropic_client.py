"""Thin wrapper around the Anthropic Messages API."""

from __future__ import annotations

import logging
import os
from typing import Any

import anthropic

LOGGER = logging.getLogger(__name__)


def claude_complete(
    model: str,
    system: str,
    messages: list[dict[str, str]],
    max_tokens: int = 2048,
    timeout: float | None = None,
) -> tuple[str, dict[str, Any]]:
    """Call one Claude model and return (reply text, usage).

    Args:
        model: Model id, passed through unchanged.
        system: System prompt, sent via the dedicated system= parameter.
        messages: Alternating user/assistant turns with "role" and "content".
        max_tokens: Hard cap on output tokens.
        timeout: Seconds this request may take before the SDK abandons it.
    """
    api_key = os.getenv("ANTHROPIC_API_KEY")
    if not api_key:
        raise RuntimeError("ANTHROPIC_API_KEY environment variable is required")

    client = anthropic.Anthropic(api_key=api_key, max_retries=0)

    kwargs: dict[str, Any] = {
        "model": model,
        "max_tokens": max_tokens,
        "system": system,
        "messages": messages,
    }
    if timeout is not None:
        kwargs["timeout"] = timeout

    LOGGER.debug("Calling Claude model=%s max_tokens=%s timeout=%s", model, max_tokens, timeout)
    response = client.messages.create(**kwargs)

    text = "".join(
        block.text for block in response.content if getattr(block, "type", "text") == "text"
    )
    if not text:
        raise RuntimeError(f"Claude model {model} returned an empty response")

    usage = response.usage
    return text, {
        "input_tokens": getattr(usage, "input_tokens", None),
        "output_tokens": getattr(usage, "output_tokens", None),
    }

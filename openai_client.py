"""OpenAI chat-completions wrapper used for ``openai:`` entries in the model chain."""

from __future__ import annotations

import logging
import os
from typing import Any

from openai import OpenAI

OPENAI_TEMPERATURE = float(os.getenv("OPENAI_TEMPERATURE", "0.3"))

LOGGER = logging.getLogger(__name__)


def openai_complete(
    model: str,
    system: str,
    messages: list[dict[str, str]],
    max_tokens: int = 2048,
    timeout: float | None = None,
) -> tuple[str, dict[str, Any]]:
    """Call one OpenAI model and return (reply text, usage)."""
    api_key = os.getenv("OPENAI_API_KEY")
    if not api_key:
        raise RuntimeError("OPENAI_API_KEY environment variable is required")

    client = OpenAI(api_key=api_key, max_retries=0)

    kwargs: dict[str, Any] = {
        "model": model,
        "temperature": OPENAI_TEMPERATURE,
        "max_completion_tokens": max_tokens,
        "messages": [{"role": "system", "content": system}, *messages],
    }
    if timeout is not None:
        kwargs["timeout"] = timeout

    LOGGER.debug("Calling OpenAI model=%s max_tokens=%s timeout=%s", model, max_tokens, timeout)
    response = client.chat.completions.create(**kwargs)

    content = response.choices[0].message.content
    if not content:
        raise RuntimeError(f"OpenAI model {model} returned an empty response")

    usage = response.usage
    return content, {
        "input_tokens": getattr(usage, "prompt_tokens", None),
        "output_tokens": getattr(usage, "completion_tokens", None),
    }

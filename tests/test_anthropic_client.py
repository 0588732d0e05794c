from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import pytest

from anthropic_client import claude_complete

_MESSAGES = [{"role": "user", "content": "Which entries cover tutoring?"}]


def _mock_client(blocks: list[SimpleNamespace]) -> MagicMock:
    response = SimpleNamespace(
        content=blocks,
        usage=SimpleNamespace(input_tokens=120, output_tokens=40),
    )
    client = MagicMock()
    client.messages.create.return_value = response
    return client


def test_claude_complete_passes_system_and_timeout() -> None:
    client = _mock_client([SimpleNamespace(type="text", text="Two entries match.")])

    with patch("anthropic_client.anthropic.Anthropic", return_value=client), \
         patch.dict("os.environ", {"ANTHROPIC_API_KEY": "test-key"}):
        reply, usage = claude_complete("claude-3-haiku-20240307", "be helpful", _MESSAGES, max_tokens=512, timeout=7.5)

    assert reply == "Two entries match."
    assert usage == {"input_tokens": 120, "output_tokens": 40}
    client.messages.create.assert_called_once_with(
        model="claude-3-haiku-20240307",
        max_tokens=512,
        system="be helpful",
        messages=_MESSAGES,
        timeout=7.5,
    )


def test_claude_complete_joins_text_blocks_only() -> None:
    client = _mock_client(
        [
            SimpleNamespace(type="text", text="Part one. "),
            SimpleNamespace(type="tool_use", text="ignored"),
            SimpleNamespace(type="text", text="Part two."),
        ]
    )
    with patch("anthropic_client.anthropic.Anthropic", return_value=client), \
         patch.dict("os.environ", {"ANTHROPIC_API_KEY": "test-key"}):
        reply, _ = claude_complete("m", "s", _MESSAGES)

    assert reply == "Part one. Part two."


def test_claude_complete_rejects_empty_reply() -> None:
    client = _mock_client([])
    with patch("anthropic_client.anthropic.Anthropic", return_value=client), \
         patch.dict("os.environ", {"ANTHROPIC_API_KEY": "test-key"}):
        with pytest.raises(RuntimeError, match="empty response"):
            claude_complete("m", "s", _MESSAGES)


def test_claude_complete_raises_without_api_key() -> None:
    with patch.dict("os.environ", {}, clear=True):
        with pytest.raises(RuntimeError, match="ANTHROPIC_API_KEY"):
            claude_complete("m", "s", _MESSAGES)

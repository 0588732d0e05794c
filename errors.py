"""Error taxonomy for the chat pipeline.

Every error that can reach the HTTP boundary carries its status code and the
text that is safe to show to a visitor. Internal details stay in ``details``
and in the logs.
"""

from __future__ import annotations

from typing import Sequence

APOLOGY_MESSAGE = "Sorry, I encountered an error. Please try again later."


class AssistantError(RuntimeError):
    """Base class for failures of a chat request."""

    status_code = 500
    public_message = "Failed to get response from AI"

    def __init__(self, message: str | None = None, *, details: str | None = None) -> None:
        super().__init__(message or self.public_message)
        self.details = details

    def to_payload(self) -> dict[str, object]:
        payload: dict[str, object] = {"error": self.public_message}
        if self.details:
            payload["details"] = self.details
        return payload


class InputError(AssistantError):
    status_code = 400
    public_message = "Messages array is required"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message)
        if message:
            self.public_message = message


class AuthError(AssistantError):
    status_code = 403
    public_message = "A verified organization email is required"

    def __init__(self, message: str | None = None, *, missing: bool = False) -> None:
        super().__init__(message)
        if missing:
            self.status_code = 401


class RateLimitError(AssistantError):
    status_code = 429
    public_message = "Rate limit exceeded"

    def __init__(self, retry_after_minutes: int) -> None:
        self.retry_after_minutes = retry_after_minutes
        unit = "minute" if retry_after_minutes == 1 else "minutes"
        super().__init__(
            f"Rate limit exceeded, retry in {retry_after_minutes} {unit}",
            details=f"You have reached the request limit. Please try again in {retry_after_minutes} {unit}.",
        )

    def to_payload(self) -> dict[str, object]:
        payload = super().to_payload()
        payload["retryAfterMinutes"] = self.retry_after_minutes
        return payload


class ProviderError(AssistantError):
    """A single candidate model failed; the fallback caller moves on."""

    def __init__(self, model: str, cause: Exception | str) -> None:
        self.model = model
        super().__init__(f"Model {model} failed: {cause}")


class ExhaustedProvidersError(AssistantError):
    """Every candidate model failed."""

    status_code = 500
    public_message = "Failed to get response from AI"

    def __init__(self, last_error: Exception | None, attempts: Sequence[object] = ()) -> None:
        self.last_error = last_error
        self.attempts = tuple(attempts)
        detail = str(last_error) if last_error is not None else "No models available"
        super().__init__(detail, details=detail)


class FallbackTimeoutError(ExhaustedProvidersError):
    """The fallback chain ran out of its overall time budget."""

    status_code = 504
    public_message = "Timed out waiting for a response from AI"


class IndexingError(RuntimeError):
    """A single entry record could not be indexed."""


class PersistenceError(RuntimeError):
    """Chat history could not be saved or loaded."""

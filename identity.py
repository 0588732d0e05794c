"""Identity gate: only verified organization emails may use the assistant."""

from __future__ import annotations

import os
import re

from errors import AuthError

DEFAULT_EMAIL_DOMAIN = "purdue.edu"

_EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+$")


def allowed_email_domain() -> str:
    """Organization domain from ALLOWED_EMAIL_DOMAIN, read at call time so .env applies."""
    return os.getenv("ALLOWED_EMAIL_DOMAIN", DEFAULT_EMAIL_DOMAIN)


def verify_identity(email: object, allowed_domain: str | None = None) -> str:
    """Return the normalized identity for a request, or raise AuthError.

    Missing identities map to 401; malformed addresses and addresses outside
    the organization domain map to 403.
    """
    domain = (allowed_domain if allowed_domain is not None else allowed_email_domain()).lower().lstrip("@")

    if not isinstance(email, str) or not email.strip():
        raise AuthError("Email address is required", missing=True)

    normalized = email.strip().lower()
    if not _EMAIL_PATTERN.match(normalized):
        raise AuthError("Email address is malformed")
    if not normalized.endswith(f"@{domain}"):
        raise AuthError(f"Email address must belong to {domain}")
    return normalized

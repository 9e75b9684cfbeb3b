"""Authorization code and opaque token generation.

RFC 6749 §10.10 requires that authorization codes and tokens cannot be guessed.
Every secret produced here comes from :mod:`secrets` and is encoded as
unpadded base64url so it can travel in a query string without escaping.

The code policy is fixed: 26 random bytes (208 bits) and a 10 minute lifetime
(RFC 6749 §4.1.2 recommends at most 10 minutes).

This module intentionally performs **no logging** of generated values.
"""

from __future__ import annotations

import base64
import re
import secrets
from typing import Final

CODE_BYTES: Final[int] = 26
CODE_TTL_SECONDS: Final[int] = 600

# opaque access and refresh tokens
_TOKEN_BYTES: Final[int] = 32

_URLSAFE_RE: Final[re.Pattern[str]] = re.compile(r"^[A-Za-z0-9_-]+$")


def generate_authorization_code() -> str:
    """Return a fresh single-use authorization code."""
    return secrets.token_urlsafe(CODE_BYTES)


def code_expiration(issued_at: float) -> float:
    """Absolute expiry of a code issued at *issued_at* (UNIX seconds)."""
    return issued_at + CODE_TTL_SECONDS


def decode_code(code: str) -> bytes:
    """Decode an unpadded base64url code back to its random bytes.

    Raises
    ------
    ValueError
        If *code* is not valid base64url.
    """
    if not _URLSAFE_RE.match(code):
        raise ValueError("code is not base64url encoded")
    pad_len = (-len(code)) % 4
    return base64.urlsafe_b64decode(code + "=" * pad_len)


def generate_access_token() -> str:
    return secrets.token_urlsafe(_TOKEN_BYTES)


def generate_refresh_token() -> str:
    return secrets.token_urlsafe(_TOKEN_BYTES)

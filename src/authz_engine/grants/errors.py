"""Exception types raised by the grant engine.

Only lightweight, **data-carrying** exceptions live here so that web layers
can transform them into redirects, JSON bodies or ``WWW-Authenticate``
challenges.  None of them ever carries a secret (code, token) in its payload.
"""

from __future__ import annotations

from typing import Final, Literal

AuthorizationErrorCode = Literal[
    "invalid_request",
    "unauthorized_client",
    "access_denied",
    "unsupported_response_type",
    "invalid_scope",
    "server_error",
    "temporarily_unavailable",
]

# RFC 6749 §4.1.2.1
AUTHORIZATION_ERROR_CODES: Final[tuple[str, ...]] = (
    "invalid_request",
    "unauthorized_client",
    "access_denied",
    "unsupported_response_type",
    "invalid_scope",
    "server_error",
    "temporarily_unavailable",
)

TokenRequestErrorCode = Literal[
    "invalid_request",
    "invalid_grant",
    "unauthorized_client",
    "server_error",
    "temporarily_unavailable",
]

TokenValidationReason = Literal[
    "token_not_found",
    "token_expired",
    "token_revoked",
    "authorization_not_found",
    "client_inactive",
    "revision_invalid",
    "insufficient_scope",
]


class AuthorizationError(Exception):
    """Protocol error for the authorization endpoint, tagged with ``state``.

    The original ``state`` is always kept so the caller can echo it back to
    the client, even when the request itself was malformed.
    """

    def __init__(
        self,
        error: AuthorizationErrorCode,
        *,
        state: str = "",
        description: str | None = None,
    ) -> None:
        if error not in AUTHORIZATION_ERROR_CODES:
            raise ValueError(f"unknown authorization error code: {error!r}")
        super().__init__(description or error)
        self.error: AuthorizationErrorCode = error
        self.state: str = state
        self.description: str | None = description

    def to_query_params(self) -> dict[str, str]:
        """Parameters appended to the client's redirect endpoint."""
        return {"error": self.error, "state": self.state}

    def to_payload(self) -> dict[str, str]:
        """Return a JSON-serialisable payload for non-redirectable failures."""
        payload = self.to_query_params()
        if self.description:
            payload["error_description"] = self.description
        return payload


class TokenRequestError(Exception):
    """Failure of a code exchange or refresh-token grant (RFC 6749 §5.2)."""

    def __init__(self, error: TokenRequestErrorCode, message: str | None = None) -> None:
        super().__init__(message or error)
        self.error: TokenRequestErrorCode = error

    def to_payload(self) -> dict[str, str]:
        return {"error": self.error, "error_description": str(self)}


class TokenValidationError(Exception):
    """Raised when an access token cannot be used for a resource request.

    These failures are reported to resource servers and are deliberately kept
    apart from :class:`AuthorizationError`.
    """

    def __init__(self, reason: TokenValidationReason, message: str | None = None) -> None:
        super().__init__(message or reason.replace("_", " "))
        self.reason: TokenValidationReason = reason

    @property
    def error(self) -> str:
        """RFC 6750 error code for the ``WWW-Authenticate`` challenge."""
        if self.reason == "insufficient_scope":
            return "insufficient_scope"
        return "invalid_token"

    def to_payload(self) -> dict[str, str]:
        return {"error": self.error, "reason": self.reason, "message": str(self)}


class InvalidTokenTransitionError(RuntimeError):
    """Raised when a terminal access token is asked to change state."""


class ClientNotFoundError(LookupError):
    """Raised by administrative operations on an unregistered client."""

    def __init__(self, client_id: str) -> None:
        super().__init__(f"unknown client: {client_id}")
        self.client_id = client_id


class RepositoryError(RuntimeError):
    """Persistence failure surfaced by an :class:`AuthzInfoRepository`."""


class RepositoryUnavailableError(RepositoryError):
    """The backing store is temporarily unreachable; the caller may retry."""


class DuplicateRecordError(RepositoryError):
    """An insert collided with an existing record or unique index."""

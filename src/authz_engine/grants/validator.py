"""Authorization request value and its validation (RFC 6749 §4.1.1).

The request is an immutable value built once from the incoming query; a single
pure function decides whether it may proceed.  Failures raise
:class:`~authz_engine.grants.errors.AuthorizationError` tagged with the
request's ``state`` so the caller can always echo it back.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Final, Iterable, Mapping
from urllib.parse import urlsplit

from authz_engine.grants.errors import AuthorizationError
from authz_engine.grants.scopes import DEFAULT_SCOPE_CATALOG, ScopeCatalog

_LOG = logging.getLogger("authz-engine.grants.validator")

SUPPORTED_RESPONSE_TYPES: Final[frozenset[str]] = frozenset({"code", "code id_token"})


@dataclass(frozen=True, slots=True)
class AuthorizationRequest:
    """Parameters of an authorization endpoint request."""

    response_type: str
    client_id: str
    state: str
    redirect_uri: str
    scope: tuple[str, ...] = ()

    @classmethod
    def from_query(cls, params: Mapping[str, str]) -> "AuthorizationRequest":
        """Build a request from decoded query parameters.

        ``scope`` is space-delimited on the wire (RFC 6749 §3.3).
        """
        return cls(
            response_type=params.get("response_type") or "",
            client_id=params.get("client_id") or "",
            state=params.get("state") or "",
            redirect_uri=params.get("redirect_uri") or "",
            scope=tuple((params.get("scope") or "").split()),
        )


def reduce_redirect_uri(uri: str) -> str:
    """Return ``scheme://host/path`` of *uri*, dropping query and fragment."""
    parts = urlsplit(uri)
    return f"{parts.scheme}://{parts.netloc}{parts.path}"


def is_registered_redirect_uri(uri: str, registered: Iterable[str]) -> bool:
    """True iff *uri* has no fragment and matches a registered endpoint exactly.

    Only the query string may differ; scheme, host (including port) and path
    are compared verbatim.
    """
    if not uri or "#" in uri:
        return False
    reduced = reduce_redirect_uri(uri)
    return any(reduced == reduce_redirect_uri(endpoint) for endpoint in registered)


def validate_authorization_request(
    request: AuthorizationRequest,
    registered_redirect_uris: Iterable[str],
    catalog: ScopeCatalog = DEFAULT_SCOPE_CATALOG,
) -> None:
    """Validate *request*; the first failing check wins.

    Raises
    ------
    AuthorizationError
        ``invalid_request``, ``unsupported_response_type`` or
        ``invalid_scope``, always carrying ``request.state``.
    """
    state = request.state

    if not request.client_id or not request.redirect_uri or not state:
        raise AuthorizationError(
            "invalid_request",
            state=state,
            description="client_id, redirect_uri and state are required",
        )

    if "#" in request.redirect_uri:
        raise AuthorizationError(
            "invalid_request",
            state=state,
            description="redirect_uri must not contain a fragment",
        )

    if not request.response_type:
        raise AuthorizationError(
            "invalid_request", state=state, description="response_type is required"
        )
    if request.response_type not in SUPPORTED_RESPONSE_TYPES:
        raise AuthorizationError(
            "unsupported_response_type",
            state=state,
            description=f"response_type {request.response_type!r} is not supported",
        )

    if not is_registered_redirect_uri(request.redirect_uri, registered_redirect_uris):
        _LOG.info(
            "Rejected unregistered redirect endpoint for client_id=%s",
            request.client_id,
        )
        raise AuthorizationError(
            "invalid_request",
            state=state,
            description="redirect_uri does not match a registered endpoint",
        )

    if not catalog.supports(request.scope):
        raise AuthorizationError(
            "invalid_scope", state=state, description="requested scope is not supported"
        )

"""Authorization Code grant engine.

This namespace hosts the **HTTP-agnostic** core of the authorization server:
it decides whether requests, codes and tokens are valid, and drives their
lifecycle.  Transport, login and client registration live elsewhere.

Sub-modules
-----------
clock
    Test-friendly time abstraction.
scopes
    Catalog of recognised scope identifiers.
validator
    Authorization request value and its validation.
codes
    Authorization code / opaque token generation and the fixed code policy.
issuer
    Code issuance and redirect construction.
models
    Immutable records: clients, authorizations, access tokens.
store
    Repository protocol and the on-disk reference implementation.
service
    Application service orchestrating the grant.
errors
    Exception types used by the engine.
log_utils
    Structured logging helpers (thin wrapper around :pymod:`logging`).

All public objects are re-exported here for convenience.
"""

from __future__ import annotations

from .clock import Clock, default_clock, fixed_clock  # noqa: F401
from .config import EngineConfig  # noqa: F401
from .scopes import DEFAULT_SCOPE_CATALOG, ScopeCatalog  # noqa: F401
from .validator import (  # noqa: F401
    AuthorizationRequest,
    is_registered_redirect_uri,
    validate_authorization_request,
)
from .codes import CODE_BYTES, CODE_TTL_SECONDS, generate_authorization_code  # noqa: F401
from .issuer import AuthorizationGrantIssuer, IssuedGrant, build_redirect_uri  # noqa: F401
from .models import (  # noqa: F401
    AccessTokenInfo,
    AuthorizationInfo,
    ClientInfo,
    TokenGrant,
    TokenState,
)
from .store import AuthzInfoRepository, DiskAuthzRepository, default_repository  # noqa: F401
from .service import AuthorizationOutcome, AuthorizationService  # noqa: F401
from .errors import (  # noqa: F401
    AuthorizationError,
    ClientNotFoundError,
    InvalidTokenTransitionError,
    RepositoryError,
    RepositoryUnavailableError,
    TokenRequestError,
    TokenValidationError,
)
from .log_utils import get_authz_logger, mask_sensitive  # noqa: F401

__all__ = [
    # clock
    "Clock",
    "default_clock",
    "fixed_clock",
    # config
    "EngineConfig",
    # scopes
    "DEFAULT_SCOPE_CATALOG",
    "ScopeCatalog",
    # validation
    "AuthorizationRequest",
    "is_registered_redirect_uri",
    "validate_authorization_request",
    # issuance
    "CODE_BYTES",
    "CODE_TTL_SECONDS",
    "generate_authorization_code",
    "AuthorizationGrantIssuer",
    "IssuedGrant",
    "build_redirect_uri",
    # models
    "AccessTokenInfo",
    "AuthorizationInfo",
    "ClientInfo",
    "TokenGrant",
    "TokenState",
    # persistence
    "AuthzInfoRepository",
    "DiskAuthzRepository",
    "default_repository",
    # service
    "AuthorizationOutcome",
    "AuthorizationService",
    # errors
    "AuthorizationError",
    "ClientNotFoundError",
    "InvalidTokenTransitionError",
    "RepositoryError",
    "RepositoryUnavailableError",
    "TokenRequestError",
    "TokenValidationError",
    # logging helpers
    "get_authz_logger",
    "mask_sensitive",
]

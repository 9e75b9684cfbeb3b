"""Typed, immutable records used by the grant engine.

Records never mutate in place; lifecycle operations return a new instance via
:func:`dataclasses.replace` which the repository then persists.
"""

from __future__ import annotations

import enum
import uuid
from dataclasses import dataclass, field, replace
from typing import Any, Iterable, Literal

from authz_engine.grants.clock import Clock, default_clock
from authz_engine.grants.errors import InvalidTokenTransitionError

ClientStatus = Literal["published", "suspended"]


@dataclass(frozen=True, slots=True)
class ClientInfo:
    """Metadata of a registered OAuth client, owned by client administration."""

    client_id: str
    redirect_uris: tuple[str, ...]
    authz_revision: int = 0
    status: ClientStatus = "published"

    @property
    def is_active(self) -> bool:
        return self.status == "published"

    def suspended(self) -> "ClientInfo":
        return replace(self, status="suspended")

    def reinstated(self) -> "ClientInfo":
        """Published again with a bumped revision.

        The bump invalidates any token that survived the suspension.
        """
        return replace(self, status="published", authz_revision=self.authz_revision + 1)

    def to_dict(self) -> dict[str, Any]:
        return {
            "client_id": self.client_id,
            "redirect_uris": list(self.redirect_uris),
            "authz_revision": self.authz_revision,
            "status": self.status,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ClientInfo":
        return cls(
            client_id=data["client_id"],
            redirect_uris=tuple(data.get("redirect_uris", ())),
            authz_revision=int(data.get("authz_revision", 0)),
            status=data.get("status", "published"),
        )


def new_authorization_id() -> str:
    return uuid.uuid4().hex


@dataclass(frozen=True, slots=True)
class AuthorizationInfo:
    """Durable record of a user's consent for a client.

    ``authz_code`` is only set between code issuance and its exchange;
    ``refresh_token`` is set once the first exchange succeeded.
    """

    authorization_id: str
    client_id: str
    user_id: str
    scope: tuple[str, ...]
    redirect_uri: str
    authz_revision: int
    authz_code: str | None = None
    code_expiration: float | None = None
    refresh_token: str | None = None
    refresh_token_revoked: bool = False
    created_at: float = field(default_factory=default_clock)

    # ---------------- code ------------------------------------------------ #
    def is_code_unexpired(self, *, clock: Clock = default_clock) -> bool:
        """True iff a code is present and ``now < code_expiration``."""
        if not self.authz_code or self.code_expiration is None:
            return False
        return clock() < self.code_expiration

    def with_new_code(
        self,
        code: str,
        expiration: float,
        *,
        scope: Iterable[str],
        redirect_uri: str,
        authz_revision: int,
    ) -> "AuthorizationInfo":
        """Replace any outstanding code; the previous one is discarded."""
        return replace(
            self,
            authz_code=code,
            code_expiration=expiration,
            scope=tuple(sorted(set(scope))),
            redirect_uri=redirect_uri,
            authz_revision=authz_revision,
        )

    def without_code(self) -> "AuthorizationInfo":
        return replace(self, authz_code=None, code_expiration=None)

    # ---------------- consent -------------------------------------------- #
    def needs_consent(self, requested: Iterable[str]) -> bool:
        """True iff *requested* is not a subset of the granted scope."""
        return not set(requested) <= set(self.scope)

    # ---------------- refresh token -------------------------------------- #
    def is_refresh_token_valid(self) -> bool:
        return bool(self.refresh_token) and not self.refresh_token_revoked

    def with_refresh_token_revoked(self) -> "AuthorizationInfo":
        return replace(self, refresh_token_revoked=True)

    def suspended(self) -> "AuthorizationInfo":
        """Drop any outstanding code and revoke the refresh token."""
        return replace(
            self,
            authz_code=None,
            code_expiration=None,
            refresh_token_revoked=self.refresh_token_revoked or bool(self.refresh_token),
        )

    # ---------------- revision ------------------------------------------- #
    def is_revision_current(self, client_revision: int) -> bool:
        return self.authz_revision == client_revision

    def to_dict(self) -> dict[str, Any]:
        return {
            "authorization_id": self.authorization_id,
            "client_id": self.client_id,
            "user_id": self.user_id,
            "scope": list(self.scope),
            "redirect_uri": self.redirect_uri,
            "authz_revision": self.authz_revision,
            "authz_code": self.authz_code,
            "code_expiration": self.code_expiration,
            "refresh_token": self.refresh_token,
            "refresh_token_revoked": self.refresh_token_revoked,
            "created_at": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "AuthorizationInfo":
        return cls(
            authorization_id=data["authorization_id"],
            client_id=data["client_id"],
            user_id=data["user_id"],
            scope=tuple(data.get("scope", ())),
            redirect_uri=data["redirect_uri"],
            authz_revision=int(data["authz_revision"]),
            authz_code=data.get("authz_code"),
            code_expiration=data.get("code_expiration"),
            refresh_token=data.get("refresh_token"),
            refresh_token_revoked=bool(data.get("refresh_token_revoked", False)),
            created_at=float(data.get("created_at", 0.0)),
        )


class TokenState(str, enum.Enum):
    ISSUED = "issued"
    ACTIVE = "active"
    EXPIRED = "expired"
    USER_REVOKED = "user_revoked"
    ADMIN_REVOKED = "admin_revoked"
    REVISION_INVALID = "revision_invalid"

    @property
    def is_terminal(self) -> bool:
        return self not in (TokenState.ISSUED, TokenState.ACTIVE)

    @property
    def is_revoked(self) -> bool:
        return self in (TokenState.USER_REVOKED, TokenState.ADMIN_REVOKED)


_ALLOWED_TRANSITIONS: dict[TokenState, frozenset[TokenState]] = {
    TokenState.ISSUED: frozenset({TokenState.ACTIVE}),
    TokenState.ACTIVE: frozenset(
        {
            TokenState.EXPIRED,
            TokenState.USER_REVOKED,
            TokenState.ADMIN_REVOKED,
            TokenState.REVISION_INVALID,
        }
    ),
}


@dataclass(frozen=True, slots=True)
class AccessTokenInfo:
    """Ephemeral access token bound to an :class:`AuthorizationInfo`.

    ``authz_revision`` snapshots the client revision at issuance so a token
    cannot become valid again once its authorization is re-issued.
    """

    token: str
    authorization_id: str
    client_id: str
    scope: tuple[str, ...]
    issued_date: float
    expires_in: int
    authz_revision: int
    state: TokenState = TokenState.ISSUED

    @classmethod
    def issue(
        cls,
        *,
        token: str,
        authorization: AuthorizationInfo,
        expires_in: int,
        clock: Clock = default_clock,
    ) -> "AccessTokenInfo":
        return cls(
            token=token,
            authorization_id=authorization.authorization_id,
            client_id=authorization.client_id,
            scope=authorization.scope,
            issued_date=clock(),
            expires_in=expires_in,
            authz_revision=authorization.authz_revision,
        )

    @property
    def expires_at(self) -> float:
        return self.issued_date + self.expires_in

    def is_expired(self, *, clock: Clock = default_clock) -> bool:
        return clock() >= self.expires_at

    def has_scope(self, required: Iterable[str]) -> bool:
        return set(required) <= set(self.scope)

    # ---------------- transitions ---------------------------------------- #
    def _transition(self, target: TokenState) -> "AccessTokenInfo":
        allowed = _ALLOWED_TRANSITIONS.get(self.state, frozenset())
        if target not in allowed:
            raise InvalidTokenTransitionError(
                f"access token cannot move from {self.state.value} to {target.value}"
            )
        return replace(self, state=target)

    def activate(self) -> "AccessTokenInfo":
        return self._transition(TokenState.ACTIVE)

    def expire(self) -> "AccessTokenInfo":
        return self._transition(TokenState.EXPIRED)

    def revoke_by_user(self) -> "AccessTokenInfo":
        return self._transition(TokenState.USER_REVOKED)

    def revoke_by_admin(self) -> "AccessTokenInfo":
        return self._transition(TokenState.ADMIN_REVOKED)

    def invalidate_revision(self) -> "AccessTokenInfo":
        return self._transition(TokenState.REVISION_INVALID)


@dataclass(frozen=True, slots=True)
class TokenGrant:
    """Result of a successful code exchange or refresh."""

    access_token: str
    expires_in: int
    scope: tuple[str, ...]
    refresh_token: str | None = None
    token_type: str = "Bearer"

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "access_token": self.access_token,
            "token_type": self.token_type,
            "expires_in": self.expires_in,
            "scope": " ".join(self.scope),
        }
        if self.refresh_token:
            payload["refresh_token"] = self.refresh_token
        return payload

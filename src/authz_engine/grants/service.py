"""AuthorizationService – Authorization Code grant orchestration.

This service encapsulates the *business logic* of the authorization server.
HTTP handlers in :mod:`authz_engine.servers` (and resource servers embedding
the engine) call the façade methods below; everything that touches storage
goes through an :class:`~authz_engine.grants.store.AuthzInfoRepository`.

Lifecycle overview
------------------
1. :meth:`AuthorizationService.authorize` validates the request, checks
   consent and issues a single-use code.
2. :meth:`AuthorizationService.exchange_code` redeems the code once and
   issues an access token (plus a refresh token on first consent).
3. :meth:`AuthorizationService.validate_access_token` decides, lazily, whether
   a token may still be used.
4. :meth:`revoke_consent`, :meth:`suspend_client` and
   :meth:`reinstate_client` drive the revocation paths.

All secrets are masked in logs.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable

from authz_engine.grants.clock import Clock, default_clock
from authz_engine.grants.codes import generate_access_token, generate_refresh_token
from authz_engine.grants.config import EngineConfig
from authz_engine.grants.errors import (
    AuthorizationError,
    ClientNotFoundError,
    RepositoryError,
    RepositoryUnavailableError,
    TokenRequestError,
    TokenValidationError,
)
from authz_engine.grants.issuer import AuthorizationGrantIssuer, build_redirect_uri
from authz_engine.grants.log_utils import get_authz_logger, mask_sensitive
from authz_engine.grants.models import (
    AccessTokenInfo,
    AuthorizationInfo,
    ClientInfo,
    TokenGrant,
    TokenState,
)
from authz_engine.grants.scopes import DEFAULT_SCOPE_CATALOG, ScopeCatalog
from authz_engine.grants.store import AuthzInfoRepository, default_repository
from authz_engine.grants.validator import (
    AuthorizationRequest,
    is_registered_redirect_uri,
    validate_authorization_request,
)

_LOG = logging.getLogger("authz-engine.grants.service")


@dataclass(frozen=True, slots=True)
class AuthorizationOutcome:
    """Result of an authorization endpoint request.

    Exactly one of these holds:

    * success – ``redirect_uri`` carries ``code`` and ``state``;
    * failure – ``error`` is set and ``redirect_uri`` carries ``error`` and
      ``state``, or is ``None`` when the redirect endpoint could not be
      trusted and the error must be shown to the user agent directly;
    * ``consent_required`` – the user has to approve ``scope`` first.
    """

    redirect_uri: str | None = None
    error: AuthorizationError | None = None
    consent_required: bool = False
    authorization_id: str | None = None
    scope: tuple[str, ...] = ()

    @property
    def ok(self) -> bool:
        return self.error is None and not self.consent_required


def _storage_error(exc: RepositoryError, state: str) -> AuthorizationError:
    if isinstance(exc, RepositoryUnavailableError):
        return AuthorizationError("temporarily_unavailable", state=state)
    return AuthorizationError("server_error", state=state)


def _token_storage_error(exc: RepositoryError) -> TokenRequestError:
    if isinstance(exc, RepositoryUnavailableError):
        return TokenRequestError("temporarily_unavailable", "storage temporarily unavailable")
    return TokenRequestError("server_error", "internal storage error")


class AuthorizationService:
    """Application service orchestrating the Authorization Code grant."""

    def __init__(
        self,
        repository: AuthzInfoRepository | None = None,
        *,
        catalog: ScopeCatalog = DEFAULT_SCOPE_CATALOG,
        config: EngineConfig | None = None,
        clock: Clock = default_clock,
    ) -> None:
        self.config = config or EngineConfig.from_env()
        self.repository = repository or default_repository(self.config)
        self.catalog = catalog
        self.clock = clock
        self.issuer = AuthorizationGrantIssuer(self.repository, clock=clock)

    # ------------------------------------------------------------------ #
    # Authorization endpoint                                             #
    # ------------------------------------------------------------------ #
    def authorize(
        self,
        request: AuthorizationRequest,
        *,
        user_id: str,
        consent: bool | None = None,
        correlation_id: str | None = None,
    ) -> AuthorizationOutcome:
        """Handle an authorization request for the logged-in *user_id*.

        ``consent`` is ``None`` on the first pass, ``True`` / ``False`` once
        the user answered the consent prompt.
        """
        if not user_id:
            raise ValueError("user_id is required; login happens before authorize()")

        log = get_authz_logger(
            base_logger_name="authz-engine.grants.service",
            client_id=request.client_id or None,
            correlation_id=correlation_id,
        )

        try:
            client = self.repository.get_client_info_by_id(request.client_id)
        except RepositoryError as exc:
            log.error("Client lookup failed: %s", exc)
            return AuthorizationOutcome(error=_storage_error(exc, request.state))

        registered = client.redirect_uris if client else ()
        redirectable = is_registered_redirect_uri(request.redirect_uri, registered)

        def _fail(error: AuthorizationError) -> AuthorizationOutcome:
            target = None
            if redirectable:
                target = build_redirect_uri(request.redirect_uri, error.to_query_params())
            return AuthorizationOutcome(redirect_uri=target, error=error)

        try:
            validate_authorization_request(request, registered, self.catalog)
        except AuthorizationError as exc:
            log.info("Authorization request rejected: %s", exc.error)
            return _fail(exc)

        if client is None:
            return _fail(AuthorizationError("invalid_request", state=request.state))
        if not client.is_active:
            log.info("Authorization refused for suspended client")
            return _fail(AuthorizationError("unauthorized_client", state=request.state))

        try:
            existing = self.repository.get_authz_info_for_access_token(
                client.client_id, user_id
            )
        except RepositoryError as exc:
            log.error("Authorization lookup failed: %s", exc)
            return _fail(_storage_error(exc, request.state))

        needs_consent = existing is None or existing.needs_consent(request.scope)
        if needs_consent and consent is None:
            return AuthorizationOutcome(
                consent_required=True,
                authorization_id=existing.authorization_id if existing else None,
                scope=request.scope,
            )
        if consent is False:
            log.info("User denied consent")
            return _fail(AuthorizationError("access_denied", state=request.state))

        try:
            grant = self.issuer.issue(
                request, user_id=user_id, client=client, existing=existing
            )
        except RepositoryError as exc:
            log.error("Persisting authorization code failed: %s", exc)
            return _fail(_storage_error(exc, request.state))

        return AuthorizationOutcome(
            redirect_uri=grant.redirect_uri,
            authorization_id=grant.info.authorization_id,
            scope=grant.info.scope,
        )

    # ------------------------------------------------------------------ #
    # Token endpoint grants                                              #
    # ------------------------------------------------------------------ #
    def exchange_code(self, *, client_id: str, code: str, redirect_uri: str) -> TokenGrant:
        """Redeem an authorization code (RFC 6749 §4.1.3).

        Raises
        ------
        TokenRequestError
            ``invalid_request`` for missing parameters, ``invalid_grant`` for
            unknown, expired, mismatched or already redeemed codes,
            ``unauthorized_client`` for suspended clients and
            ``server_error`` / ``temporarily_unavailable`` on storage failure.
        """
        if not client_id or not code or not redirect_uri:
            raise TokenRequestError("invalid_request", "client_id, code and redirect_uri are required")

        try:
            info = self.repository.get_authz_info_by_code(code)
            if info is None:
                raise TokenRequestError("invalid_grant", "authorization code is invalid")

            log = get_authz_logger(
                base_logger_name="authz-engine.grants.service",
                authorization_id=info.authorization_id,
                client_id=client_id,
            )
            if info.client_id != client_id:
                log.warning("Code presented by a different client")
                raise TokenRequestError("invalid_grant", "authorization code is invalid")
            if info.redirect_uri != redirect_uri:
                raise TokenRequestError("invalid_grant", "redirect_uri does not match")
            if not info.is_code_unexpired(clock=self.clock):
                self.repository.clear_authz_code(info.authorization_id, code)
                log.info("Purged expired code %s", mask_sensitive(code))
                raise TokenRequestError("invalid_grant", "authorization code expired")

            client = self.repository.get_client_info_by_id(client_id)
            if client is None or not client.is_active:
                raise TokenRequestError("unauthorized_client", "client is not active")
            if not info.is_revision_current(client.authz_revision):
                self.repository.clear_authz_code(info.authorization_id, code)
                log.info("Discarded code issued under revision %d", info.authz_revision)
                raise TokenRequestError("invalid_grant", "authorization code is no longer valid")

            refresh_token = (
                info.refresh_token
                if info.is_refresh_token_valid()
                else generate_refresh_token()
            )
            access = AccessTokenInfo.issue(
                token=generate_access_token(),
                authorization=info,
                expires_in=self.config.access_token_ttl,
                clock=self.clock,
            ).activate()
            redeemed = self.repository.redeem_authz_code(
                code, access_token=access, refresh_token=refresh_token
            )
        except RepositoryError as exc:
            _LOG.error("Code exchange failed on storage: %s", exc)
            raise _token_storage_error(exc) from None

        if redeemed is None:
            # lost the race against a concurrent exchange of the same code
            log.warning("Code %s already redeemed", mask_sensitive(code))
            raise TokenRequestError("invalid_grant", "authorization code is invalid")

        log.info("Exchanged authorization code (expires in %ss)", access.expires_in)
        return TokenGrant(
            access_token=access.token,
            expires_in=access.expires_in,
            scope=access.scope,
            refresh_token=redeemed.refresh_token,
        )

    def refresh_access_token(self, *, client_id: str, refresh_token: str) -> TokenGrant:
        """Issue a new access token from a refresh token (RFC 6749 §6)."""
        if not client_id or not refresh_token:
            raise TokenRequestError("invalid_request", "client_id and refresh_token are required")

        try:
            info = self.repository.get_authz_info_by_refresh_token(refresh_token)
            if info is None or info.client_id != client_id or not info.is_refresh_token_valid():
                raise TokenRequestError("invalid_grant", "refresh token is invalid")

            client = self.repository.get_client_info_by_id(client_id)
            if client is None or not client.is_active:
                raise TokenRequestError("unauthorized_client", "client is not active")
            if not info.is_revision_current(client.authz_revision):
                raise TokenRequestError("invalid_grant", "authorization is out of date")

            access = AccessTokenInfo.issue(
                token=generate_access_token(),
                authorization=info,
                expires_in=self.config.access_token_ttl,
                clock=self.clock,
            ).activate()
            self.repository.insert_access_token_info(access)
        except RepositoryError as exc:
            _LOG.error("Refresh failed on storage: %s", exc)
            raise _token_storage_error(exc) from None

        _LOG.info(
            "Refreshed access token for authorization_id=%s**** client_id=%s",
            info.authorization_id[:6],
            client_id,
        )
        return TokenGrant(
            access_token=access.token,
            expires_in=access.expires_in,
            scope=access.scope,
            refresh_token=info.refresh_token,
        )

    # ------------------------------------------------------------------ #
    # Resource access                                                    #
    # ------------------------------------------------------------------ #
    def validate_access_token(
        self, token: str, *, required_scope: Iterable[str] = ()
    ) -> AccessTokenInfo:
        """Return the token record if *token* may access *required_scope*.

        Checks run in a fixed order and the first failure wins: lookup,
        expiry, revocation, owning authorization, client status, revision,
        scope.

        Raises
        ------
        TokenValidationError
            With a distinct ``reason`` per failed check.
        RepositoryError
            If the store cannot be read.
        """
        info = self.repository.get_access_token_info(token) if token else None
        if info is None:
            raise TokenValidationError("token_not_found")

        state = info.state
        if state is TokenState.EXPIRED or info.is_expired(clock=self.clock):
            if state is TokenState.ACTIVE:
                self._persist_transition(info, info.expire())
            raise TokenValidationError("token_expired")

        if state.is_revoked:
            raise TokenValidationError(
                "token_revoked", f"token was {state.value.replace('_', ' ')}"
            )

        authz = self.repository.get_authz_info_by_id(info.authorization_id)
        if authz is None:
            raise TokenValidationError("authorization_not_found")

        client = self.repository.get_client_info_by_id(info.client_id)
        if client is None or not client.is_active:
            raise TokenValidationError("client_inactive")

        if (
            state is not TokenState.ACTIVE
            or not authz.is_revision_current(client.authz_revision)
            or info.authz_revision != client.authz_revision
        ):
            if state is TokenState.ACTIVE:
                self._persist_transition(info, info.invalidate_revision())
            raise TokenValidationError("revision_invalid")

        if not info.has_scope(required_scope):
            raise TokenValidationError("insufficient_scope")
        return info

    def is_access_token_valid(self, token: str, *, required_scope: Iterable[str] = ()) -> bool:
        try:
            self.validate_access_token(token, required_scope=required_scope)
        except TokenValidationError:
            return False
        return True

    # ------------------------------------------------------------------ #
    # Revocation                                                         #
    # ------------------------------------------------------------------ #
    def revoke_consent(self, *, client_id: str, user_id: str) -> bool:
        """User-initiated revocation of the grant for *client_id*.

        Every live access token becomes ``user_revoked`` and the authorization
        record, refresh token included, is deleted.  Returns ``False`` when
        there was nothing to revoke.
        """
        info = self.repository.get_authz_info_for_access_token(client_id, user_id)
        if info is None:
            return False
        revoked = self._revoke_tokens(info, by_admin=False)
        self.repository.delete_authz_info(info.authorization_id)
        _LOG.info(
            "User revoked consent authorization_id=%s**** client_id=%s tokens=%d",
            info.authorization_id[:6],
            client_id,
            revoked,
        )
        return True

    def suspend_client(self, client_id: str) -> int:
        """Administrative suspension; returns the number of revoked access tokens."""
        client = self.repository.get_client_info_by_id(client_id)
        if client is None:
            raise ClientNotFoundError(client_id)
        # status first so concurrent validations already fail
        self.repository.save_client_info(client.suspended())

        revoked = 0
        for info in self.repository.list_authz_infos_for_client(client_id):
            # no code can be redeemed once the record is suspended
            self.repository.modify_authz_info(
                info.authorization_id, AuthorizationInfo.suspended
            )
            revoked += self._revoke_tokens(info, by_admin=True)
        _LOG.warning("Suspended client_id=%s, revoked %d access tokens", client_id, revoked)
        return revoked

    def reinstate_client(self, client_id: str) -> ClientInfo:
        """Publish a suspended client again under a new revision."""
        client = self.repository.get_client_info_by_id(client_id)
        if client is None:
            raise ClientNotFoundError(client_id)
        reinstated = client.reinstated()
        self.repository.save_client_info(reinstated)
        _LOG.info(
            "Reinstated client_id=%s at revision %d", client_id, reinstated.authz_revision
        )
        return reinstated

    # ------------------------------------------------------------------ #
    # Maintenance                                                        #
    # ------------------------------------------------------------------ #
    def purge_expired_codes(self) -> int:
        """Drop expired codes from storage; validity never depends on this."""
        removed = self.repository.cleanup_expired_codes(self.clock())
        if removed:
            _LOG.debug("Purged %d expired authorization codes", removed)
        return removed

    # ---------------- internal helpers --------------------------------- #
    def _revoke_tokens(self, info: AuthorizationInfo, *, by_admin: bool) -> int:
        count = 0
        for token in self.repository.list_access_token_infos(info.authorization_id):
            if token.state.is_terminal:
                continue
            revoked = token.revoke_by_admin() if by_admin else token.revoke_by_user()
            self.repository.update_access_token_info(revoked)
            count += 1
        return count

    def _persist_transition(self, before: AccessTokenInfo, after: AccessTokenInfo) -> None:
        self.repository.update_access_token_info(after)
        _LOG.debug(
            "Access token %s moved %s -> %s",
            mask_sensitive(before.token),
            before.state.value,
            after.state.value,
        )

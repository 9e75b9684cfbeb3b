"""Authorization code issuance and redirect construction (RFC 6749 §4.1.2)."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Mapping
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from authz_engine.grants.clock import Clock, default_clock
from authz_engine.grants.codes import code_expiration, generate_authorization_code
from authz_engine.grants.errors import RepositoryError
from authz_engine.grants.models import (
    AuthorizationInfo,
    ClientInfo,
    new_authorization_id,
)
from authz_engine.grants.store import AuthzInfoRepository
from authz_engine.grants.validator import AuthorizationRequest

_LOG = logging.getLogger("authz-engine.grants.issuer")


def build_redirect_uri(endpoint: str, params: Mapping[str, str]) -> str:
    """Return *endpoint* with *params* appended to its query string.

    Existing query parameters are preserved in order; a parameter of the same
    name is replaced rather than duplicated.  The input string is never
    modified, a new URL is always returned.
    """
    parts = urlsplit(endpoint)
    query = [(k, v) for k, v in parse_qsl(parts.query, keep_blank_values=True) if k not in params]
    query.extend(params.items())
    return urlunsplit((parts.scheme, parts.netloc, parts.path, urlencode(query), ""))


@dataclass(frozen=True, slots=True)
class IssuedGrant:
    """A persisted authorization record together with the redirect to send."""

    info: AuthorizationInfo
    redirect_uri: str

    @property
    def code(self) -> str:
        return self.info.authz_code or ""


class AuthorizationGrantIssuer:
    """Mint authorization codes and persist them before handing them out."""

    def __init__(self, repository: AuthzInfoRepository, *, clock: Clock = default_clock) -> None:
        self.repository = repository
        self.clock = clock

    def issue(
        self,
        request: AuthorizationRequest,
        *,
        user_id: str,
        client: ClientInfo,
        existing: AuthorizationInfo | None = None,
    ) -> IssuedGrant:
        """Issue a code for an already validated *request*.

        When *existing* is given its outstanding code (if any) is replaced and
        the granted scope is extended with the requested one; otherwise a new
        record is inserted.  The code is only returned once the repository
        accepted the write.

        Raises
        ------
        RepositoryError
            If the record could not be persisted.
        """
        issued_at = self.clock()
        code = generate_authorization_code()
        expiration = code_expiration(issued_at)

        if existing is None:
            info = AuthorizationInfo(
                authorization_id=new_authorization_id(),
                client_id=client.client_id,
                user_id=user_id,
                scope=(),
                redirect_uri=request.redirect_uri,
                authz_revision=client.authz_revision,
                created_at=issued_at,
            ).with_new_code(
                code,
                expiration,
                scope=request.scope,
                redirect_uri=request.redirect_uri,
                authz_revision=client.authz_revision,
            )
            self.repository.insert_authz_info(info)
        else:

            def _reissue(current: AuthorizationInfo) -> AuthorizationInfo:
                return current.with_new_code(
                    code,
                    expiration,
                    scope=set(current.scope) | set(request.scope),
                    redirect_uri=request.redirect_uri,
                    authz_revision=client.authz_revision,
                )

            reissued = self.repository.modify_authz_info(existing.authorization_id, _reissue)
            if reissued is None:
                # revoked while the request was in flight
                raise RepositoryError(
                    f"authorization {existing.authorization_id[:6]} no longer exists"
                )
            info = reissued

        _LOG.info(
            "Issued authorization code for authorization_id=%s**** client_id=%s",
            info.authorization_id[:6],
            client.client_id,
        )
        redirect_uri = build_redirect_uri(
            request.redirect_uri, {"code": code, "state": request.state}
        )
        return IssuedGrant(info=info, redirect_uri=redirect_uri)

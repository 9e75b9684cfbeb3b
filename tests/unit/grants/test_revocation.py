"""Unit tests for the user, admin and revision revocation paths.

Coverage:
* Scenario E – a token surviving admin revocation fails on revision
* Scenario F – user revocation kills refresh and the authorization record
* Suspension cascades to every authorization of the client
* Codes outstanding at suspension never become redeemable again
* Expiry is reported before revocation
"""

from __future__ import annotations

from pathlib import Path
from typing import Callable
from urllib.parse import parse_qs, urlsplit

import pytest

from authz_engine.grants.config import EngineConfig
from authz_engine.grants.errors import ClientNotFoundError, TokenRequestError, TokenValidationError
from authz_engine.grants.models import AccessTokenInfo, AuthorizationInfo, ClientInfo, TokenGrant, TokenState
from authz_engine.grants.service import AuthorizationService
from authz_engine.grants.store import DiskAuthzRepository
from authz_engine.grants.validator import AuthorizationRequest

CLIENT_ID = "tpp-001"
REDIRECT_URI = "https://tpp.example.com/callback"

MakeRequest = Callable[..., AuthorizationRequest]


def _issue_code(service: AuthorizationService, make_request: MakeRequest) -> str:
    outcome = service.authorize(make_request(), user_id="alice", consent=True)
    return parse_qs(urlsplit(outcome.redirect_uri).query)["code"][0]  # type: ignore[arg-type]


def _login_and_exchange(
    service: AuthorizationService, make_request: MakeRequest, user_id: str = "alice"
) -> TokenGrant:
    outcome = service.authorize(make_request(), user_id=user_id, consent=True)
    code = parse_qs(urlsplit(outcome.redirect_uri).query)["code"][0]  # type: ignore[arg-type]
    return service.exchange_code(client_id=CLIENT_ID, code=code, redirect_uri=REDIRECT_URI)


def _reason(service: AuthorizationService, token: str) -> str:
    with pytest.raises(TokenValidationError) as exc_info:
        service.validate_access_token(token)
    return exc_info.value.reason


# --------------------------------------------------------------------------- #
# User revocation                                                             #
# --------------------------------------------------------------------------- #
def test_scenario_f_user_revocation(
    service: AuthorizationService, store: DiskAuthzRepository, make_request: MakeRequest
) -> None:
    grant = _login_and_exchange(service, make_request)
    authorization_id = store.get_access_token_info(grant.access_token).authorization_id  # type: ignore[union-attr]

    assert service.revoke_consent(client_id=CLIENT_ID, user_id="alice") is True

    with pytest.raises(TokenRequestError) as exc_info:
        service.refresh_access_token(client_id=CLIENT_ID, refresh_token=grant.refresh_token)  # type: ignore[arg-type]
    assert exc_info.value.error == "invalid_grant"
    assert store.get_authz_info_by_id(authorization_id) is None
    assert _reason(service, grant.access_token) == "token_revoked"
    assert store.get_access_token_info(grant.access_token).state is TokenState.USER_REVOKED  # type: ignore[union-attr]


def test_revoke_without_grant(service: AuthorizationService) -> None:
    assert service.revoke_consent(client_id=CLIENT_ID, user_id="nobody") is False


def test_revocation_requires_fresh_consent(
    service: AuthorizationService, make_request: MakeRequest
) -> None:
    _login_and_exchange(service, make_request)
    service.revoke_consent(client_id=CLIENT_ID, user_id="alice")
    assert service.authorize(make_request(), user_id="alice").consent_required is True


# --------------------------------------------------------------------------- #
# Admin suspension / reinstatement                                            #
# --------------------------------------------------------------------------- #
def test_suspension_revokes_all_tokens_of_client(
    service: AuthorizationService, store: DiskAuthzRepository, make_request: MakeRequest
) -> None:
    alice = _login_and_exchange(service, make_request, "alice")
    bob = _login_and_exchange(service, make_request, "bob")

    assert service.suspend_client(CLIENT_ID) == 2

    assert store.get_client_info_by_id(CLIENT_ID).status == "suspended"  # type: ignore[union-attr]
    for grant in (alice, bob):
        assert _reason(service, grant.access_token) == "token_revoked"
        assert store.get_access_token_info(grant.access_token).state is TokenState.ADMIN_REVOKED  # type: ignore[union-attr]
    for info in store.list_authz_infos_for_client(CLIENT_ID):
        assert info.is_refresh_token_valid() is False


def test_refresh_fails_after_reinstatement(
    service: AuthorizationService, make_request: MakeRequest
) -> None:
    grant = _login_and_exchange(service, make_request)
    service.suspend_client(CLIENT_ID)
    service.reinstate_client(CLIENT_ID)
    with pytest.raises(TokenRequestError) as exc_info:
        service.refresh_access_token(client_id=CLIENT_ID, refresh_token=grant.refresh_token)  # type: ignore[arg-type]
    assert exc_info.value.error == "invalid_grant"


def test_scenario_e_survivor_fails_on_revision(
    service: AuthorizationService, store: DiskAuthzRepository, clock, make_request: MakeRequest  # noqa: ANN001
) -> None:
    grant = _login_and_exchange(service, make_request)
    authz = store.get_authz_info_for_access_token(CLIENT_ID, "alice")
    assert authz is not None

    service.suspend_client(CLIENT_ID)
    # a token minted concurrently with the suspension escapes the revocation sweep
    survivor = AccessTokenInfo.issue(
        token="survivor", authorization=authz, expires_in=3600, clock=clock
    ).activate()
    store.insert_access_token_info(survivor)

    reinstated = service.reinstate_client(CLIENT_ID)
    assert reinstated.status == "published"
    assert reinstated.authz_revision == 1

    # unexpired and never revoked, yet stale
    assert _reason(service, "survivor") == "revision_invalid"
    assert _reason(service, grant.access_token) == "token_revoked"


def test_reauthorization_after_reinstatement_gets_fresh_tokens(
    service: AuthorizationService, make_request: MakeRequest
) -> None:
    old = _login_and_exchange(service, make_request)
    service.suspend_client(CLIENT_ID)
    service.reinstate_client(CLIENT_ID)

    new = _login_and_exchange(service, make_request)
    assert new.refresh_token != old.refresh_token
    assert service.is_access_token_valid(new.access_token)
    assert service.refresh_access_token(client_id=CLIENT_ID, refresh_token=new.refresh_token)  # type: ignore[arg-type]


def test_admin_operations_on_unknown_client(service: AuthorizationService) -> None:
    with pytest.raises(ClientNotFoundError):
        service.suspend_client("ghost")
    with pytest.raises(ClientNotFoundError):
        service.reinstate_client("ghost")


# --------------------------------------------------------------------------- #
# Outstanding codes across suspension                                         #
# --------------------------------------------------------------------------- #
def _exchange_error(service: AuthorizationService, code: str) -> str:
    with pytest.raises(TokenRequestError) as exc_info:
        service.exchange_code(client_id=CLIENT_ID, code=code, redirect_uri=REDIRECT_URI)
    return exc_info.value.error


def test_code_issued_before_suspension_is_dead_after_reinstatement(
    service: AuthorizationService, store: DiskAuthzRepository, make_request: MakeRequest
) -> None:
    code = _issue_code(service, make_request)
    service.suspend_client(CLIENT_ID)
    assert store.get_authz_info_by_code(code) is None

    service.reinstate_client(CLIENT_ID)
    assert _exchange_error(service, code) == "invalid_grant"


def test_code_from_previous_revision_is_discarded(
    service: AuthorizationService,
    store: DiskAuthzRepository,
    client: ClientInfo,
    make_request: MakeRequest,
) -> None:
    code = _issue_code(service, make_request)
    store.save_client_info(client.reinstated())

    assert _exchange_error(service, code) == "invalid_grant"
    assert store.get_authz_info_by_code(code) is None


class _InterleavingStore(DiskAuthzRepository):
    """Runs ``after_list`` once, right after a client's records were listed."""

    after_list: Callable[[], None] | None = None

    def list_authz_infos_for_client(self, client_id: str) -> list[AuthorizationInfo]:
        infos = super().list_authz_infos_for_client(client_id)
        hook, self.after_list = self.after_list, None
        if hook is not None:
            hook()
        return infos


def test_redemption_during_suspension_stays_single_use(
    tmp_path: Path, config: EngineConfig, clock, make_request: MakeRequest  # noqa: ANN001
) -> None:
    store = _InterleavingStore(base_dir=tmp_path / "interleaved")
    store.save_client_info(ClientInfo(client_id=CLIENT_ID, redirect_uris=(REDIRECT_URI,)))
    service = AuthorizationService(store, config=config, clock=clock)
    code = _issue_code(service, make_request)
    redeemed: list[AuthorizationInfo | None] = []

    def _redeem_now() -> None:
        info = store.get_authz_info_by_code(code)
        assert info is not None
        token = AccessTokenInfo.issue(
            token="raced", authorization=info, expires_in=3600, clock=clock
        ).activate()
        redeemed.append(store.redeem_authz_code(code, access_token=token, refresh_token="rt-raced"))

    store.after_list = _redeem_now
    assert service.suspend_client(CLIENT_ID) == 1

    assert redeemed[0] is not None
    assert store.get_authz_info_by_code(code) is None
    authz = store.get_authz_info_for_access_token(CLIENT_ID, "alice")
    assert authz is not None and authz.authz_code is None
    assert authz.is_refresh_token_valid() is False
    assert store.get_access_token_info("raced").state is TokenState.ADMIN_REVOKED  # type: ignore[union-attr]

    service.reinstate_client(CLIENT_ID)
    assert _exchange_error(service, code) == "invalid_grant"


# --------------------------------------------------------------------------- #
# Check order                                                                 #
# --------------------------------------------------------------------------- #
def test_expiry_reported_before_user_revocation(
    service: AuthorizationService, store: DiskAuthzRepository, clock, make_request: MakeRequest  # noqa: ANN001
) -> None:
    grant = _login_and_exchange(service, make_request)
    service.revoke_consent(client_id=CLIENT_ID, user_id="alice")
    clock.advance(3601)

    assert _reason(service, grant.access_token) == "token_expired"
    # terminal state is kept
    assert store.get_access_token_info(grant.access_token).state is TokenState.USER_REVOKED  # type: ignore[union-attr]


def test_expiry_reported_before_admin_revocation(
    service: AuthorizationService, clock, make_request: MakeRequest  # noqa: ANN001
) -> None:
    grant = _login_and_exchange(service, make_request)
    service.suspend_client(CLIENT_ID)
    clock.advance(3600)
    assert _reason(service, grant.access_token) == "token_expired"

"""Unit tests for the GET /authorize endpoint."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import patch
from urllib.parse import parse_qs, urlencode, urlsplit

import httpx
import pytest

from authz_engine.grants.config import EngineConfig
from authz_engine.grants.models import ClientInfo
from authz_engine.grants.service import AuthorizationOutcome, AuthorizationService
from authz_engine.grants.store import DiskAuthzRepository
from authz_engine.servers import create_app

# --------------------------------------------------------------------------- #
# Constants                                                                   #
# --------------------------------------------------------------------------- #
CLIENT_ID = "tpp-001"
REDIRECT_URI = "https://tpp.example.com/callback"
USER_HEADER = "X-Authenticated-User"


def _authorize_path(**overrides: str) -> str:
    params = {
        "response_type": "code",
        "client_id": CLIENT_ID,
        "state": "xyz",
        "redirect_uri": REDIRECT_URI,
        "scope": "openid profile",
    }
    params.update(overrides)
    return f"/authorize?{urlencode(params)}"


# --------------------------------------------------------------------------- #
# Fixtures                                                                    #
# --------------------------------------------------------------------------- #
@pytest.fixture()
def service(tmp_path: Path) -> AuthorizationService:
    store = DiskAuthzRepository(base_dir=tmp_path)
    store.save_client_info(ClientInfo(client_id=CLIENT_ID, redirect_uris=(REDIRECT_URI,)))
    return AuthorizationService(store, config=EngineConfig(storage_dir=tmp_path))


@pytest.fixture()
async def client(service: AuthorizationService):
    """Async HTTP client bound to the Starlette app."""
    transport = httpx.ASGITransport(app=create_app(service))
    async with httpx.AsyncClient(
        transport=transport, base_url="http://test", headers={USER_HEADER: "alice"}
    ) as ac:
        yield ac


# --------------------------------------------------------------------------- #
# Tests                                                                       #
# --------------------------------------------------------------------------- #
@pytest.mark.anyio
async def test_healthz(client: httpx.AsyncClient) -> None:
    resp = await client.get("/healthz")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok"}


@pytest.mark.anyio
async def test_login_required(client: httpx.AsyncClient) -> None:
    resp = await client.get(_authorize_path(), headers={USER_HEADER: ""})
    assert resp.status_code == 401
    assert resp.json() == {"error": "login_required"}


@pytest.mark.anyio
async def test_consent_prompt_then_code_redirect(client: httpx.AsyncClient) -> None:
    resp = await client.get(_authorize_path())
    assert resp.status_code == 200
    assert resp.json() == {
        "consent_required": True,
        "client_id": CLIENT_ID,
        "scope": ["openid", "profile"],
    }

    resp = await client.get(_authorize_path(consent="approve"))
    assert resp.status_code == 302
    location = resp.headers["location"]
    assert location.startswith(REDIRECT_URI)
    params = parse_qs(urlsplit(location).query)
    assert set(params) == {"code", "state"}
    assert params["state"] == ["xyz"]


@pytest.mark.anyio
async def test_denied_consent_redirects_access_denied(client: httpx.AsyncClient) -> None:
    resp = await client.get(_authorize_path(consent="deny"))
    assert resp.status_code == 302
    params = parse_qs(urlsplit(resp.headers["location"]).query)
    assert params == {"error": ["access_denied"], "state": ["xyz"]}


@pytest.mark.anyio
async def test_unsupported_response_type_redirected(client: httpx.AsyncClient) -> None:
    resp = await client.get(_authorize_path(response_type="token"))
    assert resp.status_code == 302
    params = parse_qs(urlsplit(resp.headers["location"]).query)
    assert params == {"error": ["unsupported_response_type"], "state": ["xyz"]}


@pytest.mark.anyio
async def test_unregistered_redirect_answered_directly(client: httpx.AsyncClient) -> None:
    resp = await client.get(_authorize_path(redirect_uri="https://evil.example/cb"))
    assert resp.status_code == 400
    body = resp.json()
    assert body["error"] == "invalid_request"
    assert body["state"] == "xyz"
    assert "location" not in resp.headers


@pytest.mark.anyio
async def test_bad_consent_value(client: httpx.AsyncClient) -> None:
    resp = await client.get(_authorize_path(consent="maybe"))
    assert resp.status_code == 400


@pytest.mark.anyio
async def test_correlation_id_propagated(client: httpx.AsyncClient) -> None:
    resp = await client.get("/healthz", headers={"X-Correlation-ID": "corr-123"})
    assert resp.headers["X-Correlation-ID"] == "corr-123"
    resp = await client.get("/healthz")
    assert len(resp.headers["X-Correlation-ID"]) == 32


@pytest.mark.anyio
async def test_outcome_without_error_or_redirect_is_server_error(
    client: httpx.AsyncClient, service: AuthorizationService
) -> None:
    with patch.object(service, "authorize", return_value=AuthorizationOutcome()):
        resp = await client.get(_authorize_path())
    assert resp.status_code == 400
    assert resp.json() == {"error": "server_error", "state": "xyz"}

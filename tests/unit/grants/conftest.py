"""Shared fixtures for grant engine unit tests."""

from __future__ import annotations

from pathlib import Path
from typing import Callable

import pytest

from authz_engine.grants.config import EngineConfig
from authz_engine.grants.models import ClientInfo
from authz_engine.grants.service import AuthorizationService
from authz_engine.grants.store import DiskAuthzRepository
from authz_engine.grants.validator import AuthorizationRequest

CLIENT_ID = "tpp-001"
REDIRECT_URI = "https://tpp.example.com/callback"
USER_ID = "alice"


class FakeClock:
    """Manually advanced clock returning a fixed UNIX timestamp."""

    def __init__(self, now: float = 1_700_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def config(tmp_path: Path) -> EngineConfig:
    return EngineConfig(access_token_ttl=3600, storage_dir=tmp_path)


@pytest.fixture()
def store(tmp_path: Path) -> DiskAuthzRepository:
    """Return a temporary DiskAuthzRepository rooted at *tmp_path*."""
    return DiskAuthzRepository(base_dir=tmp_path, token_ttl=3600)


@pytest.fixture()
def client(store: DiskAuthzRepository) -> ClientInfo:
    info = ClientInfo(client_id=CLIENT_ID, redirect_uris=(REDIRECT_URI,))
    store.save_client_info(info)
    return info


@pytest.fixture()
def service(
    store: DiskAuthzRepository, config: EngineConfig, clock: FakeClock, client: ClientInfo
) -> AuthorizationService:
    return AuthorizationService(store, config=config, clock=clock)


@pytest.fixture()
def make_request() -> Callable[..., AuthorizationRequest]:
    """Factory for a valid request; keyword arguments override fields."""

    def _make(**overrides: object) -> AuthorizationRequest:
        fields: dict[str, object] = {
            "response_type": "code",
            "client_id": CLIENT_ID,
            "state": "af0ifjsldkj",
            "redirect_uri": REDIRECT_URI,
            "scope": ("openid", "profile"),
        }
        fields.update(overrides)
        return AuthorizationRequest(**fields)  # type: ignore[arg-type]

    return _make

"""Starlette application exposing the authorization endpoint."""

from __future__ import annotations

import logging

from starlette.applications import Starlette
from starlette.middleware import Middleware
from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.routing import Route

from authz_engine.grants.config import EngineConfig
from authz_engine.grants.service import AuthorizationService
from authz_engine.servers.authorize import authorize_routes
from authz_engine.servers.correlation import CorrelationIdMiddleware

logger = logging.getLogger("authz-engine.servers.app")


async def health_check(request: Request) -> JSONResponse:
    return JSONResponse({"status": "ok"})


def create_app(
    service: AuthorizationService | None = None,
    *,
    config: EngineConfig | None = None,
) -> Starlette:
    """Build the ASGI app; *service* defaults to one backed by the disk store."""
    cfg = config or (service.config if service else EngineConfig.from_env())
    svc = service or AuthorizationService(config=cfg)
    routes = [
        Route("/healthz", health_check, methods=["GET"]),
        *authorize_routes(svc, user_header=cfg.user_header),
    ]
    logger.info("Authorization endpoint ready (user header %s)", cfg.user_header)
    return Starlette(routes=routes, middleware=[Middleware(CorrelationIdMiddleware)])

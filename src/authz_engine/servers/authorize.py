"""Authorization endpoint (RFC 6749 §3.1) on top of ``AuthorizationService``.

Handlers are intentionally thin:

1. Parse HTTP-layer parameters into an ``AuthorizationRequest``.
2. Delegate every decision to ``AuthorizationService``.
3. Return an appropriate Starlette ``Response`` type.

The logged-in user is taken from a header set by the login front-end (see
``EngineConfig.user_header``); authenticating users is not this module's job.

SECURITY NOTE
-------------
• Authorization codes and ``state`` values are never logged.
• Errors are only redirected to endpoints registered for the client; anything
  else is answered with a 400 JSON body to avoid an open redirector.

This module is HTTP-only and MUST remain free from business logic.
"""

from __future__ import annotations

import logging

from starlette.requests import Request
from starlette.responses import JSONResponse, RedirectResponse, Response
from starlette.routing import Route

from authz_engine.grants.errors import AuthorizationError
from authz_engine.grants.service import AuthorizationService
from authz_engine.grants.validator import AuthorizationRequest

_LOG = logging.getLogger("authz-engine.servers.authorize")

_CONSENT_VALUES: dict[str, bool] = {"approve": True, "deny": False}


def authorize_routes(service: AuthorizationService, *, user_header: str) -> list[Route]:
    """Return the routes serving the authorization endpoint."""

    # ----- GET /authorize ------------------------------------------------ #
    async def _authorize(request: Request) -> Response:  # noqa: D401
        correlation_id = getattr(request.state, "correlation_id", None)
        user_id = (request.headers.get(user_header) or "").strip()
        if not user_id:
            return JSONResponse({"error": "login_required"}, status_code=401)

        consent_raw = request.query_params.get("consent")
        if consent_raw is not None and consent_raw not in _CONSENT_VALUES:
            return JSONResponse(
                {"error": "invalid_request", "error_description": "unknown consent value"},
                status_code=400,
            )
        consent = _CONSENT_VALUES.get(consent_raw) if consent_raw else None

        authz_request = AuthorizationRequest.from_query(request.query_params)
        outcome = service.authorize(
            authz_request,
            user_id=user_id,
            consent=consent,
            correlation_id=correlation_id,
        )

        if outcome.consent_required:
            return JSONResponse(
                {
                    "consent_required": True,
                    "client_id": authz_request.client_id,
                    "scope": list(outcome.scope),
                }
            )

        if outcome.redirect_uri is None:
            error = outcome.error or AuthorizationError("server_error", state=authz_request.state)
            _LOG.info(
                "Authorization error %s not redirected correlation_id=%s",
                error.error,
                correlation_id or "-",
            )
            return JSONResponse(error.to_payload(), status_code=400)

        _LOG.info(
            "Authorization %s client_id=%s correlation_id=%s",
            outcome.error.error if outcome.error else "granted",
            authz_request.client_id,
            correlation_id or "-",
        )
        return RedirectResponse(outcome.redirect_uri, status_code=302)

    return [Route("/authorize", _authorize, methods=["GET"])]

"""Structured logging helpers for the grant engine.

This module restricts **which** contextual attributes are attached to log
records in order to avoid accidentally leaking secrets.  The adapter ONLY
injects the following *non-sensitive* fields:

- ``authorization_id`` – the AuthorizationInfo identifier (first 6 chars kept)
- ``client_id``        – the OAuth client the operation acts for
- ``correlation_id``   – request correlation identifier set by the HTTP layer

Authorization codes, access tokens and refresh tokens are never passed to the
adapter; call sites that need to reference one use :func:`mask_sensitive`.

Usage
-----
>>> from authz_engine.grants.log_utils import get_authz_logger
>>> log = get_authz_logger(
...     base_logger_name="authz-engine.grants.service",
...     authorization_id="0f4c8d2e9b7a4c1d",
...     client_id="tpp-001",
... )
>>> log.info("Issued authorization code")
INFO authz-engine.grants.service authorization_id=0f4c8d client_id=tpp-001 ...
"""

from __future__ import annotations

import logging
from typing import Any, Mapping, MutableMapping


def mask_sensitive(value: str | None, keep: int = 4) -> str:
    """Return *value* with everything but the first *keep* characters masked."""
    if not value:
        return "<empty>"
    if len(value) <= keep:
        return "*" * len(value)
    return f"{value[:keep]}{'*' * 4}"


class _AuthzLoggerAdapter(logging.LoggerAdapter):
    """Inject whitelisted grant context into log records."""

    extra_keys = ("authorization_id", "client_id", "correlation_id")

    def __init__(self, logger: logging.Logger, extra: Mapping[str, Any] | None = None):
        extra_clean: MutableMapping[str, Any] = {}
        for k in self.extra_keys:
            if not extra or extra.get(k) is None:
                continue
            if k == "authorization_id":
                extra_clean[k] = str(extra[k])[:6]
            else:
                extra_clean[k] = extra[k]
        super().__init__(logger, extra_clean)

    def process(self, msg: str, kwargs: MutableMapping[str, Any]):
        if "extra" not in kwargs or kwargs["extra"] is None:
            kwargs["extra"] = {}
        # merge but do not overwrite call-site provided extras
        for k, v in self.extra.items():
            kwargs["extra"].setdefault(k, v)
        return msg, kwargs


def get_authz_logger(
    *,
    base_logger_name: str = "authz-engine.grants",
    authorization_id: str | None = None,
    client_id: str | None = None,
    correlation_id: str | None = None,
) -> logging.LoggerAdapter:
    """Return a LoggerAdapter pre-filled with grant context."""
    logger = logging.getLogger(base_logger_name)
    return _AuthzLoggerAdapter(
        logger,
        {
            "authorization_id": authorization_id,
            "client_id": client_id,
            "correlation_id": correlation_id,
        },
    )

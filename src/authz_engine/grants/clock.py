"""Clock abstraction for testable time handling in the grant engine.

This module defines a `Clock` protocol representing callables that return the
current UNIX timestamp as ``float``.  Every expiry decision inside the
``authz_engine.grants`` package (code TTL, access-token TTL) MUST depend on an
injected ``Clock`` instance rather than calling ``time.time()`` directly.

Example
-------
>>> from authz_engine.grants.clock import default_clock
>>> now = default_clock()
>>> isinstance(now, float)
True
"""

from __future__ import annotations

import time
from typing import Protocol, runtime_checkable


@runtime_checkable
class Clock(Protocol):
    """Callable protocol returning *seconds* since the UNIX epoch."""

    def __call__(self) -> float: ...


def default_clock() -> float:
    """Default implementation that delegates to ``time.time()``."""
    return time.time()


def fixed_clock(now: float) -> Clock:
    """Return a clock frozen at *now* (handy for tests and replays)."""
    return lambda now=now: now

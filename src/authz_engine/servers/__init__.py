"""HTTP adapter for the grant engine."""

from .app import create_app  # noqa: F401

__all__ = ["create_app"]

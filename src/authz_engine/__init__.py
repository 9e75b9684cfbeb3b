"""OAuth 2.0 Authorization Code grant engine for authorization servers."""

__version__ = "0.1.0"

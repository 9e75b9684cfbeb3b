"""Catalog of scope identifiers recognised by this authorization server."""

from __future__ import annotations

from typing import Final, Iterable, Iterator


class ScopeCatalog:
    """Immutable, ordered set of recognised scope identifiers.

    The order carries no precedence; it only gives the catalog a stable
    identity list for metadata documents and logs.
    """

    __slots__ = ("_identifiers", "_members")

    def __init__(self, identifiers: Iterable[str]) -> None:
        ordered: list[str] = []
        for ident in identifiers:
            if not ident or " " in ident:
                raise ValueError(f"invalid scope identifier: {ident!r}")
            if ident not in ordered:
                ordered.append(ident)
        self._identifiers: tuple[str, ...] = tuple(ordered)
        self._members: frozenset[str] = frozenset(ordered)

    @property
    def identifiers(self) -> tuple[str, ...]:
        return self._identifiers

    def supports(self, requested: Iterable[str]) -> bool:
        """Return *True* iff every requested identifier is in the catalog.

        An empty request is vacuously supported.  A request with more entries
        than the catalog can never be satisfied and is rejected up front.
        """
        items = list(requested)
        if len(items) > len(self._identifiers):
            return False
        return all(item in self._members for item in items)

    def __contains__(self, item: object) -> bool:
        return item in self._members

    def __iter__(self) -> Iterator[str]:
        return iter(self._identifiers)

    def __len__(self) -> int:
        return len(self._identifiers)

    def __repr__(self) -> str:
        return f"ScopeCatalog({list(self._identifiers)!r})"


OIDC_SCOPES: Final[tuple[str, ...]] = (
    "openid",
    "profile",
    "email",
    "address",
    "phone",
    "offline_access",
)
FAPI_SCOPES: Final[tuple[str, ...]] = ("read", "write")
OPEN_BANKING_SCOPES: Final[tuple[str, ...]] = (
    "accounts",
    "payments",
    "fundsconfirmations",
)

DEFAULT_SCOPE_CATALOG: Final[ScopeCatalog] = ScopeCatalog(
    OIDC_SCOPES + FAPI_SCOPES + OPEN_BANKING_SCOPES
)

"""Persistence boundary for the grant engine.

This module introduces the *narrow* repository contract
(:class:`AuthzInfoRepository`) and a reference implementation
(:class:`DiskAuthzRepository`) that splits records the way production
deployments do:

* **Durable records** (authorization infos, clients) are JSON files written
  with *temp-file + os.replace*.
* **Ephemeral access tokens** live in a bounded :class:`cachetools.TTLCache`;
  eviction is storage hygiene only, validity is always decided by the domain.

Concurrency guarantees
----------------------
* Code redemption claims the code's index entry with an atomic ``os.replace``;
  exactly one concurrent caller wins, the others get ``None``.
* Mutations of one authorization record are serialised by an advisory
  ``O_EXCL`` lock file.
* The token cache is guarded by a re-entrant lock.

Externally supplied identifiers (client ids, user ids, secrets) are hashed
before they hit the filesystem; codes and refresh tokens are indexed by their
SHA-256 digest only.
"""

from __future__ import annotations

import json
import os
import threading
import time
from contextlib import contextmanager
from dataclasses import replace
from hashlib import sha256
from pathlib import Path
from typing import Callable, Iterator, Protocol, runtime_checkable

from cachetools import TTLCache

from authz_engine.grants.config import EngineConfig
from authz_engine.grants.errors import DuplicateRecordError, RepositoryError
from authz_engine.grants.models import AccessTokenInfo, AuthorizationInfo, ClientInfo

# --------------------------------------------------------------------------- #
# helpers                                                                     #
# --------------------------------------------------------------------------- #


def _hash(text: str, length: int = 32) -> str:
    return sha256(text.encode()).hexdigest()[:length]


def _atomic_write(path: Path, data: dict) -> None:
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_suffix(f"{path.suffix}.{threading.get_ident()}.tmp")
        with tmp.open("w", encoding="utf-8") as fh:
            json.dump(data, fh, separators=(",", ":"), sort_keys=True)
        os.replace(tmp, path)  # atomic on POSIX
    except OSError as exc:
        raise RepositoryError(f"write failed for {path.name}") from exc


def _read_json(path: Path) -> dict | None:
    try:
        with path.open(encoding="utf-8") as fh:
            return json.load(fh)
    except FileNotFoundError:
        return None
    except (OSError, ValueError) as exc:
        raise RepositoryError(f"read failed for {path.name}") from exc


def _unlink(path: Path) -> None:
    try:
        path.unlink(missing_ok=True)
    except OSError as exc:
        raise RepositoryError(f"delete failed for {path.name}") from exc


@contextmanager
def _file_lock(lock_path: Path, retries: int = 50, delay: float = 0.02) -> Iterator[None]:
    """Advisory file lock using ``os.O_EXCL`` temp-file creation."""
    lock_path.parent.mkdir(parents=True, exist_ok=True)
    for attempt in range(retries + 1):
        try:
            fd = os.open(lock_path, os.O_CREAT | os.O_EXCL | os.O_RDWR)
            os.close(fd)
            break
        except FileExistsError:
            if attempt == retries:
                raise RepositoryError(f"could not acquire lock {lock_path.name}") from None
            time.sleep(delay)
    try:
        yield
    finally:
        lock_path.unlink(missing_ok=True)


# --------------------------------------------------------------------------- #
# public interface                                                            #
# --------------------------------------------------------------------------- #


@runtime_checkable
class AuthzInfoRepository(Protocol):
    """Persistence contract consumed by the grant engine.

    Implementations raise :class:`~authz_engine.grants.errors.RepositoryError`
    (or a subclass) on storage failures and return ``None`` for misses.
    """

    # ----- authorization infos -------------------------------------------- #
    def get_authz_info_for_access_token(
        self, client_id: str, user_id: str
    ) -> AuthorizationInfo | None: ...
    def get_authz_info_by_id(self, authorization_id: str) -> AuthorizationInfo | None: ...
    def get_authz_info_by_code(self, code: str) -> AuthorizationInfo | None: ...
    def get_authz_info_by_refresh_token(
        self, refresh_token: str
    ) -> AuthorizationInfo | None: ...
    def list_authz_infos_for_client(self, client_id: str) -> list[AuthorizationInfo]: ...
    def insert_authz_info(self, info: AuthorizationInfo) -> None: ...
    def modify_authz_info(
        self,
        authorization_id: str,
        mutate: Callable[[AuthorizationInfo], AuthorizationInfo],
    ) -> AuthorizationInfo | None: ...
    def delete_authz_info(self, authorization_id: str) -> bool: ...

    # ----- code redemption ------------------------------------------------- #
    def redeem_authz_code(
        self,
        code: str,
        *,
        access_token: AccessTokenInfo,
        refresh_token: str,
    ) -> AuthorizationInfo | None: ...
    def clear_authz_code(self, authorization_id: str, code: str) -> bool: ...

    # ----- clients --------------------------------------------------------- #
    def get_client_info_by_id(self, client_id: str) -> ClientInfo | None: ...
    def save_client_info(self, client: ClientInfo) -> None: ...

    # ----- access tokens --------------------------------------------------- #
    def insert_access_token_info(self, info: AccessTokenInfo) -> None: ...
    def get_access_token_info(self, token: str) -> AccessTokenInfo | None: ...
    def update_access_token_info(self, info: AccessTokenInfo) -> None: ...
    def list_access_token_infos(self, authorization_id: str) -> list[AccessTokenInfo]: ...

    # ----- maintenance ----------------------------------------------------- #
    def cleanup_expired_codes(self, now: float) -> int: ...


# --------------------------------------------------------------------------- #
# Disk + cache implementation                                                 #
# --------------------------------------------------------------------------- #


class DiskAuthzRepository(AuthzInfoRepository):
    """JSON-file durable records plus an in-process TTL cache for tokens."""

    def __init__(
        self,
        base_dir: str | os.PathLike | None = None,
        *,
        token_ttl: int = 3600,
        token_cache_size: int = 100_000,
    ) -> None:
        self.base_dir = Path(
            base_dir or os.getenv("AUTHZ_STORAGE_DIR") or Path.home() / ".authz-engine" / "store"
        ).expanduser()
        self.base_dir.mkdir(parents=True, exist_ok=True)
        # Revoked/expired tombstones stay around a little longer than the
        # token itself so validation can still report *why* it failed.
        self._tokens: TTLCache[str, AccessTokenInfo] = TTLCache(
            maxsize=token_cache_size, ttl=token_ttl * 2
        )
        self._tokens_by_authz: dict[str, set[str]] = {}
        self._token_lock = threading.RLock()

    # ---------------- paths ---------------------------------------------- #
    def _authz_path(self, authorization_id: str) -> Path:
        return self.base_dir / "authz" / f"{_hash(authorization_id)}.json"

    def _authz_lock(self, authorization_id: str) -> Path:
        return self._authz_path(authorization_id).with_suffix(".lock")

    def _code_index(self, code: str) -> Path:
        return self.base_dir / "index" / "codes" / f"{_hash(code, 64)}.json"

    def _code_claimed(self, code: str) -> Path:
        return self.base_dir / "index" / "codes" / "claimed" / f"{_hash(code, 64)}.json"

    def _refresh_index(self, refresh_token: str) -> Path:
        return self.base_dir / "index" / "refresh" / f"{_hash(refresh_token, 64)}.json"

    def _client_user_dir(self, client_id: str) -> Path:
        return self.base_dir / "index" / "client-user" / _hash(client_id)

    def _client_user_index(self, client_id: str, user_id: str) -> Path:
        return self._client_user_dir(client_id) / f"{_hash(user_id)}.json"

    def _client_path(self, client_id: str) -> Path:
        return self.base_dir / "clients" / f"{_hash(client_id)}.json"

    def _client_lock(self, client_id: str) -> Path:
        return self._client_path(client_id).with_suffix(".lock")

    # ---------------- authorization infos -------------------------------- #
    def _load_authz(self, authorization_id: str) -> AuthorizationInfo | None:
        data = _read_json(self._authz_path(authorization_id))
        return AuthorizationInfo.from_dict(data) if data else None

    def _resolve_index(self, index_path: Path) -> AuthorizationInfo | None:
        data = _read_json(index_path)
        if not data:
            return None
        return self._load_authz(data["authorization_id"])

    def _write_indexes(
        self, info: AuthorizationInfo, previous: AuthorizationInfo | None
    ) -> None:
        ref = {"authorization_id": info.authorization_id}
        if previous and previous.authz_code and previous.authz_code != info.authz_code:
            _unlink(self._code_index(previous.authz_code))
        if previous and previous.refresh_token and previous.refresh_token != info.refresh_token:
            _unlink(self._refresh_index(previous.refresh_token))
        if info.authz_code:
            _atomic_write(self._code_index(info.authz_code), ref)
        if info.refresh_token:
            _atomic_write(self._refresh_index(info.refresh_token), ref)
        _atomic_write(self._client_user_index(info.client_id, info.user_id), ref)

    def get_authz_info_for_access_token(
        self, client_id: str, user_id: str
    ) -> AuthorizationInfo | None:
        return self._resolve_index(self._client_user_index(client_id, user_id))

    def get_authz_info_by_id(self, authorization_id: str) -> AuthorizationInfo | None:
        return self._load_authz(authorization_id)

    def get_authz_info_by_code(self, code: str) -> AuthorizationInfo | None:
        if not code:
            return None
        info = self._resolve_index(self._code_index(code))
        # The index may briefly outlive a replaced code.
        if info is None or info.authz_code != code:
            return None
        return info

    def get_authz_info_by_refresh_token(
        self, refresh_token: str
    ) -> AuthorizationInfo | None:
        if not refresh_token:
            return None
        info = self._resolve_index(self._refresh_index(refresh_token))
        if info is None or info.refresh_token != refresh_token:
            return None
        return info

    def list_authz_infos_for_client(self, client_id: str) -> list[AuthorizationInfo]:
        index_dir = self._client_user_dir(client_id)
        if not index_dir.exists():
            return []
        infos: list[AuthorizationInfo] = []
        for p in sorted(index_dir.glob("*.json")):
            info = self._resolve_index(p)
            if info is not None and info.client_id == client_id:
                infos.append(info)
        return infos

    def insert_authz_info(self, info: AuthorizationInfo) -> None:
        with _file_lock(self._authz_lock(info.authorization_id)):
            if self._authz_path(info.authorization_id).exists():
                raise DuplicateRecordError(
                    f"authorization {info.authorization_id[:6]} already exists"
                )
            if self._client_user_index(info.client_id, info.user_id).exists():
                raise DuplicateRecordError("client/user pair already authorized")
            _atomic_write(self._authz_path(info.authorization_id), info.to_dict())
            self._write_indexes(info, None)

    def modify_authz_info(
        self,
        authorization_id: str,
        mutate: Callable[[AuthorizationInfo], AuthorizationInfo],
    ) -> AuthorizationInfo | None:
        """Read-modify-write one record while holding its lock.

        *mutate* receives the current record and returns its replacement.
        Returns the stored record, or ``None`` when it does not exist.
        """
        with _file_lock(self._authz_lock(authorization_id)):
            previous = self._load_authz(authorization_id)
            if previous is None:
                return None
            updated = mutate(previous)
            if updated.authorization_id != authorization_id:
                raise RepositoryError("mutation must not change the authorization id")
            if updated != previous:
                _atomic_write(self._authz_path(authorization_id), updated.to_dict())
                self._write_indexes(updated, previous)
        return updated

    def delete_authz_info(self, authorization_id: str) -> bool:
        with _file_lock(self._authz_lock(authorization_id)):
            info = self._load_authz(authorization_id)
            if info is None:
                return False
            if info.authz_code:
                _unlink(self._code_index(info.authz_code))
            if info.refresh_token:
                _unlink(self._refresh_index(info.refresh_token))
            _unlink(self._client_user_index(info.client_id, info.user_id))
            _unlink(self._authz_path(authorization_id))
        with self._token_lock:
            self._tokens_by_authz.pop(authorization_id, None)
        return True

    # ---------------- code redemption ------------------------------------ #
    def redeem_authz_code(
        self,
        code: str,
        *,
        access_token: AccessTokenInfo,
        refresh_token: str,
    ) -> AuthorizationInfo | None:
        """Consume *code* and persist *access_token* in one step.

        Returns the updated record, or ``None`` when the code is unknown or a
        concurrent caller already redeemed it.
        """
        src = self._code_index(code)
        dst = self._code_claimed(code)
        if not src.exists():
            return None
        try:
            dst.parent.mkdir(parents=True, exist_ok=True)
            os.replace(src, dst)  # atomic rename – fails if a concurrent redeemer won
        except FileNotFoundError:
            return None
        except OSError as exc:
            raise RepositoryError("code claim failed") from exc

        try:
            ref = _read_json(dst)
            if not ref:
                return None
            authorization_id = ref["authorization_id"]
            with _file_lock(self._authz_lock(authorization_id)):
                info = self._load_authz(authorization_id)
                if info is None or info.authz_code != code:
                    return None
                updated = info.without_code()
                if refresh_token != info.refresh_token:
                    updated = replace(
                        updated, refresh_token=refresh_token, refresh_token_revoked=False
                    )
                _atomic_write(self._authz_path(authorization_id), updated.to_dict())
                self._write_indexes(updated, info)
                self.insert_access_token_info(access_token)
            return updated
        finally:
            _unlink(dst)

    def clear_authz_code(self, authorization_id: str, code: str) -> bool:
        """Compare-and-clear: drop *code* only if it is still the current one."""
        with _file_lock(self._authz_lock(authorization_id)):
            info = self._load_authz(authorization_id)
            if info is None or info.authz_code != code:
                return False
            updated = info.without_code()
            _atomic_write(self._authz_path(authorization_id), updated.to_dict())
            self._write_indexes(updated, info)
        return True

    # ---------------- clients -------------------------------------------- #
    def get_client_info_by_id(self, client_id: str) -> ClientInfo | None:
        if not client_id:
            return None
        data = _read_json(self._client_path(client_id))
        return ClientInfo.from_dict(data) if data else None

    def save_client_info(self, client: ClientInfo) -> None:
        with _file_lock(self._client_lock(client.client_id)):
            _atomic_write(self._client_path(client.client_id), client.to_dict())

    # ---------------- access tokens -------------------------------------- #
    def insert_access_token_info(self, info: AccessTokenInfo) -> None:
        with self._token_lock:
            if info.token in self._tokens:
                raise DuplicateRecordError("access token already issued")
            self._tokens[info.token] = info
            self._tokens_by_authz.setdefault(info.authorization_id, set()).add(info.token)

    def get_access_token_info(self, token: str) -> AccessTokenInfo | None:
        with self._token_lock:
            return self._tokens.get(token)

    def update_access_token_info(self, info: AccessTokenInfo) -> None:
        with self._token_lock:
            if info.token not in self._tokens:
                raise RepositoryError("access token not found")
            self._tokens[info.token] = info

    def list_access_token_infos(self, authorization_id: str) -> list[AccessTokenInfo]:
        with self._token_lock:
            tokens = self._tokens_by_authz.get(authorization_id, set())
            live = [self._tokens[t] for t in tokens if t in self._tokens]
            # forget evicted entries
            if not live:
                self._tokens_by_authz.pop(authorization_id, None)
            elif len(live) != len(tokens):
                self._tokens_by_authz[authorization_id] = {i.token for i in live}
            return live

    # ---------------- maintenance ---------------------------------------- #
    def cleanup_expired_codes(self, now: float) -> int:
        authz_dir = self.base_dir / "authz"
        if not authz_dir.exists():
            return 0
        removed = 0
        for p in authz_dir.glob("*.json"):
            data = _read_json(p)
            if not data:
                continue
            info = AuthorizationInfo.from_dict(data)
            if info.authz_code and info.code_expiration is not None and now >= info.code_expiration:
                if self.clear_authz_code(info.authorization_id, info.authz_code):
                    removed += 1
        return removed


# --------------------------------------------------------------------------- #
# Convenience – default singleton                                            #
# --------------------------------------------------------------------------- #

_default_repository: DiskAuthzRepository | None = None


def default_repository(config: EngineConfig | None = None) -> DiskAuthzRepository:
    """Return a process-wide singleton :class:`DiskAuthzRepository`."""
    global _default_repository  # noqa: PLW0603
    if _default_repository is None:
        cfg = config or EngineConfig.from_env()
        _default_repository = DiskAuthzRepository(
            cfg.storage_dir,
            token_ttl=cfg.access_token_ttl,
            token_cache_size=cfg.token_cache_size,
        )
    return _default_repository

"""Persistence boundary for credentials and in-flight PKCE sessions.

Credentials are persisted behind a small protocol,
:class:`CredentialStore`, with one JSON-file implementation,
:class:`DiskCredentialStore`.  The design follows these goals:

* **Atomicity** – every ``update`` is a locked read-modify-write and writes
  use *temp-file + os.replace*.
* **Last-writer-wins** – concurrent refreshes of one credential both persist;
  each token the provider issued stays valid until its own expiry.  Callers
  wanting stricter guarantees pass ``expected_version``.
* **Filename safety** – user ids are hashed and provider names slugified
  before they become paths.

PKCE sessions never touch the disk; :class:`PkceSessionStore` keeps them in a
TTL-bounded in-memory cache and hands each one out at most once.

Environment variables
---------------------
CRM_AUTH_STORAGE_DIR
    Base directory for persisted credentials.
    Defaults to ``~/.crm-auth/credentials`` when unset.
"""

from __future__ import annotations

import json
import logging
import os
import re
import threading
import time
import uuid
from contextlib import contextmanager
from datetime import datetime
from hashlib import sha256
from pathlib import Path
from typing import Any, Callable, Iterator, Protocol, runtime_checkable

from cachetools import TTLCache

from crm_auth.credentials.clock import Clock, default_clock, utcnow
from crm_auth.credentials.errors import (
    CredentialNotFoundError,
    CredentialStoreError,
    StaleCredentialError,
)
from crm_auth.credentials.models import Credential, PkceSession

_LOG = logging.getLogger("crm-auth.credentials.store")

# --------------------------------------------------------------------------- #
# helpers                                                                     #
# --------------------------------------------------------------------------- #
_UPDATABLE_FIELDS = frozenset(
    {"token", "refresh_token", "expires_at", "metadata", "uid", "email"}
)


def _hash(text: str, length: int = 16) -> str:
    return sha256(text.encode()).hexdigest()[:length]


def _slug(text: str, max_len: int = 40) -> str:
    """Filesystem-safe slug."""
    text = (text or "").strip().lower()
    text = re.sub(r"[^a-z0-9._-]+", "-", text)
    text = re.sub(r"-{2,}", "-", text).strip("-")
    return text[:max_len] or "unknown"


def _atomic_write(path: Path, data: dict) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(path.suffix + f".{uuid.uuid4().hex[:8]}.tmp")
    with tmp.open("w", encoding="utf-8") as fh:
        json.dump(data, fh, separators=(",", ":"), sort_keys=True)
    os.replace(tmp, path)  # atomic on POSIX


@contextmanager
def _file_lock(lock_path: Path, retries: int = 50, delay: float = 0.05) -> Iterator[None]:
    """Advisory file lock using ``os.O_EXCL`` temp-file creation."""
    lock_path.parent.mkdir(parents=True, exist_ok=True)
    for attempt in range(retries + 1):
        try:
            fd = os.open(lock_path, os.O_CREAT | os.O_EXCL | os.O_RDWR)
            os.close(fd)
            break  # acquired!
        except FileExistsError:
            if attempt == retries:
                raise TimeoutError(f"Could not acquire lock {lock_path}") from None
            time.sleep(delay)
    try:
        yield
    finally:
        lock_path.unlink(missing_ok=True)


# --------------------------------------------------------------------------- #
# public interface                                                            #
# --------------------------------------------------------------------------- #
@runtime_checkable
class CredentialStore(Protocol):
    """Minimal persistence contract for stored OAuth credentials."""

    def load(self, user_id: str, provider: str) -> Credential: ...

    def save(self, credential: Credential) -> Credential: ...

    def update(
        self,
        credential: Credential,
        fields: dict[str, Any],
        *,
        expected_version: int | None = None,
    ) -> Credential: ...

    def delete(self, user_id: str, provider: str) -> None: ...

    def list_for_provider(self, provider: str) -> list[Credential]: ...

    def list_expiring(self, provider: str, before: datetime) -> list[Credential]: ...


# --------------------------------------------------------------------------- #
# Disk implementation                                                         #
# --------------------------------------------------------------------------- #
class DiskCredentialStore(CredentialStore):
    """JSON-file implementation of :class:`CredentialStore`."""

    def __init__(
        self,
        base_dir: str | os.PathLike | None = None,
        *,
        clock: Clock = default_clock,
    ) -> None:
        self.base_dir = Path(
            base_dir
            or os.getenv("CRM_AUTH_STORAGE_DIR")
            or Path.home() / ".crm-auth" / "credentials"
        ).expanduser()
        self.base_dir.mkdir(parents=True, exist_ok=True)
        self._clock = clock

    # ---------------- paths ---------------------------------------------- #
    def _provider_dir(self, provider: str) -> Path:
        return self.base_dir / _slug(provider, 24)

    def _path(self, user_id: str, provider: str) -> Path:
        return self._provider_dir(provider) / f"{_hash(user_id)}.json"

    def _lock(self, user_id: str, provider: str) -> Path:
        return self._path(user_id, provider).with_suffix(".lock")

    def _read(self, path: Path) -> Credential | None:
        if not path.exists():
            return None
        try:
            with path.open(encoding="utf-8") as fh:
                return Credential.from_dict(json.load(fh))
        except (OSError, ValueError, KeyError, TypeError) as exc:
            raise CredentialStoreError(f"unreadable credential file {path.name}: {exc}") from exc

    # ---------------- contract ------------------------------------------- #
    def load(self, user_id: str, provider: str) -> Credential:
        cred = self._read(self._path(user_id, provider))
        if cred is None:
            raise CredentialNotFoundError(user_id=user_id, provider=provider)
        return cred

    def save(self, credential: Credential) -> Credential:
        """Insert or replace the credential of ``(user_id, provider)``."""
        path = self._path(credential.user_id, credential.provider)
        try:
            with _file_lock(self._lock(credential.user_id, credential.provider)):
                existing = self._read(path)
                stored = credential.with_fields(
                    id=(existing.id if existing else None) or credential.id or uuid.uuid4().hex,
                    version=(existing.version + 1) if existing else 1,
                    updated_at=utcnow(self._clock),
                )
                _atomic_write(path, stored.to_dict())
        except (OSError, TimeoutError) as exc:
            raise CredentialStoreError(f"failed to save credential: {exc}") from exc
        return stored

    def update(
        self,
        credential: Credential,
        fields: dict[str, Any],
        *,
        expected_version: int | None = None,
    ) -> Credential:
        """Apply *fields* to the stored credential in one atomic step.

        ``metadata`` is merged key by key into the stored metadata, so only the
        keys being changed need to be passed.
        """
        unknown = set(fields) - _UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"cannot update credential fields: {sorted(unknown)}")

        path = self._path(credential.user_id, credential.provider)
        try:
            with _file_lock(self._lock(credential.user_id, credential.provider)):
                current = self._read(path)
                if current is None:
                    raise CredentialNotFoundError(
                        user_id=credential.user_id, provider=credential.provider
                    )
                if expected_version is not None and current.version != expected_version:
                    raise StaleCredentialError(
                        expected=expected_version, actual=current.version
                    )
                if "metadata" in fields:
                    fields = {**fields, "metadata": {**current.metadata, **fields["metadata"]}}
                updated = current.with_fields(
                    **fields,
                    version=current.version + 1,
                    updated_at=utcnow(self._clock),
                )
                _atomic_write(path, updated.to_dict())
        except (OSError, TimeoutError) as exc:
            raise CredentialStoreError(f"failed to update credential: {exc}") from exc
        return updated

    def delete(self, user_id: str, provider: str) -> None:
        with _file_lock(self._lock(user_id, provider)):
            self._path(user_id, provider).unlink(missing_ok=True)

    def list_for_provider(self, provider: str) -> list[Credential]:
        """Return every readable credential of *provider*; unreadable files are skipped."""
        directory = self._provider_dir(provider)
        if not directory.exists():
            return []
        creds = []
        for p in sorted(directory.glob("*.json")):
            try:
                cred = self._read(p)
            except CredentialStoreError as exc:
                _LOG.error("Skipping %s credential: %s", provider, exc)
                continue
            if cred is not None and cred.provider == provider:
                creds.append(cred)
        return creds

    def list_expiring(self, provider: str, before: datetime) -> list[Credential]:
        """Return credentials of *provider* whose ``expires_at`` is earlier than *before*."""
        return [c for c in self.list_for_provider(provider) if c.expires_at < before]


# --------------------------------------------------------------------------- #
# PKCE sessions                                                               #
# --------------------------------------------------------------------------- #
class PkceSessionStore:
    """Short-lived, single-use storage of in-flight authorization attempts."""

    def __init__(
        self,
        *,
        maxsize: int = 1024,
        ttl_seconds: int = 900,
        timer: Callable[[], float] = time.monotonic,
    ) -> None:
        self._cache: TTLCache[str, PkceSession] = TTLCache(
            maxsize=maxsize, ttl=ttl_seconds, timer=timer
        )
        self._lock = threading.Lock()

    def put(self, session: PkceSession) -> None:
        with self._lock:
            self._cache[session.txn_id] = session

    def pop(self, txn_id: str) -> PkceSession | None:
        """Return and forget the session; a second call returns ``None``."""
        with self._lock:
            return self._cache.pop(txn_id, None)

    def __len__(self) -> int:
        with self._lock:
            return len(self._cache)

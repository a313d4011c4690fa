"""Typed, immutable records used by the credential lifecycle logic."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any

from crm_auth.credentials.clock import Clock, default_clock


def _aware(value: datetime) -> datetime:
    """Treat naive datetimes as UTC."""
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


@dataclass(frozen=True, slots=True)
class Credential:
    """One stored OAuth credential per (user, provider) pair."""

    user_id: str
    provider: str
    token: str
    expires_at: datetime
    refresh_token: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    id: str | None = None
    uid: str | None = None
    email: str | None = None
    version: int = 0
    updated_at: datetime | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "expires_at", _aware(self.expires_at))
        if self.updated_at is not None:
            object.__setattr__(self, "updated_at", _aware(self.updated_at))

    @property
    def instance_url(self) -> str | None:
        return self.metadata.get("instance_url")

    def with_fields(self, **fields: Any) -> Credential:
        """Return a copy with *fields* replaced; ``self`` is never mutated."""
        return replace(self, **fields)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "provider": self.provider,
            "token": self.token,
            "refresh_token": self.refresh_token,
            "expires_at": self.expires_at.isoformat(),
            "metadata": dict(self.metadata),
            "uid": self.uid,
            "email": self.email,
            "version": self.version,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Credential:
        updated_at = data.get("updated_at")
        return cls(
            id=data.get("id"),
            user_id=data["user_id"],
            provider=data["provider"],
            token=data["token"],
            refresh_token=data.get("refresh_token"),
            expires_at=datetime.fromisoformat(data["expires_at"]),
            metadata=dict(data.get("metadata") or {}),
            uid=data.get("uid"),
            email=data.get("email"),
            version=int(data.get("version", 0)),
            updated_at=datetime.fromisoformat(updated_at) if updated_at else None,
        )


@dataclass(frozen=True, slots=True)
class PkceSession:
    """Ephemeral state of one in-flight authorization attempt."""

    txn_id: str
    provider: str
    user_id: str
    redirect_uri: str
    state: str
    code_verifier: str = ""
    code_challenge: str = ""
    scopes: tuple[str, ...] = ()
    created_at: int = field(default_factory=lambda: int(default_clock()))
    # Sessions are stale after 15 minutes by default
    ttl_seconds: int = 900

    def is_expired(self, *, clock: Clock = default_clock) -> bool:
        """Return *True* if the session exceeded its TTL."""
        return (clock() - self.created_at) > self.ttl_seconds


@dataclass(frozen=True, slots=True)
class AuthCode:
    """Validated callback result handed to the token exchange."""

    code: str
    code_verifier: str
    redirect_uri: str


@dataclass(frozen=True, slots=True)
class TokenResult:
    """Provider token response normalised to a canonical shape."""

    access_token: str
    refresh_token: str | None = None
    expires_in_seconds: int | None = None
    raw_extra: dict[str, Any] = field(default_factory=dict)

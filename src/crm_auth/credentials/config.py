"""Explicit configuration objects for the credential lifecycle.

Client credentials are injected into the components that need them instead of
being looked up from process-wide state at call time.  Environment variables
are read exactly once, at the edge, by the ``from_env`` constructors:

``{PROVIDER}_CLIENT_ID`` / ``{PROVIDER}_CLIENT_SECRET`` /
``{PROVIDER}_REDIRECT_URI`` / ``{PROVIDER}_SCOPE``
    OAuth client registration per provider (``SALESFORCE``, ``HUBSPOT``).
``CRM_AUTH_STATE_SECRET``
    HMAC secret for the ``state`` parameter.
``CRM_AUTH_STORAGE_DIR``
    Base directory of the on-disk credential store.
``CRM_AUTH_SWEEP_ENABLED`` / ``CRM_AUTH_SWEEP_INTERVAL`` / ``CRM_AUTH_SWEEP_THRESHOLD``
    Background refresh sweep switches (seconds).
"""

from __future__ import annotations

import logging
import os
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import Final, Mapping

from crm_auth.credentials.errors import UnsupportedProviderError
from crm_auth.credentials.profiles import PROFILES, get_profile

logger = logging.getLogger("crm-auth.credentials.config")

_TRUTHY: Final[tuple[str, ...]] = ("true", "1", "yes", "y", "on")


def _truthy(value: str | None) -> bool:
    return (value or "").strip().lower() in _TRUTHY


def _int_env(environ: Mapping[str, str], key: str, default: int) -> int:
    raw = environ.get(key)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning("Ignoring non-integer %s=%r, using %s", key, raw, default)
        return default


@dataclass(frozen=True, slots=True)
class OAuthClientConfig:
    """OAuth client registration for one provider."""

    client_id: str
    client_secret: str
    redirect_uri: str = ""
    scope: str = ""

    def is_configured(self) -> bool:
        return bool(self.client_id and self.client_secret)

    def __repr__(self) -> str:
        return (
            f"OAuthClientConfig(client_id={self.client_id!r}, client_secret='****', "
            f"redirect_uri={self.redirect_uri!r}, scope={self.scope!r})"
        )

    @classmethod
    def from_env(
        cls, provider: str, environ: Mapping[str, str] | None = None
    ) -> OAuthClientConfig:
        get_profile(provider)
        env = os.environ if environ is None else environ
        prefix = provider.upper()
        return cls(
            client_id=env.get(f"{prefix}_CLIENT_ID", ""),
            client_secret=env.get(f"{prefix}_CLIENT_SECRET", ""),
            redirect_uri=env.get(f"{prefix}_REDIRECT_URI", ""),
            scope=env.get(f"{prefix}_SCOPE", ""),
        )


@dataclass(frozen=True, slots=True)
class CrmAuthSettings:
    """Top-level settings injected into :class:`~crm_auth.credentials.service.CrmAuthService`."""

    clients: dict[str, OAuthClientConfig] = field(default_factory=dict)
    state_secret: str = ""
    storage_dir: Path | None = None
    refresh_buffer_seconds: int = 300
    http_timeout_seconds: float = 30.0
    sweep_enabled: bool = True
    sweep_interval_seconds: int = 300
    sweep_threshold_seconds: int = 300

    def client(self, provider: str) -> OAuthClientConfig:
        get_profile(provider)
        config = self.clients.get(provider)
        if config is None or not config.is_configured():
            raise UnsupportedProviderError(f"{provider} OAuth client not configured")
        return config

    def configured_providers(self) -> list[str]:
        return [name for name, cfg in self.clients.items() if cfg.is_configured()]

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> CrmAuthSettings:
        env = os.environ if environ is None else environ
        clients = {name: OAuthClientConfig.from_env(name, env) for name in PROFILES}

        state_secret = env.get("CRM_AUTH_STATE_SECRET", "")
        if not state_secret:
            # Ephemeral secret is fine for a single-process dev setup
            state_secret = uuid.uuid4().hex
            logger.warning(
                "Environment variable CRM_AUTH_STATE_SECRET not set – generated transient "
                "secret. In-flight authorizations will fail after process restart."
            )

        storage_dir = env.get("CRM_AUTH_STORAGE_DIR")
        sweep_raw = env.get("CRM_AUTH_SWEEP_ENABLED")
        settings = cls(
            clients=clients,
            state_secret=state_secret,
            storage_dir=Path(storage_dir).expanduser() if storage_dir else None,
            sweep_enabled=True if sweep_raw is None else _truthy(sweep_raw),
            sweep_interval_seconds=_int_env(env, "CRM_AUTH_SWEEP_INTERVAL", 300),
            sweep_threshold_seconds=_int_env(env, "CRM_AUTH_SWEEP_THRESHOLD", 300),
        )
        for name in PROFILES:
            if not clients[name].is_configured():
                logger.info("%s OAuth client is not configured; provider disabled.", name)
        return settings

"""Expiry policy and proactive refresh of stored credentials.

A credential is refreshed when it expires within ``buffer`` (5 minutes by
default) so a token never lapses in the middle of a provider call.

Concurrency
-----------
No lock is taken around a refresh.  Two callers (e.g. a live request and the
background sweep) may refresh the same credential at once; both receive
valid tokens from the provider and the store keeps whichever write lands
last.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any, Final

from crm_auth.credentials.clock import Clock, default_clock, utcnow
from crm_auth.credentials.errors import NoRefreshTokenError
from crm_auth.credentials.exchange import TokenExchangeClient
from crm_auth.credentials.log_utils import get_auth_logger
from crm_auth.credentials.models import Credential, TokenResult
from crm_auth.credentials.store import CredentialStore

DEFAULT_BUFFER: Final = timedelta(minutes=5)
DEFAULT_EXPIRES_IN: Final[int] = 3600


def needs_refresh(
    credential: Credential,
    now: datetime,
    buffer: timedelta = DEFAULT_BUFFER,
) -> bool:
    """Return *True* if ``credential`` expires before ``now + buffer``."""
    return credential.expires_at < now + buffer


def refreshed_fields(
    credential: Credential,
    result: TokenResult,
    now: datetime,
    metadata_fields: tuple[str, ...] = (),
) -> dict[str, Any]:
    """Compute the store update for a successful refresh.

    ``token`` and ``expires_at`` always change together; the old refresh
    token is kept when the provider does not rotate it.  Only the routing
    keys present in the response go under ``metadata``; the store merges
    them into what it holds.
    """
    expires_in = result.expires_in_seconds or DEFAULT_EXPIRES_IN
    fields: dict[str, Any] = {
        "token": result.access_token,
        "refresh_token": result.refresh_token or credential.refresh_token,
        "expires_at": now + timedelta(seconds=expires_in),
    }
    routing = {k: result.raw_extra[k] for k in metadata_fields if result.raw_extra.get(k)}
    if routing:
        fields["metadata"] = routing
    return fields


class CredentialRefresher:
    """Refreshes credentials of one provider and persists the result."""

    def __init__(
        self,
        store: CredentialStore,
        client: TokenExchangeClient,
        *,
        clock: Clock = default_clock,
        buffer: timedelta = DEFAULT_BUFFER,
    ) -> None:
        self.store = store
        self.client = client
        self.clock = clock
        self.buffer = buffer

    @property
    def provider(self) -> str:
        return self.client.profile.name

    def needs_refresh(self, credential: Credential) -> bool:
        return needs_refresh(credential, utcnow(self.clock), self.buffer)

    def ensure_valid(self, credential: Credential) -> Credential:
        """Return a credential whose token outlives the buffer.

        The fresh path returns *credential* itself without any network call.
        """
        if not self.needs_refresh(credential):
            get_auth_logger(
                base_logger_name="crm-auth.credentials.refresher",
                user_id=credential.user_id,
                provider=credential.provider,
            ).debug("Token is still valid")
            return credential
        return self.refresh_credential(credential)

    def refresh_credential(self, credential: Credential) -> Credential:
        """Refresh unconditionally and return the persisted credential.

        Raises :class:`NoRefreshTokenError` without any HTTP call when the
        credential has no refresh token.  Exchange and store errors propagate
        unchanged; the caller's ``credential`` object is never modified.
        """
        log = get_auth_logger(
            base_logger_name="crm-auth.credentials.refresher",
            user_id=credential.user_id,
            provider=credential.provider,
        )
        if not credential.refresh_token:
            log.warning("Credential has no refresh token; re-authorization required")
            raise NoRefreshTokenError(user_id=credential.user_id, provider=credential.provider)

        log.info("Refreshing credential")
        result = self.client.refresh(credential.refresh_token)
        fields = refreshed_fields(
            credential,
            result,
            utcnow(self.clock),
            self.client.profile.metadata_fields,
        )
        updated = self.store.update(credential, fields)
        log.info("Credential refreshed (expires at %s)", updated.expires_at.isoformat())
        return updated

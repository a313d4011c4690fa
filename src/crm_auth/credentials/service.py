"""CrmAuthService – application façade over the credential lifecycle.

Handlers in ``crm_auth.servers.auth`` and business code call the thin
methods below; the heavy lifting lives in the HTTP-agnostic modules of this
package (flow, exchange, refresher, retry, sweep).

All secrets are redacted from logs.  Configuration is injected through
:class:`~crm_auth.credentials.config.CrmAuthSettings`; nothing here reads
the environment.
"""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import Any, Callable, Iterable, Mapping, TypeVar

import requests

from crm_auth.credentials.clock import Clock, default_clock, utcnow
from crm_auth.credentials.config import CrmAuthSettings
from crm_auth.credentials.errors import CredentialNotFoundError, StateMismatchError
from crm_auth.credentials.exchange import TokenExchangeClient
from crm_auth.credentials.flow import begin_authorization, complete_authorization
from crm_auth.credentials.models import Credential, TokenResult
from crm_auth.credentials.profiles import PROFILES, get_profile
from crm_auth.credentials.refresher import DEFAULT_EXPIRES_IN, CredentialRefresher
from crm_auth.credentials.retry import call_with_retry
from crm_auth.credentials.state import InvalidStateError, parse_state
from crm_auth.credentials.store import CredentialStore, DiskCredentialStore, PkceSessionStore
from crm_auth.credentials.sweep import CredentialSweep

_LOG = logging.getLogger("crm-auth.credentials.service")

T = TypeVar("T")


class CrmAuthService:
    """Application service orchestrating OAuth flows and token freshness."""

    def __init__(
        self,
        settings: CrmAuthSettings,
        *,
        store: CredentialStore | None = None,
        sessions: PkceSessionStore | None = None,
        http_session: requests.Session | None = None,
        clock: Clock = default_clock,
    ) -> None:
        self.settings = settings
        self.clock = clock
        self.store = store or DiskCredentialStore(settings.storage_dir, clock=clock)
        self.sessions = sessions or PkceSessionStore()
        self.http_session = http_session or requests.Session()
        self._refreshers: dict[str, CredentialRefresher] = {}

    # ------------------------------------------------------------------ #
    # Wiring                                                             #
    # ------------------------------------------------------------------ #
    def exchange_client(self, provider: str) -> TokenExchangeClient:
        return TokenExchangeClient(
            get_profile(provider),
            self.settings.client(provider),
            session=self.http_session,
            timeout=self.settings.http_timeout_seconds,
        )

    def refresher(self, provider: str) -> CredentialRefresher:
        if provider not in self._refreshers:
            self._refreshers[provider] = CredentialRefresher(
                self.store,
                self.exchange_client(provider),
                clock=self.clock,
                buffer=timedelta(seconds=self.settings.refresh_buffer_seconds),
            )
        return self._refreshers[provider]

    def sweep(self) -> CredentialSweep:
        return CredentialSweep(
            self.store,
            {name: self.refresher(name) for name in self.settings.configured_providers()},
            clock=self.clock,
            threshold=timedelta(seconds=self.settings.sweep_threshold_seconds),
        )

    # ------------------------------------------------------------------ #
    # Authorization flow                                                 #
    # ------------------------------------------------------------------ #
    def begin_authorization(
        self,
        provider: str,
        *,
        user_id: str,
        redirect_uri: str | None = None,
        scopes: Iterable[str] | None = None,
        prompt: str | None = None,
    ) -> str:
        """Return the provider authorize URL and remember the PKCE session."""
        client_config = self.settings.client(provider)
        url, session = begin_authorization(
            get_profile(provider),
            client_config,
            scopes,
            redirect_uri or client_config.redirect_uri,
            user_id=user_id,
            state_secret=self.settings.state_secret,
            prompt=prompt,
            clock=self.clock,
        )
        self.sessions.put(session)
        return url

    def complete_authorization(
        self, provider: str, callback_params: Mapping[str, str]
    ) -> Credential:
        """Validate the callback, exchange the code and persist the credential."""
        profile = get_profile(provider)

        session = None
        state = callback_params.get("state")
        # Error and missing-code checks take precedence over state decoding.
        if state and callback_params.get("code") and not callback_params.get("error"):
            try:
                txn_id, _ = parse_state(state, self.settings.state_secret)
            except InvalidStateError as exc:
                raise StateMismatchError(str(exc)) from None
            session = self.sessions.pop(txn_id)
            if session is not None and session.provider != provider:
                raise StateMismatchError("Authorization was started for another provider.")

        auth_code = complete_authorization(callback_params, session, clock=self.clock)
        if session is None:
            raise StateMismatchError("No authorization in progress for this state.")

        result = self.exchange_client(provider).exchange_code(
            auth_code.code, auth_code.code_verifier, auth_code.redirect_uri
        )
        credential = self.store.save(self._credential_from_token(session.user_id, profile.name, result))
        _LOG.info(
            "Stored %s credential for user_id=%s (expires at %s)",
            provider,
            session.user_id,
            credential.expires_at.isoformat(),
        )
        return credential

    def _credential_from_token(
        self, user_id: str, provider: str, result: TokenResult
    ) -> Credential:
        profile = get_profile(provider)
        metadata: dict[str, Any] = {
            k: result.raw_extra[k] for k in profile.metadata_fields if result.raw_extra.get(k)
        }
        if result.raw_extra.get("scope"):
            metadata["scopes"] = str(result.raw_extra["scope"]).split()

        identity = result.raw_extra.get("identity") or {}
        uid = identity.get(profile.uid_field) if profile.uid_field else None
        if identity.get("organization_id"):
            metadata["organization_id"] = identity["organization_id"]

        return Credential(
            user_id=user_id,
            provider=provider,
            token=result.access_token,
            refresh_token=result.refresh_token,
            expires_at=utcnow(self.clock)
            + timedelta(seconds=result.expires_in_seconds or DEFAULT_EXPIRES_IN),
            metadata=metadata,
            uid=uid,
            email=identity.get("email"),
        )

    # ------------------------------------------------------------------ #
    # Token access                                                       #
    # ------------------------------------------------------------------ #
    def load_credential(self, user_id: str, provider: str) -> Credential:
        get_profile(provider)
        return self.store.load(user_id, provider)

    def ensure_valid_token(self, credential: Credential) -> Credential:
        return self.refresher(credential.provider).ensure_valid(credential)

    def refresh_credential(self, credential: Credential) -> Credential:
        return self.refresher(credential.provider).refresh_credential(credential)

    def call_with_retry(
        self, credential: Credential, api_fn: Callable[[Credential], T]
    ) -> T:
        return call_with_retry(credential, api_fn, refresher=self.refresher(credential.provider))

    # ------------------------------------------------------------------ #
    # Connection management                                              #
    # ------------------------------------------------------------------ #
    def status(self, user_id: str) -> dict[str, Any]:
        result: dict[str, Any] = {"user_id": user_id}
        for provider in PROFILES:
            try:
                cred = self.store.load(user_id, provider)
            except CredentialNotFoundError:
                result[provider] = {"connected": False}
                continue
            result[provider] = {
                "connected": True,
                "expires_at": cred.expires_at.isoformat(),
                "refreshable": bool(cred.refresh_token),
                "email": cred.email,
            }
        return result

    def disconnect(self, user_id: str, provider: str) -> None:
        """Delete the stored credential."""
        get_profile(provider)
        self.store.delete(user_id, provider)
        _LOG.info("Deleted %s credential for user_id=%s", provider, user_id)

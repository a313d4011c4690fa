"""HTTP client for the provider token endpoints.

Handles the two grants this package needs – ``authorization_code`` (with the
PKCE verifier when the profile requires it) and ``refresh_token`` – and
normalises each provider's response into a :class:`TokenResult`.

Error mapping
-------------
* non-2xx response          → :class:`TokenExchangeError` (``error`` /
  ``error_description`` from the body when present)
* network failure / timeout → :class:`TransportError`
* 2xx without access token  → :class:`TokenExchangeError` (``invalid_response``)

Every request carries a bounded timeout so a hung provider cannot stall the
calling thread.
"""

from __future__ import annotations

import logging
from typing import Any, Mapping

import requests

from crm_auth.credentials.config import OAuthClientConfig
from crm_auth.credentials.errors import TokenExchangeError, TransportError
from crm_auth.credentials.log_utils import mask_sensitive
from crm_auth.credentials.models import TokenResult
from crm_auth.credentials.profiles import ProviderProfile

_LOG = logging.getLogger("crm-auth.credentials.exchange")

DEFAULT_TIMEOUT: float = 30.0


def _json_body(resp: requests.Response) -> Any:
    try:
        return resp.json()
    except ValueError:
        return None


class TokenExchangeClient:
    """Token endpoint client for one provider profile."""

    def __init__(
        self,
        profile: ProviderProfile,
        client_config: OAuthClientConfig,
        *,
        session: requests.Session | None = None,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        self.profile = profile
        self.client_config = client_config
        self.session = session or requests.Session()
        self.timeout = timeout

    # ------------------------------------------------------------------ #
    # Grants                                                             #
    # ------------------------------------------------------------------ #
    def exchange_code(self, code: str, verifier: str, redirect_uri: str) -> TokenResult:
        """Trade an authorization *code* for tokens.

        For profiles with an identity URL in the token response the identity
        document is fetched right away with the new access token and stored
        under ``raw_extra["identity"]``.
        """
        payload = {
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": redirect_uri,
            "client_id": self.client_config.client_id,
            "client_secret": self.client_config.client_secret,
        }
        if self.profile.pkce:
            payload["code_verifier"] = verifier

        _LOG.info("Exchanging authorization code with %s", self.profile.name)
        result = self._normalise(self._post_token(payload))

        identity_field = self.profile.identity_url_field
        if identity_field and result.raw_extra.get(identity_field):
            identity = self.fetch_identity(result.access_token, result.raw_extra[identity_field])
            result = TokenResult(
                access_token=result.access_token,
                refresh_token=result.refresh_token,
                expires_in_seconds=result.expires_in_seconds,
                raw_extra={**result.raw_extra, "identity": identity},
            )
        return result

    def refresh(self, refresh_token: str) -> TokenResult:
        """Trade a refresh token for a new access token.

        The refresh endpoint is the profile's fixed token URL, independent
        of the tenant instance the credential belongs to.
        """
        payload = {
            "grant_type": "refresh_token",
            "refresh_token": refresh_token,
            "client_id": self.client_config.client_id,
            "client_secret": self.client_config.client_secret,
        }
        _LOG.info(
            "Refreshing %s token (refresh_token=%s)",
            self.profile.name,
            mask_sensitive(refresh_token),
        )
        return self._normalise(self._post_token(payload))

    def fetch_identity(self, access_token: str, identity_url: str) -> dict[str, Any]:
        """Resolve user identity from the URL embedded in the token response."""
        try:
            resp = self.session.get(
                identity_url,
                headers={"Authorization": f"Bearer {access_token}", "Accept": "application/json"},
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise TransportError(f"{self.profile.name} identity request failed: {exc}") from exc

        body = _json_body(resp)
        if not resp.ok or not isinstance(body, dict):
            _LOG.error("%s identity fetch failed with status %s", self.profile.name, resp.status_code)
            raise TokenExchangeError(
                "identity_error",
                f"identity endpoint returned {resp.status_code}",
                status=resp.status_code,
            )
        return body

    # ------------------------------------------------------------------ #
    # Internals                                                          #
    # ------------------------------------------------------------------ #
    def _post_token(self, payload: Mapping[str, str]) -> dict[str, Any]:
        try:
            resp = self.session.post(
                self.profile.token_url,
                data=dict(payload),
                headers={
                    "Content-Type": "application/x-www-form-urlencoded",
                    "Accept": "application/json",
                },
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            _LOG.error("%s token request failed: %s", self.profile.name, exc)
            raise TransportError(f"{self.profile.name} token request failed: {exc}") from exc

        body = _json_body(resp)
        if not resp.ok:
            details = body if isinstance(body, dict) else {}
            provider_code = details.get("error") or "unknown_error"
            description = (
                details.get("error_description")
                or details.get("message")
                or (resp.text or "")[:200]
                or "Token exchange failed"
            )
            _LOG.error(
                "%s token endpoint returned %s: %s",
                self.profile.name,
                resp.status_code,
                provider_code,
            )
            raise TokenExchangeError(provider_code, description, status=resp.status_code)

        if not isinstance(body, dict):
            raise TokenExchangeError(
                "invalid_response", "token response is not a JSON object", status=resp.status_code
            )
        return body

    def _normalise(self, body: dict[str, Any]) -> TokenResult:
        profile = self.profile
        access_token = body.get(profile.access_token_field)
        if not access_token:
            raise TokenExchangeError("invalid_response", "token response missing access_token")

        expires_raw = body.get(profile.expires_in_field)
        try:
            expires_in = int(expires_raw) if expires_raw is not None else None
        except (TypeError, ValueError):
            expires_in = None

        canonical = {
            profile.access_token_field,
            profile.refresh_token_field,
            profile.expires_in_field,
        }
        return TokenResult(
            access_token=access_token,
            refresh_token=body.get(profile.refresh_token_field) or None,
            expires_in_seconds=expires_in,
            raw_extra={k: v for k, v in body.items() if k not in canonical},
        )

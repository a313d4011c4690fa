"""Authenticated REST calls against the connected CRM.

:class:`ProviderApiClient` turns provider responses into the shapes the
retry wrapper understands: non-2xx answers raise :class:`ApiError` (status +
decoded body) and network failures raise :class:`TransportError`.  Every
request goes through :meth:`CrmAuthService.call_with_retry`, so callers get
proactive refresh and one reactive retry for free.

Payload shaping for specific CRM objects is left to the callers.
"""

from __future__ import annotations

import logging
import os
from typing import Any

import requests

from crm_auth.credentials.errors import ApiError, TransportError
from crm_auth.credentials.models import Credential
from crm_auth.credentials.profiles import get_profile
from crm_auth.credentials.service import CrmAuthService

logger = logging.getLogger("crm-auth.client")

DEFAULT_SALESFORCE_API_VERSION = "v60.0"


class ProviderApiClient:
    """Thin authenticated HTTP client for Salesforce / HubSpot REST APIs."""

    def __init__(
        self,
        service: CrmAuthService,
        *,
        session: requests.Session | None = None,
        timeout: float | None = None,
        salesforce_api_version: str | None = None,
    ) -> None:
        self.service = service
        self.session = session or service.http_session
        self.timeout = timeout or service.settings.http_timeout_seconds
        self.salesforce_api_version = (
            salesforce_api_version
            or os.getenv("SALESFORCE_API_VERSION")
            or DEFAULT_SALESFORCE_API_VERSION
        )

    def base_url(self, credential: Credential) -> str:
        profile = get_profile(credential.provider)
        if profile.api_base_url:
            return profile.api_base_url
        return (
            credential.instance_url
            or os.getenv("SALESFORCE_INSTANCE_URL")
            or "https://login.salesforce.com"
        ).rstrip("/")

    def request(
        self,
        credential: Credential,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json: Any = None,
    ) -> Any:
        """Perform ``method path`` with a valid token, retrying once on a rejected token.

        Both attempts send the same *params* / *json* payload.
        """

        def _call(cred: Credential) -> Any:
            return self._send(cred, method, path, params=params, json=json)

        return self.service.call_with_retry(credential, _call)

    def get_user_info(self, credential: Credential) -> Any:
        """Return the provider's view of the connected user."""
        if credential.provider == "salesforce":
            if not credential.uid:
                return self.request(credential, "GET", "/services/oauth2/userinfo")
            return self.request(
                credential,
                "GET",
                f"/services/data/{self.salesforce_api_version}/sobjects/User/{credential.uid}",
            )
        return self.request(credential, "GET", "/account-info/v3/details")

    # ------------------------------------------------------------------ #
    def _send(
        self,
        credential: Credential,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None,
        json: Any,
    ) -> Any:
        url = f"{self.base_url(credential)}/{path.lstrip('/')}"
        try:
            resp = self.session.request(
                method,
                url,
                params=params,
                json=json,
                headers={
                    "Authorization": f"Bearer {credential.token}",
                    "Accept": "application/json",
                },
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            logger.error("%s %s request failed: %s", credential.provider, method, exc)
            raise TransportError(f"{credential.provider} request failed: {exc}") from exc

        if resp.status_code == 204 or not resp.content:
            body: Any = {}
        else:
            try:
                body = resp.json()
            except ValueError:
                body = resp.text

        if not resp.ok:
            logger.warning("%s API %s %s returned %s", credential.provider, method, path, resp.status_code)
            raise ApiError(resp.status_code, body)
        return body

"""Provider profiles.

Salesforce and HubSpot differ only in endpoints, response field names and the
shape of their "session invalid" errors, so a single generic flow is
parameterised by a :class:`ProviderProfile`.  Endpoints are fixed per
provider; they are not operator-configurable.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Final

from crm_auth.credentials.errors import UnsupportedProviderError
from crm_auth.credentials.session_errors import (
    HUBSPOT_SIGNATURE,
    SALESFORCE_SIGNATURE,
    SessionErrorSignature,
)

@dataclass(frozen=True, slots=True)
class ProviderProfile:
    name: str
    authorize_url: str
    # Exchange and refresh share one endpoint that does not depend on the tenant.
    token_url: str
    default_scopes: tuple[str, ...]
    pkce: bool
    error_signature: SessionErrorSignature
    access_token_field: str = "access_token"
    refresh_token_field: str = "refresh_token"
    expires_in_field: str = "expires_in"
    # Token response field holding a URL to resolve the user's identity.
    identity_url_field: str | None = None
    # Token response fields that are copied into ``Credential.metadata``.
    metadata_fields: tuple[str, ...] = ()
    # ``None`` means the API base comes from ``metadata["instance_url"]``.
    api_base_url: str | None = None
    uid_field: str | None = None


SALESFORCE: Final = ProviderProfile(
    name="salesforce",
    authorize_url="https://login.salesforce.com/services/oauth2/authorize",
    token_url="https://login.salesforce.com/services/oauth2/token",
    default_scopes=("id", "api", "refresh_token"),
    pkce=True,
    error_signature=SALESFORCE_SIGNATURE,
    identity_url_field="id",
    metadata_fields=("instance_url",),
    uid_field="user_id",
)

HUBSPOT: Final = ProviderProfile(
    name="hubspot",
    authorize_url="https://app.hubspot.com/oauth/authorize",
    token_url="https://api.hubapi.com/oauth/v1/token",
    default_scopes=(
        "crm.objects.contacts.read",
        "crm.objects.contacts.write",
        "oauth",
    ),
    pkce=False,
    error_signature=HUBSPOT_SIGNATURE,
    metadata_fields=("hub_id",),
    api_base_url="https://api.hubapi.com",
)

PROFILES: Final[dict[str, ProviderProfile]] = {
    SALESFORCE.name: SALESFORCE,
    HUBSPOT.name: HUBSPOT,
}


def get_profile(provider: str) -> ProviderProfile:
    """Return the profile registered for *provider*."""
    try:
        return PROFILES[provider]
    except KeyError:
        raise UnsupportedProviderError(f"unsupported provider: {provider!r}") from None

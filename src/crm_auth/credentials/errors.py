"""Exception types raised by the credential lifecycle core.

Only lightweight, **data-carrying** exceptions live here so that web/job
layers can transform them into HTTP responses or user-friendly messages.
None of them ever carries an access token, refresh token or client secret.
"""

from __future__ import annotations

from typing import Any


class CrmAuthError(RuntimeError):
    """Base class for every credential lifecycle failure."""

    code: str = "crm_auth_error"
    needs_reauth: bool = False

    def to_payload(self) -> dict[str, Any]:
        """Return a JSON-serialisable payload **without secrets**."""
        return {
            "error": self.code,
            "message": str(self),
            "needs_reauth": self.needs_reauth,
        }


# --------------------------------------------------------------------------- #
# Authorization callback                                                      #
# --------------------------------------------------------------------------- #
class MissingCodeError(CrmAuthError):
    """Callback arrived without a ``code`` parameter."""

    code = "missing_code"

    def __init__(self, message: str = "No authorization code received.") -> None:
        super().__init__(message)


class ProviderDeniedError(CrmAuthError):
    """The provider redirected back with an ``error`` parameter."""

    code = "provider_denied"

    def __init__(self, reason: str) -> None:
        super().__init__(f"Authorization denied by provider: {reason}")
        self.reason = reason


class StateMismatchError(CrmAuthError):
    """The callback ``state`` does not belong to a live authorization attempt."""

    code = "state_mismatch"

    def __init__(self, message: str = "Authorization state mismatch or expired session.") -> None:
        super().__init__(message)


# --------------------------------------------------------------------------- #
# Token endpoint                                                              #
# --------------------------------------------------------------------------- #
class TokenExchangeError(CrmAuthError):
    """Token endpoint answered with a non-2xx status or an unusable body."""

    code = "token_exchange_error"

    def __init__(
        self,
        provider_code: str,
        description: str,
        *,
        status: int | None = None,
    ) -> None:
        super().__init__(f"{provider_code}: {description}")
        self.provider_code = provider_code
        self.description = description
        self.status = status

    @property
    def needs_reauth(self) -> bool:  # type: ignore[override]
        # 4xx from the token endpoint means the grant itself was rejected.
        return self.status is not None and 400 <= self.status < 500

    def to_payload(self) -> dict[str, Any]:
        payload = super().to_payload()
        payload["provider_code"] = self.provider_code
        payload["status"] = self.status
        return payload


class TransportError(CrmAuthError):
    """Network failure or timeout talking to a provider."""

    code = "transport_error"


class NoRefreshTokenError(CrmAuthError):
    """Credential is expired (or expiring) and cannot be refreshed."""

    code = "no_refresh_token"
    needs_reauth = True

    def __init__(self, *, user_id: str, provider: str) -> None:
        super().__init__(f"No refresh token stored for {provider} credential.")
        self.user_id = user_id
        self.provider = provider


class TokenRefreshFailedError(CrmAuthError):
    """Reactive refresh inside the retry wrapper failed."""

    code = "token_refresh_failed"

    def __init__(self, inner: Exception) -> None:
        super().__init__(f"Token refresh failed: {inner}")
        self.inner = inner

    @property
    def needs_reauth(self) -> bool:  # type: ignore[override]
        return bool(getattr(self.inner, "needs_reauth", False))


class ApiError(CrmAuthError):
    """Provider REST API returned a non-2xx response."""

    code = "api_error"

    def __init__(self, status: int, body: Any) -> None:
        super().__init__(f"Provider API returned {status}")
        self.status = status
        self.body = body

    @property
    def needs_reauth(self) -> bool:  # type: ignore[override]
        return self.status == 401

    def to_payload(self) -> dict[str, Any]:
        payload = super().to_payload()
        payload["status"] = self.status
        payload["body"] = self.body
        return payload


# --------------------------------------------------------------------------- #
# Persistence & configuration                                                 #
# --------------------------------------------------------------------------- #
class CredentialStoreError(CrmAuthError):
    """Persistence layer failed to read or write a credential."""

    code = "credential_store_error"


class CredentialNotFoundError(CredentialStoreError):
    """No credential stored for the requested (user, provider) pair."""

    code = "credential_not_found"
    needs_reauth = True

    def __init__(self, *, user_id: str, provider: str) -> None:
        super().__init__(f"No {provider} credential stored for this user.")
        self.user_id = user_id
        self.provider = provider


class StaleCredentialError(CredentialStoreError):
    """Optimistic version check rejected a write based on an outdated read."""

    code = "stale_credential"

    def __init__(self, *, expected: int, actual: int) -> None:
        super().__init__(f"Credential version is {actual}, expected {expected}.")
        self.expected = expected
        self.actual = actual


class UnsupportedProviderError(ValueError):
    """Provider name has no registered profile."""

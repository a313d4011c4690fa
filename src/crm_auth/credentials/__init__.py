"""Credential lifecycle core package.

This namespace hosts reusable, **HTTP-agnostic** building blocks for the
OAuth 2.0 connections to Salesforce and HubSpot.

Sub-modules
-----------
clock
    Test-friendly time abstraction.
pkce
    Proof-Key for Code Exchange helpers.
state
    CSRF-resistant ``state`` parameter encoding / validation.
flow
    Authorize URL construction and callback validation.
config
    Injected OAuth client and service settings.
models
    Immutable dataclasses for credentials, PKCE sessions and token results.
errors
    Exception taxonomy of the credential lifecycle.
profiles
    Per-provider endpoints, field names and session-error signatures.
session_errors
    Pure classification of "token rejected" provider responses.
store
    Credential persistence contract and PKCE session cache.
exchange
    Token endpoint client (authorization code and refresh grants).
refresher
    Expiry policy and proactive refresh.
retry
    Retry-once wrapper around provider API calls.
sweep
    Periodic refresh of soon-to-expire credentials.
log_utils
    Structured logging helpers (thin wrapper around :pymod:`logging`).

The most used public objects are re-exported here for convenience.
"""

from __future__ import annotations

from .clock import Clock, default_clock  # noqa: F401
from .config import CrmAuthSettings, OAuthClientConfig  # noqa: F401
from .errors import (  # noqa: F401
    ApiError,
    CrmAuthError,
    MissingCodeError,
    NoRefreshTokenError,
    ProviderDeniedError,
    StateMismatchError,
    TokenExchangeError,
    TokenRefreshFailedError,
    TransportError,
)
from .models import Credential, PkceSession, TokenResult  # noqa: F401
from .pkce import code_challenge_s256, generate_code_verifier  # noqa: F401
from .refresher import CredentialRefresher, needs_refresh  # noqa: F401
from .retry import call_with_retry  # noqa: F401
from .session_errors import is_session_error  # noqa: F401
from .service import CrmAuthService  # noqa: F401

__all__ = [
    "Clock",
    "default_clock",
    "CrmAuthSettings",
    "OAuthClientConfig",
    "ApiError",
    "CrmAuthError",
    "MissingCodeError",
    "NoRefreshTokenError",
    "ProviderDeniedError",
    "StateMismatchError",
    "TokenExchangeError",
    "TokenRefreshFailedError",
    "TransportError",
    "Credential",
    "PkceSession",
    "TokenResult",
    "code_challenge_s256",
    "generate_code_verifier",
    "CredentialRefresher",
    "needs_refresh",
    "call_with_retry",
    "is_session_error",
    "CrmAuthService",
]

"""Retry-on-auth-failure wrapper for provider API calls.

Every provider call goes through :func:`call_with_retry`:

1. the credential is made valid proactively (buffer-based refresh);
2. ``api_fn`` runs with it;
3. if the provider rejects the token anyway (revocation, session reset), the
   credential is refreshed once and ``api_fn`` runs a second and last time.

There is never a second retry, so a permanently broken credential cannot
cause a refresh storm.  ``api_fn`` may run twice; mutating calls must send
the same payload on both attempts.
"""

from __future__ import annotations

import logging
from typing import Callable, TypeVar

from crm_auth.credentials.errors import ApiError, CrmAuthError, TokenRefreshFailedError
from crm_auth.credentials.models import Credential
from crm_auth.credentials.refresher import CredentialRefresher
from crm_auth.credentials.session_errors import is_session_error

_LOG = logging.getLogger("crm-auth.credentials.retry")

T = TypeVar("T")


def call_with_retry(
    credential: Credential,
    api_fn: Callable[[Credential], T],
    *,
    refresher: CredentialRefresher,
) -> T:
    """Invoke ``api_fn(credential)`` and recover once from a rejected token.

    ``api_fn`` signals provider failures by raising :class:`ApiError`.
    Errors from :meth:`CredentialRefresher.ensure_valid` propagate without
    any attempt; a failed reactive refresh raises
    :class:`TokenRefreshFailedError`; the outcome of the retry is returned or
    raised as-is.
    """
    credential = refresher.ensure_valid(credential)
    signature = refresher.client.profile.error_signature

    try:
        return api_fn(credential)
    except ApiError as exc:
        if not is_session_error(exc.status, exc.body, signature):
            raise
        _LOG.info(
            "%s rejected the access token (status %s); refreshing and retrying once",
            credential.provider,
            exc.status,
        )

    try:
        refreshed = refresher.refresh_credential(credential)
    except CrmAuthError as refresh_exc:
        _LOG.error("Failed to refresh %s token: %s", credential.provider, refresh_exc)
        raise TokenRefreshFailedError(refresh_exc) from refresh_exc

    try:
        return api_fn(refreshed)
    except ApiError as exc:
        _LOG.error("%s API error after refresh: %s", credential.provider, exc.status)
        raise

"""Authorization-code flow: building the authorize URL and validating callbacks.

Both functions are HTTP-agnostic.  :func:`begin_authorization` returns the
:class:`PkceSession` that the caller must keep (see
:class:`~crm_auth.credentials.store.PkceSessionStore`) until the callback;
:func:`complete_authorization` validates the callback against that session
and hands back what the token exchange needs.
"""

from __future__ import annotations

import hmac
import logging
import uuid
from typing import Iterable, Mapping
from urllib.parse import urlencode

from crm_auth.credentials.clock import Clock, default_clock
from crm_auth.credentials.config import OAuthClientConfig
from crm_auth.credentials.errors import (
    MissingCodeError,
    ProviderDeniedError,
    StateMismatchError,
)
from crm_auth.credentials.log_utils import get_auth_logger
from crm_auth.credentials.models import AuthCode, PkceSession
from crm_auth.credentials.pkce import (
    code_challenge_s256,
    generate_code_verifier,
    validate_code_verifier,
)
from crm_auth.credentials.profiles import ProviderProfile
from crm_auth.credentials.state import build_state

_LOG_NAME = "crm-auth.credentials.flow"


def begin_authorization(
    profile: ProviderProfile,
    client_config: OAuthClientConfig,
    scopes: Iterable[str] | None,
    redirect_uri: str,
    *,
    user_id: str,
    state_secret: str,
    prompt: str | None = None,
    clock: Clock = default_clock,
) -> tuple[str, PkceSession]:
    """Return ``(authorization_url, session)`` for a new authorization attempt."""
    if not redirect_uri:
        raise ValueError("redirect_uri is required")

    scope_list = tuple(scopes or ()) or tuple(client_config.scope.split()) or profile.default_scopes
    txn_id = uuid.uuid4().hex
    state = build_state(txn_id, state_secret, clock=clock)

    query: dict[str, str] = {
        "response_type": "code",
        "client_id": client_config.client_id,
        "redirect_uri": redirect_uri,
        "scope": " ".join(scope_list),
        "state": state,
    }

    verifier = challenge = ""
    if profile.pkce:
        verifier = generate_code_verifier()
        challenge = code_challenge_s256(verifier)
        query["code_challenge"] = challenge
        query["code_challenge_method"] = "S256"
    if prompt:
        query["prompt"] = prompt

    session = PkceSession(
        txn_id=txn_id,
        provider=profile.name,
        user_id=user_id,
        redirect_uri=redirect_uri,
        state=state,
        code_verifier=verifier,
        code_challenge=challenge,
        scopes=scope_list,
        created_at=int(clock()),
    )
    get_auth_logger(
        base_logger_name=_LOG_NAME, user_id=user_id, provider=profile.name, txn_id=txn_id
    ).debug("Built authorization URL")
    return f"{profile.authorize_url}?{urlencode(query)}", session


def complete_authorization(
    callback_params: Mapping[str, str],
    session: PkceSession | None,
    *,
    clock: Clock = default_clock,
) -> AuthCode:
    """Validate the provider callback against the stored *session*.

    Checks run in this order: provider ``error`` → missing ``code`` → state
    (absent session, expired session or differing ``state``), then the stored
    PKCE verifier is checked.  Nothing here
    talks to the provider, so a failure never reaches the token exchange.
    """
    log = logging.getLogger(_LOG_NAME)

    error = callback_params.get("error")
    if error:
        reason = callback_params.get("error_description") or error
        log.warning("Provider denied authorization: %s", error)
        raise ProviderDeniedError(reason)

    code = callback_params.get("code")
    if not code:
        raise MissingCodeError()

    state = callback_params.get("state") or ""
    if session is None:
        raise StateMismatchError("No authorization in progress for this state.")
    if not hmac.compare_digest(state.encode(), session.state.encode()):
        raise StateMismatchError()
    if session.is_expired(clock=clock):
        raise StateMismatchError("Authorization session expired.")
    if session.code_verifier:
        try:
            validate_code_verifier(session.code_verifier)
        except ValueError:
            raise StateMismatchError("Authorization session is corrupt.") from None

    return AuthCode(
        code=code,
        code_verifier=session.code_verifier,
        redirect_uri=session.redirect_uri,
    )

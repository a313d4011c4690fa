"""Classification of provider responses that signal an invalidated token.

Providers revoke or reset sessions independently of the locally tracked
``expires_at``.  They report it with heterogeneous bodies:

* Salesforce – a JSON *list* of ``{"message": ..., "errorCode": "INVALID_SESSION_ID"}``
  objects, or a single object.
* HubSpot – a single object with ``"category": "EXPIRED_AUTHENTICATION"`` or
  ``"INVALID_AUTHENTICATION"``.

:func:`is_session_error` is a pure predicate over ``(status, body)`` so it
stays independent from the HTTP client library that produced the response.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Final

_MESSAGE_FRAGMENTS: Final[tuple[str, ...]] = (
    "session expired",
    "invalid",
    "token",
    "unauthorized",
)


@dataclass(frozen=True, slots=True)
class SessionErrorSignature:
    """Provider-specific description of a "token no longer valid" body."""

    codes: frozenset[str] = frozenset()
    code_fields: tuple[str, ...] = ("errorCode", "error_code", "error", "category")
    message_fields: tuple[str, ...] = ("message", "error_description")
    message_fragments: tuple[str, ...] = _MESSAGE_FRAGMENTS

    def matches(self, error: Any) -> bool:
        """Return *True* if a single error object carries the signature."""
        if not isinstance(error, dict):
            return False
        for name in self.code_fields:
            value = error.get(name)
            if isinstance(value, str) and value.upper() in self.codes:
                return True
        for name in self.message_fields:
            value = error.get(name)
            if isinstance(value, str):
                lowered = value.lower()
                if any(fragment in lowered for fragment in self.message_fragments):
                    return True
        return False


SALESFORCE_SIGNATURE: Final = SessionErrorSignature(
    codes=frozenset({"INVALID_SESSION_ID"}),
)
HUBSPOT_SIGNATURE: Final = SessionErrorSignature(
    codes=frozenset({"EXPIRED_AUTHENTICATION", "INVALID_AUTHENTICATION"}),
)
DEFAULT_SIGNATURE: Final = SessionErrorSignature(
    codes=SALESFORCE_SIGNATURE.codes | HUBSPOT_SIGNATURE.codes,
)


def _normalise_body(body: Any) -> Any:
    if isinstance(body, (bytes, bytearray)):
        body = body.decode("utf-8", errors="replace")
    if isinstance(body, str):
        try:
            return json.loads(body)
        except ValueError:
            return None
    return body


def is_session_error(
    status: int,
    body: Any,
    signature: SessionErrorSignature = DEFAULT_SIGNATURE,
) -> bool:
    """Return *True* if ``(status, body)`` means the access token was rejected.

    HTTP 401 always qualifies.  HTTP 400 qualifies only when the body (one
    error object or a list of them) matches *signature*.
    """
    if status == 401:
        return True
    if status != 400:
        return False

    body = _normalise_body(body)
    if isinstance(body, list):
        return any(signature.matches(item) for item in body)
    return signature.matches(body)

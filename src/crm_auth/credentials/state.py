"""Signed ``state`` values for the authorization redirect.

The state sent to the provider is ``base64url("<txn_id>:<ts>:<sig>")`` where

* ``txn_id`` keys the in-flight :class:`~crm_auth.credentials.models.PkceSession`,
* ``ts`` is the issue time in whole seconds from the injected clock,
* ``sig`` is the first 16 hex characters of HMAC-SHA256 over ``txn_id:ts``.

The callback decodes the state only to find the session; the session then
compares the complete value it issued against the one that came back.

Neither the state nor the signing secret is logged; debug lines show the
first 6 characters of ``txn_id``.
"""

from __future__ import annotations

import base64
import binascii
import hmac
import logging
from hashlib import sha256
from typing import Final

from crm_auth.credentials.clock import Clock, default_clock

_LOG = logging.getLogger("crm-auth.credentials.state")

_SIG_LEN: Final[int] = 16
_SEP: Final[str] = ":"


class InvalidStateError(Exception):
    """The callback ``state`` is absent, undecodable or carries a bad signature."""


def _signature(txn_id: str, ts: str, secret: str) -> str:
    mac = hmac.new(secret.encode(), f"{txn_id}{_SEP}{ts}".encode(), sha256)
    return mac.hexdigest()[:_SIG_LEN]


def _encode(text: str) -> str:
    return base64.urlsafe_b64encode(text.encode()).decode("ascii").rstrip("=")


def _decode(value: str) -> str:
    padded = value + "=" * (-len(value) % 4)
    return base64.urlsafe_b64decode(padded).decode()


def build_state(txn_id: str, secret: str, *, clock: Clock = default_clock) -> str:
    """Return the URL-safe state for authorization attempt *txn_id*.

    Parameters
    ----------
    txn_id:
        Identifier of the authorization attempt (e.g. ``uuid4().hex``).
    secret:
        HMAC key; the same value must be passed to :func:`parse_state`.
    clock:
        Time source for the embedded timestamp.
    """
    ts = str(int(clock()))
    state = _encode(_SEP.join((txn_id, ts, _signature(txn_id, ts, secret))))
    _LOG.debug("Issued state for txn_id=%s****", txn_id[:6])
    return state


def parse_state(state: str, secret: str) -> tuple[str, int]:
    """Verify *state* and return ``(txn_id, ts)``.

    Raises
    ------
    InvalidStateError
        For an empty, undecodable, malformed or wrongly signed value.
    """
    if not state:
        raise InvalidStateError("state missing")
    try:
        fields = _decode(state).split(_SEP)
    except (ValueError, binascii.Error):
        raise InvalidStateError("state cannot be decoded") from None

    if len(fields) != 3:
        raise InvalidStateError("state has an unexpected format")
    txn_id, ts, sig = fields
    if not txn_id or not ts.isdigit():
        raise InvalidStateError("state missing fields")
    if not hmac.compare_digest(sig, _signature(txn_id, ts, secret)):
        raise InvalidStateError("state signature mismatch")

    _LOG.debug("Verified state for txn_id=%s****", txn_id[:6])
    return txn_id, int(ts)

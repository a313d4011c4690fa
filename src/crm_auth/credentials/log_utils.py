"""Logging helpers that attach credential context without leaking secrets.

Only four context keys can ever reach a log record through
:func:`get_auth_logger`:

- ``user_id``        – owner of the credential
- ``provider``       – ``salesforce`` or ``hubspot``
- ``txn_id``         – authorization attempt, cut to its first 6 characters
- ``correlation_id`` – request id set by the HTTP middleware

Anything else passed in is dropped.  Tokens, verifiers and client secrets go
through :func:`mask_sensitive` when a message has to mention them at all.

Usage
-----
>>> from crm_auth.credentials.log_utils import get_auth_logger
>>> log = get_auth_logger(
...     base_logger_name="crm-auth.credentials.refresher",
...     user_id="42",
...     provider="hubspot",
... )
>>> log.info("Refreshing credential")
"""

from __future__ import annotations

import logging
from typing import Any, Final, Mapping, MutableMapping

_CONTEXT_KEYS: Final[tuple[str, ...]] = ("user_id", "provider", "txn_id", "correlation_id")
_TXN_ID_CHARS: Final[int] = 6


def mask_sensitive(value: str | None, keep_chars: int = 4) -> str:
    """Return *value* with everything but the first *keep_chars* masked."""
    if not value:
        return "<none>"
    if len(value) <= keep_chars:
        return "*" * len(value)
    return value[:keep_chars] + "*" * 4


class _AuthLoggerAdapter(logging.LoggerAdapter):
    """Appends ``[key=value ...]`` for the whitelisted context to every message."""

    def __init__(self, logger: logging.Logger, context: Mapping[str, Any] | None = None):
        context = context or {}
        allowed = {key: context[key] for key in _CONTEXT_KEYS if context.get(key) is not None}
        if "txn_id" in allowed:
            allowed["txn_id"] = str(allowed["txn_id"])[:_TXN_ID_CHARS]
        super().__init__(logger, allowed)

    def process(self, msg: str, kwargs: MutableMapping[str, Any]):
        extra = kwargs.get("extra") or {}
        # call-site extras win over the adapter context
        kwargs["extra"] = {**self.extra, **extra}
        if not self.extra:
            return msg, kwargs
        suffix = " ".join(f"{key}={value}" for key, value in self.extra.items())
        return f"{msg} [{suffix}]", kwargs


def get_auth_logger(
    *,
    base_logger_name: str = "crm-auth.credentials",
    user_id: str | None = None,
    provider: str | None = None,
    txn_id: str | None = None,
    correlation_id: str | None = None,
) -> logging.LoggerAdapter:
    """Return a logger adapter carrying the given credential context."""
    return _AuthLoggerAdapter(
        logging.getLogger(base_logger_name),
        {
            "user_id": user_id,
            "provider": provider,
            "txn_id": txn_id,
            "correlation_id": correlation_id,
        },
    )

"""Clock abstraction for testable time handling in credential logic.

This module defines a `Clock` protocol representing callables that return the
current UNIX timestamp as ``float``.  All expiry decisions inside the
credentials package MUST depend on an injected ``Clock`` instance rather than
calling ``time.time()`` or ``datetime.now()`` directly.

Example
-------
>>> from crm_auth.credentials.clock import default_clock, utcnow
>>> isinstance(default_clock(), float)
True
>>> utcnow(default_clock).tzinfo is not None
True
"""

from __future__ import annotations

import time
from datetime import datetime, timezone
from typing import Protocol, runtime_checkable


@runtime_checkable
class Clock(Protocol):
    """Callable protocol returning *seconds* since the UNIX epoch."""

    def __call__(self) -> float: ...


def default_clock() -> float:
    """Default implementation that delegates to ``time.time()``."""
    return time.time()


def utcnow(clock: Clock = default_clock) -> datetime:
    """Return the clock's current instant as a timezone-aware UTC datetime."""
    return datetime.fromtimestamp(clock(), tz=timezone.utc)

"""Background sweep refreshing credentials that are about to expire.

:meth:`CredentialSweep.run` always succeeds at the batch level: each
credential is refreshed independently and any failure is logged with its
user/provider context and recorded in the :class:`SweepOutcome`.  The next
scheduled sweep retries whatever failed, so the job runner never has a reason
to retry the batch.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Final, Iterable, Mapping

from crm_auth.credentials.clock import Clock, default_clock, utcnow
from crm_auth.credentials.log_utils import get_auth_logger
from crm_auth.credentials.refresher import CredentialRefresher
from crm_auth.credentials.store import CredentialStore

_LOG = logging.getLogger("crm-auth.credentials.sweep")

DEFAULT_THRESHOLD: Final = timedelta(minutes=5)


@dataclass(slots=True)
class SweepOutcome:
    provider: str
    refreshed: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return True


class CredentialSweep:
    """Refreshes every soon-to-expire credential of a provider."""

    def __init__(
        self,
        store: CredentialStore,
        refreshers: Mapping[str, CredentialRefresher],
        *,
        clock: Clock = default_clock,
        threshold: timedelta = DEFAULT_THRESHOLD,
    ) -> None:
        self.store = store
        self.refreshers = dict(refreshers)
        self.clock = clock
        self.threshold = threshold

    def run(self, provider: str, threshold: timedelta | None = None) -> SweepOutcome:
        outcome = SweepOutcome(provider=provider)
        refresher = self.refreshers.get(provider)
        if refresher is None:
            _LOG.warning("No refresher configured for %s; sweep skipped", provider)
            return outcome

        cutoff = utcnow(self.clock) + (self.threshold if threshold is None else threshold)
        try:
            expiring = self.store.list_expiring(provider, cutoff)
        except Exception:
            _LOG.exception("Could not list expiring %s credentials", provider)
            return outcome

        _LOG.info("Found %d expiring %s credential(s)", len(expiring), provider)
        for credential in expiring:
            log = get_auth_logger(
                base_logger_name="crm-auth.credentials.sweep",
                user_id=credential.user_id,
                provider=provider,
            )
            if not credential.refresh_token:
                log.info("Skipping credential without refresh token")
                outcome.skipped.append(credential.user_id)
                continue
            try:
                refresher.refresh_credential(credential)
            except Exception as exc:  # one credential must never abort the sweep
                log.error("Failed to refresh credential: %s", exc)
                outcome.failed.append(credential.user_id)
            else:
                outcome.refreshed.append(credential.user_id)

        _LOG.info(
            "%s sweep finished: %d refreshed, %d skipped, %d failed",
            provider,
            len(outcome.refreshed),
            len(outcome.skipped),
            len(outcome.failed),
        )
        return outcome

    def perform(self, providers: Iterable[str] | None = None) -> str:
        """Job entry point; needs no payload and always reports ``"ok"``."""
        for provider in providers or list(self.refreshers):
            self.run(provider)
        return "ok"


class SweepScheduler:
    """Runs :meth:`CredentialSweep.perform` periodically on a daemon thread."""

    def __init__(
        self,
        sweep: CredentialSweep,
        *,
        interval_seconds: float = 300,
        providers: Iterable[str] | None = None,
    ) -> None:
        self.sweep = sweep
        self.interval_seconds = interval_seconds
        self.providers = list(providers) if providers is not None else None
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.running:
            return
        self._stop.clear()
        self._thread = threading.Thread(
            target=self._loop, name="crm-auth-credential-sweep", daemon=True
        )
        self._thread.start()
        _LOG.info("Started credential sweep every %ss", self.interval_seconds)

    def stop(self, timeout: float | None = 5.0) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
        _LOG.info("Stopped credential sweep")

    def run_once(self) -> str:
        return self.sweep.perform(self.providers)

    def _loop(self) -> None:
        while not self._stop.is_set():
            try:
                self.run_once()
            except Exception:
                _LOG.exception("Credential sweep crashed; retrying next interval")
            self._stop.wait(self.interval_seconds)

"""Unit tests for the background credential sweep.

Coverage:
* Only credentials expiring within the threshold are refreshed
* One failing credential does not stop the others; the batch still reports ok
* Credentials without a refresh token are skipped
* An unreadable credential file is skipped, not fatal to the batch
* A zero threshold refreshes only already-expired credentials
* Scheduler start / stop lifecycle
"""

from __future__ import annotations

import threading
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from crm_auth.credentials.errors import TokenExchangeError
from crm_auth.credentials.models import Credential, TokenResult
from crm_auth.credentials.profiles import HUBSPOT
from crm_auth.credentials.refresher import CredentialRefresher
from crm_auth.credentials.store import DiskCredentialStore
from crm_auth.credentials.sweep import CredentialSweep, SweepScheduler

NOW = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)


def fake_clock_factory(now: datetime):
    return lambda ts=now.timestamp(): ts


class FlakyExchangeClient:
    """Fails for refresh tokens listed in *failing*, succeeds otherwise."""

    profile = HUBSPOT

    def __init__(self, failing: set[str] = frozenset()) -> None:
        self.failing = set(failing)
        self.calls: list[str] = []

    def refresh(self, refresh_token: str) -> TokenResult:
        self.calls.append(refresh_token)
        if refresh_token in self.failing:
            raise TokenExchangeError("invalid_grant", "refresh token revoked", status=400)
        return TokenResult(access_token=f"new-{refresh_token}", expires_in_seconds=1800)


def _seed(store: DiskCredentialStore, user_id: str, expires_in: timedelta, refresh_token: str | None) -> None:
    store.save(
        Credential(
            user_id=user_id,
            provider="hubspot",
            token=f"tok-{user_id}",
            refresh_token=refresh_token,
            expires_at=NOW + expires_in,
        )
    )


@pytest.fixture()
def store(tmp_path: Path) -> DiskCredentialStore:
    return DiskCredentialStore(base_dir=tmp_path, clock=fake_clock_factory(NOW))


def _sweep(store: DiskCredentialStore, client: FlakyExchangeClient) -> CredentialSweep:
    refresher = CredentialRefresher(store, client, clock=fake_clock_factory(NOW))
    return CredentialSweep(store, {"hubspot": refresher}, clock=fake_clock_factory(NOW))


# --------------------------------------------------------------------------- #
# CredentialSweep                                                             #
# --------------------------------------------------------------------------- #
def test_failure_isolated_and_batch_ok(store: DiskCredentialStore) -> None:
    _seed(store, "a", timedelta(minutes=1), "rt-a")
    _seed(store, "b", timedelta(minutes=2), "rt-b")
    _seed(store, "c", timedelta(minutes=3), "rt-c")
    client = FlakyExchangeClient(failing={"rt-b"})

    outcome = _sweep(store, client).run("hubspot")

    assert outcome.ok is True
    assert sorted(outcome.refreshed) == ["a", "c"]
    assert outcome.failed == ["b"]
    assert sorted(client.calls) == ["rt-a", "rt-b", "rt-c"]
    assert store.load("a", "hubspot").token == "new-rt-a"
    assert store.load("b", "hubspot").token == "tok-b"
    assert store.load("c", "hubspot").token == "new-rt-c"


def test_only_expiring_credentials_are_refreshed(store: DiskCredentialStore) -> None:
    _seed(store, "soon", timedelta(minutes=4), "rt-soon")
    _seed(store, "later", timedelta(hours=2), "rt-later")
    client = FlakyExchangeClient()

    outcome = _sweep(store, client).run("hubspot")

    assert outcome.refreshed == ["soon"]
    assert client.calls == ["rt-soon"]


def test_threshold_override(store: DiskCredentialStore) -> None:
    _seed(store, "later", timedelta(hours=2), "rt-later")
    client = FlakyExchangeClient()

    outcome = _sweep(store, client).run("hubspot", threshold=timedelta(hours=3))

    assert outcome.refreshed == ["later"]


def test_zero_threshold_is_respected(store: DiskCredentialStore) -> None:
    _seed(store, "soon", timedelta(minutes=2), "rt-soon")
    client = FlakyExchangeClient()

    outcome = _sweep(store, client).run("hubspot", threshold=timedelta(0))

    assert outcome.refreshed == []
    assert client.calls == []


def test_corrupt_sibling_file_does_not_block_batch(store: DiskCredentialStore, tmp_path: Path) -> None:
    _seed(store, "a", timedelta(minutes=1), "rt-a")
    _seed(store, "b", timedelta(minutes=1), "rt-b")
    _seed(store, "c", timedelta(minutes=1), "rt-c")
    (tmp_path / "hubspot" / "zzzz.json").write_text("{not json")
    client = FlakyExchangeClient()

    outcome = _sweep(store, client).run("hubspot")

    assert outcome.ok is True
    assert sorted(outcome.refreshed) == ["a", "b", "c"]
    assert outcome.failed == []


def test_credentials_without_refresh_token_skipped(store: DiskCredentialStore) -> None:
    _seed(store, "stuck", timedelta(minutes=-5), None)
    client = FlakyExchangeClient()

    outcome = _sweep(store, client).run("hubspot")

    assert outcome.skipped == ["stuck"]
    assert client.calls == []


def test_unknown_provider_is_noop(store: DiskCredentialStore) -> None:
    outcome = _sweep(store, FlakyExchangeClient()).run("salesforce")
    assert outcome.refreshed == outcome.failed == outcome.skipped == []


def test_perform_always_reports_ok(store: DiskCredentialStore) -> None:
    _seed(store, "a", timedelta(minutes=1), "rt-a")
    client = FlakyExchangeClient(failing={"rt-a"})
    assert _sweep(store, client).perform() == "ok"


def test_listing_failure_does_not_raise(store: DiskCredentialStore, monkeypatch) -> None:
    def boom(provider, before):
        raise OSError("disk gone")

    monkeypatch.setattr(store, "list_expiring", boom)
    outcome = _sweep(store, FlakyExchangeClient()).run("hubspot")
    assert outcome.ok is True
    assert outcome.refreshed == []


# --------------------------------------------------------------------------- #
# SweepScheduler                                                              #
# --------------------------------------------------------------------------- #
class CountingSweep:
    def __init__(self) -> None:
        self.calls = 0
        self.ran = threading.Event()

    def perform(self, providers=None) -> str:
        self.calls += 1
        self.ran.set()
        return "ok"


def test_scheduler_runs_and_stops() -> None:
    sweep = CountingSweep()
    scheduler = SweepScheduler(sweep, interval_seconds=60)  # type: ignore[arg-type]

    scheduler.start()
    assert sweep.ran.wait(2.0)
    assert scheduler.running is True

    scheduler.stop()
    assert scheduler.running is False
    assert sweep.calls == 1


def test_scheduler_run_once_passes_providers() -> None:
    seen = {}

    class Recorder:
        def perform(self, providers=None):
            seen["providers"] = providers
            return "ok"

    scheduler = SweepScheduler(Recorder(), providers=["hubspot"])  # type: ignore[arg-type]
    assert scheduler.run_once() == "ok"
    assert seen["providers"] == ["hubspot"]

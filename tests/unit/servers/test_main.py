"""Tests for the application factory lifespan and environment bootstrap."""

from __future__ import annotations

from pathlib import Path

from starlette.testclient import TestClient

from crm_auth.credentials.config import CrmAuthSettings
from crm_auth.credentials.service import CrmAuthService
from crm_auth.servers import main as main_mod


class RecordingScheduler:
    def __init__(self) -> None:
        self.events: list[str] = []

    def start(self) -> None:
        self.events.append("start")

    def stop(self) -> None:
        self.events.append("stop")


def test_lifespan_starts_and_stops_scheduler(tmp_path: Path) -> None:
    svc = CrmAuthService(CrmAuthSettings(state_secret="s", storage_dir=tmp_path))
    scheduler = RecordingScheduler()
    app = main_mod.create_app(svc, scheduler=scheduler)  # type: ignore[arg-type]

    with TestClient(app) as client:
        assert scheduler.events == ["start"]
        assert client.get("/healthz").status_code == 200

    assert scheduler.events == ["start", "stop"]


def test_build_from_env(monkeypatch, tmp_path: Path) -> None:
    monkeypatch.setenv("CRM_AUTH_STORAGE_DIR", str(tmp_path))
    monkeypatch.setenv("CRM_AUTH_STATE_SECRET", "s")
    monkeypatch.setenv("CRM_AUTH_SWEEP_ENABLED", "false")
    monkeypatch.setenv("HUBSPOT_CLIENT_ID", "hs-id")
    monkeypatch.setenv("HUBSPOT_CLIENT_SECRET", "hs-secret")
    monkeypatch.delenv("SALESFORCE_CLIENT_ID", raising=False)

    app = main_mod.build_from_env()
    svc = app.state.service

    assert svc.settings.configured_providers() == ["hubspot"]
    assert svc.store.base_dir == tmp_path

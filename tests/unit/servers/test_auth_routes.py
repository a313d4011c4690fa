"""Unit tests for the /auth endpoints and the application factory."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from pathlib import Path
from types import SimpleNamespace
from typing import Any
from urllib.parse import parse_qs, urlparse

import httpx
import pytest

from crm_auth.credentials.config import CrmAuthSettings, OAuthClientConfig
from crm_auth.credentials.models import Credential
from crm_auth.credentials.service import CrmAuthService
from crm_auth.credentials.store import DiskCredentialStore
from crm_auth.servers.main import create_app

# --------------------------------------------------------------------------- #
# Constants                                                                   #
# --------------------------------------------------------------------------- #
REDIRECT_URI = "http://localhost/auth/salesforce/callback"
NOW = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)


class FakeTokenSession:
    """Serves canned token-endpoint and identity responses."""

    def __init__(self) -> None:
        self.posts: list[dict[str, Any]] = []

    def post(self, url, *, data, headers, timeout):
        self.posts.append(data)
        body = {
            "access_token": "at",
            "refresh_token": "rt",
            "instance_url": "https://na1.my.salesforce.com",
            "id": "https://login.salesforce.com/id/00Dxx/005xx",
        }
        return SimpleNamespace(status_code=200, ok=True, text="", json=lambda: body)

    def get(self, url, *, headers, timeout):
        body = {"user_id": "005xx", "email": "ada@example.com"}
        return SimpleNamespace(status_code=200, ok=True, text="", json=lambda: body)


# --------------------------------------------------------------------------- #
# Fixtures                                                                    #
# --------------------------------------------------------------------------- #
@pytest.fixture()
def http() -> FakeTokenSession:
    return FakeTokenSession()


@pytest.fixture()
def svc(tmp_path: Path, http: FakeTokenSession) -> CrmAuthService:
    clock = lambda ts=NOW.timestamp(): ts  # noqa: E731
    settings = CrmAuthSettings(
        clients={"salesforce": OAuthClientConfig("sf-id", "sf-secret", REDIRECT_URI)},
        state_secret="state-secret",
    )
    return CrmAuthService(
        settings,
        store=DiskCredentialStore(tmp_path, clock=clock),
        http_session=http,  # type: ignore[arg-type]
        clock=clock,
    )


@pytest.fixture()
async def client(svc: CrmAuthService):
    """Async HTTP client bound to the Starlette app."""
    transport = httpx.ASGITransport(app=create_app(svc))
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


# --------------------------------------------------------------------------- #
# /auth/{provider}/start                                                      #
# --------------------------------------------------------------------------- #
@pytest.mark.anyio
async def test_html_accept_redirect(client: httpx.AsyncClient) -> None:
    """Accept: text/html with no explicit format should trigger HTTP redirect."""
    resp = await client.get("/auth/salesforce/start?user_id=u1", headers={"Accept": "text/html"})
    assert resp.status_code == 303
    assert resp.headers["location"].startswith("https://login.salesforce.com/services/oauth2/authorize?")


@pytest.mark.anyio
async def test_json_accept_returns_json(client: httpx.AsyncClient) -> None:
    resp = await client.get("/auth/salesforce/start?user_id=u1", headers={"Accept": "application/json"})
    assert resp.status_code == 200
    assert "code_challenge=" in resp.json()["authorize_url"]


@pytest.mark.anyio
async def test_format_param_overrides_accept(client: httpx.AsyncClient) -> None:
    resp = await client.get(
        "/auth/salesforce/start?user_id=u1&format=json", headers={"Accept": "text/html"}
    )
    assert resp.status_code == 200
    assert "authorize_url" in resp.json()


@pytest.mark.anyio
async def test_start_requires_user_id(client: httpx.AsyncClient) -> None:
    resp = await client.get("/auth/salesforce/start")
    assert resp.status_code == 400


@pytest.mark.anyio
async def test_start_unconfigured_provider(client: httpx.AsyncClient) -> None:
    resp = await client.get("/auth/hubspot/start?user_id=u1&format=json")
    assert resp.status_code == 400
    assert "hubspot" in resp.json()["error"]


# --------------------------------------------------------------------------- #
# /auth/{provider}/callback                                                   #
# --------------------------------------------------------------------------- #
@pytest.mark.anyio
async def test_full_connect_flow(client: httpx.AsyncClient, svc: CrmAuthService, http: FakeTokenSession) -> None:
    start = await client.get("/auth/salesforce/start?user_id=u1&format=json")
    state = parse_qs(urlparse(start.json()["authorize_url"]).query)["state"][0]

    resp = await client.get("/auth/salesforce/callback", params={"code": "c0de", "state": state})

    assert resp.status_code == 200
    assert "Authorization successful" in resp.text
    assert http.posts[0]["code"] == "c0de"
    cred = svc.load_credential("u1", "salesforce")
    assert cred.token == "at"
    assert cred.email == "ada@example.com"


@pytest.mark.anyio
@pytest.mark.parametrize(
    ("params", "fragment"),
    [
        ({"error": "access_denied", "error_description": "user said no"}, "user said no"),
        ({"state": "x"}, "No authorization code received"),
        ({"code": "c", "state": "forged"}, "state"),
    ],
)
async def test_callback_failures_render_reason(
    client: httpx.AsyncClient, http: FakeTokenSession, params, fragment
) -> None:
    resp = await client.get("/auth/salesforce/callback", params=params)
    assert resp.status_code == 400
    assert "Authorization failed" in resp.text
    assert fragment in resp.text
    assert http.posts == []


# --------------------------------------------------------------------------- #
# status / disconnect / health                                                #
# --------------------------------------------------------------------------- #
@pytest.mark.anyio
async def test_status_and_disconnect(client: httpx.AsyncClient, svc: CrmAuthService) -> None:
    svc.store.save(
        Credential(
            user_id="u1",
            provider="salesforce",
            token="at",
            refresh_token="rt",
            expires_at=NOW + timedelta(hours=1),
        )
    )

    status = await client.get("/auth/status?user_id=u1")
    assert status.status_code == 200
    assert status.json()["salesforce"]["connected"] is True

    resp = await client.post("/auth/salesforce/disconnect", json={"user_id": "u1"})
    assert resp.status_code == 204

    status = await client.get("/auth/status?user_id=u1")
    assert status.json()["salesforce"] == {"connected": False}


@pytest.mark.anyio
async def test_disconnect_requires_user_id(client: httpx.AsyncClient) -> None:
    resp = await client.post("/auth/salesforce/disconnect", json={})
    assert resp.status_code == 400


@pytest.mark.anyio
async def test_healthz_and_correlation_header(client: httpx.AsyncClient) -> None:
    resp = await client.get("/healthz", headers={"X-Correlation-ID": "abc123"})
    assert resp.json() == {"status": "ok"}
    assert resp.headers["X-Correlation-ID"] == "abc123"

    resp = await client.get("/healthz")
    assert len(resp.headers["X-Correlation-ID"]) == 32

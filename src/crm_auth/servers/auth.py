"""Starlette endpoints for connecting and disconnecting a CRM account.

Each handler reads its query / body parameters, calls one
``CrmAuthService`` method and turns the outcome into a response:

* ``start``      - 303 redirect for browsers, ``{"authorize_url"}`` JSON otherwise
* ``callback``   - small HTML page, 400 with the reason on failure
* ``status``     - JSON connection summary per provider
* ``disconnect`` - 204

Routes live under ``base_path`` (``/auth`` by default).  Log lines carry the
provider, error code and ``request.state.correlation_id``; never tokens,
verifiers or the ``state`` value.
"""

from __future__ import annotations

import html
import logging

from starlette.concurrency import run_in_threadpool
from starlette.requests import Request
from starlette.responses import HTMLResponse, JSONResponse, RedirectResponse, Response
from starlette.routing import Route

from crm_auth.credentials.errors import CrmAuthError, UnsupportedProviderError
from crm_auth.credentials.service import CrmAuthService

_LOG = logging.getLogger("crm-auth.auth.routes")


def _html_page(title: str, body: str, status: int = 200) -> HTMLResponse:
    """Return a tiny success / error HTML page."""
    content = (
        "<!doctype html><html lang='en'>"
        "<head><meta charset='utf-8'><title>"
        f"{html.escape(title)}</title></head><body><h1>{html.escape(title)}</h1>"
        f"<p>{html.escape(body)}</p></body></html>"
    )
    return HTMLResponse(content, status_code=status)


def _correlation_id(request: Request) -> str:
    return getattr(request.state, "correlation_id", "-")


# --------------------------------------------------------------------------- #
# Public API                                                                  #
# --------------------------------------------------------------------------- #
def auth_routes(svc: CrmAuthService, *, base_path: str = "/auth") -> list[Route]:
    """Return the OAuth endpoints bound to *svc* under *base_path*."""

    # ----- GET /auth/{provider}/start ------------------------------------- #
    async def _start_oauth(request: Request) -> Response:
        provider = request.path_params["provider"]
        user_id = request.query_params.get("user_id")
        if not user_id:
            return JSONResponse({"error": "missing user_id"}, status_code=400)

        try:
            authorize_url = svc.begin_authorization(
                provider,
                user_id=user_id,
                redirect_uri=request.query_params.get("redirect_uri"),
                prompt=request.query_params.get("prompt"),
            )
        except ValueError as exc:
            return JSONResponse({"error": str(exc)}, status_code=400)

        _LOG.info(
            "OAuth start provider=%s correlation_id=%s", provider, _correlation_id(request)
        )

        # ?format= beats the Accept header
        wanted = request.query_params.get("format")
        if wanted is None and "text/html" in request.headers.get("accept", "").lower():
            wanted = "redirect"
        if wanted == "redirect":
            return RedirectResponse(authorize_url, status_code=303)
        return JSONResponse({"authorize_url": authorize_url})

    # ----- GET /auth/{provider}/callback ---------------------------------- #
    async def _oauth_callback(request: Request) -> Response:
        provider = request.path_params["provider"]
        params = dict(request.query_params)
        try:
            await run_in_threadpool(svc.complete_authorization, provider, params)
        except UnsupportedProviderError as exc:
            return _html_page("Authorization failed", str(exc), 400)
        except CrmAuthError as exc:
            _LOG.warning(
                "OAuth callback error provider=%s error=%s correlation_id=%s",
                provider,
                exc.code,
                _correlation_id(request),
            )
            return _html_page("Authorization failed", str(exc), 400)

        _LOG.info(
            "OAuth success provider=%s correlation_id=%s", provider, _correlation_id(request)
        )
        return _html_page("Authorization successful", "You may close this window.")

    # ----- GET /auth/status ----------------------------------------------- #
    async def _status(request: Request) -> Response:
        user_id = request.query_params.get("user_id")
        if not user_id:
            return JSONResponse({"error": "missing user_id"}, status_code=400)
        try:
            payload = await run_in_threadpool(svc.status, user_id)
        except CrmAuthError as exc:
            _LOG.error("Status lookup failed: %s", exc.code)
            return JSONResponse(exc.to_payload(), status_code=500)
        return JSONResponse(payload)

    # ----- POST /auth/{provider}/disconnect ------------------------------- #
    async def _disconnect(request: Request) -> Response:
        provider = request.path_params["provider"]
        try:
            payload = await request.json()
        except ValueError:
            payload = None
        user_id = payload.get("user_id") if isinstance(payload, dict) else None
        if not user_id:
            return JSONResponse({"error": "missing user_id"}, status_code=400)
        try:
            await run_in_threadpool(svc.disconnect, user_id, provider)
        except UnsupportedProviderError as exc:
            return JSONResponse({"error": str(exc)}, status_code=400)
        except CrmAuthError as exc:
            _LOG.error("Disconnect failed provider=%s error=%s", provider, exc.code)
            return JSONResponse(exc.to_payload(), status_code=500)
        _LOG.info(
            "Disconnected provider=%s correlation_id=%s", provider, _correlation_id(request)
        )
        return Response(status_code=204)

    return [
        Route(f"{base_path}/status", _status, methods=["GET"]),
        Route(f"{base_path}/{{provider}}/start", _start_oauth, methods=["GET"]),
        Route(f"{base_path}/{{provider}}/callback", _oauth_callback, methods=["GET"]),
        Route(f"{base_path}/{{provider}}/disconnect", _disconnect, methods=["POST"]),
    ]

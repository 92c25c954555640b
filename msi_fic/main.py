"""FastAPI application reading Key Vault secrets with a managed identity FIC."""

from __future__ import annotations

import asyncio
import logging
from pprint import pformat
from typing import Any, Dict, List, Optional, Tuple

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import HTMLResponse, JSONResponse, RedirectResponse
from starlette.concurrency import run_in_threadpool

from .config import get_settings
from .msal_client import build_confidential_client, start_login, user_from_token_result
from .pages import render_index
from .secret_store import SecretOutcome, lookup_secret
from .session import AUTH_FLOW_KEY, USER_KEY, AuthState, SessionHandle, SessionManager
from .token_provider import ManagedIdentityTokenProvider

logger = logging.getLogger(__name__)


settings = get_settings()
session_manager = SessionManager(
    cookie_name=settings.session_cookie_name,
    idle_timeout_seconds=settings.session_idle_timeout_seconds,
    absolute_timeout_seconds=settings.session_absolute_timeout_seconds,
    cookie_secure=settings.cookie_secure,
    cookie_samesite=settings.cookie_samesite,
)
token_provider = ManagedIdentityTokenProvider(client_id=settings.msi_client_id)


app = FastAPI(title="Managed Identity FIC Secrets", version="1.0.0")


def _log_flow_step(step: str, details: Optional[Dict[str, Any]] = None) -> None:
    """Emit structured log entries for the sign-in and secret flow steps."""

    if details:
        pretty_details = pformat(details, sort_dicts=True)
        logger.info("[FIC flow] %s\n%s", step, pretty_details)
    else:
        logger.info("[FIC flow] %s", step)


def _redirect_uri(request: Request) -> str:
    return str(request.base_url).rstrip("/") + settings.callback_path


def _return_url(request: Request) -> str:
    url = request.url.path
    if request.url.query:
        url += "?" + request.url.query
    return url


def _begin_login(redirect_uri: str, return_url: str) -> Tuple[str, Dict[str, Any]]:
    # MSAL discovers the authority when the client is built.
    client = build_confidential_client(settings, token_provider)
    return start_login(client, settings.login_scopes, redirect_uri, return_url)


def _redeem_code(code: str, scopes: List[str], redirect_uri: str, verifier: str) -> Dict[str, Any]:
    client = build_confidential_client(settings, token_provider)
    return client.acquire_token_by_authorization_code(
        code,
        scopes=scopes,
        redirect_uri=redirect_uri,
        code_verifier=verifier,
    )


async def _challenge(request: Request, handle: SessionHandle) -> RedirectResponse:
    """Send the browser to Entra ID and come back to the same resource."""

    auth_url, flow = await run_in_threadpool(
        _begin_login, _redirect_uri(request), _return_url(request)
    )
    response = RedirectResponse(auth_url, status_code=302)
    session = handle.rotate(response)
    session.clear()
    session[AUTH_FLOW_KEY] = flow
    _log_flow_step(
        "Redirecting unauthenticated request to sign-in",
        {
            "authorization_url": auth_url,
            "return_url": flow["return_url"],
            "scopes": settings.login_scopes,
        },
    )
    handle.commit(response)
    return response


async def _load_secrets(host: Optional[str]) -> List[SecretOutcome]:
    # The two lookups are independent; the SDKs block, so each runs in the
    # thread pool.
    outcomes = await asyncio.gather(
        *(
            run_in_threadpool(lookup_secret, target, settings, token_provider, host=host)
            for target in settings.tenant_targets
        )
    )
    _log_flow_step(
        "Secret lookups finished",
        {outcome.target.label: outcome.status for outcome in outcomes},
    )
    return list(outcomes)


@app.get("/healthz")
async def healthz() -> Dict[str, str]:
    return {"status": "ok"}


@app.get("/", response_class=HTMLResponse)
async def index(request: Request):
    handle = session_manager.load_session(request)
    if handle.state is not AuthState.AUTHENTICATED:
        return await _challenge(request, handle)

    outcomes = await _load_secrets(request.url.hostname)
    response = HTMLResponse(render_index(handle.user, outcomes))
    handle.commit(response)
    return response


@app.get("/secrets")
async def secrets_json(request: Request):
    handle = session_manager.load_session(request)
    if handle.state is not AuthState.AUTHENTICATED:
        return await _challenge(request, handle)

    outcomes = await _load_secrets(request.url.hostname)
    response = JSONResponse({"secrets": [outcome.to_dict() for outcome in outcomes]})
    handle.commit(response)
    return response


async def callback(
    request: Request,
    code: str | None = None,
    state: str | None = None,
    error: str | None = None,
    error_description: str | None = None,
):
    handle = session_manager.load_session(request)
    session = handle.data

    if error:
        raise HTTPException(status_code=400, detail=f"Authorization error: {error}: {error_description}")

    if not code or not state:
        raise HTTPException(status_code=400, detail="Missing authorization code or state")

    flow = session.get(AUTH_FLOW_KEY)
    if not flow or flow.get("state") != state:
        raise HTTPException(status_code=400, detail="Invalid or expired state")

    verifier = flow.get("code_verifier")
    if not verifier:
        raise HTTPException(status_code=400, detail="Missing PKCE verifier in session")

    _log_flow_step("Processing authorization callback", {"scopes": flow.get("scopes")})

    token_result = await run_in_threadpool(
        _redeem_code,
        code,
        flow.get("scopes") or settings.login_scopes,
        _redirect_uri(request),
        verifier,
    )

    if "error" in token_result:
        description = token_result.get("error_description") or token_result["error"]
        logger.error("Sign-in code exchange failed: %s", description)
        raise HTTPException(status_code=400, detail=f"Token acquisition failed: {description}")

    return_url = flow.get("return_url") or "/"
    if not return_url.startswith("/") or return_url.startswith("//"):
        return_url = "/"
    response = RedirectResponse(url=return_url, status_code=302)

    # The signed-in session gets a fresh identifier; the one that carried the
    # login flow is discarded.
    user = user_from_token_result(token_result)
    session = handle.rotate(response)
    session[USER_KEY] = user
    _log_flow_step("User signed in", {"upn": user.get("upn"), "tid": user.get("tid")})
    handle.commit(response)
    return response


app.add_api_route(settings.callback_path, callback, methods=["GET"], include_in_schema=False)

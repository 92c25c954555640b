"""Helpers for creating MSAL clients backed by a federated assertion."""

from __future__ import annotations

import base64
import hashlib
import logging
import secrets
import time
from typing import Any, Callable, Dict, Optional

import msal

from .config import Settings
from .token_provider import ManagedIdentityTokenProvider

logger = logging.getLogger(__name__)


def build_assertion_client(
    client_id: str,
    authority: str,
    assertion: Callable[[], str],
    cache: Optional[msal.TokenCache] = None,
) -> msal.ConfidentialClientApplication:
    """Construct a ConfidentialClientApplication that signs in with ``assertion``.

    MSAL calls ``assertion`` lazily, once for every request it sends to the
    token endpoint, so a fresh managed identity token is presented each time.
    """

    return msal.ConfidentialClientApplication(
        client_id=client_id,
        authority=authority,
        client_credential={"client_assertion": assertion},
        token_cache=cache,
    )


def build_confidential_client(
    settings: Settings,
    token_provider: ManagedIdentityTokenProvider,
) -> msal.ConfidentialClientApplication:
    """Client used for the interactive sign-in of the web app itself."""

    if settings.client_secret:
        # Managed identity is not reachable off-platform; a secret keeps
        # local sign-in working.
        logger.info("Using client secret for sign-in code exchange")
        return msal.ConfidentialClientApplication(
            client_id=settings.client_id,
            authority=settings.login_authority,
            client_credential=settings.client_secret,
        )

    audience = settings.token_exchange_audience
    return build_assertion_client(
        settings.client_id,
        settings.login_authority,
        lambda: token_provider.get_token(audience),
    )


def create_pkce_pair() -> tuple[str, str]:
    """Return a ``(verifier, challenge)`` tuple for the S256 PKCE method."""

    verifier_bytes = secrets.token_bytes(64)
    verifier = base64.urlsafe_b64encode(verifier_bytes).decode("ascii").rstrip("=")
    digest = hashlib.sha256(verifier.encode("ascii")).digest()
    challenge = base64.urlsafe_b64encode(digest).decode("ascii").rstrip("=")
    return verifier, challenge


def start_login(
    client: msal.ConfidentialClientApplication,
    scopes: list[str],
    redirect_uri: str,
    return_url: str,
) -> tuple[str, Dict[str, Any]]:
    """Build the authorize URL and the flow record kept in the session."""

    verifier, challenge = create_pkce_pair()
    state = secrets.token_urlsafe(32)
    auth_url = client.get_authorization_request_url(
        scopes=scopes,
        redirect_uri=redirect_uri,
        state=state,
        prompt="select_account",
        code_challenge=challenge,
        code_challenge_method="S256",
    )
    flow = {
        "state": state,
        "scopes": scopes,
        "code_verifier": verifier,
        "return_url": return_url,
        "created_at": int(time.time()),
    }
    return auth_url, flow


def user_from_token_result(result: Dict[str, Any]) -> Dict[str, Any]:
    """Session record for the signed-in user, taken from the ID token claims."""

    claims = result.get("id_token_claims") or {}
    return {
        "oid": claims.get("oid"),
        "tid": claims.get("tid"),
        "upn": claims.get("preferred_username"),
        "name": claims.get("name"),
        "updated_at": int(time.time()),
    }

"""Managed identity token acquisition for the token-exchange audience."""

from __future__ import annotations

import logging
import threading
import time
from typing import Dict, Optional

from azure.core.credentials import AccessToken, TokenCredential
from azure.core.exceptions import AzureError
from azure.identity import ManagedIdentityCredential

from .errors import ManagedIdentityError

logger = logging.getLogger(__name__)

TOKEN_EXPIRY_BUFFER_SECONDS = 60


def needs_refresh(token: Optional[AccessToken]) -> bool:
    """Return ``True`` when the cached token should be refreshed."""

    # Renew slightly ahead of expiry so a token handed to Entra ID as an
    # assertion cannot lapse while the exchange is in flight.
    if token is None:
        return True
    try:
        expires_on = int(token.expires_on)
    except (TypeError, ValueError):
        return True
    return expires_on - TOKEN_EXPIRY_BUFFER_SECONDS <= int(time.time())


def scope_for_audience(audience: str) -> str:
    return f"{audience.rstrip('/')}/.default"


class ManagedIdentityTokenProvider:
    """Hands out managed identity tokens, cached per audience.

    One instance is shared by the whole process. ``client_id`` selects a
    user-assigned identity; ``None`` uses the system-assigned one.
    """

    def __init__(
        self,
        client_id: Optional[str] = None,
        credential: Optional[TokenCredential] = None,
    ) -> None:
        self._client_id = client_id
        self._credential = credential or ManagedIdentityCredential(client_id=client_id)
        self._tokens: Dict[str, AccessToken] = {}
        self._locks: Dict[str, threading.Lock] = {}
        self._locks_lock = threading.Lock()

    @property
    def client_id(self) -> Optional[str]:
        return self._client_id

    def get_token(self, audience: str) -> str:
        """Return a bearer string for ``audience``, reusing a cached token."""

        token = self._tokens.get(audience)
        if not needs_refresh(token):
            return token.token

        # Only one request per audience is in flight; late arrivals pick up
        # the token stored by the first one.
        with self._lock_for(audience):
            token = self._tokens.get(audience)
            if not needs_refresh(token):
                return token.token
            token = self._request_token(audience)
            self._tokens[audience] = token
            return token.token

    def clear(self) -> None:
        with self._locks_lock:
            self._tokens.clear()

    def _lock_for(self, audience: str) -> threading.Lock:
        with self._locks_lock:
            lock = self._locks.get(audience)
            if lock is None:
                lock = self._locks[audience] = threading.Lock()
            return lock

    def _request_token(self, audience: str) -> AccessToken:
        scope = scope_for_audience(audience)
        logger.info(
            "Requesting managed identity token for %s (identity: %s)",
            scope,
            self._client_id or "system-assigned",
        )
        try:
            token = self._credential.get_token(scope)
        except AzureError as exc:
            raise ManagedIdentityError(
                f"Managed identity token for '{audience}' could not be acquired: {exc}"
            ) from exc

        if not token or not token.token:
            raise ManagedIdentityError(
                f"Managed identity endpoint returned no token for '{audience}'"
            )
        return token

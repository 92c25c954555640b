"""Federated credential that uses a managed identity token as client assertion."""

from __future__ import annotations

import logging
import time
from typing import Any, Callable, Optional

import msal
import requests
from azure.core.credentials import AccessToken
from azure.core.exceptions import ClientAuthenticationError, ServiceRequestError

from .config import CLOUD_AUTHORITIES, TOKEN_EXCHANGE_AUDIENCES
from .msal_client import build_assertion_client
from .utils import decode_jwt_without_verification

logger = logging.getLogger(__name__)

DEFAULT_AUTHORITY_HOST = CLOUD_AUTHORITIES["azurepubliccloud"]
DEFAULT_TOKEN_EXCHANGE_AUDIENCE = TOKEN_EXCHANGE_AUDIENCES["azurepubliccloud"]

TokenSupplier = Callable[[str], str]


class FederatedAssertionCredential:
    """``TokenCredential`` for an app registration trusting a managed identity.

    ``tenant_id`` must be the home tenant of the resource being called; for
    a vault in another tenant that is the other tenant, where the app is
    provisioned as a multi-tenant service principal. ``token_supplier`` is
    called with the token-exchange audience whenever a new client assertion is
    needed and must return a bearer string.
    """

    def __init__(
        self,
        tenant_id: str,
        client_id: str,
        token_supplier: TokenSupplier,
        *,
        authority_host: str = DEFAULT_AUTHORITY_HOST,
        audience: str = DEFAULT_TOKEN_EXCHANGE_AUDIENCE,
    ) -> None:
        if not tenant_id:
            raise ValueError("tenant_id is required")
        if not client_id:
            raise ValueError("client_id is required")
        self._tenant_id = tenant_id
        self._client_id = client_id
        self._token_supplier = token_supplier
        self._authority = f"{authority_host.rstrip('/')}/{tenant_id}"
        self._audience = audience
        self._app: Optional[msal.ConfidentialClientApplication] = None

    @property
    def tenant_id(self) -> str:
        return self._tenant_id

    @property
    def client_id(self) -> str:
        return self._client_id

    @property
    def authority(self) -> str:
        return self._authority

    def get_token(
        self,
        *scopes: str,
        claims: Optional[str] = None,
        tenant_id: Optional[str] = None,
        **kwargs: Any,
    ) -> AccessToken:
        if not scopes:
            raise ValueError("get_token requires at least one scope")

        if tenant_id and tenant_id.lower() != self._tenant_id.lower():
            # Key Vault names its home tenant in the authentication challenge.
            # Entra ID would reject an assertion exchanged against any other
            # tenant, so fail before sending it.
            raise ClientAuthenticationError(
                message=(
                    f"Resource requires a token from tenant '{tenant_id}' but this "
                    f"credential is configured for tenant '{self._tenant_id}'"
                )
            )

        try:
            app = self._get_app()
            result = app.acquire_token_for_client(list(scopes), claims_challenge=claims)
        except ValueError as exc:
            # MSAL's answer to an authority it cannot resolve, e.g. an
            # unknown tenant.
            raise ClientAuthenticationError(
                message=f"Authority {self._authority} was rejected: {exc}"
            ) from exc
        except requests.RequestException as exc:
            raise ServiceRequestError(
                message=f"Token request to {self._authority} failed: {exc}", error=exc
            ) from exc

        if not result:
            raise ClientAuthenticationError(message="Token endpoint returned no response")

        if "error" in result:
            description = result.get("error_description") or result["error"]
            logger.warning(
                "Federated token exchange rejected for tenant %s: %s",
                self._tenant_id,
                result["error"],
            )
            raise ClientAuthenticationError(message=description)

        if "access_token" not in result:
            raise ClientAuthenticationError(message="Token endpoint returned no access token")

        expires_on = int(time.time()) + int(result["expires_in"])
        logger.info(
            "Acquired app token for %s in tenant %s (expires_on=%s)",
            " ".join(scopes),
            self._tenant_id,
            expires_on,
        )
        return AccessToken(result["access_token"], expires_on)

    def _get_app(self) -> msal.ConfidentialClientApplication:
        # MSAL reads authority metadata from the network when constructed.
        if self._app is None:
            self._app = build_assertion_client(
                self._client_id, self._authority, self._client_assertion
            )
        return self._app

    def _client_assertion(self) -> str:
        assertion = self._token_supplier(self._audience)
        if logger.isEnabledFor(logging.DEBUG):
            try:
                claims = decode_jwt_without_verification(assertion)
            except ValueError as exc:
                logger.debug("Client assertion is not a JWT: %s", exc)
            else:
                logger.debug(
                    "Presenting client assertion iss=%s sub=%s aud=%s",
                    claims.get("iss"),
                    claims.get("sub"),
                    claims.get("aud"),
                )
        return assertion

"""Key Vault secret retrieval through the managed identity federated credential."""

from __future__ import annotations

import ipaddress
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional
from urllib.parse import urlparse

from azure.core.credentials import TokenCredential
from azure.core.exceptions import (
    AzureError,
    ClientAuthenticationError,
    HttpResponseError,
    ResourceNotFoundError,
    ServiceRequestError,
    ServiceResponseError,
)
from azure.keyvault.secrets import SecretClient

from .config import Settings, TenantTarget
from .credentials import FederatedAssertionCredential
from .errors import (
    AuthenticationError,
    ConfigurationError,
    NotFoundError,
    SecretAccessError,
    TransientNetworkError,
)
from .token_provider import ManagedIdentityTokenProvider

logger = logging.getLogger(__name__)

LOCAL_UNSUPPORTED_MESSAGE = "This feature is not supported when running the app locally."
STATUS_OK = "ok"
STATUS_UNSUPPORTED_LOCALLY = "unsupported_locally"

SecretClientFactory = Callable[..., SecretClient]


@dataclass(frozen=True)
class Secret:
    name: str
    value: Optional[str]
    version: Optional[str]


@dataclass(frozen=True)
class SecretOutcome:
    """Result of one secret lookup: a secret, an error, or the local-mode skip."""

    target: TenantTarget
    secret: Optional[Secret] = None
    error: Optional[SecretAccessError] = None
    unsupported_locally: bool = False

    @property
    def status(self) -> str:
        if self.unsupported_locally:
            return STATUS_UNSUPPORTED_LOCALLY
        if self.error is not None:
            return self.error.kind
        return STATUS_OK

    @property
    def ok(self) -> bool:
        return self.status == STATUS_OK

    @property
    def display_text(self) -> str:
        """Text shown on the page for this lookup."""

        if self.unsupported_locally:
            return LOCAL_UNSUPPORTED_MESSAGE
        if self.error is not None:
            return f"Error fetching secret from {self.target.label}: {self.error}"
        return self.secret.value or ""

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "target": self.target.label,
            "tenant_id": self.target.tenant_id,
            "vault_uri": self.target.vault_uri,
            "secret_name": self.target.secret_name,
            "status": self.status,
        }
        if self.secret is not None:
            payload["value"] = self.secret.value
            payload["version"] = self.secret.version
        if self.error is not None:
            payload["error"] = str(self.error)
        if self.unsupported_locally:
            payload["message"] = LOCAL_UNSUPPORTED_MESSAGE
        return payload


def is_local_host(host: Optional[str]) -> bool:
    """Return ``True`` for ``localhost`` and loopback addresses."""

    if not host:
        return False
    candidate = host.strip().strip("[]").lower()
    if candidate == "localhost":
        return True
    try:
        return ipaddress.ip_address(candidate).is_loopback
    except ValueError:
        return False


def validate_target(target: TenantTarget) -> None:
    """Raise ``ConfigurationError`` unless ``target`` can be queried."""

    if not target.vault_uri:
        raise ConfigurationError(f"Key Vault URI for {target.label} cannot be null or empty.")
    parsed = urlparse(target.vault_uri)
    if parsed.scheme != "https" or not parsed.netloc:
        raise ConfigurationError(
            f"Key Vault URI for {target.label} must be an absolute https URL: {target.vault_uri!r}"
        )
    if not target.secret_name:
        raise ConfigurationError(f"Secret name for {target.label} cannot be null or empty.")
    if not target.tenant_id:
        raise ConfigurationError(f"Tenant id for {target.label} cannot be null or empty.")


def classify_error(exc: Exception) -> SecretAccessError:
    """Map an SDK exception onto the secret access error taxonomy."""

    if isinstance(exc, SecretAccessError):
        return exc
    message = getattr(exc, "message", None) or str(exc)
    if isinstance(exc, ResourceNotFoundError):
        error: SecretAccessError = NotFoundError(message)
    elif isinstance(exc, ClientAuthenticationError):
        error = AuthenticationError(message)
    elif isinstance(exc, (ServiceRequestError, ServiceResponseError)):
        error = TransientNetworkError(message)
    elif isinstance(exc, HttpResponseError):
        status = exc.status_code or 0
        if status in (401, 403):
            error = AuthenticationError(message)
        elif status == 429 or status >= 500:
            error = TransientNetworkError(message)
        elif status == 400:
            error = ConfigurationError(message)
        else:
            error = SecretAccessError(message)
    elif isinstance(exc, ValueError):
        error = ConfigurationError(message)
    else:
        error = SecretAccessError(message)
    return error


def fetch_secret(
    target: TenantTarget,
    credential: TokenCredential,
    *,
    client_factory: SecretClientFactory = SecretClient,
) -> Secret:
    """Read the current value of ``target``'s secret."""

    validate_target(target)
    try:
        with client_factory(vault_url=target.vault_uri, credential=credential) as client:
            secret = client.get_secret(target.secret_name)
    except SecretAccessError:
        # Raised by the token supplier inside the credential.
        raise
    except (AzureError, ValueError) as exc:
        raise classify_error(exc) from exc

    return Secret(name=secret.name, value=secret.value, version=secret.properties.version)


def build_credential(
    target: TenantTarget,
    settings: Settings,
    token_provider: ManagedIdentityTokenProvider,
) -> FederatedAssertionCredential:
    # The assertion must be exchanged in the vault's home tenant, not the
    # app's, or Entra ID rejects it.
    return FederatedAssertionCredential(
        target.tenant_id,
        settings.client_id,
        token_provider.get_token,
        authority_host=settings.authority_host,
        audience=settings.token_exchange_audience,
    )


def lookup_secret(
    target: TenantTarget,
    settings: Settings,
    token_provider: ManagedIdentityTokenProvider,
    *,
    host: Optional[str],
    client_factory: SecretClientFactory = SecretClient,
    sleep: Callable[[float], None] = time.sleep,
) -> SecretOutcome:
    """Fetch ``target``'s secret and report the result as a ``SecretOutcome``.

    Transient failures are retried up to ``settings.secret_fetch_attempts``
    times with exponential backoff. Every other failure is returned on the
    first attempt.
    """

    if is_local_host(host):
        logger.info("Skipping %s lookup: managed identity is unavailable on %s", target.label, host)
        return SecretOutcome(target=target, unsupported_locally=True)

    try:
        validate_target(target)
        credential = build_credential(target, settings, token_provider)
    except (SecretAccessError, ValueError) as exc:
        config_error = classify_error(exc)
        logger.error("Secret lookup for %s is misconfigured: %s", target.label, config_error)
        return SecretOutcome(target=target, error=config_error)

    attempts = max(1, settings.secret_fetch_attempts)
    backoff = settings.secret_fetch_backoff_seconds
    error: Optional[SecretAccessError] = None
    for attempt in range(1, attempts + 1):
        try:
            logger.info(
                "Attempt %d to get secret '%s' from %s (tenant %s)",
                attempt,
                target.secret_name,
                target.vault_uri,
                target.tenant_id,
            )
            secret = fetch_secret(target, credential, client_factory=client_factory)
        except SecretAccessError as exc:
            error = exc
        else:
            logger.info("Fetched secret '%s' version %s", secret.name, secret.version)
            return SecretOutcome(target=target, secret=secret)

        if not isinstance(error, TransientNetworkError) or attempt == attempts:
            break
        logger.warning("Transient failure on attempt %d for %s: %s", attempt, target.label, error)
        sleep(backoff)
        backoff *= 2

    logger.error("Failed to fetch secret from %s (%s): %s", target.label, error.kind, error)
    return SecretOutcome(target=target, error=error)

"""Configuration handling for the managed identity FIC sample."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Optional


CLOUD_AUTHORITIES = {
    "azurepubliccloud": "https://login.microsoftonline.com",
    "azureusgovernment": "https://login.microsoftonline.us",
    "azurechinacloud": "https://login.chinacloudapi.cn",
}

# Audience Entra ID expects on a managed identity token presented as a
# client assertion. Each sovereign cloud has its own value.
TOKEN_EXCHANGE_AUDIENCES = {
    "azurepubliccloud": "api://AzureADTokenExchange",
    "azureusgovernment": "api://AzureADTokenExchangeUSGov",
    "azurechinacloud": "api://AzureADTokenExchangeChina",
}

DEFAULT_CLOUD = "AzurePublicCloud"
DEFAULT_CALLBACK_PATH = "/signin-oidc"
# MSAL always adds openid, profile and offline_access.
DEFAULT_LOGIN_SCOPES: tuple[str, ...] = ()

SAME_TENANT_SECTION = "KeyVaultInTheSameTenant"
ANOTHER_TENANT_SECTION = "KeyVaultInAnotherTenant"


@dataclass(frozen=True)
class TenantTarget:
    """A Key Vault secret together with the tenant that owns the vault."""

    label: str
    tenant_id: Optional[str]
    vault_uri: Optional[str]
    secret_name: Optional[str]


@dataclass
class Settings:
    """Runtime settings loaded from the environment."""

    client_id: str
    tenant_id: Optional[str]
    same_tenant: TenantTarget
    another_tenant: TenantTarget
    msi_client_id: Optional[str] = None
    client_secret: Optional[str] = None
    cloud: str = DEFAULT_CLOUD
    instance: Optional[str] = None
    callback_path: str = DEFAULT_CALLBACK_PATH
    is_multi_tenant: bool = False
    login_scopes: list[str] = field(default_factory=lambda: list(DEFAULT_LOGIN_SCOPES))
    token_exchange_audience_override: Optional[str] = None
    secret_fetch_attempts: int = 1
    secret_fetch_backoff_seconds: float = 0.5
    session_idle_timeout_seconds: int = 30 * 60
    session_absolute_timeout_seconds: int = 8 * 60 * 60
    session_cookie_name: str = "fic_session"
    cookie_secure: bool = True
    cookie_samesite: str = "lax"

    @property
    def authority_host(self) -> str:
        """Entra ID host without a trailing slash."""

        if self.instance:
            return self.instance.rstrip("/")
        return _cloud_lookup(CLOUD_AUTHORITIES, self.cloud)

    @property
    def login_authority(self) -> str:
        """Authority used for interactive sign-in."""

        if self.is_multi_tenant:
            return f"{self.authority_host}/common"
        return f"{self.authority_host}/{self.tenant_id}"

    @property
    def token_exchange_audience(self) -> str:
        if self.token_exchange_audience_override:
            return self.token_exchange_audience_override
        return _cloud_lookup(TOKEN_EXCHANGE_AUDIENCES, self.cloud)

    @property
    def tenant_targets(self) -> tuple[TenantTarget, TenantTarget]:
        return self.same_tenant, self.another_tenant


def _cloud_lookup(table: dict[str, str], cloud: str) -> str:
    value = table.get(cloud.lower())
    if not value:
        supported = ", ".join(sorted(table))
        raise RuntimeError(
            f"Unsupported AzureAd__Cloud '{cloud}'. Supported values: {supported}."
        )
    return value


def config_key(section: str, name: str) -> str:
    """Environment variable name for a hierarchical ``Section:Name`` key."""

    return f"{section}__{name}"


def _parse_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    lowered = value.strip().lower()
    if lowered in {"1", "true", "yes", "on"}:
        return True
    if lowered in {"0", "false", "no", "off"}:
        return False
    return default


def _parse_int(value: str | None, default: int) -> int:
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _parse_float(value: str | None, default: float) -> float:
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        return default


def _required_env(name: str) -> str:
    value = os.getenv(name)
    if not value:
        raise RuntimeError(f"Environment variable '{name}' must be set")
    return value


def _optional_env(name: str) -> str | None:
    value = os.getenv(name)
    return value.strip() if value and value.strip() else None


def load_tenant_target(
    section: str, label: str, default_tenant_id: Optional[str] = None
) -> TenantTarget:
    """Read the vault URI, secret name and home tenant of one section."""

    return TenantTarget(
        label=label,
        tenant_id=_optional_env(config_key(section, "TenantId")) or default_tenant_id,
        vault_uri=_optional_env(config_key(section, "VaultUri")),
        secret_name=_optional_env(config_key(section, "SecretName")),
    )


@lru_cache
def get_settings() -> Settings:
    """Load settings from environment variables (cached)."""

    client_id = _required_env(config_key("AzureAd", "ClientId"))
    is_multi_tenant = _parse_bool(os.getenv(config_key("AzureAd", "IsMulti")), False)
    tenant_key = config_key("AzureAd", "TenantId")
    tenant_id = _optional_env(tenant_key) if is_multi_tenant else _required_env(tenant_key)

    scopes = _optional_env(config_key("AzureAd", "Scopes"))
    login_scopes = scopes.split() if scopes else list(DEFAULT_LOGIN_SCOPES)

    callback_path = _optional_env(config_key("AzureAd", "CallbackPath")) or DEFAULT_CALLBACK_PATH
    if not callback_path.startswith("/"):
        callback_path = "/" + callback_path

    idle_timeout = _parse_int(os.getenv("SESSION_IDLE_TIMEOUT_SECONDS"), 30 * 60)
    absolute_timeout = _parse_int(
        os.getenv("SESSION_ABSOLUTE_TIMEOUT_SECONDS"), 8 * 60 * 60
    )

    return Settings(
        client_id=client_id,
        tenant_id=tenant_id,
        # The same-tenant vault lives in the app's home tenant.
        same_tenant=load_tenant_target(SAME_TENANT_SECTION, "the same tenant", tenant_id),
        another_tenant=load_tenant_target(ANOTHER_TENANT_SECTION, "the other tenant"),
        msi_client_id=_optional_env(config_key("AzureAd", "MsiClientId")),
        client_secret=_optional_env(config_key("AzureAd", "ClientSecret")),
        cloud=_optional_env(config_key("AzureAd", "Cloud")) or DEFAULT_CLOUD,
        instance=_optional_env(config_key("AzureAd", "Instance")),
        callback_path=callback_path,
        is_multi_tenant=is_multi_tenant,
        login_scopes=login_scopes,
        token_exchange_audience_override=_optional_env(
            config_key("AzureAd", "TokenExchangeAudience")
        ),
        secret_fetch_attempts=max(1, _parse_int(os.getenv("SECRET_FETCH_ATTEMPTS"), 1)),
        secret_fetch_backoff_seconds=_parse_float(
            os.getenv("SECRET_FETCH_BACKOFF_SECONDS"), 0.5
        ),
        session_idle_timeout_seconds=idle_timeout,
        session_absolute_timeout_seconds=absolute_timeout,
        session_cookie_name=os.getenv("SESSION_COOKIE_NAME", "fic_session"),
        cookie_secure=_parse_bool(os.getenv("SESSION_COOKIE_SECURE"), True),
        cookie_samesite=_optional_env("SESSION_COOKIE_SAMESITE") or "lax",
    )

"""Shared fixtures.

The web app reads its settings at import time, so the environment is seeded
here before any test module imports ``msi_fic.main``.
"""

from __future__ import annotations

import os
import time
from types import SimpleNamespace

import pytest
from azure.core.credentials import AccessToken

TEST_ENV = {
    "AzureAd__ClientId": "11111111-1111-1111-1111-111111111111",
    "AzureAd__TenantId": "home-tenant",
    "AzureAd__MsiClientId": "22222222-2222-2222-2222-222222222222",
    "AzureAd__CallbackPath": "/signin-oidc",
    "KeyVaultInTheSameTenant__VaultUri": "https://same.vault.azure.net/",
    "KeyVaultInTheSameTenant__SecretName": "same-secret",
    "KeyVaultInAnotherTenant__VaultUri": "https://other.vault.azure.net/",
    "KeyVaultInAnotherTenant__SecretName": "other-secret",
    "KeyVaultInAnotherTenant__TenantId": "other-tenant",
    "SESSION_COOKIE_SECURE": "false",
}

for _key, _value in TEST_ENV.items():
    os.environ.setdefault(_key, _value)


class FakeManagedIdentityCredential:
    """Stands in for ``ManagedIdentityCredential``; counts token requests."""

    def __init__(self, lifetime: int = 3600, error: Exception | None = None):
        self.lifetime = lifetime
        self.error = error
        self.scopes: list[str] = []

    def get_token(self, *scopes, **kwargs):
        self.scopes.extend(scopes)
        if self.error is not None:
            raise self.error
        return AccessToken(f"mi-token-{len(self.scopes)}", int(time.time()) + self.lifetime)


class FakeSecretClient:
    """Minimal ``SecretClient`` replacement driven by a callable."""

    instances: list["FakeSecretClient"] = []

    def __init__(self, vault_url, credential, handler):
        self.vault_url = vault_url
        self.credential = credential
        self._handler = handler
        self.requested: list[str] = []
        self.closed = False
        FakeSecretClient.instances.append(self)

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.closed = True

    def get_secret(self, name):
        self.requested.append(name)
        return self._handler(self, name)


def make_secret(name: str, value: str, version: str = "v1"):
    return SimpleNamespace(name=name, value=value, properties=SimpleNamespace(version=version))


@pytest.fixture
def fake_mi_credential():
    return FakeManagedIdentityCredential()


@pytest.fixture
def secret_client_factory():
    """Return a factory builder: ``secret_client_factory(handler)``."""

    FakeSecretClient.instances = []

    def build(handler):
        def factory(vault_url, credential):
            return FakeSecretClient(vault_url, credential, handler)

        return factory

    return build

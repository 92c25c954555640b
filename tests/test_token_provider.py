"""Tests for msi_fic.token_provider."""

import threading
import time

import pytest
from azure.core.credentials import AccessToken
from azure.identity import CredentialUnavailableError

from msi_fic.errors import AuthenticationError, ManagedIdentityError
from msi_fic.token_provider import (
    TOKEN_EXPIRY_BUFFER_SECONDS,
    ManagedIdentityTokenProvider,
    needs_refresh,
    scope_for_audience,
)

from .conftest import FakeManagedIdentityCredential

AUDIENCE = "api://AzureADTokenExchange"


class TestNeedsRefresh:
    def test_missing(self):
        assert needs_refresh(None) is True

    def test_fresh(self):
        assert needs_refresh(AccessToken("t", int(time.time()) + 3600)) is False

    def test_inside_buffer(self):
        token = AccessToken("t", int(time.time()) + TOKEN_EXPIRY_BUFFER_SECONDS - 1)
        assert needs_refresh(token) is True


class TestScope:
    def test_default_suffix(self):
        assert scope_for_audience(AUDIENCE) == "api://AzureADTokenExchange/.default"

    def test_trailing_slash(self):
        assert scope_for_audience(AUDIENCE + "/") == "api://AzureADTokenExchange/.default"


class TestManagedIdentityTokenProvider:
    def test_requests_exchange_scope(self, fake_mi_credential):
        provider = ManagedIdentityTokenProvider("mi-client", credential=fake_mi_credential)
        assert provider.get_token(AUDIENCE) == "mi-token-1"
        assert fake_mi_credential.scopes == ["api://AzureADTokenExchange/.default"]
        assert provider.client_id == "mi-client"

    def test_second_call_uses_cache(self, fake_mi_credential):
        provider = ManagedIdentityTokenProvider(credential=fake_mi_credential)
        first = provider.get_token(AUDIENCE)
        second = provider.get_token(AUDIENCE)
        assert first == second
        assert len(fake_mi_credential.scopes) == 1

    def test_expiring_token_refreshed(self):
        credential = FakeManagedIdentityCredential(lifetime=TOKEN_EXPIRY_BUFFER_SECONDS - 5)
        provider = ManagedIdentityTokenProvider(credential=credential)
        assert provider.get_token(AUDIENCE) == "mi-token-1"
        assert provider.get_token(AUDIENCE) == "mi-token-2"

    def test_cache_is_per_audience(self, fake_mi_credential):
        provider = ManagedIdentityTokenProvider(credential=fake_mi_credential)
        provider.get_token(AUDIENCE)
        provider.get_token("api://AzureADTokenExchangeUSGov")
        assert len(fake_mi_credential.scopes) == 2

    def test_clear(self, fake_mi_credential):
        provider = ManagedIdentityTokenProvider(credential=fake_mi_credential)
        provider.get_token(AUDIENCE)
        provider.clear()
        provider.get_token(AUDIENCE)
        assert len(fake_mi_credential.scopes) == 2

    def test_unavailable_identity_raises(self):
        credential = FakeManagedIdentityCredential(
            error=CredentialUnavailableError(message="No managed identity endpoint found")
        )
        provider = ManagedIdentityTokenProvider(credential=credential)
        with pytest.raises(ManagedIdentityError) as excinfo:
            provider.get_token(AUDIENCE)
        assert isinstance(excinfo.value, AuthenticationError)
        assert isinstance(excinfo.value.__cause__, CredentialUnavailableError)

    def test_empty_token_raises(self):
        class EmptyCredential:
            def get_token(self, *scopes, **kwargs):
                return AccessToken("", int(time.time()) + 3600)

        provider = ManagedIdentityTokenProvider(credential=EmptyCredential())
        with pytest.raises(ManagedIdentityError):
            provider.get_token(AUDIENCE)

    def test_concurrent_callers_share_one_request(self):
        started = threading.Event()
        release = threading.Event()

        class SlowCredential(FakeManagedIdentityCredential):
            def get_token(self, *scopes, **kwargs):
                started.set()
                release.wait(timeout=5)
                return super().get_token(*scopes, **kwargs)

        credential = SlowCredential()
        provider = ManagedIdentityTokenProvider(credential=credential)
        results = []

        def worker():
            results.append(provider.get_token(AUDIENCE))

        threads = [threading.Thread(target=worker) for _ in range(4)]
        for thread in threads:
            thread.start()
        started.wait(timeout=5)
        release.set()
        for thread in threads:
            thread.join(timeout=5)

        assert results == ["mi-token-1"] * 4
        assert len(credential.scopes) == 1

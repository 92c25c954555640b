"""Tests for msi_fic.pages."""

from msi_fic.config import TenantTarget
from msi_fic.errors import NotFoundError
from msi_fic.pages import render_index
from msi_fic.secret_store import LOCAL_UNSUPPORTED_MESSAGE, Secret, SecretOutcome

TARGET = TenantTarget("the other tenant", "other-tenant", "https://other.vault.azure.net/", "other-secret")


class TestRenderIndex:
    def test_values_are_escaped(self):
        outcome = SecretOutcome(target=TARGET, secret=Secret(name="other-secret", value="<script>x</script>", version="v1"))
        page = render_index({"name": "Ada & <Co>"}, [outcome])
        assert "Welcome, Ada &amp; &lt;Co&gt;" in page
        assert "&lt;script&gt;x&lt;/script&gt;" in page
        assert "<script>" not in page

    def test_falls_back_to_upn(self):
        page = render_index({"upn": "ada@example.com"}, [])
        assert "Welcome, ada@example.com" in page

    def test_no_display_name(self):
        assert "<h1>Welcome</h1>" in render_index({}, [])

    def test_status_classes(self):
        outcomes = [
            SecretOutcome(target=TARGET, secret=Secret(name="other-secret", value="v", version="1")),
            SecretOutcome(target=TARGET, unsupported_locally=True),
            SecretOutcome(target=TARGET, error=NotFoundError("SecretNotFound")),
        ]
        page = render_index({"name": "Ada"}, outcomes)
        assert '<p class="ok">v</p>' in page
        assert f'<p class="info">{LOCAL_UNSUPPORTED_MESSAGE}</p>' in page
        assert '<p class="err">Error fetching secret from the other tenant: SecretNotFound</p>' in page
        assert 'data-status="not_found"' in page

    def test_unconfigured_target(self):
        target = TenantTarget("the same tenant", "home-tenant", None, None)
        page = render_index({"name": "Ada"}, [SecretOutcome(target=target, error=NotFoundError("x"))])
        assert "not configured" in page

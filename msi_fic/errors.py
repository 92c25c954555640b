"""Error taxonomy for secret retrieval."""

from __future__ import annotations


class SecretAccessError(Exception):
    """Base class for failures while reading a secret from Key Vault."""

    kind = "error"


class ConfigurationError(SecretAccessError):
    """A vault URI, secret name or tenant is missing or malformed."""

    kind = "configuration_error"


class AuthenticationError(SecretAccessError):
    """The token exchange or the vault rejected our identity."""

    kind = "authentication_error"


class ManagedIdentityError(AuthenticationError):
    """The platform identity endpoint could not issue a token."""


class NotFoundError(SecretAccessError):
    """The vault has no secret with the requested name."""

    kind = "not_found"


class TransientNetworkError(SecretAccessError):
    """The call failed in a way a retry may fix."""

    kind = "transient_network_error"

"""Read Key Vault secrets using a managed identity as a federated identity credential."""

__version__ = "1.0.0"

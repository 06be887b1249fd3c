"""
Secret storage for chainworker.

Components:
- SecretStore: the async get/store/delete contract
- InMemorySecretStore: development store
- VaultSecretStore: HashiCorp Vault KV v2 store
"""

from __future__ import annotations

from loguru import logger

from chainworker.config import ChainWorkerConfig

from .base import SecretStore
from .memory_store import InMemorySecretStore
from .vault_store import VaultError, VaultSecretStore


def create_secret_store(config: ChainWorkerConfig) -> SecretStore:
    """
    Create the secret store for the configured environment.

    Production uses Vault when it is configured; everything else uses the
    in-memory store.
    """
    if config.environment == "production":
        if config.secrets.vault_configured:
            return VaultSecretStore(config.secrets)
        logger.critical(
            "Running in production without Vault configuration. "
            "Falling back to in-memory secrets, which are NOT persisted."
        )
    else:
        logger.info("Using in-memory secret store")
    return InMemorySecretStore()


__all__ = [
    "SecretStore",
    "InMemorySecretStore",
    "VaultSecretStore",
    "VaultError",
    "create_secret_store",
]

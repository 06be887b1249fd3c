"""
HashiCorp Vault secret store.

Stores each secret as a KV v2 entry ``{"value": <secret>}`` under
``<mount>/data/<prefix>/<key>``. Uses the Vault HTTP API directly through
aiohttp; every request carries an explicit timeout.

Author: Chainworker Team
License: MIT
"""

from __future__ import annotations

from typing import Any

import aiohttp
from loguru import logger

from chainworker.config import SecretsConfig


class VaultError(RuntimeError):
    """Vault returned an unexpected status."""


class VaultSecretStore:
    """
    Secret store backed by Vault's KV v2 engine.

    Usage:
        store = VaultSecretStore(config.secrets)
        await store.store("wallet_mnemonic_x", mnemonic)
        mnemonic = await store.get("wallet_mnemonic_x")
        await store.close()
    """

    def __init__(self, config: SecretsConfig, session: aiohttp.ClientSession | None = None):
        if not config.vault_configured:
            raise ValueError(
                "Missing Vault configuration. Set vault_addr and vault_token."
            )

        self.config = config
        self._session = session
        self._owns_session = session is None
        self._timeout = aiohttp.ClientTimeout(total=config.vault_timeout_seconds)

        logger.info(f"VaultSecretStore initialized: {config.vault_addr}")

    def _headers(self) -> dict[str, str]:
        headers = {"X-Vault-Token": self.config.vault_token or ""}
        if self.config.vault_namespace:
            headers["X-Vault-Namespace"] = self.config.vault_namespace
        return headers

    def _url(self, kind: str, key: str) -> str:
        addr = (self.config.vault_addr or "").rstrip("/")
        prefix = self.config.vault_path_prefix.strip("/")
        path = f"{prefix}/{key}" if prefix else key
        return f"{addr}/v1/{self.config.vault_mount}/{kind}/{path}"

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self._timeout)
            self._owns_session = True
        return self._session

    async def get(self, key: str) -> str | None:
        session = await self._get_session()
        async with session.get(
            self._url("data", key),
            headers=self._headers(),
            timeout=self._timeout,
        ) as resp:
            if resp.status == 404:
                logger.warning("Secret not found in Vault", key=key)
                return None
            if resp.status != 200:
                raise VaultError(f"Vault read failed with status {resp.status}")
            body: dict[str, Any] = await resp.json()

        value = body.get("data", {}).get("data", {}).get("value")
        if value is None:
            logger.warning("Vault entry has no value field", key=key)
        return value

    async def store(self, key: str, value: str) -> None:
        session = await self._get_session()
        async with session.post(
            self._url("data", key),
            headers=self._headers(),
            json={"data": {"value": value}},
            timeout=self._timeout,
        ) as resp:
            if resp.status not in (200, 204):
                raise VaultError(f"Vault write failed with status {resp.status}")
        logger.debug("Stored secret in Vault", key=key)

    async def delete(self, key: str) -> None:
        # Deleting metadata removes every version of the entry
        session = await self._get_session()
        async with session.delete(
            self._url("metadata", key),
            headers=self._headers(),
            timeout=self._timeout,
        ) as resp:
            if resp.status == 404:
                logger.warning("Attempted to delete a secret that was not found", key=key)
                return
            if resp.status not in (200, 204):
                raise VaultError(f"Vault delete failed with status {resp.status}")
        logger.debug("Deleted secret from Vault", key=key)

    async def close(self) -> None:
        if self._owns_session and self._session and not self._session.closed:
            await self._session.close()

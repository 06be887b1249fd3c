"""In-memory secret store for development and tests."""

from __future__ import annotations

import asyncio

from loguru import logger


class InMemorySecretStore:
    """
    Dictionary-backed secret store.

    Secrets are lost when the process exits. Never use in production.
    """

    def __init__(self, initial: dict[str, str] | None = None):
        self._secrets: dict[str, str] = dict(initial or {})
        self._lock = asyncio.Lock()

    async def get(self, key: str) -> str | None:
        secret = self._secrets.get(key)
        if secret is None:
            logger.warning("Secret not found in in-memory store", key=key)
        return secret

    async def store(self, key: str, value: str) -> None:
        async with self._lock:
            self._secrets[key] = value
        logger.debug("Stored secret in in-memory store", key=key)

    async def delete(self, key: str) -> None:
        async with self._lock:
            was_present = self._secrets.pop(key, None) is not None
        if was_present:
            logger.debug("Deleted secret from in-memory store", key=key)
        else:
            logger.warning("Attempted to delete a secret that was not found", key=key)

    def __contains__(self, key: str) -> bool:
        return key in self._secrets

    def __len__(self) -> int:
        return len(self._secrets)

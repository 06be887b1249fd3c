"""
Secrets Port.

Contract every secret store implements. Wallet mnemonics and the treasury
mnemonic live behind this interface; the relational store only ever holds
the key (``secret_ref``).
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable


@runtime_checkable
class SecretStore(Protocol):
    """Async key/value secret storage."""

    async def get(self, key: str) -> str | None:
        """Return the secret for ``key`` or None if it does not exist."""
        ...

    async def store(self, key: str, value: str) -> None:
        """Store ``value`` under ``key``, replacing any previous value."""
        ...

    async def delete(self, key: str) -> None:
        """Delete ``key``. Deleting a missing key is not an error."""
        ...

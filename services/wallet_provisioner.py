"""
Wallet Provisioner.

Creates a dedicated wallet per model: generates a mnemonic, derives the
address, and stores the mnemonic in the secret store. No database row is
written here; the provisioning saga persists the wallet together with its
model once funding has succeeded.
"""

from __future__ import annotations

import uuid

from loguru import logger
from substrateinterface import Keypair

from chainworker.exceptions import WalletCreationError
from chainworker.secret_store import SecretStore
from chainworker.storage.records import Wallet

SECRET_REF_PREFIX = "wallet_mnemonic_"
MNEMONIC_WORDS = 24


class WalletProvisioner:
    """Creates and destroys model wallets."""

    def __init__(self, secrets: SecretStore, ss58_format: int = 42):
        self.secrets = secrets
        self.ss58_format = ss58_format

    async def create(self) -> Wallet:
        """
        Create a new wallet and store its mnemonic.

        Returns:
            Wallet with a fresh id, its address and the secret reference

        Raises:
            WalletCreationError: key generation or secret storage failed
        """
        try:
            mnemonic = Keypair.generate_mnemonic(words=MNEMONIC_WORDS)
            keypair = Keypair.create_from_mnemonic(mnemonic, ss58_format=self.ss58_format)
        except Exception as e:
            raise WalletCreationError(f"Key generation failed: {e}") from e

        address = keypair.ss58_address
        secret_ref = f"{SECRET_REF_PREFIX}{uuid.uuid4()}"

        try:
            await self.secrets.store(secret_ref, mnemonic)
        except Exception as e:
            raise WalletCreationError(f"Could not store wallet mnemonic: {e}") from e

        wallet = Wallet(id=str(uuid.uuid4()), address=address, secret_ref=secret_ref)
        logger.info("Created wallet", wallet_id=wallet.id, address=address, secret_ref=secret_ref)
        return wallet

    async def destroy(self, wallet: Wallet) -> None:
        """Delete the wallet's mnemonic. Safe to call more than once."""
        await self.secrets.delete(wallet.secret_ref)
        logger.info("Destroyed wallet secret", wallet_id=wallet.id, secret_ref=wallet.secret_ref)


__all__ = ["WalletProvisioner", "SECRET_REF_PREFIX"]

"""
Substrate Client for the inference network.

Provides the low-level connection to the chain via Substrate RPC.

Key Features:
- WebSocket/HTTP RPC connection with multi-node failover
- Query chain state (storage items and maps)
- Submit extrinsics (signed transactions) with tip and explicit nonce
- Block height lookup

References:
- Substrate Interface: https://github.com/polkascan/py-substrate-interface

Author: Chainworker Team
License: MIT
"""

from __future__ import annotations

import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Iterator

from loguru import logger
from substrateinterface import Keypair, SubstrateInterface
from substrateinterface.exceptions import SubstrateRequestException

from chainworker.config import ChainConfig


@dataclass
class ExtrinsicReceipt:
    """
    Receipt from submitted extrinsic.

    Attributes:
        extrinsic_hash: Hash of the extrinsic
        block_hash: Hash of block containing extrinsic
        block_number: Block number
        success: Whether extrinsic succeeded
        events: List of events emitted
        error: Error message if failed
    """
    extrinsic_hash: str
    block_hash: str | None = None
    block_number: int | None = None
    success: bool = False
    events: list[dict] = field(default_factory=list)
    error: str | None = None


class SubstrateClient:
    """
    Client for interacting with the chain.

    Calls are blocking; async callers run them in a worker thread. A lock
    serialises access to the underlying websocket. Both the websocket and
    the wait for the lock are bounded by ``rpc_timeout_seconds``.

    Usage:
        client = SubstrateClient(ChainConfig(rpc_urls=["ws://127.0.0.1:9944"]))

        value = client.query_storage(
            module="Emissions",
            storage_function="Topics",
            params=[1],
        )

        keypair = SubstrateClient.create_keypair(mnemonic=mnemonic)
        receipt = client.submit_extrinsic(
            keypair=keypair,
            call_module="Emissions",
            call_function="register",
            call_params={"topic_id": 1, "owner": keypair.ss58_address, "is_reputer": False},
        )
    """

    def __init__(self, config: ChainConfig):
        """
        Initialize Substrate client.

        Args:
            config: Chain configuration
        """
        self.config = config
        self.substrate: SubstrateInterface | None = None
        self._connected = False
        self._node_index = 0
        self._lock = threading.RLock()

        logger.info(f"SubstrateClient initialized with {len(config.rpc_urls)} node(s)")

    @contextmanager
    def _locked(self) -> Iterator[None]:
        if not self._lock.acquire(timeout=self.config.rpc_timeout_seconds):
            raise TimeoutError(
                f"RPC client busy: timed out after {self.config.rpc_timeout_seconds}s "
                f"waiting for {self.rpc_url}"
            )
        try:
            yield
        finally:
            self._lock.release()

    @property
    def rpc_url(self) -> str:
        """Currently selected RPC endpoint."""
        return self.config.rpc_urls[self._node_index]

    def connect(self) -> None:
        """Connect to the currently selected RPC node."""
        with self._locked():
            try:
                self.substrate = SubstrateInterface(
                    url=self.rpc_url,
                    ss58_format=self.config.ss58_format,
                    ws_options={"timeout": self.config.rpc_timeout_seconds},
                )

                # Test connection
                chain = self.substrate.chain
                runtime_version = self.substrate.runtime_version

                self._connected = True
                logger.success(
                    f"Connected to {chain} at {self.rpc_url} "
                    f"(runtime: {runtime_version})"
                )

            except Exception as e:
                self._connected = False
                logger.error(f"Failed to connect to {self.rpc_url}: {e}")
                raise

    def disconnect(self) -> None:
        """Disconnect from the RPC node."""
        with self._locked():
            if self.substrate:
                self.substrate.close()
                self._connected = False
                logger.info("Disconnected from chain")

    def is_connected(self) -> bool:
        """Check if connected to chain."""
        return self._connected and self.substrate is not None

    def switch_node(self) -> str:
        """
        Rotate to the next configured RPC node.

        The new connection is opened lazily on the next call.

        Returns:
            The newly selected RPC URL
        """
        with self._locked():
            previous = self.rpc_url
            if self.substrate:
                try:
                    self.substrate.close()
                except Exception as e:
                    logger.debug(f"Ignoring error while closing {previous}: {e}")
            self.substrate = None
            self._connected = False
            self._node_index = (self._node_index + 1) % len(self.config.rpc_urls)

            logger.warning(f"Switching RPC node: {previous} -> {self.rpc_url}")
            return self.rpc_url

    def _ensure_connected(self) -> SubstrateInterface:
        if not self.is_connected():
            self.connect()
        return self.substrate

    def query_storage(
        self,
        module: str,
        storage_function: str,
        params: list[Any] | None = None,
        block_hash: str | None = None,
    ) -> Any:
        """
        Query chain storage.

        Args:
            module: Pallet name (e.g., "System", "Emissions")
            storage_function: Storage item name
            params: Optional storage key parameters
            block_hash: Optional block hash (None = latest)

        Returns:
            Storage value (None when the key is absent)
        """
        with self._locked():
            substrate = self._ensure_connected()
            try:
                result = substrate.query(
                    module=module,
                    storage_function=storage_function,
                    params=params or [],
                    block_hash=block_hash,
                )

                logger.debug(
                    f"Queried {module}.{storage_function}: "
                    f"{str(result)[:100]}"
                )

                return result.value if hasattr(result, "value") else result

            except SubstrateRequestException as e:
                logger.error(f"Storage query failed: {e}")
                raise

    def query_map(
        self,
        module: str,
        storage_function: str,
        params: list[Any] | None = None,
        block_hash: str | None = None,
    ) -> list[tuple]:
        """
        Query all entries in a storage map.

        Args:
            module: Pallet name
            storage_function: Storage map name
            params: Leading keys of a double map
            block_hash: Optional block hash

        Returns:
            List of (key, value) tuples
        """
        with self._locked():
            substrate = self._ensure_connected()
            try:
                result = substrate.query_map(
                    module=module,
                    storage_function=storage_function,
                    params=params or [],
                    block_hash=block_hash,
                )

                entries = [(k.value, v.value) for k, v in result]
                logger.debug(f"Queried {module}.{storage_function}: {len(entries)} entries")

                return entries

            except SubstrateRequestException as e:
                logger.error(f"Storage map query failed: {e}")
                raise

    def submit_extrinsic(
        self,
        keypair: Keypair,
        call_module: str,
        call_function: str,
        call_params: dict[str, Any],
        tip: int = 0,
        nonce: int | None = None,
        wait_for_inclusion: bool = True,
        wait_for_finalization: bool = False,
    ) -> ExtrinsicReceipt:
        """
        Submit signed extrinsic to chain.

        Args:
            keypair: Signing keypair
            call_module: Pallet name
            call_function: Extrinsic function name
            call_params: Extrinsic parameters
            tip: Tip paid to the block author, in the smallest denomination
            nonce: Account nonce override (None = fetched from chain)
            wait_for_inclusion: Wait for block inclusion
            wait_for_finalization: Wait for block finalization

        Returns:
            Extrinsic receipt
        """
        with self._locked():
            substrate = self._ensure_connected()
            try:
                call = substrate.compose_call(
                    call_module=call_module,
                    call_function=call_function,
                    call_params=call_params,
                )

                extrinsic = substrate.create_signed_extrinsic(
                    call=call,
                    keypair=keypair,
                    tip=tip,
                    nonce=nonce,
                )

                receipt = ExtrinsicReceipt(
                    extrinsic_hash=f"0x{extrinsic.extrinsic_hash.hex()}"
                    if isinstance(extrinsic.extrinsic_hash, bytes)
                    else str(extrinsic.extrinsic_hash),
                )

                logger.info(
                    f"Submitting extrinsic: {call_module}.{call_function} "
                    f"from {keypair.ss58_address}"
                )

                result = substrate.submit_extrinsic(
                    extrinsic,
                    wait_for_inclusion=wait_for_inclusion,
                    wait_for_finalization=wait_for_finalization,
                )

                if wait_for_inclusion or wait_for_finalization:
                    receipt.block_hash = result.block_hash
                    receipt.success = result.is_success
                    receipt.error = None if result.is_success else str(result.error_message)

                    block = substrate.get_block(block_hash=result.block_hash)
                    receipt.block_number = block["header"]["number"]

                    receipt.events = self._get_extrinsic_events(result)

                    if receipt.success:
                        logger.success(
                            f"Extrinsic included in block #{receipt.block_number}"
                        )
                    else:
                        logger.error(f"Extrinsic failed: {receipt.error}")
                else:
                    receipt.success = True

                return receipt

            except SubstrateRequestException as e:
                logger.error(f"Extrinsic submission failed: {e}")
                raise

    def _get_extrinsic_events(self, result) -> list[dict]:
        """Extract events from extrinsic result."""
        events = []

        if hasattr(result, "triggered_events"):
            for event in result.triggered_events:
                events.append({
                    "module": event.value["module_id"],
                    "event": event.value["event_id"],
                    "attributes": event.value.get("attributes", {}),
                })

        return events

    def get_block_number(self, block_hash: str | None = None) -> int:
        """
        Get block number.

        Args:
            block_hash: Block hash (None = latest)

        Returns:
            Block number
        """
        with self._locked():
            substrate = self._ensure_connected()
            block = substrate.get_block(block_hash=block_hash)
            return block["header"]["number"]

    @staticmethod
    def create_keypair(mnemonic: str | None = None, ss58_format: int = 42) -> Keypair:
        """
        Create keypair for signing.

        Args:
            mnemonic: BIP39 mnemonic phrase (None = generate a new one)
            ss58_format: Address format

        Returns:
            Keypair
        """
        if mnemonic is None:
            mnemonic = Keypair.generate_mnemonic()
        return Keypair.create_from_mnemonic(mnemonic, ss58_format=ss58_format)

    def __enter__(self):
        """Context manager entry."""
        self.connect()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit."""
        self.disconnect()


__all__ = [
    "ExtrinsicReceipt",
    "SubstrateClient",
]

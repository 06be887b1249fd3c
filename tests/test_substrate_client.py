"""
Tests for the Substrate client.

SubstrateInterface is patched; no node is contacted.

Author: Chainworker Team
License: MIT
"""

import threading
import time

import pytest

from chainworker.blockchain.substrate_client import SubstrateClient
from chainworker.config import ChainConfig


@pytest.fixture
def config():
    return ChainConfig(rpc_urls=["ws://node-a:9944", "ws://node-b:9944"], rpc_timeout_seconds=0.05)


@pytest.fixture
def substrate(mocker):
    return mocker.patch("chainworker.blockchain.substrate_client.SubstrateInterface")


class TestSubstrateClient:

    def test_connect_sets_websocket_timeout(self, config, substrate):
        client = SubstrateClient(config)

        client.connect()

        substrate.assert_called_once_with(
            url="ws://node-a:9944",
            ss58_format=42,
            ws_options={"timeout": 0.05},
        )
        assert client.is_connected()

    def test_switch_node_rotates(self, config, substrate):
        client = SubstrateClient(config)
        client.connect()

        assert client.switch_node() == "ws://node-b:9944"
        assert not client.is_connected()
        assert client.switch_node() == "ws://node-a:9944"

    def test_busy_client_times_out(self, config, substrate):
        client = SubstrateClient(config)
        held = threading.Event()
        release = threading.Event()

        def hold_lock():
            with client._lock:
                held.set()
                release.wait(5)

        holder = threading.Thread(target=hold_lock)
        holder.start()
        held.wait(1)
        try:
            started = time.monotonic()
            with pytest.raises(TimeoutError, match="timed out"):
                client.query_storage("Emissions", "Topics", [1])
            with pytest.raises(TimeoutError):
                client.switch_node()
            assert time.monotonic() - started < 1
        finally:
            release.set()
            holder.join()

        substrate.assert_not_called()

    def test_query_storage_returns_value(self, config, substrate):
        substrate.return_value.query.return_value.value = {"epoch_length": 120}
        client = SubstrateClient(config)

        assert client.query_storage("Emissions", "Topics", [1]) == {"epoch_length": 120}
        substrate.return_value.query.assert_called_once_with(
            module="Emissions",
            storage_function="Topics",
            params=[1],
            block_hash=None,
        )

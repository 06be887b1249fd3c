"""
Chain integration for chainworker.

Connects the provisioning and submission services to the inference
network's Emissions and Balances pallets.

Components:
- ChainPort: the async contract services depend on
- SubstrateClient: core RPC connection with multi-node failover
- EmissionsConnector: ChainPort implementation
- classify_chain_error: maps write failures to retry actions
- format_bounded_exp40dec: fixed-point value encoding

Author: Chainworker Team
License: MIT
"""

from .chain_port import (
    ALREADY_REGISTERED,
    ChainPort,
    ForecastElement,
    TopicDetails,
    TxResult,
    WorkerPayload,
)
from .chain_errors import (
    ChainErrorAction,
    ProcessedChainError,
    classify_chain_error,
)
from .bounded_decimal import format_bounded_exp40dec
from .substrate_client import (
    ExtrinsicReceipt,
    SubstrateClient,
)
from .emissions_connector import (
    EmissionsConnector,
    ExtrinsicFailed,
    canonical_json,
    parse_amount,
)

__all__ = [
    # Chain Port
    "ALREADY_REGISTERED",
    "ChainPort",
    "ForecastElement",
    "TopicDetails",
    "TxResult",
    "WorkerPayload",
    # Errors
    "ChainErrorAction",
    "ProcessedChainError",
    "classify_chain_error",
    # Encoding
    "format_bounded_exp40dec",
    "canonical_json",
    "parse_amount",
    # Substrate Client
    "ExtrinsicReceipt",
    "SubstrateClient",
    # Connector
    "EmissionsConnector",
    "ExtrinsicFailed",
]

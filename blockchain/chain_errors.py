"""
Chain error classification.

Maps a failed chain write to the action the retry loop should take.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum

from loguru import logger


class ChainErrorAction(Enum):
    """What to do after a failed chain write."""
    RETRY = "retry"
    SWITCH_NODE = "switch_node"
    RESET_SEQUENCE = "reset_sequence"
    FAIL = "fail"


@dataclass(frozen=True)
class ProcessedChainError:
    action: ChainErrorAction
    expected_sequence: int | None = None


_EXPECTED_SEQUENCE = re.compile(r"expected\s+(\d+)")

_NODE_FAILURE_MARKERS = (
    "connection refused",
    "timed out",
    "timeout",
    "503 service unavailable",
)

_FATAL_MARKERS = (
    "insufficient funds",
    "insufficient fee",
)


def classify_chain_error(error: BaseException | str | None) -> ProcessedChainError:
    """
    Classify a chain error by its message.

    Args:
        error: Exception (or message) raised by a chain write

    Returns:
        ProcessedChainError with the action to take
    """
    message = str(error or "").lower()
    logger.debug("Classifying chain error", error_message=message)

    if "account sequence mismatch" in message:
        match = _EXPECTED_SEQUENCE.search(message)
        expected = int(match.group(1)) if match else None
        return ProcessedChainError(ChainErrorAction.RESET_SEQUENCE, expected)

    if any(marker in message for marker in _NODE_FAILURE_MARKERS):
        return ProcessedChainError(ChainErrorAction.SWITCH_NODE)

    # Out of gas is retried as-is
    if "out of gas" in message:
        return ProcessedChainError(ChainErrorAction.RETRY)

    if any(marker in message for marker in _FATAL_MARKERS):
        logger.error("Unrecoverable chain error: insufficient funds or fee")
        return ProcessedChainError(ChainErrorAction.FAIL)

    return ProcessedChainError(ChainErrorAction.RETRY)


__all__ = [
    "ChainErrorAction",
    "ProcessedChainError",
    "classify_chain_error",
]

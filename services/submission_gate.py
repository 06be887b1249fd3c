"""
Window/Nonce Gate.

Decides from fresh chain state whether a worker may submit now and, if so,
for which nonce. Nothing is cached between evaluations, so concurrent jobs
for the same topic reach the same decision without locking.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from loguru import logger

from chainworker.blockchain.chain_port import ChainPort, TopicDetails

SKIP_INSUFFICIENT_STATE = "insufficient chain state"
SKIP_OUTSIDE_WINDOW = "outside window"
SKIP_NO_OPEN_NONCE = "no open nonce"


class GateOutcome(Enum):
    PROCEED = "proceed"
    SKIP = "skip"


@dataclass(frozen=True)
class WindowBounds:
    """Inclusive submission window for the current epoch."""
    start: int
    end: int

    def contains(self, height: int) -> bool:
        return self.start <= height <= self.end


@dataclass(frozen=True)
class GateDecision:
    outcome: GateOutcome
    nonce_height: int | None = None
    reason: str | None = None

    @classmethod
    def proceed(cls, nonce_height: int) -> GateDecision:
        return cls(GateOutcome.PROCEED, nonce_height=nonce_height)

    @classmethod
    def skip(cls, reason: str) -> GateDecision:
        return cls(GateOutcome.SKIP, reason=reason)

    @property
    def should_submit(self) -> bool:
        return self.outcome is GateOutcome.PROCEED


def decide_window(topic: TopicDetails | None, current_height: int | None) -> GateDecision | WindowBounds:
    """
    Check whether ``current_height`` falls inside the topic's submission window.

    Returns:
        WindowBounds when submission is allowed, otherwise a Skip decision
    """
    if topic is None or current_height is None:
        return GateDecision.skip(SKIP_INSUFFICIENT_STATE)

    window = WindowBounds(topic.window_start, topic.window_end)
    if not window.contains(current_height):
        return GateDecision.skip(SKIP_OUTSIDE_WINDOW)
    return window


class SubmissionGate:
    """Evaluates the gate against live chain state."""

    def __init__(self, chain: ChainPort):
        self.chain = chain

    async def evaluate(self, topic_id: int) -> GateDecision:
        topic = await self.chain.get_topic_details(topic_id)
        current_height = await self.chain.get_current_block_height()

        window = decide_window(topic, current_height)
        if isinstance(window, GateDecision):
            logger.info(
                "Submission gate: skip",
                topic_id=topic_id,
                reason=window.reason,
                current_height=current_height,
            )
            return window

        nonce = await self.chain.derive_latest_open_worker_nonce(topic_id)
        if nonce is None:
            logger.info("Submission gate: skip", topic_id=topic_id, reason=SKIP_NO_OPEN_NONCE)
            return GateDecision.skip(SKIP_NO_OPEN_NONCE)

        logger.info(
            "Submission gate: proceed",
            topic_id=topic_id,
            nonce=nonce,
            window_start=window.start,
            window_end=window.end,
        )
        return GateDecision.proceed(nonce)


__all__ = [
    "SKIP_INSUFFICIENT_STATE",
    "SKIP_OUTSIDE_WINDOW",
    "SKIP_NO_OPEN_NONCE",
    "GateOutcome",
    "GateDecision",
    "WindowBounds",
    "decide_window",
    "SubmissionGate",
]

"""
Tests for the window/nonce submission gate.

Author: Chainworker Team
License: MIT
"""

import pytest

from chainworker.blockchain.chain_port import TopicDetails
from chainworker.services.submission_gate import (
    SKIP_INSUFFICIENT_STATE,
    SKIP_NO_OPEN_NONCE,
    SKIP_OUTSIDE_WINDOW,
    GateDecision,
    GateOutcome,
    SubmissionGate,
    WindowBounds,
    decide_window,
)


def _topic(epoch_last_ended=100, window=10, is_active=True):
    return TopicDetails(
        topic_id=1,
        is_active=is_active,
        epoch_length=120,
        epoch_last_ended=epoch_last_ended,
        worker_submission_window=window,
    )


class TestDecideWindow:
    """Pure window check."""

    def test_missing_topic(self):
        decision = decide_window(None, 105)
        assert decision == GateDecision.skip(SKIP_INSUFFICIENT_STATE)

    def test_missing_height(self):
        decision = decide_window(_topic(), None)
        assert decision == GateDecision.skip(SKIP_INSUFFICIENT_STATE)

    @pytest.mark.parametrize("height", [101, 105, 110])
    def test_inside_window(self, height):
        window = decide_window(_topic(), height)
        assert window == WindowBounds(101, 110)

    @pytest.mark.parametrize("height", [100, 111, 0, 5000])
    def test_outside_window(self, height):
        decision = decide_window(_topic(), height)
        assert isinstance(decision, GateDecision)
        assert decision.outcome is GateOutcome.SKIP
        assert decision.reason == SKIP_OUTSIDE_WINDOW

    def test_window_bounds_are_inclusive(self):
        window = WindowBounds(101, 110)
        assert window.contains(101)
        assert window.contains(110)
        assert not window.contains(100)
        assert not window.contains(111)


class TestSubmissionGate:
    """Gate evaluation against chain state."""

    @pytest.mark.asyncio
    async def test_proceeds_with_open_nonce(self, chain):
        chain.height = 105
        chain.open_nonce = 105

        decision = await SubmissionGate(chain).evaluate(1)

        assert decision.should_submit
        assert decision.nonce_height == 105
        assert decision.reason is None

    @pytest.mark.asyncio
    async def test_outside_window_skips_without_nonce_lookup(self, chain):
        chain.height = 150

        decision = await SubmissionGate(chain).evaluate(1)

        assert not decision.should_submit
        assert decision.reason == SKIP_OUTSIDE_WINDOW
        assert chain.count("derive_latest_open_worker_nonce") == 0
        assert chain.writes == []

    @pytest.mark.asyncio
    async def test_no_open_nonce(self, chain):
        chain.open_nonce = None

        decision = await SubmissionGate(chain).evaluate(1)

        assert decision == GateDecision.skip(SKIP_NO_OPEN_NONCE)

    @pytest.mark.asyncio
    async def test_unknown_topic(self, chain):
        decision = await SubmissionGate(chain).evaluate(99)

        assert decision.reason == SKIP_INSUFFICIENT_STATE

    @pytest.mark.asyncio
    async def test_unreadable_height(self, chain):
        chain.height = None

        decision = await SubmissionGate(chain).evaluate(1)

        assert decision.reason == SKIP_INSUFFICIENT_STATE

    @pytest.mark.asyncio
    async def test_repeated_evaluation_is_stable(self, chain):
        """Two evaluations over unchanged state reach the same decision."""
        chain.height = 200
        gate = SubmissionGate(chain)

        first = await gate.evaluate(1)
        second = await gate.evaluate(1)

        assert first == second
        assert first.reason == SKIP_OUTSIDE_WINDOW

    @pytest.mark.asyncio
    async def test_state_is_read_fresh_each_time(self, chain):
        gate = SubmissionGate(chain)

        chain.height = 200
        assert not (await gate.evaluate(1)).should_submit

        chain.height = 108
        chain.open_nonce = 108
        decision = await gate.evaluate(1)
        assert decision.should_submit
        assert decision.nonce_height == 108
        assert chain.count("get_topic_details") == 2

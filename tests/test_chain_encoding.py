"""
Tests for chain error classification and BoundedExp40Dec encoding.

Author: Chainworker Team
License: MIT
"""

from decimal import Decimal

import pytest

from chainworker.blockchain.bounded_decimal import format_bounded_exp40dec
from chainworker.blockchain.chain_errors import ChainErrorAction, classify_chain_error
from chainworker.exceptions import InvalidModelOutput, SkipSubmission


# =============================================================================
# Error classification
# =============================================================================

class TestClassifyChainError:

    def test_sequence_mismatch_with_expected(self):
        processed = classify_chain_error(
            RuntimeError("account sequence mismatch, expected 42, got 41: incorrect account sequence")
        )
        assert processed.action is ChainErrorAction.RESET_SEQUENCE
        assert processed.expected_sequence == 42

    def test_sequence_mismatch_without_expected(self):
        processed = classify_chain_error("Account Sequence Mismatch")
        assert processed.action is ChainErrorAction.RESET_SEQUENCE
        assert processed.expected_sequence is None

    @pytest.mark.parametrize(
        "message",
        [
            "connect ECONNREFUSED: connection refused",
            "request timed out",
            "Timeout waiting for block",
            "HTTP 503 Service Unavailable",
        ],
    )
    def test_node_failures_switch_node(self, message):
        assert classify_chain_error(message).action is ChainErrorAction.SWITCH_NODE

    def test_out_of_gas_retries(self):
        assert classify_chain_error("out of gas in location: WriteFlat").action is ChainErrorAction.RETRY

    @pytest.mark.parametrize("message", ["insufficient funds", "insufficient fee; got 1uallo"])
    def test_funds_errors_fail(self, message):
        assert classify_chain_error(message).action is ChainErrorAction.FAIL

    @pytest.mark.parametrize("error", ["something odd", None, ""])
    def test_unknown_errors_retry(self, error):
        assert classify_chain_error(error).action is ChainErrorAction.RETRY


# =============================================================================
# BoundedExp40Dec
# =============================================================================

class TestFormatBoundedExp40Dec:

    @pytest.mark.parametrize(
        "value, expected",
        [
            ("1.5", "1500000000000000000"),
            (1, "1000000000000000000"),
            (0.1, "100000000000000000"),
            ("-2.25", "-2250000000000000000"),
            (Decimal("0"), "0"),
            ("0.0000000000000000005", "1"),
            ("0.0000000000000000004", "0"),
            ("-0.0000000000000000004", "0"),
            ("1e22", "10000000000000000000000000000000000000000"),
        ],
    )
    def test_encoding(self, value, expected):
        assert format_bounded_exp40dec(value) == expected

    def test_precision(self):
        assert format_bounded_exp40dec("1.23456", precision=2) == "123"
        assert format_bounded_exp40dec("1.235", precision=2) == "124"

    @pytest.mark.parametrize("value", [None, "nan", "inf", "-Infinity", "abc", True, "1e23", -1e23])
    def test_throw_policy(self, value):
        with pytest.raises(InvalidModelOutput):
            format_bounded_exp40dec(value)

    @pytest.mark.parametrize("value", [None, "nan", "1e30"])
    def test_skip_policy(self, value):
        with pytest.raises(SkipSubmission):
            format_bounded_exp40dec(value, policy="skip")

    @pytest.mark.parametrize("value", [None, "inf", "not a number"])
    def test_zero_policy(self, value):
        assert format_bounded_exp40dec(value, policy="zero") == "0"

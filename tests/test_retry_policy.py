# tests/test_retry_policy.py
"""
Test retry classification and backoff delays.
"""

import random
from datetime import datetime, timezone

import pytest

from allylab_notify.webhooks.models import DeliveryOutcome, OutcomeStatus, RetryConfig
from allylab_notify.webhooks.retry import RetryPolicy, classify_status


def _outcome(status, status_code=None):
    return DeliveryOutcome(
        destination_id="wh_1",
        attempt=0,
        timestamp=datetime.now(timezone.utc),
        status=status,
        status_code=status_code,
    )


class TestClassification:
    """Tests for retryable vs fatal classification."""

    @pytest.mark.parametrize("code", [200, 201, 202, 204, 299])
    def test_2xx_success(self, code):
        assert classify_status(code) == OutcomeStatus.SUCCESS

    @pytest.mark.parametrize("code", [429, 500, 502, 503, 504, 599])
    def test_429_and_5xx_retryable(self, code):
        policy = RetryPolicy()
        outcome = _outcome(OutcomeStatus.RETRYABLE_FAILURE, code)

        assert classify_status(code) == OutcomeStatus.RETRYABLE_FAILURE
        assert policy.is_retryable(outcome)

    @pytest.mark.parametrize("code", [400, 401, 403, 404, 410, 422])
    def test_other_4xx_fatal(self, code):
        policy = RetryPolicy()

        assert classify_status(code) == OutcomeStatus.FATAL_FAILURE
        assert not policy.is_retryable(_outcome(OutcomeStatus.FATAL_FAILURE, code))

    def test_transport_failure_retryable(self):
        """No status code + retryable status = timeout / connection error."""
        assert RetryPolicy().is_retryable(_outcome(OutcomeStatus.RETRYABLE_FAILURE))

    def test_success_not_retryable(self):
        assert not RetryPolicy().is_retryable(_outcome(OutcomeStatus.SUCCESS, 200))


class TestBackoff:
    """Tests for exponential backoff with jitter."""

    def test_defaults(self):
        config = RetryPolicy().config
        assert config.max_retries == 5
        assert config.base_delay_ms == 1000
        assert config.max_delay_ms == 60000
        assert config.backoff_multiplier == 2

    def test_base_delay_doubles_and_caps(self):
        policy = RetryPolicy()
        assert [policy.base_delay(i) for i in range(8)] == [
            1000, 2000, 4000, 8000, 16000, 32000, 60000, 60000,
        ]

    def test_delay_within_jitter_envelope(self):
        """next_delay(i) lies in [0.9, 1.1] x min(1000 * 2^i, 60000)."""
        policy = RetryPolicy(rng=random.Random(7))
        for attempt_index in range(12):
            nominal = min(1000 * 2 ** attempt_index, 60000)
            for _ in range(50):
                delay = policy.next_delay(attempt_index)
                assert 0.9 * nominal <= delay <= 1.1 * nominal

    def test_jitter_varies(self):
        policy = RetryPolicy(rng=random.Random(3))
        delays = {policy.next_delay(0) for _ in range(20)}
        assert len(delays) > 1

    def test_custom_config(self):
        policy = RetryPolicy(RetryConfig(base_delay_ms=100, max_delay_ms=250, backoff_multiplier=3))
        assert policy.base_delay(0) == 100
        assert policy.base_delay(1) == 250

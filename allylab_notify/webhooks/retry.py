# allylab_notify/webhooks/retry.py
"""
Retry policy for webhook delivery.

Retryable: HTTP 429, any 5xx, transport errors (timeout, connection
refused, DNS). Fatal: every other non-2xx status.

Backoff: min(base * multiplier ** i, max) with +/-10% jitter, where i
is 0 for the delay before the first retry. The initial attempt is never
delayed. The loop itself is run by tenacity.
"""

import random
from typing import Callable, Optional

from tenacity import RetryCallState, Retrying, retry_if_result, stop_after_attempt

from .models import DeliveryOutcome, OutcomeStatus, RetryConfig

DEFAULT_RETRY_CONFIG = RetryConfig()

JITTER_RATIO = 0.1


def classify_status(status_code: int) -> OutcomeStatus:
    """Classify an HTTP response status."""
    if 200 <= status_code < 300:
        return OutcomeStatus.SUCCESS
    if status_code == 429 or status_code >= 500:
        return OutcomeStatus.RETRYABLE_FAILURE
    return OutcomeStatus.FATAL_FAILURE


class RetryPolicy:
    """
    Decides whether an attempt is retried and how long to wait first.

    Args:
        config: Retry tuning
        rng: Jitter source (seed it for deterministic tests)
    """

    def __init__(self, config: Optional[RetryConfig] = None, rng: Optional[random.Random] = None):
        self.config = config or DEFAULT_RETRY_CONFIG
        self._rng = rng or random.Random()

    def is_retryable(self, outcome: DeliveryOutcome) -> bool:
        if outcome.status_code is not None:
            return classify_status(outcome.status_code) == OutcomeStatus.RETRYABLE_FAILURE
        # No status code: transport-level failure
        return outcome.status == OutcomeStatus.RETRYABLE_FAILURE

    def base_delay(self, attempt_index: int) -> float:
        """Capped exponential delay in milliseconds, before jitter."""
        config = self.config
        return min(
            config.base_delay_ms * config.backoff_multiplier ** attempt_index,
            config.max_delay_ms,
        )

    def next_delay(self, attempt_index: int) -> float:
        """Delay in milliseconds before retry number attempt_index + 1."""
        return self.base_delay(attempt_index) * self._rng.uniform(1 - JITTER_RATIO, 1 + JITTER_RATIO)

    def wait_seconds(self, retry_state: RetryCallState) -> float:
        """tenacity wait strategy; attempt_number is 1 after the initial attempt."""
        return self.next_delay(retry_state.attempt_number - 1) / 1000.0

    def retrying(self, before_sleep: Optional[Callable[[RetryCallState], None]] = None) -> Retrying:
        """
        Build the tenacity controller for one delivery.

        Retries while the returned DeliveryOutcome is retryable, up to
        max_retries extra attempts. When retries run out the last outcome
        is returned instead of raising RetryError.

        The controller is driven one attempt at a time (Retrying.iter), so
        the caller decides where backoff waits happen.

        Args:
            before_sleep: Hook called before each backoff wait
        """
        return Retrying(
            stop=stop_after_attempt(self.config.max_retries + 1),
            wait=self.wait_seconds,
            retry=retry_if_result(self.is_retryable),
            before_sleep=before_sleep,
            retry_error_callback=lambda retry_state: retry_state.outcome.result(),
        )

# allylab_notify/webhooks/delivery.py
"""
Delivery of one rendered payload to one destination.

States:
PENDING -> ATTEMPTING
ATTEMPTING -> SUCCESS (2xx)
ATTEMPTING -> RETRYING (retryable and retries left) -> ATTEMPTING
ATTEMPTING -> EXHAUSTED (fatal, or retryable with no retries left)

Terminal states record last_triggered / last_status on the destination
exactly once (unless recording is turned off, as for test sends).

step() runs a single attempt and hands back the backoff delay, so a
scheduler can wait without holding a worker; run() loops and sleeps
inline.
"""

import time
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Set

import httpx
from tenacity import DoAttempt, DoSleep, RetryCallState

from ..logging import get_logger
from .formatters import RenderedPayload
from .models import (
    DeliveryOutcome,
    DeliveryResult,
    DeliveryState,
    Destination,
    OutcomeStatus,
)
from .registry import DestinationRegistry
from .retry import RetryPolicy, classify_status

logger = get_logger(__name__)

NETWORK_ERROR = "Network error"

# Valid state transitions
TRANSITIONS: Dict[DeliveryState, Set[DeliveryState]] = {
    DeliveryState.PENDING: {DeliveryState.ATTEMPTING},
    DeliveryState.ATTEMPTING: {DeliveryState.SUCCESS, DeliveryState.RETRYING, DeliveryState.EXHAUSTED},
    DeliveryState.RETRYING: {DeliveryState.ATTEMPTING},
    DeliveryState.SUCCESS: set(),  # Terminal
    DeliveryState.EXHAUSTED: set(),  # Terminal
}


class InvalidTransitionError(RuntimeError):
    """Raised on a state change the delivery state machine does not allow."""
    pass


def describe_error(exc: BaseException) -> str:
    """Human-readable error text; falls back to a generic message."""
    message = str(exc).strip()
    return message or NETWORK_ERROR


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class DeliveryAttempt:
    """
    Drives one payload to one destination through the retry state machine.

    Usage:
        attempt = DeliveryAttempt(destination, payload, event, client, policy, registry)
        result = attempt.run()
    """

    def __init__(
        self,
        destination: Destination,
        payload: RenderedPayload,
        event: str,
        client: httpx.Client,
        policy: RetryPolicy,
        registry: Optional[DestinationRegistry] = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], datetime] = utcnow,
        record_status: bool = True,
    ):
        self.destination = destination
        self.payload = payload
        self.event = event
        self.client = client
        self.policy = policy
        self.registry = registry
        self.sleep = sleep
        self.clock = clock
        self.record_status = record_status

        self.state = DeliveryState.PENDING
        self.history: List[DeliveryState] = [DeliveryState.PENDING]
        self.outcomes: List[DeliveryOutcome] = []
        self.result: Optional[DeliveryResult] = None

        self._retrying = policy.retrying(before_sleep=self._before_sleep)
        self._retry_state = RetryCallState(self._retrying, fn=self._post_once, args=(), kwargs={})

    def _transition(self, to_state: DeliveryState):
        if to_state not in TRANSITIONS[self.state]:
            raise InvalidTransitionError(
                f"Invalid transition: {self.state.value} -> {to_state.value}"
            )
        self.state = to_state
        self.history.append(to_state)

    def _post_once(self) -> DeliveryOutcome:
        """Send one HTTP POST and classify the outcome. Never raises for HTTP/transport failures."""
        self._transition(DeliveryState.ATTEMPTING)
        attempt = len(self.outcomes)
        destination = self.destination

        logger.info(
            "webhook_delivery_attempt",
            webhook_id=destination.id,
            webhook_name=destination.name,
            url=destination.url,
            event=self.event,
            attempt=attempt,
        )

        try:
            response = self.client.post(
                destination.url,
                content=self.payload.body,
                headers=self.payload.headers_for_attempt(),
            )
            status = classify_status(response.status_code)
            outcome = DeliveryOutcome(
                destination_id=destination.id,
                attempt=attempt,
                timestamp=self.clock(),
                status=status,
                status_code=response.status_code,
                error=None if status == OutcomeStatus.SUCCESS else f"HTTP {response.status_code}",
            )

        except httpx.TimeoutException as e:
            outcome = DeliveryOutcome(
                destination_id=destination.id,
                attempt=attempt,
                timestamp=self.clock(),
                status=OutcomeStatus.RETRYABLE_FAILURE,
                error=f"Timeout: {describe_error(e)}",
            )

        except httpx.TransportError as e:
            outcome = DeliveryOutcome(
                destination_id=destination.id,
                attempt=attempt,
                timestamp=self.clock(),
                status=OutcomeStatus.RETRYABLE_FAILURE,
                error=describe_error(e),
            )

        except Exception as e:
            logger.error(
                "webhook_delivery_error",
                exc_info=True,
                webhook_id=destination.id,
                url=destination.url,
                error=str(e),
            )
            outcome = DeliveryOutcome(
                destination_id=destination.id,
                attempt=attempt,
                timestamp=self.clock(),
                status=OutcomeStatus.FATAL_FAILURE,
                error=describe_error(e),
            )

        self.outcomes.append(outcome)

        if outcome.status != OutcomeStatus.SUCCESS:
            logger.warning(
                "webhook_delivery_failed",
                webhook_id=destination.id,
                attempt=attempt,
                max_retries=self.policy.config.max_retries,
                status_code=outcome.status_code,
                retryable=self.policy.is_retryable(outcome),
                error=outcome.error,
            )
        return outcome

    def _before_sleep(self, retry_state: RetryCallState):
        self._transition(DeliveryState.RETRYING)
        delay = retry_state.next_action.sleep if retry_state.next_action else 0.0
        logger.debug(
            "webhook_delivery_retry",
            webhook_id=self.destination.id,
            attempt=retry_state.attempt_number,
            delay_ms=round(delay * 1000, 1),
        )

    @property
    def finished(self) -> bool:
        return self.state in (DeliveryState.SUCCESS, DeliveryState.EXHAUSTED)

    def step(self) -> Optional[float]:
        """
        Run one HTTP attempt.

        Returns:
            Backoff in seconds before the next attempt, or None once the
            delivery reached a terminal state (see result)
        """
        if self.finished:
            raise InvalidTransitionError(f"Delivery already finished (state={self.state.value})")

        # tenacity statistics are thread-local; a step may resume on another worker
        self._retrying.begin()
        while True:
            action = self._retrying.iter(retry_state=self._retry_state)
            if isinstance(action, DoAttempt):
                self._retry_state.set_result(self._post_once())
            elif isinstance(action, DoSleep):
                self._retry_state.prepare_for_next_attempt()
                return float(action)
            else:
                self._finish(action)
                return None

    def run(self) -> DeliveryResult:
        """
        Run attempts until success, a fatal failure, or retries are used up,
        sleeping between them on the calling thread.

        Returns:
            Delivery result with every attempt's outcome
        """
        if self.state != DeliveryState.PENDING:
            raise InvalidTransitionError(f"Delivery already ran (state={self.state.value})")

        delay = self.step()
        while delay is not None:
            self.sleep(delay)
            delay = self.step()
        return self.result

    def _finish(self, final: DeliveryOutcome):
        success = final.status == OutcomeStatus.SUCCESS
        self._transition(DeliveryState.SUCCESS if success else DeliveryState.EXHAUSTED)
        completed_at = self.clock()

        if self.record_status and self.registry is not None:
            self.registry.record_delivery(self.destination.id, success, completed_at)

        log = logger.info if success else logger.error
        log(
            "webhook_delivery_complete",
            webhook_id=self.destination.id,
            webhook_name=self.destination.name,
            type=self.destination.type.value,
            success=success,
            attempts=len(self.outcomes),
            status_code=final.status_code,
            error=final.error,
        )

        self.result = DeliveryResult(
            destination_id=self.destination.id,
            destination_name=self.destination.name,
            destination_type=self.destination.type,
            url=self.destination.url,
            event=self.event,
            success=success,
            attempts=len(self.outcomes),
            completed_at=completed_at,
            status_code=final.status_code,
            error=final.error,
            outcomes=list(self.outcomes),
        )

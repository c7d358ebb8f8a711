# allylab_notify/webhooks/dispatcher.py
"""
Webhook dispatcher - fans events out to registered destinations.

trigger() returns immediately with one future per matching destination.
Each HTTP attempt is a task on the worker pool; backoff waits happen on a
per-delivery timer thread that queues the next attempt when it fires, so
a destination in backoff never holds a worker another destination needs.
"""

import random
import threading
import time
from collections import deque
from concurrent.futures import Future, ThreadPoolExecutor, wait as wait_for
from datetime import datetime
from functools import partial
from typing import Any, Callable, Deque, Dict, List, Optional, Set, Union

import httpx

from ..logging import get_logger
from ..settings import settings
from .delivery import DeliveryAttempt, describe_error, utcnow
from .formatters import format_payload
from .models import (
    NO_RETRY,
    DeliveryResult,
    Destination,
    EventData,
    RetryConfig,
    TestResult,
    event_value,
)
from .registry import DestinationRegistry
from .retry import RetryPolicy

logger = get_logger(__name__)

TEST_EVENT = "test"

TEST_EVENT_DATA = EventData(
    scan_url="https://example.com",
    score=85,
    total_issues=12,
    critical=0,
    serious=3,
    moderate=5,
    minor=4,
    pages_scanned=5,
)

NOT_FOUND_ERROR = "Destination not found"
DISPATCHER_CLOSED_ERROR = "Dispatcher closed"


def default_retry_config() -> RetryConfig:
    return RetryConfig(
        max_retries=settings.webhook_max_retries,
        base_delay_ms=settings.webhook_base_delay_ms,
        max_delay_ms=settings.webhook_max_delay_ms,
        backoff_multiplier=settings.webhook_backoff_multiplier,
    )


class Dispatcher:
    """
    Delivers events to every enabled destination subscribed to them.

    Usage:
        with Dispatcher(registry) as dispatcher:
            futures = dispatcher.trigger("scan.completed", {"scanUrl": url, "score": 92})
            results = [f.result() for f in futures]

    Args:
        registry: Destination store
        client: HTTP client (its timeout bounds every attempt)
        retry_config: Retry tuning (settings by default)
        sleep: Backoff wait in seconds, run on the backoff thread (injectable for tests)
        clock: UTC time source
        rng: Jitter source
        max_workers: Concurrent HTTP attempts
        timeout_seconds: Per-request timeout when no client is given
    """

    def __init__(
        self,
        registry: DestinationRegistry,
        client: Optional[httpx.Client] = None,
        retry_config: Optional[RetryConfig] = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], datetime] = utcnow,
        rng: Optional[random.Random] = None,
        max_workers: Optional[int] = None,
        timeout_seconds: Optional[float] = None,
        delivery_log_size: Optional[int] = None,
    ):
        self.registry = registry
        self.timeout = timeout_seconds or settings.webhook_timeout_seconds
        self._owns_client = client is None
        self.client = client or httpx.Client(timeout=self.timeout)
        self.retry_config = retry_config or default_retry_config()
        self.sleep = sleep
        self.clock = clock
        self.rng = rng or random.Random()
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers or settings.webhook_max_workers,
            thread_name_prefix="webhook-delivery",
        )
        self._delivery_log: Deque[DeliveryResult] = deque(
            maxlen=delivery_log_size or settings.webhook_delivery_log_size
        )
        self._pending: Set["Future[DeliveryResult]"] = set()
        self._log_lock = threading.Lock()

    def _attempt(
        self,
        destination: Destination,
        event: str,
        data: EventData,
        retry_config: RetryConfig,
        record_status: bool,
    ) -> DeliveryAttempt:
        payload = format_payload(
            destination.type,
            event,
            data,
            secret=destination.secret,
            timestamp=self.clock(),
        )
        return DeliveryAttempt(
            destination=destination,
            payload=payload,
            event=event,
            client=self.client,
            policy=RetryPolicy(retry_config, rng=self.rng),
            registry=self.registry,
            sleep=self.sleep,
            clock=self.clock,
            record_status=record_status,
        )

    def _start(self, destination: Destination, event: str, data: EventData, future: "Future[DeliveryResult]"):
        """Pool task: render the payload and run the first attempt."""
        try:
            attempt = self._attempt(destination, event, data, self.retry_config, True)
        except Exception as e:
            logger.exception("webhook_delivery_crashed", webhook_id=destination.id, event=event, error=str(e))
            self._fail(destination, event, future, describe_error(e), attempts=0)
            return
        self._step(attempt, future)

    def _step(self, attempt: DeliveryAttempt, future: "Future[DeliveryResult]"):
        """Pool task: run one attempt, then either finish or schedule the backoff."""
        try:
            delay = attempt.step()
        except Exception as e:
            # Unexpected errors become a failed delivery for this destination only
            logger.exception(
                "webhook_delivery_crashed",
                webhook_id=attempt.destination.id,
                event=attempt.event,
                error=str(e),
            )
            self._fail(attempt.destination, attempt.event, future, describe_error(e), len(attempt.outcomes))
            return

        if delay is None:
            self._complete(future, attempt.result)
        else:
            self._schedule(delay, attempt, future)

    def _schedule(self, delay: float, attempt: DeliveryAttempt, future: "Future[DeliveryResult]"):
        """Wait out a backoff on its own thread; the pool slot is released meanwhile."""
        def resume():
            self.sleep(delay)
            self._submit(
                partial(self._step, attempt, future),
                attempt.destination,
                attempt.event,
                future,
                attempts=len(attempt.outcomes),
            )

        threading.Thread(
            target=resume,
            name=f"webhook-backoff-{attempt.destination.id}",
            daemon=True,
        ).start()

    def _submit(
        self,
        task: Callable[[], None],
        destination: Destination,
        event: str,
        future: "Future[DeliveryResult]",
        attempts: int = 0,
    ):
        """Queue a pool task for one delivery."""
        try:
            self._executor.submit(task)
        except RuntimeError:
            # Pool already shut down
            logger.warning("webhook_delivery_abandoned", webhook_id=destination.id, event=event)
            self._fail(destination, event, future, DISPATCHER_CLOSED_ERROR, attempts)

    def _fail(
        self,
        destination: Destination,
        event: str,
        future: "Future[DeliveryResult]",
        error: str,
        attempts: int,
    ):
        completed_at = self.clock()
        self.registry.record_delivery(destination.id, False, completed_at)
        self._complete(future, DeliveryResult(
            destination_id=destination.id,
            destination_name=destination.name,
            destination_type=destination.type,
            url=destination.url,
            event=event,
            success=False,
            attempts=attempts,
            completed_at=completed_at,
            error=error,
        ))

    def _complete(self, future: "Future[DeliveryResult]", result: DeliveryResult):
        with self._log_lock:
            self._delivery_log.append(result)
            self._pending.discard(future)
        future.set_result(result)

    def trigger(
        self,
        event: Any,
        data: Union[EventData, Dict[str, Any], None] = None,
    ) -> List["Future[DeliveryResult]"]:
        """
        Fire an event to all enabled, subscribed destinations.

        Does not wait for delivery. Failures are recorded on the
        destination (last_status) and in the delivery log, never raised.

        Args:
            event: Event kind (WebhookEvent or string)
            data: EventData or camelCase mapping

        Returns:
            One future per destination, resolving to its DeliveryResult
        """
        kind = event_value(event)
        if not isinstance(data, EventData):
            data = EventData.from_dict(data)

        destinations = self.registry.list_for_event(kind)

        logger.info(
            "firing_webhooks",
            event=kind,
            webhook_count=len(destinations),
        )

        futures: List["Future[DeliveryResult]"] = []
        for destination in destinations:
            future: "Future[DeliveryResult]" = Future()
            future.set_running_or_notify_cancel()
            with self._log_lock:
                self._pending.add(future)
            self._submit(partial(self._start, destination, kind, data, future), destination, kind, future)
            futures.append(future)
        return futures

    def trigger_and_wait(
        self,
        event: Any,
        data: Union[EventData, Dict[str, Any], None] = None,
        timeout: Optional[float] = None,
    ) -> List[DeliveryResult]:
        """Fire an event and block until every delivery has finished."""
        return [future.result(timeout=timeout) for future in self.trigger(event, data)]

    def test_destination(self, destination_id: str) -> TestResult:
        """
        Send one sample payload to a destination, without retries.

        Does not touch last_triggered / last_status.

        Returns:
            TestResult with success, status code and error text
        """
        destination = self.registry.get(destination_id)
        if destination is None:
            return TestResult(success=False, error=NOT_FOUND_ERROR)

        logger.info("webhook_test", webhook_id=destination.id, webhook_name=destination.name)

        try:
            result = self._attempt(destination, TEST_EVENT, TEST_EVENT_DATA, NO_RETRY, False).run()
        except Exception as e:
            logger.exception("webhook_test_failed", webhook_id=destination.id, error=str(e))
            return TestResult(success=False, error=describe_error(e))

        return TestResult(
            success=result.success,
            status_code=result.status_code,
            error=result.error,
        )

    def get_delivery_log(self, limit: int = 100) -> List[DeliveryResult]:
        """Recent deliveries, most recent first."""
        with self._log_lock:
            recent = list(self._delivery_log)
        return list(reversed(recent))[:limit]

    def clear_delivery_log(self):
        """Clear delivery log."""
        with self._log_lock:
            self._delivery_log.clear()

    def close(self, wait: bool = True):
        """
        Stop the worker pool and close the HTTP client if we created it.

        With wait=True, deliveries still in flight (backoff included) finish
        first; otherwise they are failed when their next attempt comes due.
        """
        if wait:
            with self._log_lock:
                pending = list(self._pending)
            wait_for(pending)
        self._executor.shutdown(wait=wait)
        if self._owns_client:
            self.client.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

# tests/conftest.py
"""
Pytest configuration and fixtures.

HTTP is faked with httpx.MockTransport; backoff sleeps are recorded
instead of slept, so retry tests run instantly and deterministically.
"""

import random
import threading
from collections import defaultdict
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Union

import httpx
import pytest

from allylab_notify.webhooks import DestinationRegistry, Dispatcher, RetryConfig


class ScriptedReceiver:
    """
    Fake webhook receiver.

    Each URL gets a script of status codes or exceptions; the last entry
    repeats once the script runs out. Unscripted URLs answer 200.
    """

    def __init__(self):
        self.requests: List[httpx.Request] = []
        self._scripts: Dict[str, List[Union[int, Exception]]] = {}
        self._lock = threading.Lock()

    def script(self, url: str, *responses: Union[int, Exception]):
        self._scripts[url] = list(responses)

    def calls_to(self, url: str) -> List[httpx.Request]:
        with self._lock:
            return [r for r in self.requests if str(r.url) == url]

    def __call__(self, request: httpx.Request) -> httpx.Response:
        url = str(request.url)
        with self._lock:
            self.requests.append(request)
            script = self._scripts.get(url)
            if not script:
                step: Union[int, Exception] = 200
            elif len(script) > 1:
                step = script.pop(0)
            else:
                step = script[0]
        if isinstance(step, Exception):
            raise step
        return httpx.Response(step, json={"ok": 200 <= step < 300})


class RecordingSleep:
    """Sleep replacement that records requested delays (seconds)."""

    def __init__(self):
        self.delays: List[float] = []
        self._lock = threading.Lock()

    def __call__(self, seconds: float):
        with self._lock:
            self.delays.append(seconds)


class FakeClock:
    """Deterministic UTC clock advancing one second per reading."""

    def __init__(self, start: datetime = datetime(2024, 1, 15, 10, 30, tzinfo=timezone.utc)):
        self.now = start
        self._lock = threading.Lock()

    def __call__(self) -> datetime:
        with self._lock:
            current = self.now
            self.now = self.now + timedelta(seconds=1)
            return current


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def registry(clock):
    """Isolated destination registry per test."""
    return DestinationRegistry(clock=clock)


@pytest.fixture
def receiver():
    return ScriptedReceiver()


@pytest.fixture
def sleeper():
    return RecordingSleep()


@pytest.fixture
def http_client(receiver):
    client = httpx.Client(transport=httpx.MockTransport(receiver), timeout=5.0)
    yield client
    client.close()


@pytest.fixture
def dispatcher(registry, http_client, sleeper, clock):
    """Dispatcher with default retry tuning, fake HTTP and recorded sleeps."""
    d = Dispatcher(
        registry,
        client=http_client,
        retry_config=RetryConfig(),
        sleep=sleeper,
        clock=clock,
        rng=random.Random(42),
        max_workers=4,
    )
    yield d
    d.close()

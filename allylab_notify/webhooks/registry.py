# allylab_notify/webhooks/registry.py
"""
Destination registry - manages configured webhook destinations.

Destinations subscribe to scan lifecycle events:
- scan.completed: A scan finished
- scan.failed: A scan errored
- score.dropped: Accessibility score went down
- critical.found: Critical issues were detected

The registry is an explicit in-memory store. Callers receive snapshots;
delivery status writes go through record_delivery() and are serialized
per destination.
"""

import random
import threading
import time
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple, Union
from urllib.parse import urlparse

from ..logging import get_logger
from .models import DeliveryStatus, Destination, DestinationType, event_value

logger = get_logger(__name__)

_ID_ALPHABET = "abcdefghijklmnopqrstuvwxyz0123456789"

# Sentinel for "field not provided" in partial updates
_UNSET: Any = object()


class DestinationValidationError(ValueError):
    """Raised when a destination is registered or updated with invalid fields."""
    pass


def detect_type(url: str) -> DestinationType:
    """Infer the destination type from the URL host."""
    host = (urlparse(url).hostname or "").lower()
    if "hooks.slack.com" in host:
        return DestinationType.SLACK
    if "office.com" in host:
        return DestinationType.TEAMS
    return DestinationType.GENERIC


def validate_url(url: str) -> str:
    """
    Check that url is a non-empty absolute URL.

    Raises:
        DestinationValidationError: If the URL is missing or not absolute
    """
    if not url or not url.strip():
        raise DestinationValidationError("Missing required field: url")
    url = url.strip()
    try:
        parsed = urlparse(url)
    except ValueError as e:
        raise DestinationValidationError(f"Invalid URL: {url} ({e})")
    if not parsed.scheme or not parsed.netloc:
        raise DestinationValidationError(f"Invalid URL: {url}. An absolute URL is required.")
    return url


def _validate_name(name: str) -> str:
    if not name or not name.strip():
        raise DestinationValidationError("Missing required field: name")
    return name.strip()


def _validate_events(events: Iterable[Any]) -> frozenset:
    kinds = frozenset(event_value(e) for e in (events or ()))
    if not kinds:
        raise DestinationValidationError("Missing required field: events (at least one event is required)")
    return kinds


def _coerce_type(value: Union[DestinationType, str]) -> DestinationType:
    try:
        return DestinationType(value)
    except ValueError:
        valid = [t.value for t in DestinationType]
        raise DestinationValidationError(f"Invalid type: {value}. Valid types: {valid}")


def generate_id() -> str:
    """Time-based id with a random suffix, unique for the process lifetime."""
    suffix = "".join(random.choices(_ID_ALPHABET, k=7))
    return f"wh_{int(time.time() * 1000)}_{suffix}"


class DestinationRegistry:
    """
    In-memory store of webhook destinations.

    The map itself is guarded by one lock; each destination carries its
    own lock for field writes, so status updates from concurrent
    deliveries to different destinations never contend.

    Usage:
        registry = DestinationRegistry()
        dest = registry.create("Team channel", "https://hooks.slack.com/...", ["scan.completed"])
        registry.update(dest.id, enabled=False)
    """

    def __init__(self, clock: Optional[Callable[[], datetime]] = None):
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._destinations: Dict[str, Destination] = {}
        self._entry_locks: Dict[str, threading.Lock] = {}
        self._lock = threading.Lock()

    def _entry(self, destination_id: str) -> Tuple[Optional[Destination], Optional[threading.Lock]]:
        with self._lock:
            return self._destinations.get(destination_id), self._entry_locks.get(destination_id)

    def _entries(self) -> List[Tuple[Destination, threading.Lock]]:
        with self._lock:
            return [(d, self._entry_locks[d.id]) for d in self._destinations.values()]

    def create(
        self,
        name: str,
        url: str,
        events: Iterable[Any],
        secret: Optional[str] = None,
        type: Optional[Union[DestinationType, str]] = None,
    ) -> Destination:
        """
        Register a new destination.

        Args:
            name: Human-readable name
            url: Absolute destination URL
            events: Event kinds to subscribe to
            secret: Optional signing secret (generic destinations)
            type: Explicit destination type; detected from url when omitted

        Returns:
            Snapshot of the created destination

        Raises:
            DestinationValidationError: On missing or invalid fields
        """
        name = _validate_name(name)
        url = validate_url(url)
        kinds = _validate_events(events)
        dest_type = _coerce_type(type) if type is not None else detect_type(url)

        destination = Destination(
            id=generate_id(),
            name=name,
            url=url,
            type=dest_type,
            events=kinds,
            enabled=True,
            secret=secret or None,
            created_at=self._clock(),
        )

        with self._lock:
            while destination.id in self._destinations:
                destination.id = generate_id()
            self._destinations[destination.id] = destination
            self._entry_locks[destination.id] = threading.Lock()
            snapshot = replace(destination)

        logger.info(
            "webhook_created",
            webhook_id=destination.id,
            name=destination.name,
            type=destination.type.value,
            events=sorted(destination.events),
        )
        return snapshot

    def update(
        self,
        destination_id: str,
        name: Any = _UNSET,
        url: Any = _UNSET,
        type: Any = _UNSET,
        events: Any = _UNSET,
        enabled: Any = _UNSET,
        secret: Any = _UNSET,
    ) -> Optional[Destination]:
        """
        Apply a partial update. Only provided fields change.

        Changing url re-detects the type unless type is provided in the
        same call; an explicit type always wins.

        Returns:
            Updated snapshot, or None if the destination does not exist

        Raises:
            DestinationValidationError: On invalid provided fields
        """
        destination, entry_lock = self._entry(destination_id)
        if destination is None:
            return None

        changes: Dict[str, Any] = {}
        if name is not _UNSET and name is not None:
            changes["name"] = _validate_name(name)
        if url is not _UNSET and url is not None:
            changes["url"] = validate_url(url)
            changes["type"] = detect_type(changes["url"])
        if type is not _UNSET and type is not None:
            changes["type"] = _coerce_type(type)
        if events is not _UNSET and events is not None:
            changes["events"] = _validate_events(events)
        if enabled is not _UNSET and enabled is not None:
            changes["enabled"] = bool(enabled)
        if secret is not _UNSET:
            changes["secret"] = secret or None

        with entry_lock:
            for field_name, value in changes.items():
                setattr(destination, field_name, value)
            snapshot = replace(destination)

        logger.info(
            "webhook_updated",
            webhook_id=destination_id,
            fields=sorted(changes),
        )
        return snapshot

    def get(self, destination_id: str) -> Optional[Destination]:
        """Get a destination snapshot by id."""
        destination, entry_lock = self._entry(destination_id)
        if destination is None:
            return None
        with entry_lock:
            return replace(destination)

    def list(self) -> List[Destination]:
        """List all destinations in creation order."""
        snapshots = []
        for destination, entry_lock in self._entries():
            with entry_lock:
                snapshots.append(replace(destination))
        return snapshots

    def list_for_event(self, event: Any) -> List[Destination]:
        """Enabled destinations subscribed to event."""
        return [
            d for d in self.list()
            if d.enabled and d.subscribes_to(event)
        ]

    def delete(self, destination_id: str) -> bool:
        """Remove a destination."""
        with self._lock:
            if destination_id not in self._destinations:
                return False
            del self._destinations[destination_id]
            del self._entry_locks[destination_id]
        logger.info("webhook_deleted", webhook_id=destination_id)
        return True

    def enable(self, destination_id: str) -> bool:
        """Enable a destination."""
        return self.update(destination_id, enabled=True) is not None

    def disable(self, destination_id: str) -> bool:
        """Disable a destination (keeps registration but stops firing)."""
        return self.update(destination_id, enabled=False) is not None

    def record_delivery(self, destination_id: str, success: bool, at: Optional[datetime] = None) -> bool:
        """
        Record the terminal status of a delivery.

        Returns:
            False if the destination was deleted meanwhile
        """
        destination, entry_lock = self._entry(destination_id)
        if destination is None:
            return False

        with entry_lock:
            destination.last_triggered = at or self._clock()
            destination.last_status = DeliveryStatus.SUCCESS if success else DeliveryStatus.FAILED
        return True

    def __len__(self) -> int:
        with self._lock:
            return len(self._destinations)

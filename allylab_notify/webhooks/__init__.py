# allylab_notify/webhooks/__init__.py
"""
Webhook module for outbound notifications.

Fires HTTP POST requests to generic, Slack and Teams destinations when
scan lifecycle events occur.
"""

from .dispatcher import Dispatcher
from .models import (
    DeliveryResult,
    DeliveryStatus,
    Destination,
    DestinationType,
    EventData,
    RetryConfig,
    TestResult,
    WebhookEvent,
)
from .registry import DestinationRegistry, DestinationValidationError

__all__ = [
    "DeliveryResult",
    "DeliveryStatus",
    "Destination",
    "DestinationRegistry",
    "DestinationType",
    "DestinationValidationError",
    "Dispatcher",
    "EventData",
    "RetryConfig",
    "TestResult",
    "WebhookEvent",
]

# allylab_notify/api/deps.py
"""
Shared service instances for the route layer.

Tests swap these through app.dependency_overrides.
"""

from functools import lru_cache

from ..webhooks import DestinationRegistry, Dispatcher


@lru_cache(maxsize=1)
def get_registry() -> DestinationRegistry:
    """Process-wide destination registry."""
    return DestinationRegistry()


@lru_cache(maxsize=1)
def get_dispatcher() -> Dispatcher:
    """Process-wide dispatcher bound to the shared registry."""
    return Dispatcher(get_registry())

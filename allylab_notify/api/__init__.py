"""API routes package."""

from .routes_webhooks import router as webhooks_router

__all__ = ["webhooks_router"]

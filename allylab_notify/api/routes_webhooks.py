# allylab_notify/api/routes_webhooks.py
"""
Webhook API routes.

Endpoints for managing destinations, sending test payloads and viewing
the delivery log. Secrets are never returned in clear text.
"""

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from ..logging import get_api_logger
from ..webhooks import (
    DestinationRegistry,
    DestinationType,
    DestinationValidationError,
    Dispatcher,
    WebhookEvent,
)
from .deps import get_dispatcher, get_registry

router = APIRouter(prefix="/webhooks", tags=["webhooks"])
logger = get_api_logger()


EVENT_DESCRIPTIONS = {
    WebhookEvent.SCAN_COMPLETED: "Fired when an accessibility scan finishes",
    WebhookEvent.SCAN_FAILED: "Fired when an accessibility scan errors out",
    WebhookEvent.SCORE_DROPPED: "Fired when a site's accessibility score goes down",
    WebhookEvent.CRITICAL_FOUND: "Fired when critical accessibility issues are detected",
}


class CreateDestinationRequest(BaseModel):
    """Request to register a destination."""
    name: str
    url: str
    events: List[str] = Field(default_factory=list)
    secret: Optional[str] = None
    type: Optional[DestinationType] = None


class UpdateDestinationRequest(BaseModel):
    """Partial update; only fields present in the body change."""
    name: Optional[str] = None
    url: Optional[str] = None
    type: Optional[DestinationType] = None
    events: Optional[List[str]] = None
    enabled: Optional[bool] = None
    secret: Optional[str] = None


def _not_found(destination_id: str) -> HTTPException:
    return HTTPException(status_code=404, detail=f"Webhook not found: {destination_id}")


@router.get("")
def list_webhooks(registry: DestinationRegistry = Depends(get_registry)) -> Dict[str, Any]:
    """
    List all registered destinations.

    Returns:
        Destinations (secrets masked) and the supported event kinds
    """
    destinations = registry.list()
    return {
        "webhooks": [d.to_dict() for d in destinations],
        "count": len(destinations),
        "supported_events": [
            {"event": event.value, "description": description}
            for event, description in EVENT_DESCRIPTIONS.items()
        ],
    }


@router.post("", status_code=201)
def create_webhook(
    request: CreateDestinationRequest,
    registry: DestinationRegistry = Depends(get_registry),
) -> Dict[str, Any]:
    """
    Register a new destination.

    The type is detected from the URL (hooks.slack.com -> slack,
    *office.com -> teams, else generic) unless given explicitly.
    """
    try:
        destination = registry.create(
            name=request.name,
            url=request.url,
            events=request.events,
            secret=request.secret,
            type=request.type,
        )
    except DestinationValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return destination.to_dict()


# Registered before /{webhook_id} so "deliveries" is not taken for an id
@router.get("/deliveries")
def get_deliveries(limit: int = 50, dispatcher: Dispatcher = Depends(get_dispatcher)) -> Dict[str, Any]:
    """
    Get recent delivery log, most recent first.

    Args:
        limit: Maximum number of deliveries to return
    """
    deliveries = dispatcher.get_delivery_log(limit=limit)
    return {
        "deliveries": [d.to_dict() for d in deliveries],
        "count": len(deliveries),
    }


@router.delete("/deliveries")
def clear_deliveries(dispatcher: Dispatcher = Depends(get_dispatcher)) -> Dict[str, Any]:
    """Clear the delivery log."""
    dispatcher.clear_delivery_log()
    return {"cleared": True, "message": "Delivery log cleared"}


@router.get("/{webhook_id}")
def get_webhook(webhook_id: str, registry: DestinationRegistry = Depends(get_registry)) -> Dict[str, Any]:
    """Get a single destination."""
    destination = registry.get(webhook_id)
    if destination is None:
        raise _not_found(webhook_id)
    return destination.to_dict()


@router.patch("/{webhook_id}")
def update_webhook(
    webhook_id: str,
    request: UpdateDestinationRequest,
    registry: DestinationRegistry = Depends(get_registry),
) -> Dict[str, Any]:
    """
    Partially update a destination.

    Changing the URL re-detects the type unless a type is sent too.
    """
    try:
        destination = registry.update(webhook_id, **request.model_dump(exclude_unset=True))
    except DestinationValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    if destination is None:
        raise _not_found(webhook_id)
    return destination.to_dict()


@router.delete("/{webhook_id}")
def delete_webhook(webhook_id: str, registry: DestinationRegistry = Depends(get_registry)) -> Dict[str, Any]:
    """Delete a destination."""
    if not registry.delete(webhook_id):
        raise _not_found(webhook_id)
    return {"success": True, "webhook_id": webhook_id}


@router.post("/{webhook_id}/enable")
def enable_webhook(webhook_id: str, registry: DestinationRegistry = Depends(get_registry)) -> Dict[str, Any]:
    """Enable a disabled destination."""
    if not registry.enable(webhook_id):
        raise _not_found(webhook_id)
    return {"webhook_id": webhook_id, "enabled": True}


@router.post("/{webhook_id}/disable")
def disable_webhook(webhook_id: str, registry: DestinationRegistry = Depends(get_registry)) -> Dict[str, Any]:
    """Disable a destination (stops firing but keeps registration)."""
    if not registry.disable(webhook_id):
        raise _not_found(webhook_id)
    return {"webhook_id": webhook_id, "enabled": False}


@router.post("/{webhook_id}/test")
def test_webhook(webhook_id: str, dispatcher: Dispatcher = Depends(get_dispatcher)) -> Dict[str, Any]:
    """
    Send one sample payload to a destination.

    No retries; the destination's last status is left untouched.
    """
    result = dispatcher.test_destination(webhook_id)
    logger.info("webhook_test_result", webhook_id=webhook_id, success=result.success)
    return result.to_dict()

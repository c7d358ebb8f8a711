# allylab_notify/webhooks/formatters.py
"""
Destination-specific payload rendering.

- generic: {"event", "timestamp", "data"} JSON, optionally signed
- slack:   Block Kit message inside a colored attachment
- teams:   Adaptive Card (1.4) message

Event data is normalized once (EventData.normalized) before the Slack
and Teams renderers run.
"""

import json
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional
from uuid import uuid4

from ..settings import settings
from .models import DestinationType, EventData, NormalizedEventData, WebhookEvent, event_value
from .signing import signature_header

EVENT_HEADER = "X-AllyLab-Event"
DELIVERY_HEADER = "X-AllyLab-Delivery"
SIGNATURE_HEADER = "X-AllyLab-Signature"

DEFAULT_TITLE = "AllyLab Notification"

EVENT_TITLES: Dict[str, str] = {
    WebhookEvent.SCAN_COMPLETED.value: "✅ Scan Completed",
    WebhookEvent.SCAN_FAILED.value: "❌ Scan Failed",
    WebhookEvent.SCORE_DROPPED.value: "📉 Accessibility Score Dropped",
    WebhookEvent.CRITICAL_FOUND.value: "🚨 Critical Issue Found",
}

RED = "#dc2626"
ORANGE = "#f59e0b"
GREEN = "#10b981"

ADAPTIVE_CARD_CONTENT_TYPE = "application/vnd.microsoft.card.adaptive"
ADAPTIVE_CARD_SCHEMA = "http://adaptivecards.io/schemas/adaptive-card.json"


class ScoreBand(Enum):
    """
    Score bands shared by Slack and Teams.

    70-89 is the neutral band: not alarming, no dedicated color.
    """
    EXCELLENT = ("🟢", GREEN)
    NEUTRAL = ("🟡", GREEN)
    FAIR = ("🟠", ORANGE)
    POOR = ("🔴", RED)

    @property
    def emoji(self) -> str:
        return self.value[0]

    @property
    def color(self) -> str:
        return self.value[1]

    @classmethod
    def for_score(cls, score: int) -> "ScoreBand":
        if score >= 90:
            return cls.EXCELLENT
        if score >= 70:
            return cls.NEUTRAL
        if score >= 50:
            return cls.FAIR
        return cls.POOR


@dataclass(frozen=True)
class RenderedPayload:
    """Serialized body plus the headers that go with it."""
    headers: Dict[str, str]
    body: bytes

    def headers_for_attempt(self) -> Dict[str, str]:
        """Headers for one HTTP attempt; generic deliveries get a fresh delivery token."""
        headers = dict(self.headers)
        if DELIVERY_HEADER in headers:
            headers[DELIVERY_HEADER] = new_delivery_id()
        return headers

    def json(self) -> Any:
        return json.loads(self.body)


def new_delivery_id() -> str:
    return uuid4().hex


def event_title(event: Any) -> str:
    return EVENT_TITLES.get(event_value(event), DEFAULT_TITLE)


def iso_timestamp(ts: datetime) -> str:
    """ISO-8601 UTC with millisecond precision and a Z suffix."""
    return ts.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def display_timestamp(ts: datetime) -> str:
    return ts.astimezone(timezone.utc).strftime("%Y-%m-%d %H:%M:%S UTC")


def serialize(payload: Dict[str, Any]) -> bytes:
    """Compact JSON bytes; signatures are computed over exactly these bytes."""
    return json.dumps(payload, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


# =============================================================================
# Generic
# =============================================================================

def format_generic(event: Any, data: EventData, timestamp: datetime) -> Dict[str, Any]:
    return {
        "event": event_value(event),
        "timestamp": iso_timestamp(timestamp),
        "data": data.to_dict(),
    }


# =============================================================================
# Slack
# =============================================================================

def _slack_text(text: str) -> Dict[str, Any]:
    return {"type": "mrkdwn", "text": text}


def _slack_context(text: str) -> Dict[str, Any]:
    return {"type": "context", "elements": [_slack_text(text)]}


def _slack_link(url: str) -> str:
    return f"<{url}|{url}>" if url else "N/A"


def format_slack(event: Any, data: NormalizedEventData, timestamp: datetime) -> Dict[str, Any]:
    title = event_title(event)
    when = display_timestamp(timestamp)

    if event_value(event) == WebhookEvent.SCAN_FAILED.value:
        blocks: List[Dict[str, Any]] = [
            {"type": "header", "text": {"type": "plain_text", "text": title, "emoji": True}},
            {
                "type": "section",
                "text": _slack_text(
                    f"*URL:* {_slack_link(data.scan_url)}\n*Error:* {data.error}"
                ),
            },
            _slack_context(f"🕐 {when}"),
        ]
        return {
            "text": f"{title}: {data.scan_url_or_placeholder}",
            "attachments": [{"color": RED, "blocks": blocks}],
        }

    band = ScoreBand.for_score(data.score)
    blocks = [
        {"type": "header", "text": {"type": "plain_text", "text": title, "emoji": True}},
        {"type": "section", "text": _slack_text(f"*URL:* {_slack_link(data.scan_url)}")},
        {
            "type": "section",
            "fields": [
                _slack_text(f"*Score*\n{band.emoji} {data.score}/100{data.score_change}"),
                _slack_text(f"*Total Issues*\n{data.total_issues}"),
            ],
        },
        {
            "type": "section",
            "fields": [
                _slack_text(f"*🔴 Critical*\n{data.critical}"),
                _slack_text(f"*🟠 Serious*\n{data.serious}"),
                _slack_text(f"*🟡 Moderate*\n{data.moderate}"),
                _slack_text(f"*🔵 Minor*\n{data.minor}"),
            ],
        },
    ]

    if data.pages_scanned is not None:
        blocks.append(_slack_context(f"📄 {data.pages_scanned} pages scanned"))

    if data.scan_url:
        blocks.append({
            "type": "actions",
            "elements": [
                {
                    "type": "button",
                    "text": {"type": "plain_text", "text": "📊 View Full Report", "emoji": True},
                    "url": data.scan_url,
                    "style": "primary",
                }
            ],
        })

    blocks.append(_slack_context(f"🕐 {when} • AllyLab"))

    color = RED if event_value(event) == WebhookEvent.CRITICAL_FOUND.value else band.color

    return {
        "text": f"{title}: {data.scan_url_or_placeholder} - Score: {data.score}/100",
        "attachments": [{"color": color, "blocks": blocks}],
    }


# =============================================================================
# Microsoft Teams
# =============================================================================

def _teams_title_color(event: Any) -> str:
    kind = event_value(event)
    if kind in (WebhookEvent.CRITICAL_FOUND.value, WebhookEvent.SCAN_FAILED.value):
        return "Attention"
    if kind == WebhookEvent.SCORE_DROPPED.value:
        return "Warning"
    return "Good"


def _adaptive_card(body: List[Dict[str, Any]], actions: Optional[List[Dict[str, Any]]] = None) -> Dict[str, Any]:
    content: Dict[str, Any] = {
        "$schema": ADAPTIVE_CARD_SCHEMA,
        "type": "AdaptiveCard",
        "version": "1.4",
        "body": body,
    }
    if actions:
        content["actions"] = actions
    return {
        "type": "message",
        "attachments": [{"contentType": ADAPTIVE_CARD_CONTENT_TYPE, "content": content}],
    }


def format_teams(event: Any, data: NormalizedEventData, timestamp: datetime) -> Dict[str, Any]:
    title = event_title(event)
    when = display_timestamp(timestamp)

    if event_value(event) == WebhookEvent.SCAN_FAILED.value:
        return _adaptive_card([
            {
                "type": "TextBlock",
                "text": title,
                "size": "Large",
                "weight": "Bolder",
                "color": "Attention",
            },
            {
                "type": "FactSet",
                "facts": [
                    {"title": "URL", "value": data.scan_url_or_placeholder},
                    {"title": "Error", "value": data.error},
                    {"title": "Time", "value": when},
                ],
            },
        ])

    band = ScoreBand.for_score(data.score)
    total_line = f"Total Issues: {data.total_issues}"
    if data.pages_scanned is not None:
        total_line += f" • {data.pages_scanned} pages scanned"

    body = [
        {
            "type": "TextBlock",
            "text": title,
            "size": "Large",
            "weight": "Bolder",
            "color": _teams_title_color(event),
        },
        {"type": "TextBlock", "text": data.scan_url, "wrap": True, "color": "Accent"},
        {
            "type": "ColumnSet",
            "columns": [
                {
                    "type": "Column",
                    "width": "auto",
                    "items": [
                        {"type": "TextBlock", "text": f"{band.emoji} Score", "weight": "Bolder"},
                        {
                            "type": "TextBlock",
                            "text": f"{data.score}/100{data.score_change}",
                            "size": "ExtraLarge",
                            "weight": "Bolder",
                        },
                    ],
                },
                {
                    "type": "Column",
                    "width": "stretch",
                    "items": [
                        {
                            "type": "FactSet",
                            "facts": [
                                {"title": "🔴 Critical", "value": str(data.critical)},
                                {"title": "🟠 Serious", "value": str(data.serious)},
                                {"title": "🟡 Moderate", "value": str(data.moderate)},
                                {"title": "🔵 Minor", "value": str(data.minor)},
                            ],
                        }
                    ],
                },
            ],
        },
        {"type": "TextBlock", "text": total_line, "spacing": "Medium", "color": "Default"},
        {"type": "TextBlock", "text": f"🕐 {when}", "size": "Small", "color": "Default", "spacing": "Small"},
    ]
    actions = [{"type": "Action.OpenUrl", "title": "📊 View Full Report", "url": data.scan_url or "#"}]
    return _adaptive_card(body, actions)


# =============================================================================
# Entry point
# =============================================================================

def format_payload(
    destination_type: DestinationType,
    event: Any,
    data: Optional[EventData] = None,
    secret: Optional[str] = None,
    timestamp: Optional[datetime] = None,
) -> RenderedPayload:
    """
    Render the wire body and headers for one destination.

    Args:
        destination_type: Destination wire format
        event: Event kind (WebhookEvent or any string)
        data: Event data (missing fields are defaulted for Slack/Teams)
        secret: Destination secret; signs generic payloads when set
        timestamp: Event time (defaults to now, UTC)

    Returns:
        RenderedPayload with serialized body and headers
    """
    data = data or EventData()
    timestamp = timestamp or datetime.now(timezone.utc)

    headers = {
        "Content-Type": "application/json",
        "User-Agent": settings.webhook_user_agent,
    }

    if destination_type == DestinationType.SLACK:
        body = serialize(format_slack(event, data.normalized(), timestamp))
    elif destination_type == DestinationType.TEAMS:
        body = serialize(format_teams(event, data.normalized(), timestamp))
    else:
        body = serialize(format_generic(event, data, timestamp))
        headers[EVENT_HEADER] = event_value(event)
        headers[DELIVERY_HEADER] = new_delivery_id()
        if secret:
            headers[SIGNATURE_HEADER] = signature_header(secret, body)

    return RenderedPayload(headers=headers, body=body)

# allylab_notify/webhooks/models.py
"""
Webhook data model.

Destinations, events, event data and the values produced while
delivering to a destination.
"""

from dataclasses import dataclass, field, fields
from datetime import datetime
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Optional


class WebhookEvent(str, Enum):
    """Scan lifecycle events that can trigger webhooks."""
    SCAN_COMPLETED = "scan.completed"
    SCAN_FAILED = "scan.failed"
    SCORE_DROPPED = "score.dropped"
    CRITICAL_FOUND = "critical.found"


class DestinationType(str, Enum):
    """Wire format a destination expects."""
    GENERIC = "generic"
    SLACK = "slack"
    TEAMS = "teams"


class DeliveryStatus(str, Enum):
    """Last recorded delivery status of a destination."""
    SUCCESS = "success"
    FAILED = "failed"


class OutcomeStatus(str, Enum):
    """Classification of a single HTTP attempt."""
    SUCCESS = "success"
    RETRYABLE_FAILURE = "retryable-failure"
    FATAL_FAILURE = "fatal-failure"


class DeliveryState(Enum):
    """
    Delivery state machine states.

    PENDING -> ATTEMPTING -> SUCCESS | RETRYING | EXHAUSTED
    RETRYING -> ATTEMPTING
    """
    PENDING = "PENDING"
    ATTEMPTING = "ATTEMPTING"
    RETRYING = "RETRYING"
    SUCCESS = "SUCCESS"
    EXHAUSTED = "EXHAUSTED"


def event_value(event: Any) -> str:
    """Plain string form of an event (known enum member or arbitrary kind)."""
    if isinstance(event, Enum):
        return str(event.value)
    return str(event)


@dataclass
class Destination:
    """A registered delivery target."""
    id: str
    name: str
    url: str
    type: DestinationType
    events: FrozenSet[str]
    enabled: bool
    created_at: datetime
    secret: Optional[str] = None
    last_triggered: Optional[datetime] = None
    last_status: Optional[DeliveryStatus] = None

    def subscribes_to(self, event: Any) -> bool:
        return event_value(event) in self.events

    def to_dict(self, mask_secret: bool = True) -> Dict[str, Any]:
        """Serialize for API responses (secret masked by default)."""
        secret = self.secret
        if secret and mask_secret:
            secret = "••••••••"
        return {
            "id": self.id,
            "name": self.name,
            "url": self.url,
            "type": self.type.value,
            "events": sorted(self.events),
            "enabled": self.enabled,
            "secret": secret,
            "created_at": self.created_at.isoformat(),
            "last_triggered": self.last_triggered.isoformat() if self.last_triggered else None,
            "last_status": self.last_status.value if self.last_status else None,
        }


# snake_case attribute -> camelCase wire key
_WIRE_KEYS = {
    "scan_url": "scanUrl",
    "score": "score",
    "previous_score": "previousScore",
    "total_issues": "totalIssues",
    "critical": "critical",
    "serious": "serious",
    "moderate": "moderate",
    "minor": "minor",
    "pages_scanned": "pagesScanned",
    "error": "error",
}


@dataclass(frozen=True)
class EventData:
    """
    Event-specific payload fields. All optional.

    Wire form (generic body, route layer) uses camelCase keys and only
    carries the fields that were supplied.
    """
    scan_url: Optional[str] = None
    score: Optional[int] = None
    previous_score: Optional[int] = None
    total_issues: Optional[int] = None
    critical: Optional[int] = None
    serious: Optional[int] = None
    moderate: Optional[int] = None
    minor: Optional[int] = None
    pages_scanned: Optional[int] = None
    error: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "EventData":
        """Build from a camelCase (or snake_case) mapping; unknown keys are ignored."""
        if not data:
            return cls()
        kwargs = {}
        for attr, wire_key in _WIRE_KEYS.items():
            if wire_key in data:
                kwargs[attr] = data[wire_key]
            elif attr in data:
                kwargs[attr] = data[attr]
        return cls(**kwargs)

    def to_dict(self) -> Dict[str, Any]:
        """Wire form with only the supplied fields."""
        return {
            _WIRE_KEYS[f.name]: getattr(self, f.name)
            for f in fields(self)
            if getattr(self, f.name) is not None
        }

    def normalized(self) -> "NormalizedEventData":
        """Fill defaults once so formatters never see missing values."""
        return NormalizedEventData(
            scan_url=self.scan_url or "",
            score=self.score or 0,
            previous_score=self.previous_score,
            total_issues=self.total_issues or 0,
            critical=self.critical or 0,
            serious=self.serious or 0,
            moderate=self.moderate or 0,
            minor=self.minor or 0,
            pages_scanned=self.pages_scanned,
            error=self.error or "Unknown error",
        )


@dataclass(frozen=True)
class NormalizedEventData:
    """
    EventData with rendering defaults applied.

    previous_score and pages_scanned stay optional: their presence
    controls whether the score change and page count are rendered.
    """
    scan_url: str
    score: int
    previous_score: Optional[int]
    total_issues: int
    critical: int
    serious: int
    moderate: int
    minor: int
    pages_scanned: Optional[int]
    error: str

    @property
    def scan_url_or_placeholder(self) -> str:
        return self.scan_url or "N/A"

    @property
    def score_change(self) -> str:
        """Score change suffix, e.g. " (+5)" or " (-12)"; empty without a previous score."""
        if self.previous_score is None:
            return ""
        diff = self.score - self.previous_score
        sign = "+" if diff >= 0 else ""
        return f" ({sign}{diff})"


@dataclass(frozen=True)
class RetryConfig:
    """Retry tuning for one delivery."""
    max_retries: int = 5
    base_delay_ms: float = 1000
    max_delay_ms: float = 60000
    backoff_multiplier: float = 2


# Single attempt, used by the destination test path
NO_RETRY = RetryConfig(max_retries=0, base_delay_ms=0, max_delay_ms=0, backoff_multiplier=1)


@dataclass(frozen=True)
class DeliveryOutcome:
    """Result of one HTTP attempt."""
    destination_id: str
    attempt: int  # 0 = initial attempt
    timestamp: datetime
    status: OutcomeStatus
    status_code: Optional[int] = None
    error: Optional[str] = None


@dataclass
class DeliveryResult:
    """Record of a complete delivery (all attempts) to one destination."""
    destination_id: str
    destination_name: str
    destination_type: DestinationType
    url: str
    event: str
    success: bool
    attempts: int
    completed_at: datetime
    status_code: Optional[int] = None
    error: Optional[str] = None
    outcomes: List[DeliveryOutcome] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "destination_id": self.destination_id,
            "destination_name": self.destination_name,
            "type": self.destination_type.value,
            "url": self.url,
            "event": self.event,
            "success": self.success,
            "attempts": self.attempts,
            "status_code": self.status_code,
            "error": self.error,
            "completed_at": self.completed_at.isoformat(),
        }


@dataclass(frozen=True)
class TestResult:
    """Outcome of a one-shot destination test."""
    success: bool
    status_code: Optional[int] = None
    error: Optional[str] = None

    # Not a pytest test class
    __test__ = False

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {"success": self.success}
        if self.status_code is not None:
            result["status_code"] = self.status_code
        if self.error is not None:
            result["error"] = self.error
        return result

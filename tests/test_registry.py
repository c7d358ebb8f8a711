# tests/test_registry.py
"""
Test the destination registry.

CRUD, validation, type detection and status recording.
"""

import threading

import pytest

from allylab_notify.webhooks import (
    DeliveryStatus,
    DestinationType,
    DestinationValidationError,
    WebhookEvent,
)
from allylab_notify.webhooks.registry import detect_type

SLACK_URL = "https://hooks.slack.com/services/T000/B000/XXXX"
TEAMS_URL = "https://acme.webhook.office.com/webhookb2/abc"


class TestTypeDetection:
    """Tests for URL-based type detection."""

    def test_slack(self):
        assert detect_type(SLACK_URL) == DestinationType.SLACK

    def test_teams(self):
        assert detect_type(TEAMS_URL) == DestinationType.TEAMS
        assert detect_type("https://outlook.office.com/webhook/abc") == DestinationType.TEAMS

    def test_generic(self):
        assert detect_type("https://example.com/hooks") == DestinationType.GENERIC

    def test_host_only(self):
        """Path segments do not influence detection."""
        assert detect_type("https://example.com/hooks.slack.com") == DestinationType.GENERIC


class TestCreate:
    """Tests for registration."""

    def test_create_generic(self, registry):
        dest = registry.create("CI receiver", "https://example.com/hook", ["scan.completed"])

        assert dest.id.startswith("wh_")
        assert dest.name == "CI receiver"
        assert dest.type == DestinationType.GENERIC
        assert dest.events == frozenset({"scan.completed"})
        assert dest.enabled is True
        assert dest.secret is None
        assert dest.last_triggered is None
        assert dest.last_status is None

    def test_create_detects_slack(self, registry):
        assert registry.create("Slack", SLACK_URL, ["scan.completed"]).type == DestinationType.SLACK

    def test_explicit_type_wins(self, registry):
        dest = registry.create("Custom", SLACK_URL, ["scan.completed"], type="generic")
        assert dest.type == DestinationType.GENERIC

    def test_events_deduplicated(self, registry):
        dest = registry.create(
            "Dup", "https://example.com/hook",
            [WebhookEvent.SCAN_FAILED, "scan.failed", "critical.found"],
        )
        assert dest.events == frozenset({"scan.failed", "critical.found"})

    def test_stores_secret(self, registry):
        dest = registry.create("Signed", "https://example.com/hook", ["scan.completed"], secret="k")
        assert registry.get(dest.id).secret == "k"

    def test_ids_unique(self, registry):
        ids = {registry.create(f"d{i}", "https://example.com/hook", ["scan.completed"]).id for i in range(200)}
        assert len(ids) == 200

    @pytest.mark.parametrize("url", ["not a url", "/relative/path", "example.com/hook", "https://"])
    def test_rejects_invalid_url(self, registry, url):
        with pytest.raises(DestinationValidationError) as exc_info:
            registry.create("Bad", url, ["scan.completed"])
        assert "Invalid URL" in str(exc_info.value)

    def test_rejects_missing_fields(self, registry):
        with pytest.raises(DestinationValidationError):
            registry.create("", "https://example.com/hook", ["scan.completed"])
        with pytest.raises(DestinationValidationError):
            registry.create("Name", "", ["scan.completed"])
        with pytest.raises(DestinationValidationError):
            registry.create("Name", "https://example.com/hook", [])
        assert len(registry) == 0

    def test_rejects_unknown_type(self, registry):
        with pytest.raises(DestinationValidationError):
            registry.create("Name", "https://example.com/hook", ["scan.completed"], type="discord")


class TestUpdate:
    """Tests for partial updates."""

    def test_only_provided_fields_change(self, registry):
        dest = registry.create("Old", "https://example.com/hook", ["scan.completed"], secret="k")
        updated = registry.update(dest.id, name="New")

        assert updated.name == "New"
        assert updated.url == dest.url
        assert updated.secret == "k"
        assert updated.created_at == dest.created_at
        assert updated.id == dest.id

    def test_url_change_redetects_type(self, registry):
        dest = registry.create("Hook", "https://example.com/hook", ["scan.completed"])
        assert registry.update(dest.id, url=SLACK_URL).type == DestinationType.SLACK
        assert registry.update(dest.id, url=TEAMS_URL).type == DestinationType.TEAMS
        assert registry.update(dest.id, url="https://example.org/x").type == DestinationType.GENERIC

    def test_explicit_type_overrides_detection(self, registry):
        dest = registry.create("Hook", "https://example.com/hook", ["scan.completed"])
        updated = registry.update(dest.id, url=SLACK_URL, type="teams")
        assert updated.type == DestinationType.TEAMS

    def test_type_kept_when_url_unchanged(self, registry):
        dest = registry.create("Hook", SLACK_URL, ["scan.completed"])
        assert registry.update(dest.id, name="Renamed").type == DestinationType.SLACK

    def test_events_enabled_secret(self, registry):
        dest = registry.create("Hook", "https://example.com/hook", ["scan.completed"], secret="k")
        updated = registry.update(dest.id, events=["score.dropped"], enabled=False, secret=None)

        assert updated.events == frozenset({"score.dropped"})
        assert updated.enabled is False
        assert updated.secret is None

    def test_invalid_url_rejected(self, registry):
        dest = registry.create("Hook", "https://example.com/hook", ["scan.completed"])
        with pytest.raises(DestinationValidationError):
            registry.update(dest.id, url="nope")
        assert registry.get(dest.id).url == "https://example.com/hook"

    def test_not_found(self, registry):
        assert registry.update("wh_missing", name="x") is None

    def test_not_found_wins_over_invalid_fields(self, registry):
        assert registry.update("wh_missing", url="bad") is None
        assert registry.update("wh_missing", name="", events=[]) is None


class TestQueries:
    """Tests for get/list/delete/enable/disable."""

    def test_get_missing(self, registry):
        assert registry.get("wh_missing") is None

    def test_list_and_delete(self, registry):
        a = registry.create("A", "https://example.com/a", ["scan.completed"])
        b = registry.create("B", "https://example.com/b", ["scan.completed"])

        assert [d.id for d in registry.list()] == [a.id, b.id]
        assert registry.delete(a.id) is True
        assert registry.delete(a.id) is False
        assert [d.id for d in registry.list()] == [b.id]

    def test_enable_disable(self, registry):
        dest = registry.create("A", "https://example.com/a", ["scan.completed"])

        assert registry.disable(dest.id)
        assert registry.get(dest.id).enabled is False
        assert registry.enable(dest.id)
        assert registry.get(dest.id).enabled is True
        assert not registry.enable("wh_missing")

    def test_list_for_event(self, registry):
        subscribed = registry.create("A", "https://example.com/a", ["scan.completed"])
        disabled = registry.create("B", "https://example.com/b", ["scan.completed"])
        registry.create("C", "https://example.com/c", ["scan.failed"])
        registry.disable(disabled.id)

        assert [d.id for d in registry.list_for_event("scan.completed")] == [subscribed.id]
        assert [d.id for d in registry.list_for_event(WebhookEvent.SCAN_COMPLETED)] == [subscribed.id]

    def test_snapshots_are_detached(self, registry):
        dest = registry.create("A", "https://example.com/a", ["scan.completed"])
        dest.name = "mutated"
        assert registry.get(dest.id).name == "A"


class TestRecordDelivery:
    """Tests for delivery status recording."""

    def test_records_status(self, registry, clock):
        dest = registry.create("A", "https://example.com/a", ["scan.completed"])
        at = clock()

        assert registry.record_delivery(dest.id, True, at)
        stored = registry.get(dest.id)
        assert stored.last_status == DeliveryStatus.SUCCESS
        assert stored.last_triggered == at

        registry.record_delivery(dest.id, False)
        assert registry.get(dest.id).last_status == DeliveryStatus.FAILED

    def test_missing_destination(self, registry):
        assert registry.record_delivery("wh_missing", True) is False

    def test_concurrent_writes_do_not_lose_updates(self, registry):
        """Status writes racing with config updates keep both changes."""
        dest = registry.create("A", "https://example.com/a", ["scan.completed"])
        barrier = threading.Barrier(2)

        def record():
            barrier.wait()
            for _ in range(200):
                registry.record_delivery(dest.id, True)

        def rename():
            barrier.wait()
            for i in range(200):
                registry.update(dest.id, name=f"name-{i}")

        threads = [threading.Thread(target=record), threading.Thread(target=rename)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        stored = registry.get(dest.id)
        assert stored.name == "name-199"
        assert stored.last_status == DeliveryStatus.SUCCESS

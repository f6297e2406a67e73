"""Tests for webhook event handling against the subscription store."""

import pytest
from prometheus_client import REGISTRY
from sqlalchemy.exc import OperationalError

from framecast.common.models import SUBSCRIPTION_ACTIVE, SUBSCRIPTION_INACTIVE
from framecast.common.store import EventLog, SubscriptionStore
from framecast.services.webhook.service import (
    InvalidEvent,
    UnknownEvent,
    WebhookEventType,
    WebhookProcessor,
    parse_event_type,
)

HEADER = {"fid": 42, "type": "app_key", "key": "0xabc"}


def added(url: str = "https://client.example/notify", token: str = "token-1", event: str = "frame_added") -> dict:
    return {"event": event, "notificationDetails": {"url": url, "token": token}}


@pytest.fixture
def store(session_factory):
    return SubscriptionStore(session_factory)


@pytest.fixture
def event_log(session_factory):
    return EventLog(session_factory)


@pytest.fixture
def processor(store, event_log):
    return WebhookProcessor(store, event_log)


def test_parse_event_type_keeps_unknown_value():
    assert parse_event_type("frame_added") is WebhookEventType.FRAME_ADDED
    assert parse_event_type("bogus") == UnknownEvent("bogus")


def test_frame_added_creates_active_subscription(processor, store):
    assert processor.process(HEADER, added(), "sig") == {"success": True}

    row = store.get(42, "0xabc")
    assert row.status == SUBSCRIPTION_ACTIVE
    assert row.app_url == "https://client.example/notify"
    assert row.token == "token-1"


def test_add_on_active_subscription_is_a_no_op(processor, store):
    """An active row keeps its url and token even if a new add differs."""

    processor.process(HEADER, added(), "sig")
    assert processor.process(HEADER, added(url="https://other.example", token="token-2"), "sig") == {"success": True}

    rows = store.list_subscriptions(status=None)
    assert len(rows) == 1
    assert rows[0].token == "token-1"
    assert rows[0].app_url == "https://client.example/notify"


def test_add_after_remove_reactivates_same_row(processor, store):
    processor.process(HEADER, added(), "sig")
    original = store.get(42, "0xabc")
    processor.process(HEADER, {"event": "frame_removed"}, "sig")
    assert store.get(42, "0xabc").status == SUBSCRIPTION_INACTIVE

    processor.process(HEADER, added(token="token-2", event="notifications_enabled"), "sig")

    row = store.get(42, "0xabc")
    assert row.id == original.id
    assert row.status == SUBSCRIPTION_ACTIVE
    assert row.token == "token-2"
    assert len(store.list_subscriptions(status=None)) == 1


def test_notifications_disabled_deactivates(processor, store):
    processor.process(HEADER, added(), "sig")
    assert processor.process(HEADER, {"event": "notifications_disabled"}, "sig") == {"success": True}
    assert store.get(42, "0xabc").status == SUBSCRIPTION_INACTIVE


def test_remove_without_subscription_succeeds(processor, store):
    assert processor.process(HEADER, {"event": "frame_removed"}, "sig") == {"success": True}
    assert store.get(42, "0xabc") is None


def test_add_without_details_fails(processor, store):
    assert processor.add_subscription(42, "0xabc", None, "token-1") == {"success": False}
    assert processor.add_subscription(42, "0xabc", "https://client.example", "") == {"success": False}
    assert store.get(42, "0xabc") is None


def test_unknown_event_raises_and_is_still_recorded(processor, event_log):
    with pytest.raises(InvalidEvent) as excinfo:
        processor.process(HEADER, {"event": "frame_exploded"}, "sig")

    assert excinfo.value.event == "frame_exploded"
    assert str(excinfo.value) == "Invalid event: frame_exploded"
    events = event_log.list_events()
    assert len(events) == 1
    assert events[0].event_type == "frame_exploded"


def test_every_processed_webhook_is_recorded_once(processor, event_log):
    processor.process(HEADER, added(), "sig-1")
    processor.process(HEADER, {"event": "frame_removed"}, "sig-2")

    events = event_log.list_events()
    assert [event.event_type for event in events] == ["frame_removed", "frame_added"]
    assert events[1].fid == 42
    assert events[1].full_event == {"header": HEADER, "payload": added(), "signature": "sig-1"}


class FailingEventLog:
    def record(self, event_type, fid, full_event):
        raise OperationalError("INSERT INTO webhook_events", {}, Exception("disk full"))


def test_audit_write_failure_is_counted_and_subscription_still_applied(store):
    processor = WebhookProcessor(store, FailingEventLog(), service_name="audit-failure-test")

    assert processor.process(HEADER, added(), "sig") == {"success": True}

    assert store.get(42, "0xabc").status == SUBSCRIPTION_ACTIVE
    assert (
        REGISTRY.get_sample_value("webhook_event_record_failures_total", {"service": "audit-failure-test"}) == 1.0
    )

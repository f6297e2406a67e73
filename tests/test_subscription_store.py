"""Tests for subscription, event log and delivery record persistence."""

from framecast.common.models import SUBSCRIPTION_ACTIVE, SUBSCRIPTION_INACTIVE
from framecast.common.store import DeliveryRecord, EventLog, SubscriptionStore


def test_upsert_reports_insert_and_no_op(session_factory):
    store = SubscriptionStore(session_factory)

    assert store.upsert_active(1, "k1", "https://a.example", "t1") is True
    assert store.upsert_active(1, "k1", "https://b.example", "t2") is False
    assert store.get(1, "k1").app_url == "https://a.example"


def test_deactivate_only_touches_active_rows(session_factory):
    store = SubscriptionStore(session_factory)
    store.upsert_active(1, "k1", "https://a.example", "t1")

    assert store.deactivate(1, "k1") is True
    assert store.deactivate(1, "k1") is False
    assert store.deactivate(2, "k1") is False


def test_tokens_grouped_by_url_skip_inactive(session_factory):
    store = SubscriptionStore(session_factory)
    store.upsert_active(1, "k1", "https://a.example", "t1")
    store.upsert_active(2, "k1", "https://a.example", "t2")
    store.upsert_active(3, "k2", "https://b.example", "t3")
    store.upsert_active(4, "k2", "https://b.example", "t4")
    store.deactivate(4, "k2")

    assert store.tokens_by_url() == {
        "https://a.example": ["t1", "t2"],
        "https://b.example": ["t3"],
    }


def test_deactivate_by_token_is_scoped_to_url(session_factory):
    """The same token issued by two clients is only dropped where it was reported."""

    store = SubscriptionStore(session_factory)
    store.upsert_active(1, "k1", "https://a.example", "shared")
    store.upsert_active(2, "k2", "https://b.example", "shared")

    assert store.deactivate_by_token("shared", app_url="https://a.example") == 1
    assert store.get(1, "k1").status == SUBSCRIPTION_INACTIVE
    assert store.get(2, "k2").status == SUBSCRIPTION_ACTIVE
    assert store.deactivate_by_token("shared") == 1


def test_list_subscriptions_filters_and_pages(session_factory):
    store = SubscriptionStore(session_factory)
    for fid in range(1, 6):
        store.upsert_active(fid, "k", "https://a.example", f"t{fid}")
    store.deactivate(5, "k")

    assert [row.fid for row in store.list_subscriptions()] == [1, 2, 3, 4]
    assert [row.fid for row in store.list_subscriptions(status=SUBSCRIPTION_INACTIVE)] == [5]
    assert [row.fid for row in store.list_subscriptions(status=None, limit=2, offset=1)] == [2, 3]
    assert store.get_by_token("t3").fid == 3


def test_event_log_newest_first_and_filter(session_factory):
    log = EventLog(session_factory)
    log.record("frame_added", 1, {"n": 1})
    log.record("frame_removed", 1, {"n": 2})
    log.record("frame_added", 2, {"n": 3})

    assert [event.full_event["n"] for event in log.list_events()] == [3, 2, 1]
    assert [event.full_event["n"] for event in log.list_events(event_type="frame_added")] == [3, 1]
    assert [event.full_event["n"] for event in log.list_events(limit=1, offset=1)] == [2]


def test_delivery_record_deduplicates(session_factory):
    record = DeliveryRecord(session_factory)

    assert record.add_successful_tokens(10, ["a", "b", "a"]) == 2
    assert record.add_successful_tokens(10, ["b", "c"]) == 1
    assert record.add_successful_tokens(10, []) == 0
    assert record.add_successful_tokens(11, ["a"]) == 1
    assert record.delivered_tokens(10) == ["a", "b", "c"]

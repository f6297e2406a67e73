"""HTTP-level tests for the webhook service."""

import pytest
from fastapi.testclient import TestClient

from framecast.common.config import settings
from framecast.common.store import EventLog, SubscriptionStore
from framecast.services.webhook import main
from framecast.services.webhook.service import WebhookProcessor
from framecast.services.webhook.verifier import SignatureVerifier

from conftest import b64url

URL = "https://client.example/notify"


class FakeLimiter:
    def __init__(self, allowed: bool = True) -> None:
        self.allowed = allowed
        self.keys: list[str] = []

    def allow(self, client_key: str) -> bool:
        self.keys.append(client_key)
        return self.allowed


@pytest.fixture
def limiter():
    return FakeLimiter()


@pytest.fixture
def client(session_factory, limiter):
    store = SubscriptionStore(session_factory)
    event_log = EventLog(session_factory)
    main.app.dependency_overrides[main.get_processor] = lambda: WebhookProcessor(store, event_log)
    main.app.dependency_overrides[main.get_verifier] = lambda: SignatureVerifier()
    main.app.dependency_overrides[main.get_rate_limiter] = lambda: limiter
    main.app.dependency_overrides[main.get_subscription_store] = lambda: store
    main.app.dependency_overrides[main.get_event_log] = lambda: event_log
    yield TestClient(main.app)
    main.app.dependency_overrides.clear()


def added(token: str = "token-1") -> dict:
    return {"event": "frame_added", "notificationDetails": {"url": URL, "token": token}}


def error_code(resp) -> str:
    return resp.json()["detail"]["code"]


def test_signed_frame_added_creates_subscription(client, signer):
    resp = client.post("/webhook", json=signer.envelope(added()))

    assert resp.status_code == 200
    assert resp.json() == {"success": True}

    subs = client.get("/subscriptions", headers={"x-api-key": settings.api_key}).json()
    assert [(sub["fid"], sub["app_key"], sub["token"]) for sub in subs] == [(42, signer.key_hex, "token-1")]


def test_frame_removed_round_trip(client, signer):
    client.post("/webhook", json=signer.envelope(added()))
    resp = client.post("/webhook", json=signer.envelope({"event": "frame_removed"}))

    assert resp.json() == {"success": True}
    headers = {"x-api-key": settings.api_key}
    assert client.get("/subscriptions", headers=headers).json() == []
    inactive = client.get("/subscriptions", params={"status": "inactive"}, headers=headers).json()
    assert len(inactive) == 1


@pytest.mark.parametrize("body", [{}, {"header": "a", "payload": "b"}, ["not", "an", "object"]])
def test_missing_parameters(client, body):
    resp = client.post("/webhook", json=body)
    assert resp.status_code == 400
    assert error_code(resp) == "invalid_webhook_parameters"


def test_non_json_body(client):
    resp = client.post("/webhook", content=b"{broken", headers={"content-type": "application/json"})
    assert resp.status_code == 400
    assert error_code(resp) == "invalid_webhook_parameters"


@pytest.mark.parametrize(
    "header",
    [{"fid": 42, "type": "app_key"}, {"fid": 42, "key": "0xabc"}, {"type": "app_key", "key": "0xabc"}],
)
def test_incomplete_header(client, signer, header):
    resp = client.post("/webhook", json=signer.envelope(added(), header=header))
    assert resp.status_code == 400
    assert error_code(resp) == "invalid_webhook_header"


@pytest.mark.parametrize("fid", [-1, 1.5, 2**256])
def test_out_of_range_fid_is_header_error(client, signer, fid):
    envelope = signer.envelope(added(), header={"fid": fid, "type": "app_key", "key": signer.key_hex})
    resp = client.post("/webhook", json=envelope)
    assert resp.status_code == 400
    assert error_code(resp) == "invalid_webhook_header"


def test_undecodable_header(client, signer):
    envelope = signer.envelope(added())
    envelope["header"] = b64url(b"[[[")
    resp = client.post("/webhook", json=envelope)
    assert error_code(resp) == "invalid_webhook_header"


@pytest.mark.parametrize("payload", [{}, {"event": "frame_exploded"}])
def test_bad_payload(client, signer, payload):
    resp = client.post("/webhook", json=signer.envelope(payload))
    assert resp.status_code == 400
    assert error_code(resp) == "invalid_webhook_payload"


@pytest.mark.parametrize(
    "payload",
    [
        {"event": "frame_added"},
        {"event": "notifications_enabled", "notificationDetails": {"url": URL}},
        {"event": "notifications_enabled", "notificationDetails": {"token": "t"}},
    ],
)
def test_subscribe_without_notification_details(client, signer, payload):
    resp = client.post("/webhook", json=signer.envelope(payload))
    assert resp.status_code == 400
    assert error_code(resp) == "invalid_notification_details"


def test_bad_signature_is_verification_failure(client, signer):
    envelope = signer.envelope(added())
    envelope["signature"] = b64url(b"\x00" * 64)
    resp = client.post("/webhook", json=envelope)
    assert resp.status_code == 400
    assert error_code(resp) == "signature_verification_failed"


def test_short_signature_is_verification_error(client, signer):
    envelope = signer.envelope(added())
    envelope["signature"] = b64url(b"\x00" * 10)
    resp = client.post("/webhook", json=envelope)
    assert resp.status_code == 400
    assert error_code(resp) == "signature_verification_error"


def test_rejected_webhooks_do_not_touch_event_log(client, signer):
    envelope = signer.envelope(added())
    envelope["signature"] = b64url(b"\x00" * 64)
    client.post("/webhook", json=envelope)

    assert client.get("/events", headers={"x-api-key": settings.api_key}).json() == []


def test_rate_limited_client_gets_429(client, limiter, signer):
    limiter.allowed = False
    resp = client.post("/webhook", json=signer.envelope(added()), headers={"x-forwarded-for": "203.0.113.9, 10.0.0.1"})
    assert resp.status_code == 429
    assert limiter.keys == ["203.0.113.9"]


def test_events_listing(client, signer):
    client.post("/webhook", json=signer.envelope(added()))
    client.post("/webhook", json=signer.envelope({"event": "notifications_disabled"}))
    headers = {"x-api-key": settings.api_key}

    events = client.get("/events", headers=headers).json()
    assert [event["event_type"] for event in events] == ["notifications_disabled", "frame_added"]
    assert events[1]["full_event"]["payload"] == added()

    filtered = client.get("/events", params={"event_type": "frame_added"}, headers=headers).json()
    assert len(filtered) == 1


@pytest.mark.parametrize("path", ["/events", "/subscriptions"])
def test_admin_endpoints_require_api_key(client, path):
    assert client.get(path).status_code == 401
    assert client.get(path, headers={"x-api-key": "wrong"}).status_code == 401


def test_health_and_metrics(client):
    assert client.get("/health").json() == {"ok": True}
    resp = client.get("/metrics")
    assert resp.status_code == 200
    assert "webhook_rejections_total" in resp.text

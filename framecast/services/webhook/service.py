"""Webhook event processing: audit logging and subscription state changes."""

from dataclasses import dataclass
from enum import Enum
from typing import Any

from sqlalchemy.exc import SQLAlchemyError

from framecast.common.logging import log_context, logger
from framecast.common.metrics import webhook_event_record_failures_total, webhook_events_total
from framecast.common.store import EventLog, SubscriptionStore


class WebhookEventType(str, Enum):
    FRAME_ADDED = "frame_added"
    FRAME_REMOVED = "frame_removed"
    NOTIFICATIONS_DISABLED = "notifications_disabled"
    NOTIFICATIONS_ENABLED = "notifications_enabled"


@dataclass(frozen=True)
class UnknownEvent:
    """An event value outside the known set, kept verbatim for error reporting."""

    raw: Any


SUBSCRIBING_EVENTS = frozenset({WebhookEventType.FRAME_ADDED, WebhookEventType.NOTIFICATIONS_ENABLED})
UNSUBSCRIBING_EVENTS = frozenset({WebhookEventType.FRAME_REMOVED, WebhookEventType.NOTIFICATIONS_DISABLED})


def parse_event_type(raw: Any) -> WebhookEventType | UnknownEvent:
    try:
        return WebhookEventType(raw)
    except ValueError:
        return UnknownEvent(raw)


class InvalidEvent(ValueError):
    """Raised for event values the processor does not handle."""

    def __init__(self, event: Any) -> None:
        self.event = event
        super().__init__(f"Invalid event: {event}")


class WebhookProcessor:
    """Records each verified webhook and applies it to the subscription store."""

    def __init__(self, store: SubscriptionStore, event_log: EventLog, service_name: str = "webhook") -> None:
        self.store = store
        self.event_log = event_log
        self.service_name = service_name

    def _record_event(self, event_type: str, fid: int, header: dict, payload: dict, signature: str) -> None:
        try:
            self.event_log.record(
                event_type=event_type,
                fid=fid,
                full_event={"header": header, "payload": payload, "signature": signature},
            )
        except SQLAlchemyError:
            logger.exception("webhook_event_record_failed event=%s fid=%s", event_type, fid)
            webhook_event_record_failures_total.labels(service=self.service_name).inc()

    def process(self, header: dict, payload: dict, signature: str) -> dict[str, bool]:
        """Handle one decoded webhook; raises `InvalidEvent` for unknown event types.

        The audit record is written before dispatch, whatever happens after.
        """

        fid = int(header["fid"])
        app_key = header["key"]
        raw_event = payload.get("event")
        with log_context(fid=fid):
            self._record_event(str(raw_event), fid, header, payload, signature)
            event = parse_event_type(raw_event)
            if isinstance(event, UnknownEvent):
                webhook_events_total.labels(service=self.service_name, event="unknown", result="invalid").inc()
                raise InvalidEvent(event.raw)

            logger.info("webhook_event_processing event=%s fid=%s app_key=%s", event.value, fid, app_key)
            if event in SUBSCRIBING_EVENTS:
                details = payload.get("notificationDetails") or {}
                result = self.add_subscription(fid, app_key, details.get("url"), details.get("token"))
            else:
                result = self.remove_subscription(fid, app_key)
            webhook_events_total.labels(
                service=self.service_name,
                event=event.value,
                result="success" if result["success"] else "failure",
            ).inc()
            return result

    def add_subscription(self, fid: int, app_key: str, app_url: str | None, token: str | None) -> dict[str, bool]:
        """Create or reactivate the (fid, app_key) subscription.

        When the subscription is already active this is a no-op, even if the
        url or token differ.
        """

        if not app_url or not token:
            logger.warning("subscription_add_skipped reason=missing_notification_details fid=%s", fid)
            return {"success": False}
        try:
            changed = self.store.upsert_active(fid, app_key, app_url, token)
        except SQLAlchemyError:
            logger.exception("subscription_add_failed fid=%s app_key=%s", fid, app_key)
            return {"success": False}
        if changed:
            logger.info("subscription_activated fid=%s app_key=%s app_url=%s", fid, app_key, app_url)
        else:
            logger.info("subscription_already_active fid=%s app_key=%s", fid, app_key)
        return {"success": True}

    def remove_subscription(self, fid: int, app_key: str) -> dict[str, bool]:
        """Deactivate the (fid, app_key) subscription; absent rows are not an error."""

        try:
            changed = self.store.deactivate(fid, app_key)
        except SQLAlchemyError:
            logger.exception("subscription_remove_failed fid=%s app_key=%s", fid, app_key)
            return {"success": False}
        if changed:
            logger.info("subscription_deactivated fid=%s app_key=%s", fid, app_key)
        return {"success": True}

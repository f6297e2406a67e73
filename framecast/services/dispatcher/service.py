"""Notification dispatch for published content.

A publish event schedules a `notifications.publish` task; the task runner
executes it by grouping active subscription tokens per delivery URL, posting
them in bounded chunks and reconciling the provider's per-token verdicts.
Transport failures and rate-limited tokens come back as `notifications.retry`
tasks after a fixed delay.
"""

import asyncio
import html
import re
from time import perf_counter

import httpx
from pydantic import ValidationError

from framecast.common.config import settings
from framecast.common.events import EventEnvelope, consume_forever
from framecast.common.logging import log_context, logger
from framecast.common.mailer import AdminMailer
from framecast.common.metrics import (
    notification_request_seconds,
    notification_requests_total,
    notification_tokens_total,
    retries_total,
    scheduled_task_failures_total,
)
from framecast.common.scheduler import (
    TaskScheduler,
    claim_due_tasks,
    mark_task_done,
    mark_task_failed,
    requeue_task,
    update_task_backlog_metrics,
)
from framecast.common.store import DeliveryRecord, SubscriptionStore
from framecast.common.tracing import get_tracer
from framecast.services.dispatcher.schemas import (
    ContentItem,
    DeliveryResult,
    NotificationBody,
    PostStatusChanged,
    RetryArgs,
)

PUBLISH_TASK = "notifications.publish"
RETRY_TASK = "notifications.retry"
TITLE_MAX_LENGTH = 32
BODY_MAX_LENGTH = 128
ELLIPSIS = "…"
ADMIN_EMAIL_SUBJECT = "Framecast Notification Error"
MAX_TASK_ATTEMPTS = 10

_SCRIPT_STYLE_RE = re.compile(r"<(script|style)[^>]*?>.*?</\1>", re.IGNORECASE | re.DOTALL)
_TAG_RE = re.compile(r"<[^>]*>")
_SLUG_RE = re.compile(r"[^a-z0-9]+")

tracer = get_tracer(__name__)


class MalformedTask(ValueError):
    """A scheduled task whose kind or payload can never be executed."""


def strip_html(text: str) -> str:
    """Plain text from an HTML fragment: tags dropped, entities decoded."""

    text = _SCRIPT_STYLE_RE.sub("", text or "")
    return html.unescape(_TAG_RE.sub("", text)).strip()


def truncate_title(title: str) -> str:
    if len(title) > TITLE_MAX_LENGTH:
        return title[: TITLE_MAX_LENGTH - 1] + ELLIPSIS
    return title


def site_slug(site_name: str) -> str:
    return _SLUG_RE.sub("-", site_name.lower()).strip("-").replace("-", "_")


def notification_id(post_id: int, site_name: str) -> str:
    """Stable id so retries and re-deliveries of one post dedupe downstream."""

    return f"framecast_notification_{post_id}_{site_slug(site_name)}"


def build_notification_body(item: ContentItem, site_name: str) -> dict:
    body = NotificationBody(
        notificationId=notification_id(item.id, site_name),
        title=truncate_title(strip_html(item.title)),
        body=strip_html(item.excerpt)[:BODY_MAX_LENGTH],
        targetUrl=item.permalink,
    )
    return body.model_dump()


def chunked(tokens: list[str], size: int) -> list[list[str]]:
    return [tokens[i : i + size] for i in range(0, len(tokens), size)]


def should_notify(change: PostStatusChanged) -> bool:
    """Only the first transition of a regular post into `publish` notifies."""

    return (
        change.new_status == "publish"
        and change.old_status != "publish"
        and change.post.post_type == "post"
    )


class NotificationDispatcher:
    """Delivers notifications for published content to every active subscriber."""

    def __init__(
        self,
        session_factory,
        http_client: httpx.Client | None = None,
        mailer: AdminMailer | None = None,
        notifications_enabled: bool | None = None,
        site_name: str | None = None,
        chunk_size: int | None = None,
        retry_delay_seconds: int | None = None,
        service_name: str = "dispatcher",
        store: SubscriptionStore | None = None,
        delivery_record: DeliveryRecord | None = None,
        scheduler: TaskScheduler | None = None,
    ) -> None:
        self.session_factory = session_factory
        self.store = store or SubscriptionStore(session_factory)
        self.delivery_record = delivery_record or DeliveryRecord(session_factory)
        self.scheduler = scheduler or TaskScheduler(session_factory)
        self.http_client = http_client or httpx.Client(timeout=settings.delivery_timeout_seconds)
        self.mailer = mailer or AdminMailer()
        self.notifications_enabled = (
            settings.notifications_enabled if notifications_enabled is None else notifications_enabled
        )
        self.site_name = site_name or settings.site_name
        self.chunk_size = chunk_size or settings.delivery_chunk_size
        self.retry_delay_seconds = (
            settings.retry_delay_seconds if retry_delay_seconds is None else retry_delay_seconds
        )
        self.service_name = service_name

    async def handle_post_status_changed(self, event: EventEnvelope) -> None:
        """Schedule an immediate publish dispatch for newly published posts."""

        if not self.notifications_enabled:
            logger.info("publish_dispatch_skipped reason=notifications_disabled")
            return
        change = PostStatusChanged.model_validate(event.payload)
        if not should_notify(change):
            return
        task_id = self.scheduler.schedule(PUBLISH_TASK, {"post": change.post.model_dump()})
        logger.info("publish_dispatch_scheduled post_id=%s task_id=%s", change.post.id, task_id)

    def send_publish_notifications(self, item: ContentItem) -> None:
        """Fan one published item out to all active subscriptions."""

        if item.suppress_notifications:
            logger.info("publish_dispatch_suppressed post_id=%s", item.id)
            return
        notification = build_notification_body(item, self.site_name)
        tokens_by_url = self.store.tokens_by_url()
        logger.info(
            "publish_dispatch_started post_id=%s urls=%s notification_id=%s",
            item.id,
            len(tokens_by_url),
            notification["notificationId"],
        )
        for url, tokens in tokens_by_url.items():
            self.chunk_and_send(url, tokens, notification, item.id)

    def retry_notifications(self, url: str, tokens: list[str], post_id: int, notification: dict) -> None:
        logger.info("notification_retry_started post_id=%s url=%s tokens=%s", post_id, url, len(tokens))
        self.chunk_and_send(url, tokens, notification, post_id)

    def chunk_and_send(self, url: str, tokens: list[str], notification: dict, post_id: int) -> None:
        """Send `tokens` to `url` in bounded chunks, in order, reconciling each response."""

        for chunk in chunked(tokens, self.chunk_size):
            with tracer.start_as_current_span("notification.send_chunk") as span:
                span.set_attribute("notification.url", url)
                span.set_attribute("notification.post_id", post_id)
                span.set_attribute("notification.tokens", len(chunk))
                response = self.send_notification(url, chunk, notification, post_id)
                self.apply_result(url, post_id, notification, response)

    def send_notification(self, url: str, tokens: list[str], notification: dict, post_id: int) -> dict:
        """POST one chunk; on transport failure alert the operator and schedule a retry.

        Returns the decoded response body, or `{}` when nothing usable came back.
        """

        start = perf_counter()
        try:
            response = self.http_client.post(url, json={**notification, "tokens": tokens})
            response.raise_for_status()
        except httpx.HTTPError as exc:
            notification_requests_total.labels(service=self.service_name, outcome="transport_error").inc()
            logger.error(
                "notification_send_failed post_id=%s url=%s tokens=%s error=%s",
                post_id,
                url,
                len(tokens),
                exc,
            )
            self.mailer.send(
                ADMIN_EMAIL_SUBJECT,
                f"There was an error sending notifications: {exc}. A retry has been scheduled.",
            )
            self.schedule_retry(url, tokens, post_id, notification, reason="transport_error")
            return {}
        finally:
            notification_request_seconds.labels(service=self.service_name).observe(
                max(0.0, perf_counter() - start)
            )

        notification_requests_total.labels(service=self.service_name, outcome="sent").inc()
        try:
            data = response.json()
        except ValueError:
            logger.warning("notification_response_undecodable post_id=%s url=%s", post_id, url)
            return {}
        return data if isinstance(data, dict) else {}

    def apply_result(self, url: str, post_id: int, notification: dict, response: dict) -> None:
        """Reconcile provider verdicts: record successes, drop invalid tokens, retry rate-limited ones."""

        raw = response.get("result")
        if not raw:
            return
        try:
            result = DeliveryResult.model_validate(raw)
        except ValidationError as exc:
            logger.warning("notification_result_malformed post_id=%s url=%s error=%s", post_id, url, exc)
            return

        if result.successfulTokens:
            added = self.delivery_record.add_successful_tokens(post_id, result.successfulTokens)
            notification_tokens_total.labels(service=self.service_name, classification="successful").inc(
                len(result.successfulTokens)
            )
            logger.info(
                "notification_tokens_delivered post_id=%s url=%s tokens=%s new=%s",
                post_id,
                url,
                len(result.successfulTokens),
                added,
            )

        for token in result.invalidTokens:
            deactivated = self.store.deactivate_by_token(token, app_url=url)
            notification_tokens_total.labels(service=self.service_name, classification="invalid").inc()
            logger.info("notification_token_invalid post_id=%s url=%s deactivated=%s", post_id, url, deactivated)

        if result.rateLimitedTokens:
            notification_tokens_total.labels(service=self.service_name, classification="rate_limited").inc(
                len(result.rateLimitedTokens)
            )
            self.schedule_retry(url, result.rateLimitedTokens, post_id, notification, reason="rate_limited")

    def schedule_retry(self, url: str, tokens: list[str], post_id: int, notification: dict, reason: str) -> str:
        task_id = self.scheduler.schedule(
            RETRY_TASK,
            {"url": url, "tokens": list(tokens), "post_id": post_id, "notification": notification},
            delay_seconds=self.retry_delay_seconds,
        )
        retries_total.labels(service=self.service_name, reason=reason).inc()
        logger.info(
            "notification_retry_scheduled post_id=%s url=%s tokens=%s reason=%s delay=%s task_id=%s",
            post_id,
            url,
            len(tokens),
            reason,
            self.retry_delay_seconds,
            task_id,
        )
        return task_id

    def run_task(self, task: dict) -> None:
        """Execute one claimed scheduled task by kind."""

        payload = task["payload"]
        if task["kind"] == PUBLISH_TASK:
            try:
                item = ContentItem.model_validate(payload["post"])
            except (KeyError, TypeError, ValidationError) as exc:
                raise MalformedTask(f"bad publish payload: {exc}") from exc
            with log_context(post_id=item.id):
                self.send_publish_notifications(item)
        elif task["kind"] == RETRY_TASK:
            try:
                args = RetryArgs.model_validate(payload)
            except ValidationError as exc:
                raise MalformedTask(f"bad retry payload: {exc}") from exc
            with log_context(post_id=args.post_id):
                self.retry_notifications(args.url, args.tokens, args.post_id, args.notification)
        else:
            raise MalformedTask(f"unknown task kind {task['kind']!r}")

    def run_due_tasks(self, limit: int = 50) -> int:
        """Claim and execute due tasks once.

        Malformed tasks are parked as FAILED. Other failures are requeued after
        the retry delay until `MAX_TASK_ATTEMPTS` is reached.
        """

        with self.session_factory() as db:
            rows = claim_due_tasks(db, limit=limit)
            update_task_backlog_metrics(db, self.service_name)
            db.commit()
        for row in rows:
            try:
                self.run_task(row)
                with self.session_factory() as db:
                    mark_task_done(db, row["id"])
                    db.commit()
            except MalformedTask as exc:
                logger.error("scheduled_task_malformed task_id=%s kind=%s error=%s", row["id"], row["kind"], exc)
                scheduled_task_failures_total.labels(service=self.service_name, kind=row["kind"]).inc()
                with self.session_factory() as db:
                    mark_task_failed(db, row["id"])
                    db.commit()
            except Exception as exc:
                logger.exception(
                    "scheduled_task_failed task_id=%s kind=%s attempts=%s error=%s",
                    row["id"],
                    row["kind"],
                    row["attempts"],
                    exc,
                )
                scheduled_task_failures_total.labels(service=self.service_name, kind=row["kind"]).inc()
                with self.session_factory() as db:
                    if row["attempts"] >= MAX_TASK_ATTEMPTS:
                        mark_task_failed(db, row["id"])
                    else:
                        requeue_task(db, row["id"], delay_seconds=self.retry_delay_seconds)
                    db.commit()
        return len(rows)

    async def task_runner(self, poll_interval: float = 1.0) -> None:
        """Continuously execute due scheduled tasks."""

        while True:
            try:
                await asyncio.to_thread(self.run_due_tasks)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                logger.error("task_runner_error error=%s", exc)
            await asyncio.sleep(poll_interval)

    async def start_consumers(self) -> None:
        """Start the Kafka consumer for content status changes."""

        await consume_forever(
            settings.content_events_topic,
            "dispatcher-post-status",
            self.handle_post_status_changed,
        )

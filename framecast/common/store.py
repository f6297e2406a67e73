"""Data-access objects over subscriptions, the webhook event log and delivery records.

These are injected into the webhook processor and the notification dispatcher
instead of being reached through module globals, so tests can hand in their
own session factory.
"""

from datetime import datetime, timezone

from sqlalchemy import select, update

from framecast.common.db import dialect_insert
from framecast.common.models import (
    SUBSCRIPTION_ACTIVE,
    SUBSCRIPTION_INACTIVE,
    PostDeliveredToken,
    Subscription,
    WebhookEvent,
)


class SubscriptionStore:
    """CRUD and filtered reads for the `subscriptions` table."""

    def __init__(self, session_factory) -> None:
        self.session_factory = session_factory

    def upsert_active(self, fid: int, app_key: str, app_url: str, token: str) -> bool:
        """Insert an active row, or reactivate an inactive one in place.

        An existing active row for the same (fid, app_key) is left untouched.
        Returns True when a row was inserted or reactivated.
        """

        now = datetime.now(timezone.utc)
        with self.session_factory() as db:
            insert = dialect_insert(db)
            stmt = insert(Subscription).values(
                fid=fid,
                app_key=app_key,
                app_url=app_url,
                token=token,
                status=SUBSCRIPTION_ACTIVE,
                created_at=now,
                updated_at=now,
            )
            stmt = stmt.on_conflict_do_update(
                index_elements=["fid", "app_key"],
                set_={
                    "app_url": stmt.excluded.app_url,
                    "token": stmt.excluded.token,
                    "status": SUBSCRIPTION_ACTIVE,
                    "updated_at": now,
                },
                where=Subscription.__table__.c.status == SUBSCRIPTION_INACTIVE,
            )
            result = db.execute(stmt)
            db.commit()
            return result.rowcount > 0

    def deactivate(self, fid: int, app_key: str) -> bool:
        """Mark the (fid, app_key) subscription inactive; False when nothing matched."""

        with self.session_factory() as db:
            result = db.execute(
                update(Subscription)
                .where(
                    Subscription.fid == fid,
                    Subscription.app_key == app_key,
                    Subscription.status == SUBSCRIPTION_ACTIVE,
                )
                .values(status=SUBSCRIPTION_INACTIVE, updated_at=datetime.now(timezone.utc))
            )
            db.commit()
            return result.rowcount > 0

    def deactivate_by_token(self, token: str, app_url: str | None = None) -> int:
        """Deactivate subscriptions owning `token`, optionally scoped to one delivery URL."""

        conditions = [Subscription.token == token, Subscription.status == SUBSCRIPTION_ACTIVE]
        if app_url is not None:
            conditions.append(Subscription.app_url == app_url)
        with self.session_factory() as db:
            result = db.execute(
                update(Subscription)
                .where(*conditions)
                .values(status=SUBSCRIPTION_INACTIVE, updated_at=datetime.now(timezone.utc))
            )
            db.commit()
            return result.rowcount

    def get(self, fid: int, app_key: str) -> Subscription | None:
        with self.session_factory() as db:
            return db.execute(
                select(Subscription).where(Subscription.fid == fid, Subscription.app_key == app_key)
            ).scalar_one_or_none()

    def get_by_token(self, token: str) -> Subscription | None:
        with self.session_factory() as db:
            return db.execute(
                select(Subscription).where(Subscription.token == token).order_by(Subscription.id).limit(1)
            ).scalar_one_or_none()

    def list_subscriptions(
        self,
        status: str | None = SUBSCRIPTION_ACTIVE,
        limit: int = 100,
        offset: int = 0,
    ) -> list[Subscription]:
        stmt = select(Subscription).order_by(Subscription.id)
        if status is not None:
            stmt = stmt.where(Subscription.status == status)
        with self.session_factory() as db:
            return list(db.execute(stmt.limit(limit).offset(offset)).scalars())

    def tokens_by_url(self) -> dict[str, list[str]]:
        """Group active subscription tokens by their delivery URL."""

        with self.session_factory() as db:
            rows = db.execute(
                select(Subscription.app_url, Subscription.token)
                .where(Subscription.status == SUBSCRIPTION_ACTIVE)
                .order_by(Subscription.id)
            ).all()
        grouped: dict[str, list[str]] = {}
        for app_url, token in rows:
            grouped.setdefault(app_url, []).append(token)
        return grouped


class EventLog:
    """Append-only writer/reader for the `webhook_events` audit table."""

    def __init__(self, session_factory) -> None:
        self.session_factory = session_factory

    def record(self, event_type: str, fid: int, full_event: dict) -> WebhookEvent:
        with self.session_factory() as db:
            row = WebhookEvent(
                event_type=event_type,
                fid=fid,
                timestamp=datetime.now(timezone.utc),
                full_event=full_event,
            )
            db.add(row)
            db.commit()
            return row

    def list_events(self, event_type: str | None = None, limit: int = 100, offset: int = 0) -> list[WebhookEvent]:
        stmt = select(WebhookEvent).order_by(WebhookEvent.id.desc())
        if event_type is not None:
            stmt = stmt.where(WebhookEvent.event_type == event_type)
        with self.session_factory() as db:
            return list(db.execute(stmt.limit(limit).offset(offset)).scalars())


class DeliveryRecord:
    """Deduplicated record of tokens a provider accepted for each content item."""

    def __init__(self, session_factory) -> None:
        self.session_factory = session_factory

    def add_successful_tokens(self, post_id: int, tokens: list[str]) -> int:
        """Record tokens for `post_id`, ignoring ones already recorded. Returns rows added."""

        unique_tokens = list(dict.fromkeys(tokens))
        if not unique_tokens:
            return 0
        now = datetime.now(timezone.utc)
        with self.session_factory() as db:
            insert = dialect_insert(db)
            result = db.execute(
                insert(PostDeliveredToken)
                .values([{"post_id": post_id, "token": token, "delivered_at": now} for token in unique_tokens])
                .on_conflict_do_nothing(index_elements=["post_id", "token"])
            )
            db.commit()
            return result.rowcount

    def delivered_tokens(self, post_id: int) -> list[str]:
        with self.session_factory() as db:
            return list(
                db.execute(
                    select(PostDeliveredToken.token)
                    .where(PostDeliveredToken.post_id == post_id)
                    .order_by(PostDeliveredToken.id)
                ).scalars()
            )

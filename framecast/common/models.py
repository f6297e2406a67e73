"""Persistence models shared by the webhook and dispatcher services."""

from datetime import datetime
from uuid import uuid4

from sqlalchemy import BigInteger, DateTime, Integer, String, Text, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column

from framecast.common.db import Base, JSONType


SUBSCRIPTION_ACTIVE = "active"
SUBSCRIPTION_INACTIVE = "inactive"


class Subscription(Base):
    """One account's push registration for one client application."""

    __tablename__ = "subscriptions"
    __table_args__ = (UniqueConstraint("fid", "app_key", name="uq_subscriptions_fid_app_key"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    fid: Mapped[int] = mapped_column(BigInteger, index=True)
    app_key: Mapped[str] = mapped_column(String(255), index=True)
    app_url: Mapped[str] = mapped_column(Text)
    token: Mapped[str] = mapped_column(String(512), index=True)
    status: Mapped[str] = mapped_column(String(32), default=SUBSCRIPTION_ACTIVE, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class WebhookEvent(Base):
    """Append-only audit row for one processed inbound webhook."""

    __tablename__ = "webhook_events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    event_type: Mapped[str] = mapped_column(String(255), index=True)
    fid: Mapped[int] = mapped_column(BigInteger, index=True)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    full_event: Mapped[dict] = mapped_column(JSONType)


class PostDeliveredToken(Base):
    """Tokens a provider confirmed delivery for, per content item."""

    __tablename__ = "post_delivered_tokens"
    __table_args__ = (UniqueConstraint("post_id", "token", name="uq_post_delivered_token"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    post_id: Mapped[int] = mapped_column(BigInteger, index=True)
    token: Mapped[str] = mapped_column(String(512))
    delivered_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))


class ScheduledTask(Base):
    """Deferred unit of work executed by the dispatcher task runner."""

    __tablename__ = "scheduled_tasks"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid4()))
    kind: Mapped[str] = mapped_column(String, index=True)
    payload: Mapped[dict] = mapped_column(JSONType)
    run_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), index=True)
    status: Mapped[str] = mapped_column(String, default="PENDING", index=True)
    attempts: Mapped[int] = mapped_column(Integer, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

"""Payload schemas for content events and outbound notification requests."""

from typing import Any

from pydantic import BaseModel, Field, field_validator


class ContentItem(BaseModel):
    """The fields of a published content item that dispatch reads."""

    id: int
    post_type: str = "post"
    title: str = ""
    excerpt: str = ""
    permalink: str
    suppress_notifications: bool = False


class PostStatusChanged(BaseModel):
    """Payload of a `posts.status_changed` content event."""

    new_status: str
    old_status: str
    post: ContentItem


class NotificationBody(BaseModel):
    """Notification fields shared by every chunk sent for one content item."""

    notificationId: str
    title: str = Field(max_length=32)
    body: str = Field(max_length=128)
    targetUrl: str


class DeliveryResult(BaseModel):
    """Per-token classification returned by a delivery provider."""

    successfulTokens: list[str] = Field(default_factory=list)
    invalidTokens: list[str] = Field(default_factory=list)
    rateLimitedTokens: list[str] = Field(default_factory=list)

    @field_validator("successfulTokens", "invalidTokens", "rateLimitedTokens", mode="before")
    @classmethod
    def _tokens_or_empty(cls, value: Any) -> list[str]:
        """A missing or malformed list only drops itself, never its siblings."""

        if not isinstance(value, list):
            return []
        return [token for token in value if isinstance(token, str) and token]


class RetryArgs(BaseModel):
    """Payload of a `notifications.retry` task."""

    url: str
    tokens: list[str]
    post_id: int
    notification: dict[str, Any]

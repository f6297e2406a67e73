"""API response schemas for webhook service endpoints."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict


class WebhookResult(BaseModel):
    """Uniform result of processing one webhook."""

    success: bool


class SubscriptionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    fid: int
    app_key: str
    app_url: str
    token: str
    status: str
    created_at: datetime
    updated_at: datetime


class WebhookEventResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    event_type: str
    fid: int
    timestamp: datetime
    full_event: dict[str, Any]

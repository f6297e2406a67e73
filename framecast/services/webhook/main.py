"""Webhook ingress: signature-checked subscription events plus admin reads.

Requests are validated structurally, verified cryptographically, then handed
to the processor. Validation and verification failures become HTTP 400 with a
stable machine-readable code.
"""

import binascii
from time import perf_counter
from typing import Literal

import redis
from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request
from starlette.concurrency import run_in_threadpool

from framecast.common.config import settings
from framecast.common.db import SessionLocal
from framecast.common.logging import configure_logging, logger
from framecast.common.metrics import (
    http_request_duration_seconds,
    http_requests_total,
    metrics_response,
    signature_verifications_total,
    webhook_rejections_total,
)
from framecast.common.rate_limit import TokenBucketLimiter
from framecast.common.startup import log_startup_config
from framecast.common.store import EventLog, SubscriptionStore
from framecast.common.tracing import instrument_app, setup_tracing
from framecast.services.webhook.schemas import SubscriptionResponse, WebhookEventResponse, WebhookResult
from framecast.services.webhook.service import (
    SUBSCRIBING_EVENTS,
    InvalidEvent,
    WebhookEventType,
    WebhookProcessor,
)
from framecast.services.webhook.verifier import (
    InactiveKey,
    SignatureInvalid,
    SignatureVerificationError,
    SignatureVerifier,
    decode_json_part,
    is_valid_fid,
)

configure_logging()
setup_tracing(settings.service_name)
log_startup_config(
    settings.service_name,
    ["SERVICE_NAME", "POSTGRES_DSN", "REDIS_URL", "RPC_URL", "WEBHOOK_RATE_LIMIT_PER_MINUTE"],
)
subscription_store = SubscriptionStore(SessionLocal)
event_log = EventLog(SessionLocal)
processor = WebhookProcessor(subscription_store, event_log, service_name=settings.service_name)
verifier = SignatureVerifier.from_settings()
rdb = redis.Redis.from_url(settings.redis_url, decode_responses=True)
rate_limiter = TokenBucketLimiter(rdb, settings.webhook_rate_limit_per_minute, prefix="webhook")

KNOWN_EVENTS = {event.value for event in WebhookEventType}
SUBSCRIBING_EVENT_VALUES = {event.value for event in SUBSCRIBING_EVENTS}


def get_processor() -> WebhookProcessor:
    return processor


def get_verifier() -> SignatureVerifier:
    return verifier


def get_rate_limiter() -> TokenBucketLimiter:
    return rate_limiter


def get_subscription_store() -> SubscriptionStore:
    return subscription_store


def get_event_log() -> EventLog:
    return event_log


app = FastAPI(title="Framecast Webhook Service")
instrument_app(app)


@app.middleware("http")
async def metrics_middleware(request: Request, call_next):
    """Record request count and latency for every HTTP call."""

    start = perf_counter()
    route = request.url.path
    method = request.method
    status_code = 500
    try:
        response = await call_next(request)
        status_code = response.status_code
        route_obj = request.scope.get("route")
        if route_obj is not None and getattr(route_obj, "path", None):
            route = route_obj.path
        return response
    finally:
        elapsed = max(0.0, perf_counter() - start)
        http_request_duration_seconds.labels(
            service=settings.service_name,
            route=route,
            method=method,
        ).observe(elapsed)
        http_requests_total.labels(
            service=settings.service_name,
            route=route,
            method=method,
            status_code=str(status_code),
        ).inc()


def client_ip(request: Request) -> str:
    """Client address, preferring the first x-forwarded-for hop."""

    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    if request.client is not None:
        return request.client.host
    return "unknown"


def enforce_api_key(x_api_key: str | None = Header(default=None)) -> None:
    """Reject admin requests that do not provide the configured API key."""

    if x_api_key != settings.api_key:
        raise HTTPException(status_code=401, detail="invalid API key")


def reject(code: str, message: str) -> HTTPException:
    """Build the 400 error for a rejected webhook and count it."""

    webhook_rejections_total.labels(service=settings.service_name, code=code).inc()
    logger.warning("webhook_rejected code=%s message=%s", code, message)
    return HTTPException(status_code=400, detail={"code": code, "message": message})


def _decode_part(value: str):
    try:
        return decode_json_part(value)
    except (binascii.Error, ValueError):
        return None


def validate_webhook(data) -> tuple[dict, dict]:
    """Structural checks on the envelope; returns the decoded header and payload."""

    if not isinstance(data, dict) or not all(
        isinstance(data.get(field), str) and data.get(field) for field in ("header", "payload", "signature")
    ):
        raise reject("invalid_webhook_parameters", "Invalid webhook parameters")

    header = _decode_part(data["header"])
    if (
        not isinstance(header, dict)
        or not all(header.get(field) for field in ("fid", "type", "key"))
        or not is_valid_fid(header["fid"])
    ):
        raise reject("invalid_webhook_header", "Invalid webhook header")

    payload = _decode_part(data["payload"])
    if not isinstance(payload, dict) or payload.get("event") not in KNOWN_EVENTS:
        raise reject("invalid_webhook_payload", "Invalid webhook payload")

    if payload["event"] in SUBSCRIBING_EVENT_VALUES:
        details = payload.get("notificationDetails")
        if not isinstance(details, dict) or not details.get("url") or not details.get("token"):
            raise reject("invalid_notification_details", "Invalid notification details")
    return header, payload


@app.post("/webhook", response_model=WebhookResult)
async def receive_webhook(
    request: Request,
    webhook_processor: WebhookProcessor = Depends(get_processor),
    signature_verifier: SignatureVerifier = Depends(get_verifier),
    limiter: TokenBucketLimiter = Depends(get_rate_limiter),
):
    """Verify and process one subscription webhook."""

    ip = client_ip(request)
    try:
        allowed = limiter.allow(ip)
    except redis.RedisError as exc:
        logger.warning("webhook_rate_limit_unavailable error=%s", exc)
        allowed = True
    if not allowed:
        raise HTTPException(status_code=429, detail="rate limit exceeded")

    try:
        data = await request.json()
    except ValueError:
        data = None
    header, payload = validate_webhook(data)

    try:
        mode = await run_in_threadpool(signature_verifier.verify, data)
    except (SignatureInvalid, InactiveKey) as exc:
        raise reject("signature_verification_failed", str(exc)) from exc
    except SignatureVerificationError as exc:
        raise reject("signature_verification_error", str(exc)) from exc
    signature_verifications_total.labels(service=settings.service_name, mode=mode.value).inc()

    try:
        return await run_in_threadpool(webhook_processor.process, header, payload, data["signature"])
    except InvalidEvent as exc:
        raise reject("invalid_webhook_payload", str(exc)) from exc


@app.get(
    "/events",
    response_model=list[WebhookEventResponse],
    dependencies=[Depends(enforce_api_key)],
)
def list_events(
    event_type: str | None = None,
    limit: int = Query(default=100, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    log: EventLog = Depends(get_event_log),
):
    """Most recent webhook events first."""

    return log.list_events(event_type=event_type, limit=limit, offset=offset)


@app.get(
    "/subscriptions",
    response_model=list[SubscriptionResponse],
    dependencies=[Depends(enforce_api_key)],
)
def list_subscriptions(
    status: Literal["active", "inactive", "all"] = "active",
    limit: int = Query(default=100, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    store: SubscriptionStore = Depends(get_subscription_store),
):
    return store.list_subscriptions(status=None if status == "all" else status, limit=limit, offset=offset)


@app.get("/metrics")
def metrics():
    """Prometheus scrape endpoint."""

    return metrics_response()


@app.get("/health")
def health():
    """Container health probe endpoint."""

    return {"ok": True}

"""Dispatcher service lifecycle: content-event consumer plus scheduled-task runner."""

import asyncio
from contextlib import asynccontextmanager

from fastapi import FastAPI

from framecast.common.config import settings
from framecast.common.db import SessionLocal
from framecast.common.logging import configure_logging
from framecast.common.metrics import metrics_response
from framecast.common.startup import log_startup_config
from framecast.common.tracing import instrument_app, setup_tracing
from framecast.services.dispatcher.service import NotificationDispatcher

configure_logging()
setup_tracing(settings.service_name)
log_startup_config(
    settings.service_name,
    [
        "SERVICE_NAME",
        "POSTGRES_DSN",
        "KAFKA_BOOTSTRAP_SERVERS",
        "NOTIFICATIONS_ENABLED",
        "SITE_NAME",
        "ADMIN_EMAIL",
        "RETRY_DELAY_SECONDS",
    ],
)
dispatcher = NotificationDispatcher(SessionLocal, service_name=settings.service_name)


@asynccontextmanager
async def lifespan(_: FastAPI):
    """Run the consumer and task runner with the application lifecycle."""

    consumer_task = asyncio.create_task(dispatcher.start_consumers())
    runner_task = asyncio.create_task(dispatcher.task_runner())
    yield
    consumer_task.cancel()
    runner_task.cancel()
    dispatcher.http_client.close()


app = FastAPI(title="Framecast Notification Dispatcher", lifespan=lifespan)
instrument_app(app)


@app.get("/health")
def health():
    """Container health probe endpoint."""

    return {"ok": True}


@app.get("/metrics")
def metrics():
    """Prometheus scrape endpoint."""

    return metrics_response()

"""Kafka envelope + consumer helpers for content events.

The publishing platform emits content status changes onto Kafka; the
dispatcher consumes them through the resilient loop below.
"""

import asyncio
import json
from datetime import datetime, timezone
from typing import Any
from uuid import uuid4

from aiokafka import AIOKafkaConsumer
from pydantic import BaseModel, Field

from framecast.common.config import settings
from framecast.common.logging import log_context, logger


class EventEnvelope(BaseModel):
    """Canonical event shape read from Kafka topics."""

    event_id: str = Field(default_factory=lambda: str(uuid4()))
    event_type: str
    aggregate_id: str
    occurred_at: str = Field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    trace_id: str = Field(default_factory=lambda: str(uuid4()))
    payload: dict[str, Any]


async def make_consumer(topic: str, group_id: str) -> AIOKafkaConsumer:
    """Create a configured Kafka consumer for one topic/group."""

    consumer = AIOKafkaConsumer(
        topic,
        bootstrap_servers=settings.kafka_bootstrap_servers,
        group_id=group_id,
        auto_offset_reset="earliest",
        enable_auto_commit=False,
    )
    await consumer.start()
    return consumer


async def consume_forever(
    topic: str,
    group_id: str,
    handler,
) -> None:
    """Continuously consume one topic and pass parsed envelopes to `handler`.

    Errors in individual messages are logged and processing continues; commit is
    done in batches to keep throughput reasonable.
    """

    while True:
        consumer = None
        try:
            consumer = await make_consumer(topic, group_id)
            while True:
                results = await consumer.getmany(timeout_ms=500, max_records=50)
                for _, messages in results.items():
                    for msg in messages:
                        try:
                            payload = json.loads(msg.value.decode("utf-8"))
                            event = EventEnvelope(**payload)
                            with log_context(trace_id=event.trace_id, post_id=event.aggregate_id):
                                logger.info(
                                    "event_received topic=%s group=%s event_type=%s aggregate_id=%s",
                                    topic,
                                    group_id,
                                    event.event_type,
                                    event.aggregate_id,
                                )
                                await handler(event)
                        except Exception as exc:
                            logger.error(
                                "handler_error topic=%s group=%s offset=%s error=%s",
                                topic,
                                group_id,
                                msg.offset,
                                exc,
                            )
                await consumer.commit()
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.error("consumer_loop_error topic=%s group=%s error=%s", topic, group_id, exc)
            await asyncio.sleep(2)
        finally:
            if consumer is not None:
                await consumer.stop()
            await asyncio.sleep(0)

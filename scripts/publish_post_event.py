"""Publish a `posts.status_changed` content event directly to Kafka.

Useful for exercising the dispatcher without the publishing platform, e.g.
replaying a publish transition for one post.
"""

import argparse
import asyncio
import json
from datetime import datetime, timezone
from uuid import uuid4

from aiokafka import AIOKafkaProducer


def build_event(args: argparse.Namespace) -> dict:
    """Envelope for one post status transition."""

    return {
        "event_id": str(uuid4()),
        "event_type": "posts.status_changed",
        "aggregate_id": str(args.post_id),
        "occurred_at": datetime.now(timezone.utc).isoformat(),
        "trace_id": str(uuid4()),
        "payload": {
            "new_status": args.new_status,
            "old_status": args.old_status,
            "post": {
                "id": args.post_id,
                "post_type": args.post_type,
                "title": args.title,
                "excerpt": args.excerpt,
                "permalink": args.permalink,
                "suppress_notifications": args.suppress,
            },
        },
    }


async def publish(bootstrap_servers: str, topic: str, payload: dict) -> None:
    """Open producer, publish one message, close producer."""

    producer = AIOKafkaProducer(bootstrap_servers=bootstrap_servers)
    await producer.start()
    try:
        await producer.send_and_wait(topic, json.dumps(payload).encode("utf-8"))
    finally:
        await producer.stop()


def main() -> None:
    parser = argparse.ArgumentParser(description="Publish a post status change event to Kafka.")
    parser.add_argument("--bootstrap-servers", default="localhost:9092")
    parser.add_argument("--topic", default="posts.status_changed")
    parser.add_argument("--post-id", type=int, required=True)
    parser.add_argument("--title", required=True)
    parser.add_argument("--excerpt", default="")
    parser.add_argument("--permalink", required=True)
    parser.add_argument("--post-type", default="post")
    parser.add_argument("--new-status", default="publish")
    parser.add_argument("--old-status", default="draft")
    parser.add_argument("--suppress", action="store_true", help="Set the suppress-notifications flag")
    args = parser.parse_args()

    event = build_event(args)
    asyncio.run(publish(args.bootstrap_servers, args.topic, event))
    print(f"Published post_id={args.post_id} to topic={args.topic}")


if __name__ == "__main__":
    main()

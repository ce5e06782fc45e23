"""Dev script: publish a synthetic message insert on the push channels.

Usage: python -m chat_sync.scripts.publish_event <company_id> <sender> <text> [message_id]
"""
from __future__ import annotations

import asyncio
import logging
import sys
import time
from datetime import datetime, timezone

import redis.asyncio as aioredis

from chat_sync.config import settings
from chat_sync.domain.value_objects.enums import ChangeKind, MessageKind, SenderRole
from chat_sync.infrastructure.bus.redis_pubsub import RedisPushPublisher
from chat_sync.infrastructure.schemas import MessageRow

logger = logging.getLogger(__name__)


async def publish(company_id: int, sender: SenderRole, text: str, message_id: int | None = None) -> None:
    row = MessageRow(
        id=message_id or int(time.time() * 1000) % 1_000_000_000,
        company_id=company_id,
        sender_type=sender,
        message_type=MessageKind.TEXT,
        message_text=text,
        created_at=datetime.now(timezone.utc),
    )
    r = aioredis.from_url(settings.REDIS_URL, decode_responses=True)
    try:
        await RedisPushPublisher(r, settings.PUSH_CHANNEL_PREFIX).publish(
            ChangeKind.INSERT, row.model_dump(mode="json", exclude={"local_id"}),
        )
        logger.info("Published message %d to conversation %d", row.id, company_id)
    finally:
        await r.aclose()


def main() -> None:
    logging.basicConfig(level=logging.INFO)
    if len(sys.argv) < 4:
        print(__doc__)
        sys.exit(2)
    company_id, sender, text = int(sys.argv[1]), SenderRole(sys.argv[2]), sys.argv[3]
    message_id = int(sys.argv[4]) if len(sys.argv) > 4 else None
    asyncio.run(publish(company_id, sender, text, message_id))


if __name__ == "__main__":
    main()

"""Headless inbox: keeps the conversation list live and logs every change."""
from __future__ import annotations

import asyncio
import logging

from chat_sync.app import create_engine
from chat_sync.config import settings
from chat_sync.domain.entities.conversation import Conversation

logger = logging.getLogger(__name__)


def _log_inbox(conversations: tuple[Conversation, ...]) -> None:
    total = sum(c.unread_count_for_viewer for c in conversations)
    head = ", ".join(
        f"{c.display_name or c.counterparty_id}({c.unread_count_for_viewer})"
        for c in conversations[:5]
    )
    logger.info("Inbox: %d conversations, %d unread; top: %s", len(conversations), total, head or "-")


async def run_inbox_watcher() -> None:
    async with create_engine(settings) as engine:
        engine.conversations.add_listener(_log_inbox)
        await engine.start()
        stop = asyncio.Event()
        try:
            await stop.wait()
        finally:
            engine.conversations.remove_listener(_log_inbox)


def main() -> None:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    try:
        asyncio.run(run_inbox_watcher())
    except KeyboardInterrupt:
        logger.info("Inbox watcher interrupted")


if __name__ == "__main__":
    main()

"""Redis Pub/Sub push transport: subscriber tasks and the publish side."""
from __future__ import annotations

import asyncio
import itertools
import logging
from typing import Any

import redis.asyncio as aioredis

from chat_sync.application.dto.scope import GLOBAL_SCOPE_KEY, SubscriptionScope
from chat_sync.application.ports.push import RawRowCallback, StatusCallback
from chat_sync.domain.value_objects.enums import ChangeKind, ChannelStatus
from chat_sync.infrastructure.bus.serializer import deserialize_event, serialize_event

logger = logging.getLogger(__name__)


def channel_name(prefix: str, scope: SubscriptionScope) -> str:
    return f"{prefix}:{scope.key}"


class RedisPushPublisher:
    """Publishes a changed message row to the global and the per-conversation channel."""

    def __init__(self, redis: aioredis.Redis, prefix: str) -> None:
        self._redis = redis
        self._prefix = prefix

    async def publish(self, change: ChangeKind, row: dict[str, Any]) -> None:
        raw = serialize_event(change, row)
        await self._redis.publish(f"{self._prefix}:{GLOBAL_SCOPE_KEY}", raw)
        scoped = SubscriptionScope.conversation(int(row["company_id"]))
        await self._redis.publish(channel_name(self._prefix, scoped), raw)


class RedisPushTransport:
    """Implements application.ports.push.PushTransport.

    Each subscription is a background task listening on one channel. Connection
    errors and a closed stream are reported through ``on_status``; the channel
    manager decides when to resubscribe.
    """

    def __init__(self, redis: aioredis.Redis, prefix: str) -> None:
        self._redis = redis
        self._prefix = prefix
        self._ids = itertools.count(1)
        self._tasks: dict[int, asyncio.Task[None]] = {}

    def subscribe(
        self,
        scope: SubscriptionScope,
        on_insert: RawRowCallback,
        on_update: RawRowCallback,
        on_status: StatusCallback,
    ) -> int:
        token = next(self._ids)
        channel = channel_name(self._prefix, scope)
        task = asyncio.create_task(
            self._listen(channel, on_insert, on_update, on_status),
            name=f"redis-push-{channel}",
        )
        self._tasks[token] = task
        task.add_done_callback(lambda _t, token=token: self._tasks.pop(token, None))
        return token

    def unsubscribe(self, token: int) -> None:
        task = self._tasks.pop(token, None)
        if task is not None:
            task.cancel()

    async def stop(self) -> None:
        tasks = list(self._tasks.values())
        self._tasks.clear()
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        logger.info("Redis push transport stopped")

    async def _listen(
        self,
        channel: str,
        on_insert: RawRowCallback,
        on_update: RawRowCallback,
        on_status: StatusCallback,
    ) -> None:
        pubsub = self._redis.pubsub()
        try:
            await pubsub.subscribe(channel)
            logger.info("Redis push subscribed on channel=%s", channel)
            on_status(ChannelStatus.SUBSCRIBED, None)
            async for message in pubsub.listen():
                if message["type"] != "message":
                    continue
                try:
                    event, row = deserialize_event(message["data"])
                except (ValueError, KeyError, TypeError):
                    logger.warning("Malformed push envelope on %s", channel)
                    continue
                try:
                    if event == ChangeKind.INSERT:
                        on_insert(row)
                    elif event == ChangeKind.UPDATE:
                        on_update(row)
                except Exception:
                    logger.exception("Error processing push message on %s", channel)
            on_status(ChannelStatus.CLOSED, None)
        except asyncio.CancelledError:
            raise
        except (asyncio.TimeoutError, aioredis.TimeoutError) as exc:
            on_status(ChannelStatus.TIMED_OUT, exc)
        except (aioredis.RedisError, OSError) as exc:
            on_status(ChannelStatus.CHANNEL_ERROR, exc)
        finally:
            try:
                await pubsub.unsubscribe(channel)
                await pubsub.aclose()
            except Exception:
                logger.debug("Closing pubsub for %s failed", channel, exc_info=True)

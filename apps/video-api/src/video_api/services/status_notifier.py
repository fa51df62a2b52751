from __future__ import annotations

import abc
import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncContextManager, AsyncIterator, Dict, Set

from pydantic import ValidationError
from redis.asyncio import Redis
from redis.exceptions import RedisError

from shared_schemas.events import RecordStatusMessage
from shared_schemas.records import ContentRecord

logger = logging.getLogger(__name__)


def channel_name(record_id: str) -> str:
    return f"record_status:{record_id}"


class StatusNotifier(abc.ABC):
    """Fans persisted record changes out to the open status streams of that record"""

    @abc.abstractmethod
    async def _publish(self, message: RecordStatusMessage) -> None:
        ...

    @abc.abstractmethod
    def subscribe(self, record_id: str) -> AsyncContextManager[AsyncIterator[RecordStatusMessage]]:
        ...

    async def publish(self, record: ContentRecord) -> None:
        # Subscribers fall back to polling, so a lost notification only delays them.
        try:
            await self._publish(RecordStatusMessage.for_record(record))
        except Exception as e:
            logger.error(f"Failed to publish status for record {record.id}: {e}")

    async def close(self) -> None:
        return None


class MemoryStatusNotifier(StatusNotifier):

    def __init__(self):
        self._queues: Dict[str, Set[asyncio.Queue]] = {}

    async def _publish(self, message: RecordStatusMessage) -> None:
        record_id = message.record.id if message.record else None
        for queue in list(self._queues.get(record_id, ())):
            queue.put_nowait(message)

    @asynccontextmanager
    async def subscribe(self, record_id: str):
        queue: asyncio.Queue = asyncio.Queue()
        self._queues.setdefault(record_id, set()).add(queue)

        async def messages():
            while True:
                yield await queue.get()

        try:
            yield messages()
        finally:
            listeners = self._queues.get(record_id)
            if listeners is not None:
                listeners.discard(queue)
                if not listeners:
                    self._queues.pop(record_id, None)


class RedisStatusNotifier(StatusNotifier):

    def __init__(self, redis: Redis):
        self.redis = redis

    async def _publish(self, message: RecordStatusMessage) -> None:
        record_id = message.record.id if message.record else None
        await self.redis.publish(channel_name(record_id), message.model_dump_json(by_alias=True))
        logger.debug(f"Published {message.status.value} for record {record_id}")

    @asynccontextmanager
    async def subscribe(self, record_id: str):
        pubsub = self.redis.pubsub()
        channel = channel_name(record_id)
        await pubsub.subscribe(channel)

        async def messages():
            async for raw in pubsub.listen():
                if raw["type"] != "message":
                    continue
                data = raw["data"]
                if isinstance(data, bytes):
                    data = data.decode("utf-8")
                try:
                    yield RecordStatusMessage.model_validate_json(data)
                except ValidationError as e:
                    logger.warning(f"Dropping malformed status message on {channel}: {e}")

        try:
            yield messages()
        finally:
            try:
                await pubsub.unsubscribe(channel)
                await pubsub.aclose()
            except RedisError as e:
                logger.warning(f"Failed to close subscription {channel}: {e}")

    async def close(self) -> None:
        await self.redis.aclose()

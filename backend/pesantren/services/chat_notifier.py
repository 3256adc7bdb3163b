# backend/pesantren/services/chat_notifier.py
import asyncio
import logging
import os
from collections import defaultdict
from contextlib import asynccontextmanager
from typing import Annotated, AsyncIterator, Dict, Literal, Optional, Set, Union

from pydantic import Field, TypeAdapter, ValidationError
from redis.exceptions import RedisError

from pesantren.core.chat_constants import MessageStatus
from pesantren.db.database_redis import RedisManager, CHAT_CHANNEL_PREFIX
from pesantren.schemas.chat import CamelModel, MessageRead

logger = logging.getLogger(__name__)

# "redis": publish through Redis so every worker's subscribers get the event
# "memory": single-process delivery only
CHAT_NOTIFIER_BACKEND = os.getenv("CHAT_NOTIFIER_BACKEND", "redis")
RELAY_RETRY_SECONDS = 3
# Events buffered per open stream; a stream that falls further behind is closed
SUBSCRIBER_QUEUE_SIZE = 100
# Last item a dropped subscriber receives
STREAM_CLOSED = None


class MessageAppended(CamelModel):
    type: Literal["message_appended"] = "message_appended"
    chat_id: str
    message: MessageRead


class StatusChanged(CamelModel):
    type: Literal["status_changed"] = "status_changed"
    chat_id: str
    message: MessageRead
    previous_status: MessageStatus


ChatEvent = Annotated[Union[MessageAppended, StatusChanged], Field(discriminator="type")]
chat_event_adapter = TypeAdapter(ChatEvent)


class ChatNotifier:
    """
    Publish/subscribe registry keyed by chat id.

    Each open stream owns one queue. Events always carry the message they are
    about, so a status change on an old message is delivered as that message.
    """

    def __init__(self, backend: str = "memory", queue_size: int = SUBSCRIBER_QUEUE_SIZE):
        self.backend = backend
        self.queue_size = queue_size
        self._subscribers: Dict[str, Set[asyncio.Queue]] = defaultdict(set)
        self._relay_task: Optional[asyncio.Task] = None

    @property
    def active_connections(self) -> int:
        return sum(len(queues) for queues in self._subscribers.values())

    def subscriber_count(self, chat_id: str) -> int:
        return len(self._subscribers.get(chat_id, ()))

    def subscribe(self, chat_id: str) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue(maxsize=self.queue_size)
        self._subscribers[chat_id].add(queue)
        logger.info(f"[ChatNotifier] Subscribed to chat {chat_id} ({self.subscriber_count(chat_id)} open)")
        return queue

    def unsubscribe(self, chat_id: str, queue: asyncio.Queue):
        queues = self._subscribers.get(chat_id)
        if not queues:
            return
        queues.discard(queue)
        if not queues:
            del self._subscribers[chat_id]
        logger.info(f"[ChatNotifier] Unsubscribed from chat {chat_id} ({self.subscriber_count(chat_id)} open)")

    @asynccontextmanager
    async def subscription(self, chat_id: str) -> AsyncIterator[asyncio.Queue]:
        queue = self.subscribe(chat_id)
        try:
            yield queue
        finally:
            self.unsubscribe(chat_id, queue)

    def dispatch(self, event) -> int:
        """
        Hands the event to every local subscriber of its chat. A subscriber
        whose queue is full is dropped and receives STREAM_CLOSED instead.
        """
        delivered = 0
        for queue in list(self._subscribers.get(event.chat_id, ())):
            try:
                queue.put_nowait(event)
                delivered += 1
            except asyncio.QueueFull:
                self._drop_subscriber(event.chat_id, queue)
        return delivered

    def _drop_subscriber(self, chat_id: str, queue: asyncio.Queue):
        logger.warning(f"[ChatNotifier] Subscriber of chat {chat_id} fell {queue.qsize()} events behind, closing it")
        self.unsubscribe(chat_id, queue)
        while not queue.empty():
            queue.get_nowait()
        queue.put_nowait(STREAM_CLOSED)

    async def publish(self, event):
        if self.backend != "redis":
            self.dispatch(event)
            return

        try:
            await RedisManager.publish_chat_event(event.chat_id, event.model_dump_json(by_alias=True))
        except (RedisError, OSError) as e:
            # The write already committed; clients recover through message listing
            logger.error(f"[ChatNotifier] Redis publish failed (chat {event.chat_id}): {e}")

    def handle_relay_message(self, raw: dict) -> int:
        """Dispatches one message received from the Redis pattern subscription."""
        if raw.get("type") != "pmessage":
            return 0
        try:
            event = chat_event_adapter.validate_json(raw["data"])
        except ValidationError as e:
            logger.warning(f"[ChatNotifier] Dropping malformed event on {raw.get('channel')}: {e}")
            return 0
        return self.dispatch(event)

    async def _relay(self):
        while True:
            pubsub = RedisManager.get_client().pubsub()
            try:
                await pubsub.psubscribe(f"{CHAT_CHANNEL_PREFIX}*")
                logger.info("[ChatNotifier] Redis relay listening")
                async for raw in pubsub.listen():
                    self.handle_relay_message(raw)
            except (RedisError, OSError) as e:
                logger.error(f"[ChatNotifier] Redis relay error, retrying in {RELAY_RETRY_SECONDS}s: {e}")
                await asyncio.sleep(RELAY_RETRY_SECONDS)
            except Exception as e:
                logger.exception(f"[ChatNotifier] Unexpected relay failure, retrying in {RELAY_RETRY_SECONDS}s: {e}")
                await asyncio.sleep(RELAY_RETRY_SECONDS)
            finally:
                await pubsub.aclose()

    async def start(self):
        if self.backend != "redis" or self._relay_task is not None:
            return
        self._relay_task = asyncio.create_task(self._relay())

    async def stop(self):
        if self._relay_task is None:
            return
        self._relay_task.cancel()
        try:
            await self._relay_task
        except asyncio.CancelledError:
            pass
        self._relay_task = None


notifier = ChatNotifier(CHAT_NOTIFIER_BACKEND)


def get_notifier() -> ChatNotifier:
    return notifier

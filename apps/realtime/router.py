"""
Room router over the Channels layer.

Publishing is fire-and-forget: a failed send is logged and never reaches the
caller, so a broken broker cannot roll back an order transition.
"""
import functools
import logging
import threading
from collections import defaultdict
from typing import Iterable, Tuple

from asgiref.sync import async_to_sync
from channels.layers import DEFAULT_CHANNEL_LAYER, get_channel_layer

from .events import MESSAGE_TYPE, ROOM_CLOSED_TYPE
from .topics import Topic

logger = logging.getLogger(__name__)

Delivery = Tuple[Topic, str, dict]


class RoomRouter:

    def __init__(self, channel_layer=None, alias=DEFAULT_CHANNEL_LAYER):
        self._layer = channel_layer
        self.alias = alias
        # Transient: channels this process has seen join each group
        self._members = defaultdict(set)
        self._lock = threading.Lock()

    @property
    def layer(self):
        return self._layer or get_channel_layer(self.alias)

    def members(self, topic: Topic) -> frozenset:
        with self._lock:
            return frozenset(self._members.get(topic.group, ()))

    async def ajoin(self, topic: Topic, channel_name: str):
        await self.layer.group_add(topic.group, channel_name)
        with self._lock:
            self._members[topic.group].add(channel_name)

    async def aleave(self, topic: Topic, channel_name: str):
        await self.layer.group_discard(topic.group, channel_name)
        with self._lock:
            members = self._members.get(topic.group)
            if members is not None:
                members.discard(channel_name)
                if not members:
                    del self._members[topic.group]

    async def apublish(self, topic: Topic, event: str, payload: dict) -> bool:
        message = {
            "type": MESSAGE_TYPE,
            "event": event,
            "topic": topic.group,
            "payload": payload,
        }
        try:
            await self.layer.group_send(topic.group, message)
        except Exception:
            logger.exception(f"Publish of {event} to {topic.group} failed", extra={"topic": topic.group})
            return False
        return True

    async def apublish_many(self, deliveries: Iterable[Delivery]) -> int:
        """Publish in the given order. Returns how many sends succeeded."""
        sent = 0
        for topic, event, payload in deliveries:
            if await self.apublish(topic, event, payload):
                sent += 1
        return sent

    async def aclose(self, topic: Topic):
        """
        Force every subscriber out of the room. One-way: a client must join
        again explicitly to hear from this topic.
        """
        try:
            await self.layer.group_send(topic.group, {"type": ROOM_CLOSED_TYPE, "topic": topic.group})
        except Exception:
            logger.exception(f"Close notice to {topic.group} failed", extra={"topic": topic.group})

        with self._lock:
            members = self._members.pop(topic.group, set())

        for channel_name in members:
            try:
                await self.layer.group_discard(topic.group, channel_name)
            except Exception:
                logger.exception(f"Could not discard {channel_name} from {topic.group}")

    def join(self, topic, channel_name):
        return async_to_sync(self.ajoin)(topic, channel_name)

    def leave(self, topic, channel_name):
        return async_to_sync(self.aleave)(topic, channel_name)

    def publish(self, topic, event, payload):
        return async_to_sync(self.apublish)(topic, event, payload)

    def publish_many(self, deliveries):
        return async_to_sync(self.apublish_many)(list(deliveries))

    def close(self, topic):
        return async_to_sync(self.aclose)(topic)


@functools.lru_cache(maxsize=None)
def get_room_router() -> RoomRouter:
    return RoomRouter()

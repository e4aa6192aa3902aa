import json
import logging

from channels.db import database_sync_to_async
from channels.generic.websocket import AsyncWebsocketConsumer

from apps.accounts.principals import CustomerPrincipal, PartnerPrincipal, resolve_principal
from apps.utils.exceptions import BusinessLogicException

from .events import ROOM_CLOSED
from .router import get_room_router
from .topics import BRANCH, ORDER, Topic, customer_topic, partner_topic

logger = logging.getLogger(__name__)


def personal_topic_for(principal):
    if isinstance(principal, CustomerPrincipal):
        return customer_topic(principal.id)
    if isinstance(principal, PartnerPrincipal):
        return partner_topic(principal.id)
    return None


class RoomConsumer(AsyncWebsocketConsumer):
    """
    One socket per client. The caller's personal room is joined on connect;
    order and branch rooms are joined with
    ``{"action": "join", "room": "order", "id": "<uuid>"}``.
    """

    async def connect(self):
        self.user = self.scope.get("user")
        self.topics = {}

        if self.user is None or self.user.is_anonymous:
            await self.close(code=4401)
            return

        try:
            self.principal = await database_sync_to_async(resolve_principal)(self.user)
        except BusinessLogicException as e:
            logger.warning(f"WS rejected: {e.message}", extra={"user_id": str(self.user.id)})
            await self.close(code=4403)
            return

        self.router = get_room_router()
        await self.accept()

        topic = personal_topic_for(self.principal)
        if topic is not None:
            await self._join(topic)

    async def disconnect(self, close_code):
        router = getattr(self, "router", None)
        if router is None:
            return
        for topic in list(self.topics.values()):
            await router.aleave(topic, self.channel_name)
        self.topics.clear()

    async def receive(self, text_data=None, bytes_data=None):
        try:
            data = json.loads(text_data or "")
        except ValueError:
            data = None
        if not isinstance(data, dict):
            await self._error("Malformed message.")
            return

        action = data.get("action")
        if action not in ("join", "leave"):
            await self._error(f"Unknown action: {action}")
            return

        try:
            topic = Topic(data.get("room"), str(data.get("id") or ""))
        except ValueError as e:
            await self._error(str(e))
            return

        if action == "leave":
            if topic.group in self.topics:
                await self.router.aleave(topic, self.channel_name)
                self.topics.pop(topic.group, None)
            return

        try:
            await self.authorize(topic)
        except BusinessLogicException as e:
            await self._error(e.message, e.code)
            return

        await self._join(topic)
        await self.send(text_data=json.dumps({"event": "joined", "data": {"room": topic.group}}))

    @database_sync_to_async
    def authorize(self, topic):
        from apps.orders.services import OrderService

        if topic.kind == ORDER:
            OrderService.get_order(topic.key, self.principal)
        elif topic.kind == BRANCH:
            OrderService.ensure_branch_access(self.principal, topic.key)
        else:
            # Personal rooms are joined on connect only
            raise BusinessLogicException("Cannot join this room.", code="unauthorized")

    async def _join(self, topic):
        await self.router.ajoin(topic, self.channel_name)
        self.topics[topic.group] = topic

    async def _error(self, message, code="validation_error"):
        await self.send(text_data=json.dumps({"event": "error", "data": {"error": message, "code": code}}))

    # Receive message from room group
    async def order_event(self, event):
        await self.send(text_data=json.dumps({
            "event": event["event"],
            "data": event["payload"],
        }))

    async def room_closed(self, event):
        group = event["topic"]
        topic = self.topics.pop(group, None) or Topic(*group.split(".", 1))
        # Closed by any process; clear this process's membership as well
        await self.router.aleave(topic, self.channel_name)
        await self.send(text_data=json.dumps({"event": ROOM_CLOSED, "data": {"room": group}}))

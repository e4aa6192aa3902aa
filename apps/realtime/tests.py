import asyncio
import uuid
from unittest.mock import AsyncMock, MagicMock, patch

from channels.layers import InMemoryChannelLayer
from channels.testing import WebsocketCommunicator
from django.test import SimpleTestCase, override_settings

from apps.accounts.principals import CustomerPrincipal
from apps.utils.exceptions import Unauthorized

from . import events as ev
from .consumers import RoomConsumer
from .router import RoomRouter
from .topics import Topic, branch_topic, customer_topic, order_topic


class TopicTests(SimpleTestCase):

    def test_group_names(self):
        order_id = uuid.uuid4()
        self.assertEqual(order_topic(order_id).group, f"order.{order_id}")
        self.assertEqual(branch_topic("b1").group, "branch.b1")
        self.assertEqual(order_topic(order_id), order_topic(str(order_id)))

    def test_rejects_unknown_kind(self):
        with self.assertRaises(ValueError):
            Topic("warehouse", "1")

    def test_rejects_empty_key(self):
        with self.assertRaises(ValueError):
            Topic("order", "")


class RoomRouterTests(SimpleTestCase):

    def setUp(self):
        self.layer = InMemoryChannelLayer()
        self.router = RoomRouter(channel_layer=self.layer)
        self.topic = order_topic(uuid.uuid4())

    async def test_publish_reaches_members(self):
        channel = await self.layer.new_channel()
        await self.router.ajoin(self.topic, channel)

        sent = await self.router.apublish_many([
            (self.topic, ev.ORDER_STATUS_UPDATED, {"status": "accepted"}),
            (self.topic, ev.ORDER_LOCATION_UPDATED, {"location": {}}),
        ])

        self.assertEqual(sent, 2)
        first = await self.layer.receive(channel)
        second = await self.layer.receive(channel)
        self.assertEqual(first["type"], ev.MESSAGE_TYPE)
        self.assertEqual(first["event"], ev.ORDER_STATUS_UPDATED)
        self.assertEqual(first["payload"], {"status": "accepted"})
        self.assertEqual(second["event"], ev.ORDER_LOCATION_UPDATED)

    async def test_close_is_terminal(self):
        channel = await self.layer.new_channel()
        await self.router.ajoin(self.topic, channel)

        await self.router.aclose(self.topic)

        notice = await self.layer.receive(channel)
        self.assertEqual(notice["type"], ev.ROOM_CLOSED_TYPE)
        self.assertEqual(self.router.members(self.topic), frozenset())

        await self.router.apublish(self.topic, ev.ORDER_STATUS_UPDATED, {})
        with self.assertRaises(asyncio.TimeoutError):
            await asyncio.wait_for(self.layer.receive(channel), 0.1)

    async def test_leave_drops_membership(self):
        channel = await self.layer.new_channel()
        await self.router.ajoin(self.topic, channel)
        await self.router.aleave(self.topic, channel)
        self.assertEqual(self.router.members(self.topic), frozenset())

    async def test_publish_failure_is_swallowed(self):
        layer = MagicMock()
        layer.group_send = AsyncMock(side_effect=ConnectionError("redis down"))
        router = RoomRouter(channel_layer=layer)

        with self.assertLogs("apps.realtime.router", level="ERROR"):
            self.assertFalse(await router.apublish(self.topic, ev.ORDER_COMPLETED, {}))

    def test_sync_wrappers(self):
        self.router.publish_many([(self.topic, ev.ORDER_COMPLETED, {"orderId": "x"})])
        self.router.close(self.topic)
        self.assertEqual(self.router.members(self.topic), frozenset())


@override_settings(CHANNEL_LAYERS={"default": {"BACKEND": "channels.layers.InMemoryChannelLayer"}})
class RoomConsumerTests(SimpleTestCase):

    def setUp(self):
        self.user = MagicMock(is_anonymous=False, id=uuid.uuid4())
        self.customer = MagicMock(id=uuid.uuid4())
        self.principal = CustomerPrincipal(user=self.user, customer=self.customer)
        self.router = RoomRouter()

        for target, value in (
            ("apps.realtime.consumers.resolve_principal", MagicMock(return_value=self.principal)),
            ("apps.realtime.consumers.get_room_router", MagicMock(return_value=self.router)),
        ):
            patcher = patch(target, value)
            patcher.start()
            self.addCleanup(patcher.stop)

    def communicator(self, user=None):
        communicator = WebsocketCommunicator(RoomConsumer.as_asgi(), "/ws/rooms/")
        communicator.scope["user"] = user or self.user
        return communicator

    async def test_anonymous_rejected(self):
        communicator = self.communicator(user=MagicMock(is_anonymous=True))
        connected, code = await communicator.connect()
        self.assertFalse(connected)
        self.assertEqual(code, 4401)

    async def test_unresolvable_principal_rejected(self):
        with patch("apps.realtime.consumers.resolve_principal", side_effect=Unauthorized("no profile")):
            connected, code = await self.communicator().connect()
        self.assertFalse(connected)
        self.assertEqual(code, 4403)

    async def test_personal_room_joined_on_connect(self):
        communicator = self.communicator()
        connected, _ = await communicator.connect()
        self.assertTrue(connected)

        await self.router.apublish(customer_topic(self.customer.id), ev.ORDER_PICKED_UP, {"orderId": "o1"})

        message = await communicator.receive_json_from()
        self.assertEqual(message, {"event": ev.ORDER_PICKED_UP, "data": {"orderId": "o1"}})
        await communicator.disconnect()

    async def test_join_then_room_closed(self):
        topic = order_topic(uuid.uuid4())
        communicator = self.communicator()
        await communicator.connect()

        with patch.object(RoomConsumer, "authorize", AsyncMock()):
            await communicator.send_json_to({"action": "join", "room": "order", "id": topic.key})
            joined = await communicator.receive_json_from()
        self.assertEqual(joined["event"], "joined")

        await self.router.aclose(topic)
        closed = await communicator.receive_json_from()
        self.assertEqual(closed, {"event": ev.ROOM_CLOSED, "data": {"room": topic.group}})

        await self.router.apublish(topic, ev.ORDER_STATUS_UPDATED, {})
        self.assertTrue(await communicator.receive_nothing(timeout=0.1))
        await communicator.disconnect()

    async def test_room_closed_by_another_router(self):
        topic = order_topic(uuid.uuid4())
        communicator = self.communicator()
        await communicator.connect()

        with patch.object(RoomConsumer, "authorize", AsyncMock()):
            await communicator.send_json_to({"action": "join", "room": "order", "id": topic.key})
            await communicator.receive_json_from()
        self.assertEqual(len(self.router.members(topic)), 1)

        # e.g. an HTTP worker holding its own router
        await RoomRouter().aclose(topic)

        closed = await communicator.receive_json_from()
        self.assertEqual(closed["event"], ev.ROOM_CLOSED)
        self.assertEqual(self.router.members(topic), frozenset())
        await communicator.disconnect()
        self.assertEqual(self.router.members(topic), frozenset())

    async def test_join_denied(self):
        communicator = self.communicator()
        await communicator.connect()

        with patch.object(RoomConsumer, "authorize", AsyncMock(side_effect=Unauthorized("Not your order"))):
            await communicator.send_json_to({"action": "join", "room": "order", "id": str(uuid.uuid4())})
            error = await communicator.receive_json_from()

        self.assertEqual(error["event"], "error")
        self.assertEqual(error["data"]["code"], "unauthorized")
        await communicator.disconnect()

    async def test_bad_messages(self):
        communicator = self.communicator()
        await communicator.connect()

        await communicator.send_to(text_data="not json")
        self.assertEqual((await communicator.receive_json_from())["event"], "error")

        for payload in ("[1, 2]", "5", "\"join\""):
            await communicator.send_to(text_data=payload)
            error = await communicator.receive_json_from()
            self.assertEqual(error["event"], "error")
            self.assertEqual(error["data"]["code"], "validation_error")

        await communicator.send_json_to({"action": "subscribe", "room": "order", "id": "1"})
        self.assertEqual((await communicator.receive_json_from())["event"], "error")

        await communicator.send_json_to({"action": "join", "room": "galaxy", "id": "1"})
        self.assertEqual((await communicator.receive_json_from())["event"], "error")
        await communicator.disconnect()

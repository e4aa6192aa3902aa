"""
Fan-out of order transitions to rooms.

Per transition the order is fixed: order room, customer room, partner room,
branch room, then (terminal states) the order room is closed.
"""
import logging

from django.utils import timezone

from apps.realtime import events as ev
from apps.realtime.router import get_room_router
from apps.realtime.topics import branch_topic, customer_topic, order_topic, partner_topic
from apps.utils.utils import json_safe

from .serializers import OrderSerializer
from .state_machine import OrderStatus

logger = logging.getLogger(__name__)


def order_snapshot(order):
    data = json_safe(OrderSerializer(order).data)
    data["orderId"] = str(order.id)
    return data


class OrderEvents:

    def __init__(self, router=None):
        self._router = router

    @property
    def router(self):
        return self._router or get_room_router()

    def _dispatch(self, order, deliveries, close=False):
        try:
            self.router.publish_many(deliveries)
            if close:
                self.router.close(order_topic(order.id))
        except Exception:
            # Events are a side channel; the transition already committed
            logger.exception(
                f"Event fan-out failed for {order.order_code}",
                extra={"order_id": str(order.id), "order_code": order.order_code},
            )

    def order_created(self, order):
        self._dispatch(order, [
            (branch_topic(order.branch_id), ev.NEW_ORDER_AVAILABLE, order_snapshot(order)),
        ])

    def order_accepted(self, order):
        self._dispatch(order, [
            (order_topic(order.id), ev.ORDER_STATUS_UPDATED, order_snapshot(order)),
            (branch_topic(order.branch_id), ev.ORDER_ACCEPTED_BY_OTHER, {"orderId": str(order.id)}),
        ])

    def order_picked_up(self, order):
        snapshot = order_snapshot(order)
        self._dispatch(order, [
            (order_topic(order.id), ev.ORDER_STATUS_UPDATED, snapshot),
            (customer_topic(order.customer_id), ev.ORDER_PICKED_UP, snapshot),
            (branch_topic(order.branch_id), ev.ORDER_PICKED_UP, {
                "orderId": str(order.id),
                "deliveryPartnerId": str(order.delivery_partner_id),
                "location": order.delivery_person_location,
            }),
        ])

    def order_delivered(self, order):
        snapshot = order_snapshot(order)
        self._dispatch(order, [
            (order_topic(order.id), ev.ORDER_STATUS_UPDATED, snapshot),
            (customer_topic(order.customer_id), ev.AWAITING_CUSTOMER_CONFIRMATION, snapshot),
        ])

    def delivery_confirmed(self, order):
        snapshot = order_snapshot(order)
        deliveries = [
            (order_topic(order.id), ev.ORDER_COMPLETED, self._completed(order)),
            (customer_topic(order.customer_id), ev.DELIVERY_CONFIRMED, snapshot),
        ]
        if order.delivery_partner_id:
            deliveries.append(
                (partner_topic(order.delivery_partner_id), ev.ORDER_STATUS_UPDATED, snapshot)
            )
        self._dispatch(order, deliveries, close=True)

    def order_cancelled(self, order):
        notice = {
            "orderId": str(order.id),
            "orderNumber": order.order_code,
            "reason": order.cancellation_reason,
            "message": "Order has been cancelled",
        }
        deliveries = [
            (order_topic(order.id), ev.ORDER_COMPLETED, self._completed(order)),
            (customer_topic(order.customer_id), ev.ORDER_CANCELLED, notice),
        ]
        if order.delivery_partner_id:
            deliveries.append((partner_topic(order.delivery_partner_id), ev.ORDER_CANCELLED, notice))
        deliveries.append((branch_topic(order.branch_id), ev.ORDER_CANCELLED, notice))
        self._dispatch(order, deliveries, close=True)

    def status_updated(self, order, location_changed=False):
        snapshot = order_snapshot(order)
        deliveries = [(order_topic(order.id), ev.ORDER_STATUS_UPDATED, snapshot)]
        if location_changed:
            deliveries.append((order_topic(order.id), ev.ORDER_LOCATION_UPDATED, {
                "orderId": str(order.id),
                "location": order.delivery_person_location,
            }))

        close = False
        if order.status == OrderStatus.AWAITING_CONFIRMATION:
            deliveries.append((customer_topic(order.customer_id), ev.AWAITING_CUSTOMER_CONFIRMATION, snapshot))
        elif order.status == OrderStatus.IN_PROGRESS:
            deliveries.append((customer_topic(order.customer_id), ev.ORDER_IN_PROGRESS, snapshot))
        elif order.status == OrderStatus.DELIVERED:
            deliveries.append((order_topic(order.id), ev.ORDER_COMPLETED, self._completed(order)))
            close = True

        self._dispatch(order, deliveries, close=close)

    def location_updated(self, order, location, eta):
        payload = json_safe({
            "orderId": str(order.id),
            "location": location,
            "eta": eta,
            "routeData": order.route_data,
            "timestamp": timezone.now(),
        })
        self._dispatch(order, [
            (customer_topic(order.customer_id), ev.DELIVERY_PARTNER_LOCATION_UPDATE, payload),
            (branch_topic(order.branch_id), ev.DELIVERY_PARTNER_LOCATION_UPDATE, payload),
        ])

    @staticmethod
    def _completed(order):
        message = (
            "Order has been cancelled"
            if order.status == OrderStatus.CANCELLED
            else "Order delivery completed successfully"
        )
        return {"orderId": str(order.id), "status": order.status, "message": message}

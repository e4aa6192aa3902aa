# Event names are a client contract: do not rename.
NEW_ORDER_AVAILABLE = "newOrderAvailable"
ORDER_ACCEPTED_BY_OTHER = "orderAcceptedByOther"
ORDER_STATUS_UPDATED = "orderStatusUpdated"
ORDER_LOCATION_UPDATED = "orderLocationUpdated"
ORDER_PICKED_UP = "orderPickedUp"
AWAITING_CUSTOMER_CONFIRMATION = "awaitingCustomerConfirmation"
ORDER_IN_PROGRESS = "orderInProgress"
DELIVERY_CONFIRMED = "deliveryConfirmed"
ORDER_COMPLETED = "orderCompleted"
ORDER_CANCELLED = "orderCancelled"
DELIVERY_PARTNER_LOCATION_UPDATE = "deliveryPartnerLocationUpdate"

ALL_EVENTS = frozenset({
    NEW_ORDER_AVAILABLE,
    ORDER_ACCEPTED_BY_OTHER,
    ORDER_STATUS_UPDATED,
    ORDER_LOCATION_UPDATED,
    ORDER_PICKED_UP,
    AWAITING_CUSTOMER_CONFIRMATION,
    ORDER_IN_PROGRESS,
    DELIVERY_CONFIRMED,
    ORDER_COMPLETED,
    ORDER_CANCELLED,
    DELIVERY_PARTNER_LOCATION_UPDATE,
})

# Channel-layer message types (dispatched to RoomConsumer.order_event / room_closed)
MESSAGE_TYPE = "order.event"
ROOM_CLOSED_TYPE = "room.closed"

# Sent to the client when the server closes a room under it
ROOM_CLOSED = "roomClosed"

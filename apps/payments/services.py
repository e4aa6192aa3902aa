import logging
from decimal import Decimal

from django.core.exceptions import ValidationError as DjangoValidationError
from django.db import transaction
from django.utils import timezone

from apps.accounts.principals import CustomerPrincipal
from apps.orders.models import Order
from apps.orders.state_machine import OrderStatus
from apps.utils.exceptions import (
    BusinessValidationError,
    Conflict,
    InvalidTransition,
    NotFound,
    Unauthorized,
)

logger = logging.getLogger(__name__)

AMOUNT_TOLERANCE = Decimal("0.01")

SETTLED_STATUSES = (Order.PaymentStatus.VERIFIED, Order.PaymentStatus.COMPLETED)


class PaymentService:
    """
    Records a gateway payment against a pending order. Signature checking is
    done by the gateway integration upstream; the signature is only stored.
    """

    @staticmethod
    @transaction.atomic
    def confirm_payment(order_id, gateway_order_id, payment_id, signature, amount=None, principal=None) -> Order:
        try:
            order = Order.objects.select_for_update().get(pk=order_id)
        except (Order.DoesNotExist, DjangoValidationError, ValueError):
            raise NotFound("Order not found")

        if not isinstance(principal, CustomerPrincipal) or order.customer_id != principal.id:
            raise Unauthorized("Only the customer can pay for this order.")

        if order.status != OrderStatus.PENDING:
            raise InvalidTransition(f"Order {order.order_code} is not awaiting payment.")

        expected = order.grand_total
        if amount is not None and abs(Decimal(str(amount)) - expected) > AMOUNT_TOLERANCE:
            logger.warning(
                f"Payment amount mismatch on {order.order_code}: got {amount}, expected {expected}",
                extra={"order_id": str(order.id), "order_code": order.order_code},
            )
            raise BusinessValidationError("Payment amount does not match order total.")

        details = {
            "method": "online",
            "gateway_order_id": gateway_order_id,
            "payment_id": payment_id,
            "signature": signature,
            "amount": str(expected),
            "currency": "INR",
            "verified_at": timezone.now().isoformat(),
        }

        # Conditional so a concurrent duplicate confirmation loses
        updated = (
            Order.objects
            .filter(pk=order.pk)
            .exclude(payment_status__in=SETTLED_STATUSES)
            .update(
                payment_status=Order.PaymentStatus.VERIFIED,
                payment_details=details,
                updated_at=timezone.now(),
            )
        )
        if not updated:
            raise Conflict("Payment already verified for this order.")

        logger.info(
            f"Payment {payment_id} verified for {order.order_code}",
            extra={"order_id": str(order.id), "order_code": order.order_code},
        )
        order.refresh_from_db()
        return order

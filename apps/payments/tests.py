from decimal import Decimal
from unittest.mock import MagicMock, patch

from django.test import TestCase
from django.urls import reverse
from rest_framework import status
from rest_framework.test import APITestCase

from apps.orders.models import Order
from apps.orders.services import OrderService
from apps.orders.tests import make_branch, make_customer, make_partner, make_product
from apps.utils.exceptions import (
    BusinessValidationError,
    Conflict,
    InvalidTransition,
    NotFound,
    Unauthorized,
)

from .services import PaymentService


class PaymentTestCase(TestCase):

    def setUp(self):
        patcher = patch("apps.orders.events.get_room_router", return_value=MagicMock())
        patcher.start()
        self.addCleanup(patcher.stop)

        self.branch = make_branch()
        self.customer = make_customer("+911111111111")
        product = make_product("Paneer", "120", stock=20)
        self.order = OrderService.create_order(
            self.customer,
            branch_id=self.branch.id,
            items=[{"product_id": product.id, "quantity": 2}],
        )

    def confirm(self, **overrides):
        kwargs = {
            "order_id": self.order.id,
            "gateway_order_id": "order_Gw123",
            "payment_id": "pay_Gw456",
            "signature": "sig",
            "amount": Decimal("289.00"),
            "principal": self.customer,
        }
        kwargs.update(overrides)
        return PaymentService.confirm_payment(**kwargs)


class ConfirmPaymentTests(PaymentTestCase):

    def test_confirms_pending_order(self):
        order = self.confirm()

        self.assertEqual(order.payment_status, Order.PaymentStatus.VERIFIED)
        self.assertEqual(order.payment_details["payment_id"], "pay_Gw456")
        self.assertEqual(order.payment_details["amount"], "289.00")
        self.assertEqual(order.status, "pending")

    def test_amount_within_tolerance(self):
        order = self.confirm(amount=Decimal("289.01"))
        self.assertEqual(order.payment_status, Order.PaymentStatus.VERIFIED)

    def test_amount_optional(self):
        order = self.confirm(amount=None)
        self.assertEqual(order.payment_status, Order.PaymentStatus.VERIFIED)

    def test_amount_mismatch(self):
        with self.assertRaises(BusinessValidationError):
            self.confirm(amount=Decimal("240.00"))
        self.order.refresh_from_db()
        self.assertEqual(self.order.payment_status, Order.PaymentStatus.PENDING)

    def test_duplicate_confirmation(self):
        self.confirm()
        with self.assertRaises(Conflict):
            self.confirm(payment_id="pay_Other")
        self.order.refresh_from_db()
        self.assertEqual(self.order.payment_details["payment_id"], "pay_Gw456")

    def test_unknown_order(self):
        with self.assertRaises(NotFound):
            self.confirm(order_id="00000000-0000-0000-0000-000000000000")

    def test_other_customer(self):
        with self.assertRaises(Unauthorized):
            self.confirm(principal=make_customer("+912222222222"))

    def test_order_past_pending(self):
        partner = make_partner("+913333333333", self.branch)
        OrderService.accept_order(self.order.id, partner)
        with self.assertRaises(InvalidTransition):
            self.confirm()


class PaymentConfirmAPITests(APITestCase):

    def setUp(self):
        patcher = patch("apps.orders.events.get_room_router", return_value=MagicMock())
        patcher.start()
        self.addCleanup(patcher.stop)

        branch = make_branch()
        self.customer = make_customer("+911111111111")
        product = make_product("Curd", "30", stock=10)
        self.order = OrderService.create_order(
            self.customer, branch_id=branch.id, items=[{"product_id": product.id, "quantity": 1}]
        )
        self.url = reverse("payment-confirm")

    def test_confirm(self):
        self.client.force_authenticate(self.customer.user)
        response = self.client.post(self.url, {
            "order_id": str(self.order.id),
            "gateway_order_id": "order_1",
            "payment_id": "pay_1",
            "signature": "sig",
            "amount": "79.00",
        }, format="json")

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data["payment_status"], "verified")

    def test_missing_fields(self):
        self.client.force_authenticate(self.customer.user)
        response = self.client.post(self.url, {"order_id": str(self.order.id)}, format="json")
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data["code"], "validation_error")

# apps/orders/tests.py
import copy
import warnings
from pathlib import Path
from decimal import Decimal
from unittest.mock import MagicMock, patch

from django.test import SimpleTestCase, TestCase, override_settings
from rest_framework import status
from rest_framework.test import APITestCase

from apps.accounts.models import Role, User
from apps.accounts.principals import AdminPrincipal, CustomerPrincipal, PartnerPrincipal
from apps.branches.models import Branch
from apps.catalog.models import Product
from apps.customers.models import Address, CustomerProfile
from apps.inventory.models import StockMovementLog
from apps.orders.models import Order, OrderItem, RouteHistoryEntry
from apps.orders.pricing import (
    CartLine,
    ProductTier,
    delivery_fee_for,
    price,
    quantize,
)
from apps.orders.services import OrderService
from apps.orders import state_machine
from apps.orders.state_machine import (
    OrderStatus,
    STATUS_UPDATE_TRANSITIONS,
    delivery_status_for,
    ensure_transition,
)
from apps.partners.models import DeliveryPartner
from apps.realtime.topics import branch_topic, customer_topic, order_topic, partner_topic
from apps.tracking.estimator import RouteEstimator
from apps.utils.exceptions import (
    BusinessLogicException,
    BusinessValidationError,
    InsufficientStock,
    InvalidTransition,
    ProductNotFound,
    Unauthorized,
    UpstreamUnavailable,
)


# ----------------------------------------------------------------------
# Fixtures
# ----------------------------------------------------------------------

def make_branch(name="Koramangala"):
    return Branch.objects.create(
        name=name, address="80 Feet Road", latitude=12.9352, longitude=77.6245
    )


def make_customer(phone, subscribed=False):
    user = User.objects.create_user(phone=phone, role=Role.CUSTOMER)
    customer = CustomerProfile.objects.create(user=user, is_subscription=subscribed)
    Address.objects.create(
        customer=customer,
        address_line1="12 MG Road",
        city="Bengaluru",
        zip_code="560001",
        latitude=12.9716,
        longitude=77.5946,
        is_default=True,
    )
    return CustomerPrincipal(user=user, customer=customer)


def make_partner(phone, branch):
    user = User.objects.create_user(phone=phone, role=Role.DELIVERY_PARTNER)
    partner = DeliveryPartner.objects.create(user=user, branch=branch)
    return PartnerPrincipal(user=user, partner=partner)


def make_admin(phone):
    return AdminPrincipal(user=User.objects.create_superuser(phone=phone, password="admin-pass"))


def make_product(name, base_price, stock=10, **kwargs):
    kwargs.setdefault("quantity_value", "1 Piece")
    return Product.objects.create(name=name, base_price=Decimal(base_price), stock=stock, **kwargs)


def tier(base, discount=None, bundle_price=None, bundle_size=1, name="Milk"):
    return ProductTier(
        product_id=name.lower(),
        name=name,
        base_price=Decimal(base),
        discount_price=Decimal(discount) if discount is not None else None,
        subscription_price=Decimal(bundle_price) if bundle_price is not None else None,
        unit_per_subscription=bundle_size,
    )


def published(router):
    """[(group, event), ...] across every publish_many call, in order."""
    return [
        (topic.group, event)
        for call in router.publish_many.call_args_list
        for topic, event, _ in call.args[0]
    ]


# ----------------------------------------------------------------------
# Pricing
# ----------------------------------------------------------------------

@override_settings(WHOLESALE_CART_THRESHOLD=2500, DELIVERY_FEE=49, FREE_DELIVERY_THRESHOLD=1000)
class PricingTests(SimpleTestCase):

    def test_non_eligible_customer_pays_retail(self):
        lines = [
            CartLine(tier("100", name="A"), 2),
            CartLine(tier("50", name="B"), 1),
        ]
        result = price(lines, eligible=False)

        self.assertEqual(result.cart_total, Decimal("250.00"))
        self.assertEqual([i.pricing_mode for i in result.items], ["retail", "retail"])
        self.assertFalse(result.wholesale_eligible)

    def test_discount_price_wins_over_base(self):
        result = price([CartLine(tier("60", discount="45"), 3)], eligible=False)
        self.assertEqual(result.items[0].unit_price, Decimal("45.00"))
        self.assertEqual(result.cart_total, Decimal("135.00"))

    def test_wholesale_gate_falls_back_to_retail_for_small_carts(self):
        # 2 bundles of 5 at 200 (400) beat 10 x 50 retail (500), but 400 < 2500
        line = CartLine(tier("50", bundle_price="200", bundle_size=5), 10)
        result = price([line], eligible=True)

        self.assertFalse(result.wholesale_eligible)
        self.assertEqual(result.items[0].pricing_mode, "retail")
        self.assertEqual(result.items[0].bundles_bought, 0)
        self.assertEqual(result.cart_total, Decimal("500.00"))

    def test_wholesale_honoured_above_threshold(self):
        line = CartLine(tier("50", bundle_price="200", bundle_size=5), 10)
        big = CartLine(tier("500", name="Ghee"), 5)
        result = price([line, big], eligible=True)

        self.assertTrue(result.wholesale_eligible)
        milk = result.items[0]
        self.assertEqual(milk.pricing_mode, "wholesale")
        self.assertEqual(milk.bundles_bought, 2)
        self.assertEqual(milk.total_price, Decimal("400.00"))
        self.assertEqual(milk.unit_price, Decimal("40.00"))
        self.assertEqual(result.cart_total, Decimal("2900.00"))

    def test_gate_uses_wholesale_aware_total(self):
        # Retail total would be 2600, wholesale-aware total is 2500: gate passes
        line = CartLine(tier("52", bundle_price="250", bundle_size=5), 50)
        result = price([line], eligible=True)
        self.assertTrue(result.wholesale_eligible)
        self.assertEqual(result.cart_total, Decimal("2500.00"))

        # Wholesale-aware total 2450 fails the gate even though retail is 2550
        line = CartLine(tier("51", bundle_price="245", bundle_size=5), 50)
        result = price([line], eligible=True)
        self.assertFalse(result.wholesale_eligible)
        self.assertEqual(result.cart_total, Decimal("2550.00"))

    def test_wholesale_only_when_strictly_cheaper(self):
        line = CartLine(tier("500", bundle_price="2500", bundle_size=5), 10)
        result = price([line], eligible=True)
        self.assertEqual(result.items[0].pricing_mode, "retail")
        self.assertEqual(result.cart_total, Decimal("5000.00"))

    def test_remainder_priced_at_retail(self):
        line = CartLine(tier("100", bundle_price="450", bundle_size=5), 28)
        result = price([line], eligible=True)

        item = result.items[0]
        self.assertEqual(item.bundles_bought, 5)
        self.assertEqual(item.total_price, Decimal("2550.00"))
        self.assertEqual(item.unit_price, Decimal("91.07"))

    def test_pricing_is_deterministic(self):
        lines = [CartLine(tier("33.33", bundle_price="90", bundle_size=3), 100)]
        self.assertEqual(price(lines, eligible=True), price(lines, eligible=True))

    def test_rounding_is_half_up_at_final_value(self):
        self.assertEqual(quantize(Decimal("2.675")), Decimal("2.68"))
        self.assertEqual(quantize(Decimal("-2.675")), Decimal("-2.68"))

        line = CartLine(tier("40", bundle_price="100", bundle_size=3), 3)
        big = CartLine(tier("2500", name="Rice"), 1)
        result = price([line, big], eligible=True)
        self.assertEqual(result.items[0].unit_price, Decimal("33.33"))

    def test_delivery_fee(self):
        self.assertEqual(delivery_fee_for(Decimal("250")), Decimal("49.00"))
        self.assertEqual(delivery_fee_for(Decimal("1000")), Decimal("0.00"))
        self.assertEqual(delivery_fee_for(Decimal("250"), override=Decimal("20")), Decimal("20.00"))


# ----------------------------------------------------------------------
# State machine
# ----------------------------------------------------------------------

class StateMachineTests(SimpleTestCase):

    def test_module_compiles_without_warnings(self):
        source = Path(state_machine.__file__).read_text()
        with warnings.catch_warnings():
            warnings.simplefilter("error")
            compile(source, state_machine.__file__, "exec")

    def test_delivery_status_is_derived(self):
        self.assertEqual(delivery_status_for("pending"), "Assigning Partner")
        self.assertEqual(delivery_status_for("accepted"), "Partner Assigned")
        self.assertEqual(delivery_status_for("in-progress"), "On The Way")
        self.assertEqual(delivery_status_for("awaitconfirmation"), "Delivered")
        self.assertEqual(delivery_status_for("cancelled"), "Cancelled")

    def test_cannot_skip_acceptance(self):
        with self.assertRaises(InvalidTransition):
            ensure_transition(OrderStatus.PENDING, OrderStatus.IN_PROGRESS)

    def test_nothing_leaves_terminal_states(self):
        for terminal in (OrderStatus.DELIVERED, OrderStatus.CANCELLED):
            for target in OrderStatus.values:
                with self.assertRaises(InvalidTransition):
                    ensure_transition(terminal, target)

    def test_status_update_table_is_forward_only(self):
        ensure_transition(OrderStatus.ACCEPTED, OrderStatus.IN_PROGRESS, STATUS_UPDATE_TRANSITIONS)
        with self.assertRaises(InvalidTransition):
            ensure_transition(OrderStatus.ACCEPTED, OrderStatus.CANCELLED, STATUS_UPDATE_TRANSITIONS)
        with self.assertRaises(InvalidTransition):
            ensure_transition(OrderStatus.IN_PROGRESS, OrderStatus.ACCEPTED, STATUS_UPDATE_TRANSITIONS)


# ----------------------------------------------------------------------
# Service
# ----------------------------------------------------------------------

class OrderServiceTestCase(TestCase):

    def setUp(self):
        self.router = MagicMock()
        patcher = patch("apps.orders.events.get_room_router", return_value=self.router)
        patcher.start()
        self.addCleanup(patcher.stop)

        self.branch = make_branch()
        self.customer = make_customer("+911111111111")
        self.partner = make_partner("+912222222222", self.branch)
        self.admin = make_admin("+919999999999")
        self.product_a = make_product("Product A", "100", stock=10)
        self.product_b = make_product("Product B", "50", stock=10)

    def place_order(self, principal=None, **kwargs):
        items = kwargs.pop("items", [
            {"product_id": self.product_a.id, "quantity": 2},
            {"product_id": self.product_b.id, "quantity": 1},
        ])
        return OrderService.create_order(
            principal or self.customer, branch_id=self.branch.id, items=items, **kwargs
        )

    def stock(self, product):
        product.refresh_from_db()
        return product.stock


class CreateOrderTests(OrderServiceTestCase):

    def test_scenario_retail_order(self):
        order = self.place_order()

        self.assertEqual(order.total_price, Decimal("250.00"))
        self.assertEqual(order.delivery_fee, Decimal("49.00"))
        self.assertEqual(order.status, OrderStatus.PENDING)
        self.assertEqual(order.delivery_status, "Assigning Partner")
        self.assertEqual(order.order_code, "ORD-00001")
        self.assertEqual(
            sorted(order.items.values_list("pricing_mode", flat=True)), ["retail", "retail"]
        )
        self.assertEqual(order.pickup_location["address"], "80 Feet Road")
        self.assertIn("12 MG Road", order.delivery_location["address"])

        # Stock moves at acceptance, not at creation
        self.assertEqual(self.stock(self.product_a), 10)
        self.assertEqual(published(self.router), [(branch_topic(self.branch.id).group, "newOrderAvailable")])

    def test_order_codes_are_sequential(self):
        first = self.place_order()
        second = self.place_order()
        self.assertEqual(first.order_code, "ORD-00001")
        self.assertEqual(second.order_code, "ORD-00002")

    def test_preview_persists_nothing(self):
        quote = OrderService.preview_order(
            self.customer, branch_id=self.branch.id,
            items=[{"product_id": self.product_a.id, "quantity": 3}],
        )
        self.assertEqual(quote["total_price"], Decimal("300.00"))
        self.assertEqual(quote["grand_total"], Decimal("349.00"))
        self.assertFalse(quote["wholesale_eligible"])
        self.assertFalse(Order.objects.exists())

    def test_unknown_product(self):
        with self.assertRaises(ProductNotFound):
            self.place_order(items=[{"product_id": "00000000-0000-0000-0000-000000000001", "quantity": 1}])

    def test_soft_stock_check(self):
        with self.assertRaises(InsufficientStock):
            self.place_order(items=[{"product_id": self.product_a.id, "quantity": 11}])

    def test_only_customers_create_orders(self):
        with self.assertRaises(Unauthorized):
            self.place_order(principal=self.partner)

    def test_cod_requires_wholesale_eligibility(self):
        with self.assertRaises(BusinessValidationError):
            self.place_order(payment_mode=Order.PaymentMode.COD)

    def test_cod_for_eligible_cart(self):
        subscriber = make_customer("+913333333333", subscribed=True)
        bulk = make_product("Rice Bag", "1300", stock=5)

        order = self.place_order(
            principal=subscriber,
            items=[{"product_id": bulk.id, "quantity": 2}],
            payment_mode=Order.PaymentMode.COD,
        )

        self.assertEqual(order.payment_status, Order.PaymentStatus.COMPLETED)
        self.assertEqual(order.payment_details["method"], "COD")
        self.assertEqual(order.payment_details["amount"], "2600.00")
        self.assertEqual(order.delivery_fee, Decimal("0.00"))

    def test_upstream_delivery_fee_overrides(self):
        order = self.place_order(delivery_fee=Decimal("15"))
        self.assertEqual(order.delivery_fee, Decimal("15.00"))

    def test_items_are_write_once(self):
        item = self.place_order().items.first()
        item.total_price = Decimal("1.00")
        with self.assertRaises(BusinessLogicException):
            item.save()

    def test_product_edits_do_not_touch_history(self):
        order = self.place_order()
        Product.objects.filter(pk=self.product_a.pk).update(base_price=Decimal("999"))
        item = order.items.get(product=self.product_a)
        self.assertEqual(item.unit_price, Decimal("100.00"))
        self.assertEqual(item.base_price, Decimal("100.00"))


class TransitionTests(OrderServiceTestCase):

    def test_accept_reserves_stock_and_binds_partner(self):
        order = self.place_order()
        self.router.reset_mock()

        order = OrderService.accept_order(order.id, self.partner)

        self.assertEqual(order.status, OrderStatus.ACCEPTED)
        self.assertEqual(order.delivery_partner_id, self.partner.id)
        self.assertTrue(order.stock_reserved)
        self.assertEqual(self.stock(self.product_a), 8)
        self.assertEqual(self.stock(self.product_b), 9)
        self.assertEqual(published(self.router), [
            (order_topic(order.id).group, "orderStatusUpdated"),
            (branch_topic(self.branch.id).group, "orderAcceptedByOther"),
        ])

    def test_accept_by_partner_of_other_branch(self):
        order = self.place_order()
        outsider = make_partner("+914444444444", make_branch("Indiranagar"))
        with self.assertRaises(Unauthorized):
            OrderService.accept_order(order.id, outsider)

    def test_accept_with_insufficient_stock_leaves_order_pending(self):
        order = self.place_order()
        Product.objects.filter(pk=self.product_a.pk).update(stock=1)

        with self.assertRaises(InsufficientStock):
            OrderService.accept_order(order.id, self.partner)

        order.refresh_from_db()
        self.assertEqual(order.status, OrderStatus.PENDING)
        self.assertIsNone(order.delivery_partner_id)
        self.assertFalse(order.stock_reserved)
        self.assertEqual(self.stock(self.product_b), 10)

    def test_racing_accepts_reserve_once(self):
        order = self.place_order()
        partners = [self.partner] + [
            make_partner(f"+91555555555{i}", self.branch) for i in range(3)
        ]
        stale = OrderService._get_order(order.id)
        copies = [copy.deepcopy(stale) for _ in partners]

        outcomes = []
        with patch.object(OrderService, "_get_order", side_effect=copies):
            for partner in partners:
                try:
                    OrderService.accept_order(order.id, partner)
                    outcomes.append("won")
                except InvalidTransition:
                    outcomes.append("lost")

        self.assertEqual(outcomes.count("won"), 1)
        self.assertEqual(outcomes.count("lost"), len(partners) - 1)
        self.assertEqual(self.stock(self.product_a), 8)
        self.assertEqual(
            StockMovementLog.objects.filter(movement_type="RESERVE", product=self.product_a).count(), 1
        )

    def test_second_accept_fails(self):
        order = self.place_order()
        OrderService.accept_order(order.id, self.partner)
        other = make_partner("+916666666666", self.branch)
        with self.assertRaises(InvalidTransition):
            OrderService.accept_order(order.id, other)

    def test_happy_path(self):
        order = self.place_order()
        OrderService.accept_order(order.id, self.partner)

        order = OrderService.pickup_order(order.id, self.partner)
        self.assertEqual(order.status, OrderStatus.IN_PROGRESS)
        self.assertEqual(order.delivery_status, "On The Way")
        self.assertEqual(order.delivery_person_location["latitude"], self.branch.latitude)

        order = OrderService.mark_delivered(order.id, self.partner)
        self.assertEqual(order.status, OrderStatus.AWAITING_CONFIRMATION)
        self.assertTrue(order.delivery_person_location["is_final_location"])

        self.router.reset_mock()
        order = OrderService.confirm_delivery(order.id, self.customer)
        self.assertEqual(order.status, OrderStatus.DELIVERED)
        self.assertIsNotNone(order.delivered_at)

        self.assertEqual(published(self.router), [
            (order_topic(order.id).group, "orderCompleted"),
            (customer_topic(self.customer.id).group, "deliveryConfirmed"),
            (partner_topic(self.partner.id).group, "orderStatusUpdated"),
        ])
        self.router.close.assert_called_once_with(order_topic(order.id))
        self.assertEqual(order.timeline.count(), 5)

    def test_only_bound_partner_picks_up(self):
        order = self.place_order()
        OrderService.accept_order(order.id, self.partner)
        other = make_partner("+917777777777", self.branch)
        with self.assertRaises(Unauthorized):
            OrderService.pickup_order(order.id, other)

    def test_only_customer_confirms(self):
        order = self.place_order()
        OrderService.accept_order(order.id, self.partner)
        OrderService.pickup_order(order.id, self.partner)
        OrderService.mark_delivered(order.id, self.partner)
        with self.assertRaises(Unauthorized):
            OrderService.confirm_delivery(order.id, self.partner)

    def test_confirm_before_delivery_is_invalid(self):
        order = self.place_order()
        with self.assertRaises(InvalidTransition):
            OrderService.confirm_delivery(order.id, self.customer)

    def test_update_status_follows_table(self):
        order = self.place_order()
        OrderService.accept_order(order.id, self.partner)

        with self.assertRaises(InvalidTransition):
            OrderService.update_status(order.id, self.partner, OrderStatus.AWAITING_CONFIRMATION)

        self.router.reset_mock()
        location = {"latitude": 12.95, "longitude": 77.60}
        order = OrderService.update_status(order.id, self.partner, OrderStatus.IN_PROGRESS, location)

        self.assertEqual(order.status, OrderStatus.IN_PROGRESS)
        self.assertEqual(order.delivery_person_location["latitude"], 12.95)
        self.assertEqual(published(self.router), [
            (order_topic(order.id).group, "orderStatusUpdated"),
            (order_topic(order.id).group, "orderLocationUpdated"),
            (customer_topic(self.customer.id).group, "orderInProgress"),
        ])

    def test_update_status_to_delivered_closes_room(self):
        order = self.place_order()
        OrderService.accept_order(order.id, self.partner)
        OrderService.update_status(order.id, self.partner, OrderStatus.IN_PROGRESS)
        OrderService.update_status(order.id, self.partner, OrderStatus.AWAITING_CONFIRMATION)
        order = OrderService.update_status(order.id, self.partner, OrderStatus.DELIVERED)

        self.assertEqual(order.status, OrderStatus.DELIVERED)
        self.router.close.assert_called_once_with(order_topic(order.id))

    def test_publish_failure_does_not_fail_transition(self):
        order = self.place_order()
        self.router.publish_many.side_effect = RuntimeError("broker down")

        order = OrderService.accept_order(order.id, self.partner)

        self.assertEqual(order.status, OrderStatus.ACCEPTED)


class CancellationTests(OrderServiceTestCase):

    def test_cancel_in_progress_restores_stock_once(self):
        order = self.place_order()
        OrderService.accept_order(order.id, self.partner)
        OrderService.pickup_order(order.id, self.partner)
        self.assertEqual(self.stock(self.product_a), 8)

        self.router.reset_mock()
        order = OrderService.cancel_order(order.id, self.customer, "Changed my mind")

        self.assertEqual(order.status, OrderStatus.CANCELLED)
        self.assertEqual(order.cancelled_by, Role.CUSTOMER)
        self.assertFalse(order.stock_reserved)
        self.assertEqual(self.stock(self.product_a), 10)
        self.assertEqual(self.stock(self.product_b), 10)

        self.assertEqual(published(self.router), [
            (order_topic(order.id).group, "orderCompleted"),
            (customer_topic(self.customer.id).group, "orderCancelled"),
            (partner_topic(self.partner.id).group, "orderCancelled"),
            (branch_topic(self.branch.id).group, "orderCancelled"),
        ])
        self.router.close.assert_called_once_with(order_topic(order.id))

        with self.assertRaises(InvalidTransition):
            OrderService.cancel_order(order.id, self.customer, "Again")
        self.assertEqual(self.stock(self.product_a), 10)
        self.assertEqual(StockMovementLog.objects.filter(movement_type="RELEASE").count(), 2)

    def test_cancel_pending_touches_no_stock(self):
        order = self.place_order()
        OrderService.cancel_order(order.id, self.admin, "Duplicate order")

        self.assertEqual(self.stock(self.product_a), 10)
        self.assertFalse(StockMovementLog.objects.exists())

    def test_reason_required(self):
        order = self.place_order()
        with self.assertRaises(BusinessValidationError):
            OrderService.cancel_order(order.id, self.customer, "   ")

    def test_stranger_cannot_cancel(self):
        order = self.place_order()
        stranger = make_customer("+918888888888")
        with self.assertRaises(Unauthorized):
            OrderService.cancel_order(order.id, stranger, "Not mine")

    def test_delivered_order_cannot_be_cancelled(self):
        order = self.place_order()
        OrderService.accept_order(order.id, self.partner)
        OrderService.pickup_order(order.id, self.partner)
        OrderService.mark_delivered(order.id, self.partner)
        OrderService.confirm_delivery(order.id, self.customer)

        with self.assertRaises(InvalidTransition):
            OrderService.cancel_order(order.id, self.admin, "Too late")
        self.assertEqual(self.stock(self.product_a), 8)

    def test_delete_releases_reserved_stock(self):
        order = self.place_order()
        OrderService.accept_order(order.id, self.partner)

        OrderService.delete_order(order.id, self.admin)

        self.assertFalse(Order.objects.filter(pk=order.pk).exists())
        self.assertEqual(self.stock(self.product_a), 10)

    def test_delete_pending_keeps_stock(self):
        order = self.place_order()
        OrderService.delete_order(order.id, self.admin)
        self.assertEqual(self.stock(self.product_a), 10)

    def test_only_admin_deletes(self):
        order = self.place_order()
        with self.assertRaises(Unauthorized):
            OrderService.delete_order(order.id, self.customer)


class LocationAndRouteTests(OrderServiceTestCase):

    def setUp(self):
        super().setUp()
        self.order = self.place_order()
        OrderService.accept_order(self.order.id, self.partner)
        OrderService.pickup_order(self.order.id, self.partner)
        self.router.reset_mock()

    def test_location_update_computes_eta_and_archives_route(self):
        location = {"latitude": 12.9716, "longitude": 77.5946, "speed": 8.5}
        route = {"route_type": "partner-to-customer", "coordinates": [], "distance": 1200, "duration": 300}

        OrderService.update_location(self.order.id, self.partner, location, route)
        order, eta = OrderService.update_location(self.order.id, self.partner, location, route)

        # Already at the delivery address
        self.assertEqual(eta, 0)
        self.assertEqual(order.delivery_person_location["speed"], 8.5)
        self.assertEqual(order.delivery_person_location["heading"], 0)
        self.assertEqual(RouteHistoryEntry.objects.filter(order=order).count(), 1)
        self.assertEqual(published(self.router)[-2:], [
            (customer_topic(self.customer.id).group, "deliveryPartnerLocationUpdate"),
            (branch_topic(self.branch.id).group, "deliveryPartnerLocationUpdate"),
        ])

    def test_location_update_after_close_is_invalid(self):
        OrderService.cancel_order(self.order.id, self.partner, "Vehicle breakdown")
        with self.assertRaises(InvalidTransition):
            OrderService.update_location(self.order.id, self.partner, {"latitude": 1, "longitude": 1})

    def test_plan_route_falls_back(self):
        client = MagicMock()
        client.get_directions.side_effect = UpstreamUnavailable("down")

        result = OrderService.plan_route(
            self.order.id, self.partner, update_order=True, estimator=RouteEstimator(client=client)
        )

        self.assertTrue(result["fallback"])
        self.assertTrue(result["order_updated"])
        self.order.refresh_from_db()
        self.assertTrue(self.order.route_data["fallback"])
        self.assertEqual(len(self.order.route_data["coordinates"]), 21)

    def test_customer_cannot_overwrite_route(self):
        with self.assertRaises(Unauthorized):
            OrderService.plan_route(self.order.id, self.customer, update_order=True)


class QueryTests(OrderServiceTestCase):

    def test_available_orders_are_unclaimed_pending(self):
        claimed = self.place_order()
        open_order = self.place_order()
        OrderService.accept_order(claimed.id, self.partner)

        available = OrderService.available_orders(self.partner, self.branch.id)
        self.assertEqual(list(available), [open_order])

        current = OrderService.partner_current_orders(self.partner)
        self.assertEqual(list(current), [claimed])

    def test_active_order_for_customer(self):
        order = self.place_order()
        self.assertEqual(OrderService.active_order(self.customer), order)

        OrderService.cancel_order(order.id, self.customer, "No longer needed")
        with self.assertRaises(BusinessLogicException):
            OrderService.active_order(self.customer)
        self.assertEqual(list(OrderService.customer_history(self.customer)), [order])

    def test_partner_of_other_branch_sees_nothing(self):
        self.place_order()
        outsider = make_partner("+914444444444", make_branch("Indiranagar"))
        with self.assertRaises(Unauthorized):
            OrderService.available_orders(outsider, self.branch.id)
        self.assertFalse(OrderService.orders_for(outsider).exists())


# ----------------------------------------------------------------------
# API
# ----------------------------------------------------------------------

class OrderAPITests(APITestCase):

    def setUp(self):
        patcher = patch("apps.orders.events.get_room_router", return_value=MagicMock())
        patcher.start()
        self.addCleanup(patcher.stop)

        self.branch = make_branch()
        self.customer = make_customer("+911111111111")
        self.partner = make_partner("+912222222222", self.branch)
        self.product = make_product("Bread", "40", stock=5)

    def create_order(self):
        self.client.force_authenticate(self.customer.user)
        return self.client.post("/api/v1/orders/", {
            "branch_id": str(self.branch.id),
            "items": [{"product_id": str(self.product.id), "quantity": 2}],
        }, format="json")

    def test_create_and_retrieve(self):
        response = self.create_order()
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data["total_price"], "80.00")
        self.assertEqual(response.data["delivery_status"], "Assigning Partner")

        detail = self.client.get(f"/api/v1/orders/{response.data['id']}/")
        self.assertEqual(detail.status_code, status.HTTP_200_OK)
        self.assertEqual(detail.data["order_code"], "ORD-00001")

    def test_invalid_payload(self):
        self.client.force_authenticate(self.customer.user)
        response = self.client.post("/api/v1/orders/", {"items": []}, format="json")
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data["code"], "validation_error")
        self.assertIn("details", response.data)

    def test_transition_error_codes(self):
        order_id = self.create_order().data["id"]

        self.client.force_authenticate(self.customer.user)
        response = self.client.post(f"/api/v1/orders/{order_id}/confirm/")
        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(response.data["code"], "invalid_transition")

        self.client.force_authenticate(self.partner.user)
        response = self.client.post(f"/api/v1/orders/{order_id}/accept/")
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data["status"], "accepted")

        response = self.client.patch(
            f"/api/v1/orders/{order_id}/status/", {"status": "in-progress"}, format="json"
        )
        self.assertEqual(response.data["delivery_status"], "On The Way")

    def test_unknown_order(self):
        self.client.force_authenticate(self.customer.user)
        response = self.client.get("/api/v1/orders/00000000-0000-0000-0000-000000000000/")
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)
        self.assertEqual(response.data["code"], "not_found")

    def test_list_filters_by_status(self):
        self.create_order()
        response = self.client.get("/api/v1/orders/", {"status": "delivered,cancelled"})
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        results = response.data["results"] if isinstance(response.data, dict) else response.data
        self.assertEqual(len(results), 0)

    def test_available_orders_for_partner(self):
        self.create_order()
        self.client.force_authenticate(self.partner.user)
        response = self.client.get(f"/api/v1/orders/available/{self.branch.id}/")
        self.assertEqual(response.status_code, status.HTTP_200_OK)

    def test_anonymous_rejected(self):
        response = self.client.get("/api/v1/orders/")
        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)

    def test_item_snapshot_survives_product_deletion(self):
        order_id = self.create_order().data["id"]
        self.product.delete()
        item = OrderItem.objects.get(order_id=order_id)
        self.assertIsNone(item.product_id)
        self.assertEqual(item.name, "Bread")

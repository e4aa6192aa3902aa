import logging

from django.conf import settings
from django.core.exceptions import ValidationError as DjangoValidationError
from django.db import transaction
from django.db.models import Q
from django.utils import timezone

from apps.accounts.principals import AdminPrincipal, CustomerPrincipal, PartnerPrincipal
from apps.branches.models import Branch
from apps.customers.services import CustomerService
from apps.inventory.services import InventoryLedger
from apps.tracking.estimator import RouteEstimator, eta_minutes, haversine_km
from apps.utils.exceptions import (
    BusinessValidationError,
    InvalidTransition,
    NotFound,
    Unauthorized,
)

from .events import OrderEvents
from .models import Order, OrderCounter, OrderItem, OrderTimeline, RouteHistoryEntry
from .pricing import delivery_fee_for, load_cart_lines, price
from .state_machine import (
    ACTIVE_STATUSES,
    PARTNER_ACTIVE_STATUSES,
    STATUS_UPDATE_TRANSITIONS,
    TERMINAL_STATUSES,
    TRANSITIONS,
    OrderStatus,
    ensure_transition,
)

logger = logging.getLogger(__name__)


def _stamp():
    return timezone.now().isoformat()


class OrderService:
    """
    Every mutation loads the order, checks who is acting, checks the
    transition against the graph and then applies it with an UPDATE filtered
    on the status it observed. A stale read or a lost race therefore fails as
    InvalidTransition without touching the row. Events go out after the
    transaction block has exited.
    """

    # ------------------------------------------------------------------
    # Loading & access
    # ------------------------------------------------------------------

    @staticmethod
    def _get_order(order_id) -> Order:
        try:
            return (
                Order.objects
                .select_related("customer", "branch", "delivery_partner")
                .get(pk=order_id)
            )
        except (Order.DoesNotExist, DjangoValidationError, ValueError):
            raise NotFound("Order not found")

    @staticmethod
    def _is_customer_of(principal, order):
        return isinstance(principal, CustomerPrincipal) and order.customer_id == principal.id

    @staticmethod
    def _is_bound_partner(principal, order):
        return isinstance(principal, PartnerPrincipal) and order.delivery_partner_id == principal.id

    @staticmethod
    def _require_customer(principal):
        if not isinstance(principal, CustomerPrincipal):
            raise Unauthorized("Only customers can do this.")

    @staticmethod
    def _require_partner(principal):
        if not isinstance(principal, PartnerPrincipal):
            raise Unauthorized("Only delivery partners can do this.")

    @staticmethod
    def _require_bound_partner(principal, order):
        if not OrderService._is_bound_partner(principal, order):
            raise Unauthorized("Only the assigned delivery partner can update this order.")

    @staticmethod
    def can_view(principal, order) -> bool:
        if isinstance(principal, AdminPrincipal):
            return True
        if OrderService._is_customer_of(principal, order) or OrderService._is_bound_partner(principal, order):
            return True
        # Unclaimed orders are visible to every partner of the branch
        return (
            isinstance(principal, PartnerPrincipal)
            and order.delivery_partner_id is None
            and order.branch_id == principal.branch_id
        )

    @staticmethod
    def get_order(order_id, principal) -> Order:
        order = OrderService._get_order(order_id)
        if not OrderService.can_view(principal, order):
            raise Unauthorized("You do not have access to this order.")
        return order

    @staticmethod
    def ensure_branch_access(principal, branch_id):
        if isinstance(principal, AdminPrincipal):
            return
        if isinstance(principal, PartnerPrincipal) and str(principal.branch_id) == str(branch_id):
            return
        raise Unauthorized("Only delivery partners of this branch can see its orders.")

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    @staticmethod
    def _apply_transition(order, target, principal, note="", table=TRANSITIONS, guard=None, **changes):
        expected = order.status
        ensure_transition(expected, target, table)

        changes.update(status=target, updated_at=timezone.now())
        updated = (
            Order.objects
            .filter(pk=order.pk, status=expected, **(guard or {}))
            .update(**changes)
        )
        if not updated:
            raise InvalidTransition(f"Order {order.order_code} is no longer '{expected}'.")

        OrderTimeline.objects.create(
            order_id=order.pk, status=target, note=note, created_by=principal.user
        )
        logger.info(
            f"Order {order.order_code}: {expected} -> {target}",
            extra={"order_id": str(order.pk), "order_code": order.order_code, "user_id": str(principal.user.id)},
        )

    @staticmethod
    def _archive_route(order):
        if order.route_data:
            RouteHistoryEntry.objects.create(
                order=order,
                route_type=order.route_data.get("route_type", ""),
                route_data=order.route_data,
            )

    @staticmethod
    def _final_location(order, location=None):
        stamp = _stamp()
        base = location or order.delivery_person_location or {}
        return {**base, "timestamp": stamp, "is_final_location": True, "delivered_at": stamp}

    @staticmethod
    def _quote(principal, branch_id, items, address_id=None, delivery_fee=None):
        OrderService._require_customer(principal)

        branch = Branch.objects.filter(pk=branch_id, is_active=True).first()
        if branch is None:
            raise NotFound("Branch not found")

        address = CustomerService.resolve_delivery_address(principal.customer, address_id)
        lines = load_cart_lines(items)
        pricing = price(lines, eligible=principal.customer.is_subscription)
        fee = delivery_fee_for(pricing.cart_total, delivery_fee)
        return branch, address, pricing, fee

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    @staticmethod
    def preview_order(principal, branch_id, items, address_id=None,
                      payment_mode=Order.PaymentMode.ONLINE, delivery_fee=None) -> dict:
        """
        Prices a cart exactly like create_order would, persisting nothing.
        """
        branch, address, pricing, fee = OrderService._quote(
            principal, branch_id, items, address_id, delivery_fee
        )
        return {
            "branch": str(branch.id),
            "delivery_location": address.as_location(),
            "items": [item.as_snapshot() for item in pricing.items],
            "total_price": pricing.cart_total,
            "delivery_fee": fee,
            "grand_total": pricing.cart_total + fee,
            "wholesale_eligible": pricing.wholesale_eligible,
            "payment_mode": payment_mode,
        }

    @staticmethod
    def create_order(principal, branch_id, items, address_id=None,
                     payment_mode=Order.PaymentMode.ONLINE, delivery_fee=None) -> Order:
        branch, address, pricing, fee = OrderService._quote(
            principal, branch_id, items, address_id, delivery_fee
        )

        extra = {}
        if payment_mode == Order.PaymentMode.COD:
            if not pricing.wholesale_eligible:
                raise BusinessValidationError(
                    "COD not eligible. Requires subscription and cart total "
                    f">= {settings.WHOLESALE_CART_THRESHOLD}"
                )
            extra = {
                "payment_status": Order.PaymentStatus.COMPLETED,
                "payment_details": {
                    "method": "COD",
                    "amount": str(pricing.cart_total + fee),
                    "currency": "INR",
                    "verified_at": _stamp(),
                },
            }

        with transaction.atomic():
            order = Order.objects.create(
                order_code=OrderCounter.next_code(),
                customer=principal.customer,
                branch=branch,
                total_price=pricing.cart_total,
                delivery_fee=fee,
                payment_mode=payment_mode,
                delivery_location=address.as_location(),
                pickup_location=branch.as_location(),
                **extra,
            )
            OrderItem.objects.bulk_create([
                OrderItem(order=order, **item.as_snapshot()) for item in pricing.items
            ])
            OrderTimeline.objects.create(
                order=order, status=OrderStatus.PENDING, note="Order placed", created_by=principal.user
            )

        logger.info(
            f"Order {order.order_code} created: {pricing.cart_total} + {fee} ({payment_mode})",
            extra={"order_id": str(order.id), "order_code": order.order_code},
        )
        OrderEvents().order_created(order)
        return order

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    @staticmethod
    def accept_order(order_id, principal) -> Order:
        """
        pending -> accepted. The partner is bound and stock reserved in the
        same transaction, guarded by ``status=pending AND delivery_partner IS NULL``
        so at most one of several racing partners ever reserves.
        """
        order = OrderService._get_order(order_id)
        if not isinstance(principal, PartnerPrincipal) or principal.branch_id != order.branch_id:
            raise Unauthorized("Only delivery partners of this branch can accept the order.")
        if order.delivery_partner_id is not None:
            raise InvalidTransition("Order already has a delivery partner.")

        with transaction.atomic():
            OrderService._apply_transition(
                order,
                OrderStatus.ACCEPTED,
                principal,
                note="Accepted by delivery partner",
                guard={"delivery_partner__isnull": True},
                delivery_partner=principal.partner,
                stock_reserved=True,
            )
            InventoryLedger.reserve(order.stock_lines(), reference=order.order_code, user=principal.user)

        order.refresh_from_db()
        OrderEvents().order_accepted(order)
        return order

    @staticmethod
    def pickup_order(order_id, principal) -> Order:
        order = OrderService._get_order(order_id)
        OrderService._require_bound_partner(principal, order)

        with transaction.atomic():
            OrderService._apply_transition(
                order,
                OrderStatus.IN_PROGRESS,
                principal,
                note="Picked up from branch",
                delivery_person_location={**order.pickup_location, "timestamp": _stamp()},
            )

        order.refresh_from_db()
        OrderEvents().order_picked_up(order)
        return order

    @staticmethod
    def mark_delivered(order_id, principal, location=None) -> Order:
        order = OrderService._get_order(order_id)
        OrderService._require_bound_partner(principal, order)

        with transaction.atomic():
            OrderService._apply_transition(
                order,
                OrderStatus.AWAITING_CONFIRMATION,
                principal,
                note="Marked delivered, awaiting customer confirmation",
                delivery_person_location=OrderService._final_location(order, location),
            )

        order.refresh_from_db()
        OrderEvents().order_delivered(order)
        return order

    @staticmethod
    def confirm_delivery(order_id, principal) -> Order:
        order = OrderService._get_order(order_id)
        if not OrderService._is_customer_of(principal, order):
            raise Unauthorized("Only the customer can confirm delivery.")

        with transaction.atomic():
            OrderService._apply_transition(
                order,
                OrderStatus.DELIVERED,
                principal,
                note="Delivery confirmed by customer",
                delivered_at=timezone.now(),
            )

        order.refresh_from_db()
        OrderEvents().delivery_confirmed(order)
        return order

    @staticmethod
    def cancel_order(order_id, principal, reason) -> Order:
        """
        Any non-terminal state -> cancelled. Reserved stock goes back exactly
        once: the update that cancels also clears ``stock_reserved``.
        """
        reason = (reason or "").strip()
        if not reason:
            raise BusinessValidationError("Cancellation reason is required.")

        order = OrderService._get_order(order_id)
        if not (
            isinstance(principal, AdminPrincipal)
            or OrderService._is_customer_of(principal, order)
            or OrderService._is_bound_partner(principal, order)
        ):
            raise Unauthorized("You cannot cancel this order.")

        with transaction.atomic():
            OrderService._apply_transition(
                order,
                OrderStatus.CANCELLED,
                principal,
                note=f"Cancelled: {reason}",
                guard={"stock_reserved": order.stock_reserved},
                stock_reserved=False,
                cancellation_reason=reason,
                cancelled_by=principal.role,
                cancelled_at=timezone.now(),
            )
            if order.stock_reserved:
                InventoryLedger.release(
                    order.stock_lines(), reference=f"CANCEL-{order.order_code}", user=principal.user
                )

        order.refresh_from_db()
        OrderEvents().order_cancelled(order)
        return order

    @staticmethod
    def update_status(order_id, principal, status, location=None) -> Order:
        """
        Direct status-set path for the partner app. Only the forward steps in
        STATUS_UPDATE_TRANSITIONS are accepted.
        """
        order = OrderService._get_order(order_id)
        OrderService._require_bound_partner(principal, order)

        changes = {}
        if status == OrderStatus.AWAITING_CONFIRMATION:
            changes["delivery_person_location"] = OrderService._final_location(order, location)
        elif location:
            changes["delivery_person_location"] = {**location, "timestamp": _stamp()}
        if status == OrderStatus.DELIVERED:
            changes["delivered_at"] = timezone.now()

        with transaction.atomic():
            OrderService._apply_transition(
                order,
                status,
                principal,
                note=f"Status set to {status}",
                table=STATUS_UPDATE_TRANSITIONS,
                **changes,
            )

        order.refresh_from_db()
        OrderEvents().status_updated(order, location_changed=bool(location))
        return order

    # ------------------------------------------------------------------
    # Location & routes
    # ------------------------------------------------------------------

    @staticmethod
    def update_location(order_id, principal, location, route_data=None):
        """
        Returns ``(order, eta_minutes)``. ETA is straight-line distance to the
        delivery address at the base speed.
        """
        order = OrderService._get_order(order_id)
        OrderService._require_bound_partner(principal, order)
        if order.is_terminal:
            raise InvalidTransition("Order is already closed.")

        stamp = _stamp()
        partner_location = {
            **location,
            "timestamp": stamp,
            "accuracy": location.get("accuracy") or 0,
            "speed": location.get("speed") or 0,
            "heading": location.get("heading") or 0,
        }
        changes = {"delivery_person_location": partner_location, "updated_at": timezone.now()}

        with transaction.atomic():
            if route_data is not None:
                OrderService._archive_route(order)
                changes["route_data"] = {
                    "route_type": route_data.get("route_type", "partner-to-customer"),
                    "coordinates": route_data.get("coordinates") or [],
                    "distance": route_data.get("distance") or 0,
                    "duration": route_data.get("duration") or 0,
                    "last_updated": stamp,
                }
            updated = (
                Order.objects
                .filter(pk=order.pk, delivery_partner_id=principal.id, status__in=ACTIVE_STATUSES)
                .update(**changes)
            )
            if not updated:
                raise InvalidTransition("Order is already closed.")

        eta = eta_minutes(haversine_km(location, order.delivery_location))
        order.refresh_from_db()
        OrderEvents().location_updated(order, partner_location, eta)
        return order, eta

    @staticmethod
    def plan_route(order_id, principal, origin=None, destination=None,
                   route_type="partner-to-customer", update_order=False, estimator=None) -> dict:
        order = OrderService.get_order(order_id, principal)
        if update_order:
            if not (isinstance(principal, AdminPrincipal) or OrderService._is_bound_partner(principal, order)):
                raise Unauthorized("Only the assigned delivery partner can change the route.")
            if order.is_terminal:
                raise InvalidTransition("Order is already closed.")

        if origin is None:
            on_the_way = order.status in (OrderStatus.IN_PROGRESS, OrderStatus.AWAITING_CONFIRMATION)
            origin = order.delivery_person_location if on_the_way else order.pickup_location
        destination = destination or order.delivery_location

        estimate = (estimator or RouteEstimator()).estimate(origin, destination)
        route = estimate.as_route_data(route_type, origin, destination)

        if update_order:
            with transaction.atomic():
                OrderService._archive_route(order)
                Order.objects.filter(pk=order.pk).update(route_data=route, updated_at=timezone.now())

        return {"route_data": route, "fallback": estimate.fallback, "order_updated": update_order}

    # ------------------------------------------------------------------
    # Administration
    # ------------------------------------------------------------------

    @staticmethod
    def delete_order(order_id, principal):
        """
        Hard delete. Not a state transition: releases reserved stock in any
        status and leaves rooms alone.
        """
        if not isinstance(principal, AdminPrincipal):
            raise Unauthorized("Only admins can delete orders.")
        order = OrderService._get_order(order_id)

        with transaction.atomic():
            released = Order.objects.filter(pk=order.pk, stock_reserved=True).update(stock_reserved=False)
            if released:
                InventoryLedger.release(
                    order.stock_lines(), reference=f"DELETE-{order.order_code}", user=principal.user
                )
            order.delete()

        logger.info(
            f"Order {order.order_code} deleted (stock released: {bool(released)})",
            extra={"order_code": order.order_code},
        )

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @staticmethod
    def orders_for(principal):
        qs = (
            Order.objects
            .select_related("customer", "branch", "delivery_partner")
            .prefetch_related("items")
        )
        if isinstance(principal, AdminPrincipal):
            return qs
        if isinstance(principal, CustomerPrincipal):
            return qs.filter(customer_id=principal.id)
        if isinstance(principal, PartnerPrincipal):
            return qs.filter(
                Q(delivery_partner_id=principal.id)
                | Q(branch_id=principal.branch_id, status=OrderStatus.PENDING, delivery_partner__isnull=True)
            )
        return qs.none()

    @staticmethod
    def customer_history(principal):
        OrderService._require_customer(principal)
        return OrderService.orders_for(principal).order_by("-created_at")

    @staticmethod
    def active_order(principal) -> Order:
        OrderService._require_customer(principal)
        order = (
            OrderService.orders_for(principal)
            .filter(status__in=ACTIVE_STATUSES)
            .order_by("-created_at")
            .first()
        )
        if order is None:
            raise NotFound("No active order found")
        return order

    @staticmethod
    def available_orders(principal, branch_id):
        OrderService.ensure_branch_access(principal, branch_id)
        return (
            Order.objects
            .filter(branch_id=branch_id, status=OrderStatus.PENDING, delivery_partner__isnull=True)
            .select_related("customer", "branch")
            .prefetch_related("items")
            .order_by("-created_at")
        )

    @staticmethod
    def partner_current_orders(principal):
        OrderService._require_partner(principal)
        return (
            OrderService.orders_for(principal)
            .filter(delivery_partner_id=principal.id, status__in=PARTNER_ACTIVE_STATUSES)
            .order_by("-created_at")
        )

    @staticmethod
    def partner_history(principal):
        OrderService._require_partner(principal)
        return (
            OrderService.orders_for(principal)
            .filter(delivery_partner_id=principal.id, status__in=TERMINAL_STATUSES)
            .order_by("-created_at")
        )

    @staticmethod
    def tracking_info(order_id, principal) -> dict:
        order = OrderService.get_order(order_id, principal)
        return {
            "order_id": str(order.id),
            "order_code": order.order_code,
            "status": order.status,
            "delivery_status": order.delivery_status,
            "location": order.delivery_person_location,
            "route_data": order.route_data,
        }

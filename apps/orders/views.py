from rest_framework import mixins, status, viewsets
from rest_framework.decorators import action
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from django_filters.rest_framework import DjangoFilterBackend

from apps.accounts.principals import resolve_principal
from apps.utils.throttle import BurstRateThrottle, LocationUpdateThrottle

from .filters import OrderFilter
from .serializers import (
    CancelOrderSerializer,
    CreateOrderSerializer,
    LocationUpdateSerializer,
    MarkDeliveredSerializer,
    OrderSerializer,
    RoutePlanSerializer,
    StatusUpdateSerializer,
)
from .services import OrderService


class OrderViewSet(mixins.ListModelMixin, viewsets.GenericViewSet):
    """
    Order lifecycle API. Business rules live in OrderService; views only
    validate input and resolve the acting principal.
    """
    serializer_class = OrderSerializer
    permission_classes = [IsAuthenticated]
    filter_backends = [DjangoFilterBackend]
    filterset_class = OrderFilter
    lookup_value_regex = "[0-9a-f-]+"

    @property
    def principal(self):
        if not hasattr(self, "_principal"):
            self._principal = resolve_principal(self.request.user)
        return self._principal

    def get_queryset(self):
        return OrderService.orders_for(self.principal)

    def _validated(self, serializer_class):
        serializer = serializer_class(data=self.request.data)
        serializer.is_valid(raise_exception=True)
        return serializer.validated_data

    def _respond(self, order, http_status=status.HTTP_200_OK):
        return Response(OrderSerializer(order).data, status=http_status)

    def _list(self, queryset):
        page = self.paginate_queryset(queryset)
        if page is not None:
            return self.get_paginated_response(OrderSerializer(page, many=True).data)
        return Response(OrderSerializer(queryset, many=True).data)

    # --- CRUD ---

    def retrieve(self, request, pk=None):
        return self._respond(OrderService.get_order(pk, self.principal))

    def create(self, request):
        data = self._validated(CreateOrderSerializer)
        order = OrderService.create_order(
            self.principal,
            branch_id=data["branch_id"],
            items=data["items"],
            address_id=data.get("address_id"),
            payment_mode=data["payment_mode"],
            delivery_fee=data.get("delivery_fee"),
        )
        return self._respond(order, status.HTTP_201_CREATED)

    def destroy(self, request, pk=None):
        OrderService.delete_order(pk, self.principal)
        return Response(status=status.HTTP_204_NO_CONTENT)

    @action(detail=False, methods=["post"], throttle_classes=[BurstRateThrottle])
    def preview(self, request):
        data = self._validated(CreateOrderSerializer)
        quote = OrderService.preview_order(
            self.principal,
            branch_id=data["branch_id"],
            items=data["items"],
            address_id=data.get("address_id"),
            payment_mode=data["payment_mode"],
            delivery_fee=data.get("delivery_fee"),
        )
        return Response({"order": quote, "preview": True})

    # --- Customer queries ---

    @action(detail=False, methods=["get"])
    def active(self, request):
        return self._respond(OrderService.active_order(self.principal))

    @action(detail=False, methods=["get"])
    def history(self, request):
        return self._list(OrderService.customer_history(self.principal))

    # --- Partner queries ---

    @action(detail=False, methods=["get"], url_path=r"available/(?P<branch_id>[0-9a-f-]+)")
    def available(self, request, branch_id=None):
        return self._list(OrderService.available_orders(self.principal, branch_id))

    @action(detail=False, methods=["get"], url_path="partner/current")
    def partner_current(self, request):
        return self._list(OrderService.partner_current_orders(self.principal))

    @action(detail=False, methods=["get"], url_path="partner/history")
    def partner_history(self, request):
        return self._list(OrderService.partner_history(self.principal))

    # --- Transitions ---

    @action(detail=True, methods=["post"])
    def accept(self, request, pk=None):
        return self._respond(OrderService.accept_order(pk, self.principal))

    @action(detail=True, methods=["post"])
    def pickup(self, request, pk=None):
        return self._respond(OrderService.pickup_order(pk, self.principal))

    @action(detail=True, methods=["post"])
    def deliver(self, request, pk=None):
        data = self._validated(MarkDeliveredSerializer)
        return self._respond(OrderService.mark_delivered(pk, self.principal, data.get("location")))

    @action(detail=True, methods=["post"])
    def confirm(self, request, pk=None):
        return self._respond(OrderService.confirm_delivery(pk, self.principal))

    @action(detail=True, methods=["post"])
    def cancel(self, request, pk=None):
        data = self._validated(CancelOrderSerializer)
        return self._respond(OrderService.cancel_order(pk, self.principal, data["reason"]))

    @action(detail=True, methods=["patch"], url_path="status")
    def update_status(self, request, pk=None):
        data = self._validated(StatusUpdateSerializer)
        order = OrderService.update_status(pk, self.principal, data["status"], data.get("location"))
        return self._respond(order)

    # --- Tracking ---

    @action(detail=True, methods=["post"], throttle_classes=[LocationUpdateThrottle])
    def location(self, request, pk=None):
        data = self._validated(LocationUpdateSerializer)
        order, eta = OrderService.update_location(
            pk, self.principal, data["location"], data.get("route_data")
        )
        return Response({
            "order": OrderSerializer(order).data,
            "eta": eta,
            "route_data": order.route_data,
        })

    @action(detail=True, methods=["post"])
    def route(self, request, pk=None):
        data = self._validated(RoutePlanSerializer)
        result = OrderService.plan_route(
            pk,
            self.principal,
            origin=data.get("origin"),
            destination=data.get("destination"),
            route_type=data["route_type"],
            update_order=data["update_order"],
        )
        return Response(result)

    @action(detail=True, methods=["get"])
    def tracking(self, request, pk=None):
        return Response(OrderService.tracking_info(pk, self.principal))

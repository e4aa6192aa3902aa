from rest_framework import serializers

from apps.utils.validators import validate_coordinates

from .models import Order, OrderItem
from .state_machine import OrderStatus


class OrderItemSerializer(serializers.ModelSerializer):
    class Meta:
        model = OrderItem
        fields = [
            'product', 'name', 'brand', 'quantity_value', 'quantity_unit',
            'pricing_mode', 'units_bought', 'bundles_bought', 'unit_price', 'total_price',
            'base_price', 'discount_price', 'subscription_price', 'unit_per_subscription',
        ]
        read_only_fields = fields


class OrderSerializer(serializers.ModelSerializer):
    items = OrderItemSerializer(many=True, read_only=True)
    delivery_status = serializers.CharField(read_only=True)
    grand_total = serializers.DecimalField(max_digits=12, decimal_places=2, read_only=True)

    class Meta:
        model = Order
        fields = [
            'id', 'order_code', 'status', 'delivery_status',
            'customer', 'branch', 'delivery_partner',
            'items', 'total_price', 'delivery_fee', 'grand_total',
            'payment_mode', 'payment_status', 'payment_details',
            'delivery_location', 'pickup_location', 'delivery_person_location',
            'route_data', 'cancellation_reason', 'cancelled_by', 'cancelled_at',
            'delivered_at', 'created_at', 'updated_at',
        ]
        read_only_fields = fields


class CartItemInputSerializer(serializers.Serializer):
    product_id = serializers.UUIDField()
    quantity = serializers.IntegerField(min_value=1)


class CreateOrderSerializer(serializers.Serializer):
    branch_id = serializers.UUIDField()
    address_id = serializers.UUIDField(required=False, allow_null=True)
    items = CartItemInputSerializer(many=True, allow_empty=False)
    payment_mode = serializers.ChoiceField(choices=Order.PaymentMode.choices, default=Order.PaymentMode.ONLINE)
    delivery_fee = serializers.DecimalField(
        max_digits=10, decimal_places=2, min_value=0, required=False, allow_null=True
    )


class LocationSerializer(serializers.Serializer):
    latitude = serializers.FloatField()
    longitude = serializers.FloatField()
    address = serializers.CharField(required=False, allow_blank=True)
    accuracy = serializers.FloatField(required=False)
    speed = serializers.FloatField(required=False)
    heading = serializers.FloatField(required=False)

    def validate(self, attrs):
        return validate_coordinates(attrs)


class MarkDeliveredSerializer(serializers.Serializer):
    location = LocationSerializer(required=False)


class CancelOrderSerializer(serializers.Serializer):
    reason = serializers.CharField(max_length=500)


class StatusUpdateSerializer(serializers.Serializer):
    status = serializers.ChoiceField(choices=OrderStatus.choices)
    location = LocationSerializer(required=False)


class RouteDataInputSerializer(serializers.Serializer):
    route_type = serializers.CharField(required=False, default="partner-to-customer")
    coordinates = serializers.ListField(child=serializers.DictField(), required=False, default=list)
    distance = serializers.JSONField(required=False, default=0)
    duration = serializers.JSONField(required=False, default=0)


class LocationUpdateSerializer(serializers.Serializer):
    location = LocationSerializer()
    route_data = RouteDataInputSerializer(required=False)


class RoutePlanSerializer(serializers.Serializer):
    origin = LocationSerializer(required=False)
    destination = LocationSerializer(required=False)
    route_type = serializers.CharField(required=False, default="partner-to-customer")
    update_order = serializers.BooleanField(default=False)

from rest_framework import serializers


class ConfirmPaymentSerializer(serializers.Serializer):
    order_id = serializers.UUIDField()
    gateway_order_id = serializers.CharField(max_length=100)
    payment_id = serializers.CharField(max_length=100)
    signature = serializers.CharField(max_length=255)
    amount = serializers.DecimalField(max_digits=12, decimal_places=2, required=False)

from rest_framework import serializers

from .models import StockMovementLog


class StockAdjustmentSerializer(serializers.Serializer):
    product_id = serializers.UUIDField()
    delta_quantity = serializers.IntegerField()
    reason = serializers.CharField(max_length=100)

    def validate_delta_quantity(self, value):
        if value == 0:
            raise serializers.ValidationError("Change cannot be zero.")
        return value


class StockMovementLogSerializer(serializers.ModelSerializer):
    product_id = serializers.UUIDField(read_only=True)

    class Meta:
        model = StockMovementLog
        fields = ["id", "product_id", "movement_type", "quantity_change", "balance_after", "reference", "created_at"]

from rest_framework import status, views
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from apps.accounts.principals import AdminPrincipal, resolve_principal
from apps.utils.exceptions import Unauthorized

from .serializers import StockAdjustmentSerializer, StockMovementLogSerializer
from .services import InventoryLedger


class AdjustStockAPIView(views.APIView):
    """
    Manual restock or write-off. Admins only; the change is recorded as an
    ADJUST movement.
    """
    permission_classes = [IsAuthenticated]

    def post(self, request):
        principal = resolve_principal(request.user)
        if not isinstance(principal, AdminPrincipal):
            raise Unauthorized("Only admins can adjust stock.")

        serializer = StockAdjustmentSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        d = serializer.validated_data

        log = InventoryLedger.adjust(
            d["product_id"], d["delta_quantity"], reason=d["reason"], user=request.user
        )
        return Response(StockMovementLogSerializer(log).data, status=status.HTTP_201_CREATED)

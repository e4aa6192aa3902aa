from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from apps.accounts.principals import resolve_principal
from apps.orders.serializers import OrderSerializer
from apps.utils.throttle import BurstRateThrottle

from .serializers import ConfirmPaymentSerializer
from .services import PaymentService


class PaymentConfirmView(APIView):
    """
    Client-side confirmation after the gateway checkout completes.
    """
    permission_classes = [IsAuthenticated]
    throttle_classes = [BurstRateThrottle]

    def post(self, request):
        serializer = ConfirmPaymentSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        order = PaymentService.confirm_payment(
            order_id=data["order_id"],
            gateway_order_id=data["gateway_order_id"],
            payment_id=data["payment_id"],
            signature=data["signature"],
            amount=data.get("amount"),
            principal=resolve_principal(request.user),
        )
        return Response(OrderSerializer(order).data)

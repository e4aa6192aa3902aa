from rest_framework.views import APIView
from rest_framework.response import Response
from rest_framework.permissions import AllowAny
from django.conf import settings


class GlobalConfigView(APIView):
    """
    Pricing constants the client apps display before checkout.
    """
    permission_classes = [AllowAny]

    def get(self, request):
        return Response({
            "wholesale_cart_threshold": settings.WHOLESALE_CART_THRESHOLD,
            "delivery_fee": settings.DELIVERY_FEE,
            "free_delivery_threshold": settings.FREE_DELIVERY_THRESHOLD,
        })

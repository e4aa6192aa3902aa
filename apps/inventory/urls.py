from django.urls import path

from .views import AdjustStockAPIView

urlpatterns = [
    path("adjust/", AdjustStockAPIView.as_view(), name="inventory-adjust"),
]

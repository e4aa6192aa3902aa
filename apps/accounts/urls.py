from django.urls import path
from rest_framework_simplejwt.views import TokenRefreshView
from .views import CreateWsTicketView

urlpatterns = [
    path('token/refresh/', TokenRefreshView.as_view(), name='token-refresh'),
    path('ws/ticket/', CreateWsTicketView.as_view(), name='ws-ticket'),
]

from django.urls import path

from .views import PaymentConfirmView

urlpatterns = [
    path('confirm/', PaymentConfirmView.as_view(), name='payment-confirm'),
]

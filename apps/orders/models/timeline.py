import uuid
from django.db import models
from django.conf import settings

from ..state_machine import OrderStatus
from .order import Order

__all__ = ["OrderTimeline"]


class OrderTimeline(models.Model):
    """
    Append-only audit trail: one row per applied transition.
    """
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    order = models.ForeignKey(Order, related_name="timeline", on_delete=models.CASCADE)

    # Status the order moved into
    status = models.CharField(max_length=20, choices=OrderStatus.choices)
    timestamp = models.DateTimeField(auto_now_add=True)
    note = models.TextField(blank=True)

    created_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        null=True,
        blank=True,
        on_delete=models.SET_NULL,
        related_name="+",
    )

    class Meta:
        ordering = ["-timestamp"]
        indexes = [models.Index(fields=["order", "timestamp"])]

    def __str__(self):
        return f"{self.order.order_code} -> {self.status}"

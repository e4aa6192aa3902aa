import uuid
from django.db import models

from .order import Order

__all__ = ["RouteHistoryEntry"]


class RouteHistoryEntry(models.Model):
    """
    Append-only archive of routes superseded on an order.
    """
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    order = models.ForeignKey(Order, related_name="route_history", on_delete=models.CASCADE)

    route_type = models.CharField(max_length=40, blank=True)
    route_data = models.JSONField()
    archived_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["archived_at"]
        verbose_name_plural = "Route history"

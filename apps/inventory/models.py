from django.db import models
from django.conf import settings
from apps.utils.models import TimestampedModel


class StockMovementLog(TimestampedModel):
    """
    Immutable Ledger of all stock changes.
    """
    class MovementType(models.TextChoices):
        RESERVATION = "RESERVE", "Reservation (Order Accepted)"
        RELEASE = "RELEASE", "Release (Cancellation / Deletion)"
        ADJUSTMENT = "ADJUST", "Manual Adjustment"

    product = models.ForeignKey(
        'catalog.Product',
        on_delete=models.CASCADE,
        related_name='stock_logs'
    )

    quantity_change = models.IntegerField(help_text="Delta value (+/-)")
    movement_type = models.CharField(max_length=20, choices=MovementType.choices)

    # Traceability
    reference = models.CharField(max_length=100, db_index=True, help_text="Order code, adjustment reason, etc.")
    balance_after = models.IntegerField(help_text="Snapshot of stock after the movement")

    created_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        null=True,
        blank=True,
        on_delete=models.SET_NULL
    )

    class Meta:
        ordering = ['-created_at']

    def __str__(self):
        return f"{self.movement_type} {self.quantity_change:+d} -> {self.balance_after} ({self.reference})"

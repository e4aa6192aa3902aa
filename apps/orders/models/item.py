from django.db import models

from apps.utils.exceptions import BusinessLogicException

from .order import Order

__all__ = ["OrderItem"]


class OrderItem(models.Model):
    """
    Frozen copy of the product and its pricing at order creation.
    Rows are write-once; product edits never reach historical orders.
    """
    class PricingMode(models.TextChoices):
        RETAIL = "retail", "Retail"
        WHOLESALE = "wholesale", "Wholesale"

    order = models.ForeignKey(Order, on_delete=models.CASCADE, related_name='items')
    product = models.ForeignKey(
        'catalog.Product', on_delete=models.SET_NULL, null=True, blank=True, related_name='+'
    )

    # Snapshot fields (Critical for audit)
    name = models.CharField(max_length=255)
    brand = models.CharField(max_length=255, blank=True)
    quantity_value = models.CharField(max_length=50, blank=True)
    quantity_unit = models.CharField(max_length=10, blank=True)

    pricing_mode = models.CharField(max_length=10, choices=PricingMode.choices)
    units_bought = models.PositiveIntegerField()
    bundles_bought = models.PositiveIntegerField(default=0)
    unit_price = models.DecimalField(max_digits=10, decimal_places=2)
    total_price = models.DecimalField(max_digits=12, decimal_places=2)

    base_price = models.DecimalField(max_digits=10, decimal_places=2)
    discount_price = models.DecimalField(max_digits=10, decimal_places=2, null=True, blank=True)
    subscription_price = models.DecimalField(max_digits=10, decimal_places=2, null=True, blank=True)
    unit_per_subscription = models.PositiveIntegerField(default=1)

    class Meta:
        ordering = ['id']

    def __str__(self):
        return f"{self.units_bought}x {self.name}"

    def save(self, *args, **kwargs):
        if not self._state.adding:
            raise BusinessLogicException("Order items cannot be modified once placed.")
        super().save(*args, **kwargs)

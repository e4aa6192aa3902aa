# apps/catalog/models.py
import uuid
from django.db import models


class Product(models.Model):
    """
    Sellable item with tiered pricing.

    NOTE:
    - `stock` is written ONLY by apps.inventory.services.InventoryLedger.
    - Orders snapshot the pricing fields at creation; edits here never
      touch historical orders.
    """

    class QuantityUnit(models.TextChoices):
        LITRE = "L", "Litre"
        ML = "ml", "Millilitre"
        DOZEN = "Dozen", "Dozen"
        PIECE = "Piece", "Piece"
        KG = "Kg", "Kilogram"
        GRAM = "g", "Gram"
        PACK = "Pack", "Pack"
        BOX = "Box", "Box"
        PCS = "pcs", "Pieces"
        SET = "Set", "Set"

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    name = models.CharField(max_length=255, unique=True)
    brand = models.CharField(max_length=255, blank=True)
    quantity_value = models.CharField(
        max_length=50,
        help_text="Quantity with unit, e.g. '1 Litre', '500 ml'",
    )
    quantity_unit = models.CharField(
        max_length=10,
        choices=QuantityUnit.choices,
        default=QuantityUnit.PIECE,
    )

    # Pricing tiers
    base_price = models.DecimalField(
        max_digits=10,
        decimal_places=2,
        help_text="Base retail price",
    )
    discount_price = models.DecimalField(
        max_digits=10,
        decimal_places=2,
        null=True,
        blank=True,
        help_text="Optional retail discount price",
    )
    subscription_price = models.DecimalField(
        max_digits=10,
        decimal_places=2,
        null=True,
        blank=True,
        help_text="Wholesale bundle price for subscribed customers",
    )
    unit_per_subscription = models.PositiveIntegerField(
        default=1,
        help_text="Number of retail units per wholesale bundle",
    )

    stock = models.IntegerField(default=0)
    low_stock_threshold = models.IntegerField(default=10)

    is_active = models.BooleanField(default=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["name"]
        indexes = [
            models.Index(fields=["is_active"]),
            models.Index(fields=["brand"]),
        ]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(stock__gte=0),
                name="product_stock_non_negative",
            ),
        ]

    def __str__(self):
        return f"{self.name} ({self.quantity_value})"

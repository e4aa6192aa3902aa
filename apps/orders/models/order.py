from django.db import models, transaction
from django.db.models import F

from apps.utils.models import TimestampedModel

from ..state_machine import OrderStatus, delivery_status_for, is_terminal

__all__ = ["Order", "OrderCounter", "OrderStatus"]


def default_partner_location():
    return {"latitude": 0.0, "longitude": 0.0, "address": "Not assigned"}


class OrderCounter(models.Model):
    """
    Single-row sequence behind the human-readable order code.
    """
    name = models.CharField(primary_key=True, max_length=32)
    value = models.PositiveBigIntegerField(default=0)

    @classmethod
    @transaction.atomic
    def next_code(cls, name="orders", prefix="ORD"):
        cls.objects.get_or_create(name=name)
        cls.objects.filter(name=name).update(value=F("value") + 1)
        value = cls.objects.get(name=name).value
        return f"{prefix}-{value:05d}"


class Order(TimestampedModel):
    class PaymentMode(models.TextChoices):
        ONLINE = "online", "Online"
        COD = "COD", "Cash on Delivery"

    class PaymentStatus(models.TextChoices):
        PENDING = "pending", "Pending"
        VERIFIED = "verified", "Verified"
        FAILED = "failed", "Failed"
        REFUNDED = "refunded", "Refunded"
        COMPLETED = "completed", "Completed"

    Status = OrderStatus

    order_code = models.CharField(max_length=20, unique=True, editable=False)

    customer = models.ForeignKey(
        'customers.CustomerProfile', on_delete=models.PROTECT, related_name='orders'
    )
    branch = models.ForeignKey(
        'branches.Branch', on_delete=models.PROTECT, related_name='orders'
    )
    delivery_partner = models.ForeignKey(
        'partners.DeliveryPartner',
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='orders',
    )

    status = models.CharField(
        max_length=20, choices=OrderStatus.choices, default=OrderStatus.PENDING, db_index=True
    )

    # Frozen at creation
    total_price = models.DecimalField(max_digits=12, decimal_places=2)
    delivery_fee = models.DecimalField(max_digits=10, decimal_places=2, default=0)

    payment_mode = models.CharField(
        max_length=10, choices=PaymentMode.choices, default=PaymentMode.ONLINE
    )
    payment_status = models.CharField(
        max_length=20, choices=PaymentStatus.choices, default=PaymentStatus.PENDING
    )
    payment_details = models.JSONField(default=dict, blank=True)

    # Snapshots {latitude, longitude, address}
    delivery_location = models.JSONField()
    pickup_location = models.JSONField()
    delivery_person_location = models.JSONField(default=default_partner_location)

    route_data = models.JSONField(null=True, blank=True)

    # Set by the accept update, cleared by the release update
    stock_reserved = models.BooleanField(default=False)

    cancellation_reason = models.TextField(blank=True)
    cancelled_by = models.CharField(max_length=20, blank=True)
    cancelled_at = models.DateTimeField(null=True, blank=True)
    delivered_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['branch', 'status']),
            models.Index(fields=['customer', 'status']),
            models.Index(fields=['delivery_partner', 'status']),
        ]

    def __str__(self):
        return f"{self.order_code} [{self.status}]"

    @property
    def delivery_status(self):
        return delivery_status_for(self.status)

    @property
    def is_terminal(self):
        return is_terminal(self.status)

    @property
    def grand_total(self):
        return self.total_price + self.delivery_fee

    def stock_lines(self):
        return [
            {"product_id": item.product_id, "quantity": item.units_bought}
            for item in self.items.all()
            if item.product_id is not None
        ]

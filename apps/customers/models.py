# apps/customers/models.py

import uuid
from django.db import models
from django.conf import settings


class CustomerProfile(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    user = models.OneToOneField(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="customer_profile",
    )
    # Subscribed customers are evaluated for wholesale bundle pricing
    is_subscription = models.BooleanField(default=False)
    created_at = models.DateTimeField(auto_now_add=True)

    def __str__(self):
        return f"CustomerProfile({self.user.phone})"


class Address(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    customer = models.ForeignKey(
        CustomerProfile,
        on_delete=models.CASCADE,
        related_name="addresses",
    )

    address_line1 = models.CharField(max_length=255)
    address_line2 = models.CharField(max_length=255, blank=True)
    city = models.CharField(max_length=100, blank=True)
    state = models.CharField(max_length=100, blank=True)
    zip_code = models.CharField(max_length=12, blank=True)

    latitude = models.FloatField(null=True, blank=True)
    longitude = models.FloatField(null=True, blank=True)

    is_default = models.BooleanField(default=False)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-is_default", "-created_at"]

    def __str__(self):
        return f"{self.address_line1} - {self.customer.user.phone}"

    @property
    def full_address(self):
        parts = [self.address_line1, self.address_line2, self.city, self.state, self.zip_code]
        return ", ".join(p for p in parts if p)

    def as_location(self):
        """
        Snapshot-safe representation for Orders
        """
        return {
            "latitude": self.latitude if self.latitude is not None else 0.0,
            "longitude": self.longitude if self.longitude is not None else 0.0,
            "address": self.full_address,
        }

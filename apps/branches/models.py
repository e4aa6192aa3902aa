import uuid
from django.db import models


class Branch(models.Model):
    """
    A dispatch point. Orders are picked up here and delivery partners idle here.
    """
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    name = models.CharField(max_length=100)
    address = models.TextField(blank=True)

    latitude = models.FloatField()
    longitude = models.FloatField()

    is_active = models.BooleanField(default=True)

    class Meta:
        verbose_name_plural = "Branches"

    def __str__(self):
        return self.name

    def as_location(self):
        return {
            "latitude": self.latitude,
            "longitude": self.longitude,
            "address": self.address or "Not provided",
        }

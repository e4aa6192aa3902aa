from django.db import models
from django.conf import settings
from django.utils.translation import gettext_lazy as _
from apps.utils.models import TimestampedModel


class PartnerStatus(models.TextChoices):
    OFFLINE = "OFFLINE", _("Offline")
    ONLINE = "ONLINE", _("Online")
    BUSY = "BUSY", _("Busy (On Order)")


class DeliveryPartner(TimestampedModel):
    user = models.OneToOneField(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='delivery_partner'
    )
    # Partners only see and accept orders of their own branch
    branch = models.ForeignKey(
        'branches.Branch',
        on_delete=models.PROTECT,
        related_name='delivery_partners'
    )

    current_status = models.CharField(
        max_length=20,
        choices=PartnerStatus.choices,
        default=PartnerStatus.OFFLINE,
        db_index=True
    )

    class Meta:
        verbose_name = "Delivery Partner"
        verbose_name_plural = "Delivery Partners"

    def __str__(self):
        return f"{self.user.phone} [{self.current_status}]"

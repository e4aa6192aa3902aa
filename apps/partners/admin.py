from django.contrib import admin
from .models import DeliveryPartner


@admin.register(DeliveryPartner)
class DeliveryPartnerAdmin(admin.ModelAdmin):
    list_display = ('user_phone', 'branch', 'current_status', 'updated_at')
    list_filter = ('current_status', 'branch')
    search_fields = ('user__phone', 'user__full_name')

    def user_phone(self, obj):
        return obj.user.phone

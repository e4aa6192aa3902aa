from django.contrib import admin
from .models import CustomerProfile, Address


class AddressInline(admin.StackedInline):
    model = Address
    extra = 0


@admin.register(CustomerProfile)
class CustomerProfileAdmin(admin.ModelAdmin):
    list_display = ('user_phone', 'is_subscription', 'created_at')
    list_filter = ('is_subscription',)
    search_fields = ('user__phone', 'user__full_name')
    inlines = [AddressInline]

    def user_phone(self, obj):
        return obj.user.phone
    user_phone.short_description = 'Phone'

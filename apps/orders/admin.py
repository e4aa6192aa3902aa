import json
from django.contrib import admin
from django.utils.safestring import mark_safe
from .models import Order, OrderItem, OrderTimeline, RouteHistoryEntry


def _pretty(value):
    if not value:
        return "-"
    return mark_safe(f"<pre>{json.dumps(value, indent=2)}</pre>")


class OrderItemInline(admin.TabularInline):
    model = OrderItem
    extra = 0
    readonly_fields = (
        'product', 'name', 'pricing_mode', 'units_bought', 'bundles_bought', 'unit_price', 'total_price'
    )
    fields = readonly_fields

    def has_add_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False


class OrderTimelineInline(admin.TabularInline):
    model = OrderTimeline
    extra = 0
    readonly_fields = ('timestamp', 'status', 'note', 'created_by')

    def has_add_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False


@admin.register(Order)
class OrderAdmin(admin.ModelAdmin):
    """
    Read-only: every state change must go through OrderService.
    """
    list_display = (
        'order_code',
        'customer',
        'branch',
        'status',
        'delivery_status',
        'payment_status',
        'total_price',
        'created_at'
    )
    list_filter = ('status', 'payment_status', 'payment_mode', 'branch', 'created_at')
    search_fields = ('order_code', 'id', 'customer__user__phone')

    inlines = [OrderItemInline, OrderTimelineInline]

    readonly_fields = (
        'id',
        'order_code',
        'customer',
        'branch',
        'delivery_partner',
        'status',
        'total_price',
        'delivery_fee',
        'payment_mode',
        'payment_status',
        'stock_reserved',
        'formatted_payment_details',
        'formatted_delivery_location',
        'formatted_route_data',
        'cancellation_reason',
        'cancelled_by',
        'created_at',
        'updated_at',
        'cancelled_at',
        'delivered_at'
    )
    exclude = ('payment_details', 'delivery_location', 'pickup_location',
               'delivery_person_location', 'route_data')

    def has_add_permission(self, request):
        return False

    def formatted_payment_details(self, obj):
        return _pretty(obj.payment_details)

    formatted_payment_details.short_description = "Payment Details"

    def formatted_delivery_location(self, obj):
        return _pretty(obj.delivery_location)

    formatted_delivery_location.short_description = "Delivery Location Snapshot"

    def formatted_route_data(self, obj):
        return _pretty(obj.route_data)

    formatted_route_data.short_description = "Current Route"


@admin.register(RouteHistoryEntry)
class RouteHistoryEntryAdmin(admin.ModelAdmin):
    list_display = ('order', 'route_type', 'archived_at')
    search_fields = ('order__order_code',)
    readonly_fields = ('order', 'route_type', 'route_data', 'archived_at')

    def has_add_permission(self, request):
        return False

# apps/catalog/admin.py
from django.contrib import admin
from .models import Product


@admin.register(Product)
class ProductAdmin(admin.ModelAdmin):
    list_display = (
        "name",
        "brand",
        "quantity_value",
        "base_price",
        "discount_price",
        "subscription_price",
        "unit_per_subscription",
        "stock",
        "is_active",
    )
    list_filter = ("is_active", "quantity_unit")
    search_fields = ("name", "brand")
    # Stock only moves through the inventory ledger (POST /api/v1/inventory/adjust/)
    readonly_fields = ("stock",)

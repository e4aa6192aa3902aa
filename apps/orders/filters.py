import django_filters

from .models import Order


class CharInFilter(django_filters.BaseInFilter, django_filters.CharFilter):
    pass


class OrderFilter(django_filters.FilterSet):
    """
    ?status=pending,accepted&branch=<uuid>&customer=<uuid>&delivery_partner=<uuid>
    """
    status = CharInFilter(field_name="status", lookup_expr="in")
    customer = django_filters.UUIDFilter(field_name="customer_id")
    branch = django_filters.UUIDFilter(field_name="branch_id")
    delivery_partner = django_filters.UUIDFilter(field_name="delivery_partner_id")
    created_after = django_filters.IsoDateTimeFilter(field_name="created_at", lookup_expr="gte")
    created_before = django_filters.IsoDateTimeFilter(field_name="created_at", lookup_expr="lte")

    class Meta:
        model = Order
        fields = ["status", "customer", "branch", "delivery_partner", "payment_status"]

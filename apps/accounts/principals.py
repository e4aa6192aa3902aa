"""
Turns an authenticated ``User`` into the acting principal of a request.

Each role resolves to its own variant carrying the profile it acts through,
so services check ownership with ``isinstance`` instead of re-reading
``user.role`` and re-querying profiles.
"""
from dataclasses import dataclass

from apps.customers.models import CustomerProfile
from apps.partners.models import DeliveryPartner
from apps.utils.exceptions import NotFound, Unauthorized

from .models import Role, User


@dataclass(frozen=True)
class CustomerPrincipal:
    user: User
    customer: CustomerProfile

    role = Role.CUSTOMER

    @property
    def id(self):
        return self.customer.id


@dataclass(frozen=True)
class PartnerPrincipal:
    user: User
    partner: DeliveryPartner

    role = Role.DELIVERY_PARTNER

    @property
    def id(self):
        return self.partner.id

    @property
    def branch_id(self):
        return self.partner.branch_id


@dataclass(frozen=True)
class AdminPrincipal:
    user: User

    role = Role.ADMIN

    @property
    def id(self):
        return self.user.id


def _resolve_customer(user):
    try:
        return CustomerPrincipal(user=user, customer=user.customer_profile)
    except CustomerProfile.DoesNotExist:
        raise NotFound("Customer not found")


def _resolve_partner(user):
    try:
        partner = DeliveryPartner.objects.select_related("branch").get(user=user)
    except DeliveryPartner.DoesNotExist:
        raise NotFound("Delivery Partner not found")
    return PartnerPrincipal(user=user, partner=partner)


def _resolve_admin(user):
    return AdminPrincipal(user=user)


_RESOLVERS = {
    Role.CUSTOMER: _resolve_customer,
    Role.DELIVERY_PARTNER: _resolve_partner,
    Role.ADMIN: _resolve_admin,
}


def resolve_principal(user):
    if user is None or not user.is_authenticated:
        raise Unauthorized("Authentication required.")

    resolver = _RESOLVERS.get(user.role)
    if resolver is None:
        raise Unauthorized(f"Unsupported role: {user.role}")
    return resolver(user)

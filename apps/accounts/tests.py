from django.contrib.auth.models import AnonymousUser
from django.test import TestCase
from rest_framework import status
from rest_framework.test import APITestCase

from apps.branches.models import Branch
from apps.customers.models import CustomerProfile
from apps.partners.models import DeliveryPartner
from apps.utils.exceptions import NotFound, Unauthorized
from apps.utils.kvstore import InMemoryKeyValueStore, get_key_value_store

from .middleware import TicketAuthMiddleware, ws_ticket_key
from .models import Role, User
from .principals import AdminPrincipal, CustomerPrincipal, PartnerPrincipal, resolve_principal


class PrincipalResolutionTests(TestCase):

    def test_customer(self):
        user = User.objects.create_user(phone="+911000000001", role=Role.CUSTOMER)
        profile = CustomerProfile.objects.create(user=user)

        principal = resolve_principal(user)

        self.assertIsInstance(principal, CustomerPrincipal)
        self.assertEqual(principal.id, profile.id)
        self.assertEqual(principal.role, Role.CUSTOMER)

    def test_partner(self):
        branch = Branch.objects.create(name="HSR", latitude=12.91, longitude=77.64)
        user = User.objects.create_user(phone="+911000000002", role=Role.DELIVERY_PARTNER)
        partner = DeliveryPartner.objects.create(user=user, branch=branch)

        principal = resolve_principal(user)

        self.assertIsInstance(principal, PartnerPrincipal)
        self.assertEqual(principal.id, partner.id)
        self.assertEqual(principal.branch_id, branch.id)

    def test_admin(self):
        user = User.objects.create_superuser(phone="+911000000003", password="admin-pass")
        self.assertIsInstance(resolve_principal(user), AdminPrincipal)

    def test_missing_profile(self):
        user = User.objects.create_user(phone="+911000000004", role=Role.CUSTOMER)
        with self.assertRaises(NotFound):
            resolve_principal(user)

        partner_user = User.objects.create_user(phone="+911000000005", role=Role.DELIVERY_PARTNER)
        with self.assertRaises(NotFound):
            resolve_principal(partner_user)

    def test_anonymous(self):
        with self.assertRaises(Unauthorized):
            resolve_principal(AnonymousUser())


class WsTicketTests(APITestCase):

    def test_ticket_issued(self):
        user = User.objects.create_user(phone="+912000000001")
        self.client.force_authenticate(user)

        response = self.client.post("/api/v1/accounts/ws/ticket/")

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        stored = get_key_value_store().get(ws_ticket_key(response.data["ticket"]))
        self.assertEqual(stored, str(user.id))

    def test_ticket_requires_auth(self):
        response = self.client.post("/api/v1/accounts/ws/ticket/")
        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)


class TicketAuthMiddlewareTests(TestCase):

    def setUp(self):
        self.store = InMemoryKeyValueStore()
        self.scopes = []

        async def inner(scope, receive, send):
            self.scopes.append(scope)

        self.middleware = TicketAuthMiddleware(inner, store=self.store)

    async def test_ticket_is_single_use(self):
        user = await User.objects.acreate(phone="+913000000001")
        self.store.set(ws_ticket_key("abc"), str(user.id), ttl=30)
        scope = {"type": "websocket", "query_string": b"ticket=abc"}

        await self.middleware(scope, None, None)
        await self.middleware(scope, None, None)

        self.assertEqual(self.scopes[0]["user"].pk, user.pk)
        self.assertTrue(self.scopes[1]["user"].is_anonymous)

    async def test_no_ticket(self):
        await self.middleware({"type": "websocket", "query_string": b""}, None, None)
        self.assertTrue(self.scopes[0]["user"].is_anonymous)

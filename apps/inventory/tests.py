from decimal import Decimal
from unittest.mock import patch

from django.test import TestCase
from django.urls import reverse
from rest_framework import status
from rest_framework.test import APITestCase

from apps.accounts.models import Role, User
from apps.catalog.models import Product
from apps.customers.models import CustomerProfile
from apps.inventory.models import StockMovementLog
from apps.inventory.services import InventoryLedger
from apps.inventory.tasks import notify_low_stock
from apps.utils.exceptions import (
    BusinessValidationError,
    InsufficientStock,
    ProductNotFound,
)
from apps.utils.kvstore import get_key_value_store


def make_product(name, stock, **kwargs):
    kwargs.setdefault("base_price", Decimal("100.00"))
    kwargs.setdefault("quantity_value", "1 Piece")
    return Product.objects.create(name=name, stock=stock, **kwargs)


class InventoryLedgerTests(TestCase):
    def setUp(self):
        self.milk = make_product("Milk", stock=50, low_stock_threshold=5)
        self.eggs = make_product("Eggs", stock=3, low_stock_threshold=1)

    def test_reserve_decrements_each_line_and_logs(self):
        InventoryLedger.reserve(
            [
                {"product_id": self.milk.id, "quantity": 10},
                {"product_id": self.eggs.id, "quantity": 2},
            ],
            reference="ORD-00001",
        )

        self.milk.refresh_from_db()
        self.eggs.refresh_from_db()
        self.assertEqual(self.milk.stock, 40)
        self.assertEqual(self.eggs.stock, 1)

        logs = StockMovementLog.objects.filter(reference="ORD-00001")
        self.assertEqual(logs.count(), 2)
        milk_log = logs.get(product=self.milk)
        self.assertEqual(milk_log.quantity_change, -10)
        self.assertEqual(milk_log.balance_after, 40)

    def test_reserve_is_all_or_nothing(self):
        with self.assertRaises(InsufficientStock) as ctx:
            InventoryLedger.reserve(
                [
                    {"product_id": self.milk.id, "quantity": 10},
                    {"product_id": self.eggs.id, "quantity": 4},
                ],
                reference="ORD-00002",
            )

        self.assertEqual(ctx.exception.product_id, str(self.eggs.id))
        self.assertIn("Eggs", ctx.exception.message)

        self.milk.refresh_from_db()
        self.eggs.refresh_from_db()
        self.assertEqual(self.milk.stock, 50)
        self.assertEqual(self.eggs.stock, 3)
        self.assertFalse(StockMovementLog.objects.exists())

    def test_duplicate_lines_are_merged(self):
        with self.assertRaises(InsufficientStock):
            InventoryLedger.reserve(
                [
                    {"product_id": self.eggs.id, "quantity": 2},
                    {"product_id": self.eggs.id, "quantity": 2},
                ],
                reference="ORD-00003",
            )
        self.eggs.refresh_from_db()
        self.assertEqual(self.eggs.stock, 3)

    def test_reserve_unknown_product(self):
        with self.assertRaises(ProductNotFound):
            InventoryLedger.reserve(
                [{"product_id": "00000000-0000-0000-0000-000000000000", "quantity": 1}],
                reference="ORD-00004",
            )

    def test_reserve_rejects_non_positive_quantity(self):
        with self.assertRaises(BusinessValidationError):
            InventoryLedger.reserve([{"product_id": self.milk.id, "quantity": 0}], "ORD-00005")

    def test_release_restores_reserved_quantity(self):
        items = [{"product_id": self.milk.id, "quantity": 7}]
        InventoryLedger.reserve(items, reference="ORD-00006")
        InventoryLedger.release(items, reference="ORD-00006")

        self.milk.refresh_from_db()
        self.assertEqual(self.milk.stock, 50)
        self.assertEqual(
            list(
                StockMovementLog.objects
                .filter(reference="ORD-00006")
                .order_by("quantity_change")
                .values_list("movement_type", flat=True)
            ),
            ["RESERVE", "RELEASE"],
        )

    def test_adjust_guards_negative_delta(self):
        InventoryLedger.adjust(self.eggs.id, 5, reason="Restock")
        self.eggs.refresh_from_db()
        self.assertEqual(self.eggs.stock, 8)

        with self.assertRaises(InsufficientStock):
            InventoryLedger.adjust(self.eggs.id, -9, reason="Damaged")
        self.eggs.refresh_from_db()
        self.assertEqual(self.eggs.stock, 8)

    def test_low_stock_alert_enqueued_after_commit(self):
        with patch("apps.inventory.services.notify_low_stock.delay") as delay:
            with self.captureOnCommitCallbacks(execute=True):
                InventoryLedger.reserve(
                    [{"product_id": self.milk.id, "quantity": 46}],
                    reference="ORD-00007",
                )

        delay.assert_called_once_with(str(self.milk.id), "Milk", 4, 5)


class LowStockTaskTests(TestCase):
    def setUp(self):
        get_key_value_store().delete("low_stock_alerted:p-1")

    def test_alert_deduplicated_within_window(self):
        self.assertTrue(notify_low_stock("p-1", "Milk", 4, 5))
        self.assertFalse(notify_low_stock("p-1", "Milk", 3, 5))


class AdjustStockAPITests(APITestCase):
    def setUp(self):
        self.flour = make_product("Flour", stock=4)
        self.admin = User.objects.create_superuser(phone="+919000000001", password="admin-pass")
        self.url = reverse("inventory-adjust")

    def test_admin_restocks_through_ledger(self):
        self.client.force_authenticate(self.admin)
        response = self.client.post(self.url, {
            "product_id": str(self.flour.id),
            "delta_quantity": 20,
            "reason": "Weekly restock",
        }, format="json")

        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data["balance_after"], 24)
        self.assertEqual(response.data["movement_type"], "ADJUST")
        self.flour.refresh_from_db()
        self.assertEqual(self.flour.stock, 24)
        log = StockMovementLog.objects.get(product=self.flour)
        self.assertEqual(log.created_by, self.admin)

    def test_write_off_beyond_stock_rejected(self):
        self.client.force_authenticate(self.admin)
        response = self.client.post(self.url, {
            "product_id": str(self.flour.id),
            "delta_quantity": -5,
            "reason": "Damaged",
        }, format="json")

        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(response.data["code"], "insufficient_stock")
        self.flour.refresh_from_db()
        self.assertEqual(self.flour.stock, 4)

    def test_zero_delta_rejected(self):
        self.client.force_authenticate(self.admin)
        response = self.client.post(self.url, {
            "product_id": str(self.flour.id),
            "delta_quantity": 0,
            "reason": "Noop",
        }, format="json")
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_non_admin_forbidden(self):
        user = User.objects.create_user(phone="+919000000002", role=Role.CUSTOMER)
        CustomerProfile.objects.create(user=user)
        self.client.force_authenticate(user)
        response = self.client.post(self.url, {
            "product_id": str(self.flour.id),
            "delta_quantity": 5,
            "reason": "Restock",
        }, format="json")

        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)
        self.assertEqual(response.data["code"], "unauthorized")
        self.flour.refresh_from_db()
        self.assertEqual(self.flour.stock, 4)

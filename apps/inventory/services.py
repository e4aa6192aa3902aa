import logging
from collections import OrderedDict
from typing import Dict, Iterable, List, Tuple

from django.db import transaction
from django.db.models import F
from django.utils import timezone

from apps.catalog.models import Product
from apps.utils.exceptions import (
    BusinessValidationError,
    InsufficientStock,
    ProductNotFound,
)

from .models import StockMovementLog
from .tasks import notify_low_stock

logger = logging.getLogger(__name__)


class InventoryLedger:
    """
    Core Logic for Inventory Management.
    ALL changes to Product.stock must pass through here.

    Every decrement is a conditional UPDATE (``stock >= qty``), so two
    concurrent reservations can never push stock below zero, and every
    method runs inside one transaction: either all lines apply or none.
    """

    @staticmethod
    def _normalise(items: Iterable[Dict]) -> List[Tuple[str, int]]:
        """
        Merge duplicate product lines and sort by product id so concurrent
        callers touch rows in the same order.
        """
        merged = OrderedDict()
        for item in items:
            pid = str(item["product_id"])
            qty = int(item["quantity"])
            if qty <= 0:
                raise BusinessValidationError("Quantity must be positive.")
            merged[pid] = merged.get(pid, 0) + qty
        return sorted(merged.items(), key=lambda line: line[0])

    @staticmethod
    @transaction.atomic
    def reserve(items: Iterable[Dict], reference: str, user=None) -> List[StockMovementLog]:
        """
        Decrements stock for every line or for none.
        Raises InsufficientStock naming the first product that cannot be covered.
        """
        logs = []
        low_stock = []

        for pid, qty in InventoryLedger._normalise(items):
            updated = (
                Product.objects
                .filter(id=pid, stock__gte=qty)
                .update(stock=F("stock") - qty, updated_at=timezone.now())
            )
            if not updated:
                product = Product.objects.filter(id=pid).only("name", "stock").first()
                if product is None:
                    raise ProductNotFound(pid)
                raise InsufficientStock(
                    pid,
                    f"Insufficient stock for {product.name}. "
                    f"Available: {product.stock}, Required: {qty}",
                )

            product = Product.objects.only("name", "stock", "low_stock_threshold").get(id=pid)
            logs.append(StockMovementLog(
                product=product,
                quantity_change=-qty,
                movement_type=StockMovementLog.MovementType.RESERVATION,
                reference=reference,
                balance_after=product.stock,
                created_by=user,
            ))
            if product.stock < product.low_stock_threshold:
                low_stock.append(product)

        StockMovementLog.objects.bulk_create(logs)

        for product in low_stock:
            InventoryLedger._flag_low_stock(product)

        return logs

    @staticmethod
    @transaction.atomic
    def release(items: Iterable[Dict], reference: str, user=None) -> List[StockMovementLog]:
        """
        Reverses a reservation (order cancelled or deleted after acceptance).
        Lines whose product no longer exists are skipped.
        """
        logs = []

        for pid, qty in InventoryLedger._normalise(items):
            updated = (
                Product.objects
                .filter(id=pid)
                .update(stock=F("stock") + qty, updated_at=timezone.now())
            )
            if not updated:
                logger.warning(
                    f"Release skipped, product {pid} no longer exists",
                    extra={"product_id": pid},
                )
                continue

            product = Product.objects.only("stock").get(id=pid)
            logs.append(StockMovementLog(
                product=product,
                quantity_change=qty,
                movement_type=StockMovementLog.MovementType.RELEASE,
                reference=reference,
                balance_after=product.stock,
                created_by=user,
            ))

        StockMovementLog.objects.bulk_create(logs)
        return logs

    @staticmethod
    @transaction.atomic
    def adjust(product_id, delta: int, reason: str, user=None) -> StockMovementLog:
        """
        Manual correction (audit, damage, restock). Negative deltas are
        guarded like reservations.
        """
        delta = int(delta)
        if delta == 0:
            raise BusinessValidationError("Adjustment must be non-zero.")
        if not reason:
            raise BusinessValidationError("Adjustment reason is required.")

        qs = Product.objects.filter(id=product_id)
        if delta < 0:
            qs = qs.filter(stock__gte=-delta)

        updated = qs.update(stock=F("stock") + delta, updated_at=timezone.now())
        if not updated:
            product = Product.objects.filter(id=product_id).only("name", "stock").first()
            if product is None:
                raise ProductNotFound(product_id)
            raise InsufficientStock(
                product_id,
                f"Cannot remove {-delta} of {product.name}. Available: {product.stock}",
            )

        product = Product.objects.only("name", "stock", "low_stock_threshold").get(id=product_id)
        log = StockMovementLog.objects.create(
            product=product,
            quantity_change=delta,
            movement_type=StockMovementLog.MovementType.ADJUSTMENT,
            reference=reason,
            balance_after=product.stock,
            created_by=user,
        )

        if delta < 0 and product.stock < product.low_stock_threshold:
            InventoryLedger._flag_low_stock(product)

        return log

    @staticmethod
    def _flag_low_stock(product):
        logger.warning(
            f"Low stock for {product.name}: {product.stock} < {product.low_stock_threshold}",
            extra={"product_id": str(product.id)},
        )
        transaction.on_commit(lambda: notify_low_stock.delay(
            str(product.id), product.name, product.stock, product.low_stock_threshold
        ))

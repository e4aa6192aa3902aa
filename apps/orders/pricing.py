"""
Tiered cart pricing.

Retail: ``discount_price`` when set, else ``base_price``.
Wholesale (subscribed customers only): whole bundles at ``subscription_price``
plus the remainder at retail, chosen per line only when strictly cheaper.
Wholesale is then honoured for the cart only if the wholesale-aware total
reaches ``WHOLESALE_CART_THRESHOLD``; otherwise the whole cart is re-priced
as retail in a second pass.
"""
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, List, Optional, Tuple

from django.conf import settings

from apps.catalog.models import Product
from apps.utils.exceptions import (
    BusinessValidationError,
    InsufficientStock,
    ProductNotFound,
)

CENT = Decimal("0.01")

RETAIL = "retail"
WHOLESALE = "wholesale"


def quantize(value) -> Decimal:
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class ProductTier:
    """Pricing-relevant view of a product, detached from the ORM."""
    product_id: str
    name: str
    base_price: Decimal
    discount_price: Optional[Decimal] = None
    subscription_price: Optional[Decimal] = None
    unit_per_subscription: int = 1
    brand: str = ""
    quantity_value: str = ""
    quantity_unit: str = ""

    @classmethod
    def from_product(cls, product: Product):
        return cls(
            product_id=str(product.id),
            name=product.name,
            base_price=product.base_price,
            discount_price=product.discount_price,
            subscription_price=product.subscription_price,
            unit_per_subscription=product.unit_per_subscription,
            brand=product.brand,
            quantity_value=product.quantity_value,
            quantity_unit=product.quantity_unit,
        )

    @property
    def retail_unit_price(self) -> Decimal:
        price = self.discount_price if self.discount_price is not None else self.base_price
        return Decimal(price)


@dataclass(frozen=True)
class CartLine:
    tier: ProductTier
    units: int


@dataclass(frozen=True)
class PricedItem:
    tier: ProductTier
    pricing_mode: str
    units_bought: int
    bundles_bought: int
    unit_price: Decimal
    total_price: Decimal

    def as_snapshot(self) -> dict:
        """Keyword arguments for an ``OrderItem`` row."""
        return {
            "product_id": self.tier.product_id,
            "name": self.tier.name,
            "brand": self.tier.brand,
            "quantity_value": self.tier.quantity_value,
            "quantity_unit": self.tier.quantity_unit,
            "pricing_mode": self.pricing_mode,
            "units_bought": self.units_bought,
            "bundles_bought": self.bundles_bought,
            "unit_price": self.unit_price,
            "total_price": self.total_price,
            "base_price": self.tier.base_price,
            "discount_price": self.tier.discount_price,
            "subscription_price": self.tier.subscription_price,
            "unit_per_subscription": self.tier.unit_per_subscription,
        }


@dataclass(frozen=True)
class PricingResult:
    items: Tuple[PricedItem, ...]
    cart_total: Decimal
    wholesale_eligible: bool


def _price_line(line: CartLine, allow_wholesale: bool) -> Tuple[PricedItem, Decimal]:
    """
    Returns the priced item and its unrounded total.
    """
    tier, units = line.tier, line.units
    retail_unit = tier.retail_unit_price
    retail_total = retail_unit * units

    if allow_wholesale and tier.subscription_price is not None and tier.unit_per_subscription:
        size = tier.unit_per_subscription
        bundles, remainder = divmod(units, size)
        if bundles > 0:
            wholesale_total = bundles * Decimal(tier.subscription_price) + remainder * retail_unit
            if wholesale_total < retail_total:
                item = PricedItem(
                    tier=tier,
                    pricing_mode=WHOLESALE,
                    units_bought=units,
                    bundles_bought=bundles,
                    unit_price=quantize(wholesale_total / units),
                    total_price=quantize(wholesale_total),
                )
                return item, wholesale_total

    item = PricedItem(
        tier=tier,
        pricing_mode=RETAIL,
        units_bought=units,
        bundles_bought=0,
        unit_price=quantize(retail_unit),
        total_price=quantize(retail_total),
    )
    return item, retail_total


def _price_cart(lines, allow_wholesale):
    priced = [_price_line(line, allow_wholesale) for line in lines]
    items = tuple(item for item, _ in priced)
    total = sum((raw for _, raw in priced), Decimal("0"))
    return items, total


def price(lines: Iterable[CartLine], eligible: bool, threshold=None) -> PricingResult:
    """
    Pure and deterministic: identical inputs always give identical output.
    """
    lines = list(lines)
    if threshold is None:
        threshold = Decimal(str(settings.WHOLESALE_CART_THRESHOLD))

    if eligible:
        items, tentative_total = _price_cart(lines, allow_wholesale=True)
        if tentative_total >= threshold:
            return PricingResult(items, quantize(tentative_total), wholesale_eligible=True)

    # Gate failed (or not subscribed): the whole cart goes retail
    items, total = _price_cart(lines, allow_wholesale=False)
    return PricingResult(items, quantize(total), wholesale_eligible=False)


def delivery_fee_for(cart_total: Decimal, override=None) -> Decimal:
    if override is not None:
        return quantize(override)
    if cart_total < Decimal(str(settings.FREE_DELIVERY_THRESHOLD)):
        return quantize(settings.DELIVERY_FEE)
    return quantize(0)


def load_cart_lines(raw_items: Iterable[dict]) -> List[CartLine]:
    """
    Resolve ``[{"product_id", "quantity"}]`` against the catalog.
    The stock check here is advisory; the ledger re-checks at acceptance.
    """
    raw_items = list(raw_items)
    if not raw_items:
        raise BusinessValidationError("Order must contain at least one item.")

    product_ids = [str(item["product_id"]) for item in raw_items]
    products = {str(p.id): p for p in Product.objects.filter(id__in=product_ids)}

    lines = []
    for raw in raw_items:
        pid = str(raw["product_id"])
        units = int(raw["quantity"])
        if units <= 0:
            raise BusinessValidationError("Quantity must be positive.")

        product = products.get(pid)
        if product is None or not product.is_active:
            raise ProductNotFound(pid)
        if product.stock < units:
            raise InsufficientStock(pid, f"Insufficient stock for {product.name}")

        lines.append(CartLine(tier=ProductTier.from_product(product), units=units))
    return lines

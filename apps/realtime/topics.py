"""
Typed pub/sub scopes. Build topics through the constructors below, never by
formatting group names by hand.
"""
from dataclasses import dataclass

ORDER = "order"
BRANCH = "branch"
CUSTOMER = "customer"
PARTNER = "partner"

KINDS = (ORDER, BRANCH, CUSTOMER, PARTNER)


@dataclass(frozen=True)
class Topic:
    kind: str
    key: str

    def __post_init__(self):
        if self.kind not in KINDS:
            raise ValueError(f"Unknown topic kind: {self.kind}")
        if not self.key:
            raise ValueError("Topic key is required.")

    @property
    def group(self) -> str:
        """Channel-layer group name."""
        return f"{self.kind}.{self.key}"

    def __str__(self):
        return self.group


def order_topic(order_id) -> Topic:
    return Topic(ORDER, str(order_id))


def branch_topic(branch_id) -> Topic:
    return Topic(BRANCH, str(branch_id))


def customer_topic(customer_id) -> Topic:
    return Topic(CUSTOMER, str(customer_id))


def partner_topic(partner_id) -> Topic:
    return Topic(PARTNER, str(partner_id))

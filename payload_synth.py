"""Randomized order payloads for the fulfillment API.

Every order built here is structurally valid: item skus are unique within the
order, quantities stay in range and optional fields are either present with a
value or left out entirely.
"""

from __future__ import annotations

import bisect
import random
import string
import time
import uuid
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Generic, List, Optional, Sequence, Set, Tuple, TypeVar

from orders import Address, FulfillmentPolicy, OrderItem, OrderRequest, Product, ShippingSpeed

T = TypeVar("T")

_ALPHANUMERIC = string.ascii_lowercase + string.digits

ADDRESSES: Tuple[Address, ...] = (
    Address("John Doe", "123 Main Street", "Apt 4B", "New York", "NY", "10001", "US"),
    Address("Jane Smith", "456 Oak Avenue", "Suite 200", "Los Angeles", "CA", "90001", "US"),
    Address("Robert Johnson", "789 Pine Road", "", "Chicago", "IL", "60601", "US"),
    Address("Maria Garcia", "321 Elm Boulevard", "Floor 3", "Houston", "TX", "77001", "US"),
    Address("Michael Brown", "654 Maple Drive", "", "Phoenix", "AZ", "85001", "US"),
    Address("Lisa Anderson", "987 Cedar Lane", "Unit 12", "Philadelphia", "PA", "19019", "US"),
    Address("David Martinez", "147 Birch Street", "", "San Antonio", "TX", "78201", "US"),
    Address("Sarah Wilson", "258 Spruce Court", "Building A", "San Diego", "CA", "92101", "US"),
)

SHIPPING_SPEEDS: Tuple[ShippingSpeed, ...] = tuple(ShippingSpeed)

POLICY_WEIGHTS: Dict[FulfillmentPolicy, float] = {
    FulfillmentPolicy.FILL_OR_KILL: 0.1,
    FulfillmentPolicy.FILL_ALL: 0.2,
    FulfillmentPolicy.FILL_ALL_AVAILABLE: 0.7,
}

GIFT_MESSAGE = "Thank you for your purchase!"
HANDLING_COMMENT = "Handle with care"


class ContractViolation(AssertionError):
    """An order could not be built without breaking its invariants."""


class WeightedChoice(Generic[T]):
    """Discrete distribution stored as sorted ``(cumulative probability, value)`` pairs."""

    def __init__(self, table: Sequence[Tuple[float, T]]) -> None:
        if not table:
            raise ValueError("table must contain at least one entry")
        thresholds = [threshold for threshold, _ in table]
        if thresholds != sorted(thresholds):
            raise ValueError("cumulative thresholds must be sorted")
        self.table: Tuple[Tuple[float, T], ...] = tuple(table)
        self._thresholds = thresholds
        self._values = [value for _, value in table]

    @classmethod
    def from_weights(cls, weights: Dict[T, float]) -> "WeightedChoice[T]":
        total = sum(weights.values())
        if total <= 0:
            raise ValueError("weights must sum to a positive number")

        table: List[Tuple[float, T]] = []
        running = 0.0
        for value, weight in weights.items():
            if weight < 0:
                raise ValueError("weights cannot be negative")
            running += weight / total
            table.append((running, value))
        # absorb float rounding so rng.random() always lands in the table
        table[-1] = (1.0, table[-1][1])
        return cls(table)

    def sample(self, rng: random.Random) -> T:
        index = bisect.bisect_right(self._thresholds, rng.random())
        return self._values[min(index, len(self._values) - 1)]


def _random_string(rng: random.Random, length: int) -> str:
    return "".join(rng.choice(_ALPHANUMERIC) for _ in range(length))


def _epoch_ms() -> int:
    return int(time.time() * 1000)


def new_idempotency_key() -> str:
    """Return a fresh ``Idempotency-Key`` value; never reused across attempts."""

    return f"order-{_epoch_ms()}-{uuid.uuid4().hex[:16]}"


def format_order_date(moment: datetime) -> str:
    """UTC ISO-8601 with millisecond precision and a trailing ``Z``."""

    utc = moment.astimezone(timezone.utc)
    return utc.strftime("%Y-%m-%dT%H:%M:%S.") + f"{utc.microsecond // 1000:03d}Z"


class PayloadSynthesizer:
    """Build :class:`OrderRequest` objects from a catalog and a random source."""

    def __init__(
        self,
        *,
        min_items: int = 2,
        max_items: int = 9,
        gift_probability: float = 0.3,
        comment_probability: float = 0.2,
        policy_choice: Optional[WeightedChoice[FulfillmentPolicy]] = None,
        now: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        if not 1 <= min_items <= max_items:
            raise ValueError("item bounds must satisfy 1 <= min_items <= max_items")
        self.min_items = min_items
        self.max_items = max_items
        self.gift_probability = gift_probability
        self.comment_probability = comment_probability
        self.policy_choice = policy_choice or WeightedChoice.from_weights(POLICY_WEIGHTS)
        self._now = now

    def synthesize(self, catalog: Sequence[Product], rng: random.Random) -> OrderRequest:
        if not catalog:
            raise ContractViolation("cannot synthesize an order from an empty catalog")

        requested = rng.randint(self.min_items, self.max_items)
        items, skipped = self._build_items(catalog, requested, rng)
        # yesterday keeps the date clear of the API's "not in the future" check
        order_date = format_order_date(self._now() - timedelta(days=1))

        return OrderRequest(
            seller_order_id=f"SELLER-{_epoch_ms()}-{rng.randint(1000, 9999)}",
            display_order_id=f"ORDER-{_epoch_ms()}-{rng.randint(1000, 9999)}",
            order_date=order_date,
            order_comment=f"Load test order - {requested} items",
            shipping_speed=rng.choice(SHIPPING_SPEEDS),
            destination_address=rng.choice(ADDRESSES),
            items=items,
            fulfillment_policy=self.policy_choice.sample(rng),
            requested_item_count=requested,
            skipped_skus=skipped,
        )

    def _build_items(
        self, catalog: Sequence[Product], requested: int, rng: random.Random
    ) -> Tuple[Tuple[OrderItem, ...], int]:
        candidates = rng.sample(list(catalog), min(requested, len(catalog)))
        used: Set[str] = set()
        items: List[OrderItem] = []
        skipped = 0

        for position, product in enumerate(candidates, start=1):
            # duplicate skus are dropped, not replaced
            if product.sku in used:
                skipped += 1
                continue
            used.add(product.sku)
            items.append(
                OrderItem(
                    sku=product.sku,
                    line_id=f"item-{position}-{_random_string(rng, 8)}",
                    quantity=rng.randint(1, 5),
                    gift_message=GIFT_MESSAGE if rng.random() < self.gift_probability else None,
                    comment=HANDLING_COMMENT if rng.random() < self.comment_probability else None,
                )
            )

        if not items:
            raise ContractViolation("synthesized order has no items")
        return tuple(items), skipped

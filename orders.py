"""Order data model for the fulfillment order load generator.

The dataclasses here mirror the JSON body accepted by
``POST /fulfillment_orders``. Python attribute names are short; ``to_payload``
produces the snake_case wire names the API expects.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Tuple


class ShippingSpeed(str, Enum):
    STANDARD = "STANDARD"
    EXPEDITED = "EXPEDITED"
    PRIORITY = "PRIORITY"
    NEXT_DAY = "NEXT_DAY"


class FulfillmentPolicy(str, Enum):
    FILL_OR_KILL = "FILL_OR_KILL"
    FILL_ALL = "FILL_ALL"
    FILL_ALL_AVAILABLE = "FILL_ALL_AVAILABLE"


@dataclass(frozen=True)
class Product:
    """A catalog entry. Only ``sku`` is used when building orders."""

    sku: str
    attributes: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Address:
    name: str
    address_line_1: str
    address_line_2: str
    city: str
    state_or_region: str
    postal_code: str
    country_code: str

    def to_payload(self) -> Dict[str, str]:
        return {
            "name": self.name,
            "address_line_1": self.address_line_1,
            "address_line_2": self.address_line_2,
            "city": self.city,
            "state_or_region": self.state_or_region,
            "postal_code": self.postal_code,
            "country_code": self.country_code,
        }


@dataclass(frozen=True)
class OrderItem:
    """One order line.

    ``gift_message`` and ``comment`` are ``None`` when absent; absent fields are
    left out of the payload while an empty string is sent as-is.
    """

    sku: str
    line_id: str
    quantity: int
    gift_message: Optional[str] = None
    comment: Optional[str] = None

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "seller_sku": self.sku,
            "seller_fulfillment_order_item_id": self.line_id,
            "quantity": self.quantity,
        }
        if self.gift_message is not None:
            payload["gift_message"] = self.gift_message
        if self.comment is not None:
            payload["displayable_comment"] = self.comment
        return payload


@dataclass(frozen=True)
class OrderRequest:
    """A synthesized order plus the bookkeeping that is never transmitted."""

    seller_order_id: str
    display_order_id: str
    order_date: str
    order_comment: str
    shipping_speed: ShippingSpeed
    destination_address: Address
    items: Tuple[OrderItem, ...]
    fulfillment_policy: FulfillmentPolicy
    requested_item_count: int = 0
    skipped_skus: int = 0

    @property
    def skus(self) -> Tuple[str, ...]:
        return tuple(item.sku for item in self.items)

    def to_payload(self) -> Dict[str, Any]:
        return {
            "seller_fulfillment_order_id": self.seller_order_id,
            "displayable_order_id": self.display_order_id,
            "displayable_order_date": self.order_date,
            "displayable_order_comment": self.order_comment,
            "shipping_speed_category": self.shipping_speed.value,
            "destination_address": self.destination_address.to_payload(),
            "items": [item.to_payload() for item in self.items],
            "fulfillment_policy": self.fulfillment_policy.value,
        }

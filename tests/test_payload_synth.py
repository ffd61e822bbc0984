"""Tests for payload synthesis: sku uniqueness, item bounds, optional fields and policy weights."""

import random
from collections import Counter
from datetime import datetime, timedelta, timezone

import pytest

from orders import FulfillmentPolicy, Product, ShippingSpeed
from payload_synth import (
    ADDRESSES,
    ContractViolation,
    PayloadSynthesizer,
    WeightedChoice,
    format_order_date,
    new_idempotency_key,
)


def _catalog(size, prefix="SKU"):
    return [Product(sku=f"{prefix}-{i:04d}") for i in range(size)]


@pytest.mark.parametrize("catalog_size", [1, 2, 3, 5, 9, 50])
def test_skus_unique_and_item_count_bounded(catalog_size):
    synth = PayloadSynthesizer()
    catalog = _catalog(catalog_size)
    for seed in range(200):
        order = synth.synthesize(catalog, random.Random(seed))
        skus = order.skus
        assert len(skus) == len(set(skus))
        assert 2 <= order.requested_item_count <= 9
        assert 1 <= len(order.items) <= order.requested_item_count
        assert len(order.items) <= catalog_size


def test_duplicate_skus_in_catalog_are_skipped_not_replaced():
    # every product shares one of two skus, so at most two items survive
    catalog = [Product(sku="A"), Product(sku="B")] * 10
    synth = PayloadSynthesizer()
    saw_skip = False
    for seed in range(300):
        order = synth.synthesize(catalog, random.Random(seed))
        assert len(set(order.skus)) == len(order.items) <= 2
        candidates = min(order.requested_item_count, len(catalog))
        assert len(order.items) + order.skipped_skus == candidates
        saw_skip = saw_skip or order.skipped_skus > 0
    assert saw_skip


def test_quantities_and_line_ids():
    synth = PayloadSynthesizer()
    order = synth.synthesize(_catalog(20), random.Random(7))
    for position, item in enumerate(order.items, start=1):
        assert 1 <= item.quantity <= 5
        assert item.line_id.startswith(f"item-{position}-")
        assert len(item.line_id.rsplit("-", 1)[1]) == 8


def test_optional_fields_are_omitted_not_null():
    synth = PayloadSynthesizer()
    catalog = _catalog(30)
    gifts = comments = total = 0
    for seed in range(1000):
        payload = synth.synthesize(catalog, random.Random(seed)).to_payload()
        for item in payload["items"]:
            total += 1
            assert item.get("gift_message", "x") is not None
            assert item.get("displayable_comment", "x") is not None
            gifts += "gift_message" in item
            comments += "displayable_comment" in item
    assert abs(gifts / total - 0.3) < 0.03
    assert abs(comments / total - 0.2) < 0.03


def test_policy_distribution_matches_weights():
    synth = PayloadSynthesizer()
    rng = random.Random(1234)
    draws = Counter(synth.policy_choice.sample(rng) for _ in range(20000))
    n = sum(draws.values())
    assert abs(draws[FulfillmentPolicy.FILL_OR_KILL] / n - 0.10) < 0.02
    assert abs(draws[FulfillmentPolicy.FILL_ALL] / n - 0.20) < 0.02
    assert abs(draws[FulfillmentPolicy.FILL_ALL_AVAILABLE] / n - 0.70) < 0.02


def test_weighted_choice_table_is_cumulative():
    choice = WeightedChoice.from_weights({"a": 1, "b": 1, "c": 2})
    assert [value for _, value in choice.table] == ["a", "b", "c"]
    assert choice.table[0][0] == pytest.approx(0.25)
    assert choice.table[1][0] == pytest.approx(0.5)
    assert choice.table[-1][0] == 1.0


def test_weighted_choice_rejects_bad_tables():
    with pytest.raises(ValueError):
        WeightedChoice([])
    with pytest.raises(ValueError):
        WeightedChoice([(0.8, "a"), (0.2, "b")])
    with pytest.raises(ValueError):
        WeightedChoice.from_weights({"a": 0})


def test_order_date_is_yesterday_in_utc():
    fixed = datetime(2024, 3, 1, 12, 30, 15, 250000, tzinfo=timezone.utc)
    synth = PayloadSynthesizer(now=lambda: fixed)
    order = synth.synthesize(_catalog(5), random.Random(0))
    assert order.order_date == "2024-02-29T12:30:15.250Z"
    parsed = datetime.strptime(order.order_date, "%Y-%m-%dT%H:%M:%S.%fZ").replace(tzinfo=timezone.utc)
    assert parsed < datetime.now(timezone.utc) - timedelta(hours=23)


def test_format_order_date_converts_to_utc():
    moment = datetime(2024, 1, 1, 2, 0, 0, tzinfo=timezone(timedelta(hours=3)))
    assert format_order_date(moment) == "2023-12-31T23:00:00.000Z"


def test_payload_uses_wire_field_names():
    synth = PayloadSynthesizer()
    order = synth.synthesize(_catalog(10), random.Random(3))
    payload = order.to_payload()
    assert set(payload) == {
        "seller_fulfillment_order_id",
        "displayable_order_id",
        "displayable_order_date",
        "displayable_order_comment",
        "shipping_speed_category",
        "destination_address",
        "items",
        "fulfillment_policy",
    }
    assert payload["seller_fulfillment_order_id"].startswith("SELLER-")
    assert payload["displayable_order_id"].startswith("ORDER-")
    assert payload["displayable_order_comment"] == f"Load test order - {order.requested_item_count} items"
    assert payload["shipping_speed_category"] in {speed.value for speed in ShippingSpeed}
    assert payload["destination_address"] in [address.to_payload() for address in ADDRESSES]
    assert "requested_item_count" not in payload


def test_empty_catalog_is_a_contract_violation():
    with pytest.raises(ContractViolation):
        PayloadSynthesizer().synthesize([], random.Random(0))


def test_idempotency_keys_are_fresh():
    keys = {new_idempotency_key() for _ in range(1000)}
    assert len(keys) == 1000
    assert all(key.startswith("order-") for key in keys)

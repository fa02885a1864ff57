from decimal import Decimal

import pytest

from bookhaven.discounts import (
    as_percent,
    combined_discount,
    discounted_total,
    next_purchase_preview,
    purchase_tier_discount,
    quantity_tier_discount,
)


@pytest.mark.parametrize(
    "position, expected",
    [
        (1, "0"), (4, "0"),
        (5, "0.05"), (6, "0"), (7, "0"), (9, "0"),
        (10, "0.10"), (11, "0"),
        (15, "0.05"), (20, "0.10"), (25, "0.05"),
    ],
)
def test_purchase_tier_by_position(position, expected):
    # position p is the purchase being placed, so p - 1 purchases came before
    assert purchase_tier_discount(position - 1) == Decimal(expected)


def test_purchase_tier_only_on_milestones():
    for position in range(1, 60):
        discount = purchase_tier_discount(position - 1)
        if position < 5 or (position - 5) % 5:
            assert discount == 0
        else:
            cycle = (position - 5) // 5
            assert discount == (Decimal("0.05") if cycle % 2 == 0 else Decimal("0.10"))


@pytest.mark.parametrize(
    "quantity, expected",
    [(1, "0"), (4, "0"), (5, "0.05"), (9, "0.05"), (10, "0.10"), (250, "0.10")],
)
def test_quantity_tier(quantity, expected):
    assert quantity_tier_discount(quantity) == Decimal(expected)


def test_tiers_add_up_when_they_beat_the_sale():
    # 5th purchase (5%) + 10 copies (10%) against a 12% sale
    assert combined_discount(4, 10, Decimal("0.12")) == Decimal("0.15")


def test_sale_wins_when_larger_than_tiers():
    assert combined_discount(4, 6, Decimal("0.30")) == Decimal("0.30")


def test_no_discount_without_tiers_or_sale():
    assert combined_discount(0, 1) == Decimal("0")


def test_fifth_purchase_of_six_copies_costs_108():
    discount = combined_discount(4, 6, Decimal("0"))
    assert discount == Decimal("0.10")
    unit, total = discounted_total(Decimal("20.00"), 6, discount)
    assert unit == Decimal("18.00")
    assert total == Decimal("108.00")


def test_next_purchase_preview_uses_purchase_tier_only():
    assert next_purchase_preview(4) == Decimal("0.05")
    assert next_purchase_preview(9) == Decimal("0.10")
    assert next_purchase_preview(5) == Decimal("0")


def test_as_percent():
    assert as_percent(Decimal("0.1")) == Decimal("10.00")
    assert as_percent(Decimal("0.0525")) == Decimal("5.25")

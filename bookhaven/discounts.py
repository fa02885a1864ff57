# discounts.py - order discount policy
# Pure functions, no database access. All discounts are Decimal
# fractions in [0, 1]; use as_percent() when showing them.
#
# Three components feed an order's discount:
#   purchase tier: every 5th approved purchase earns 5%, alternating
#     with 10% on the next milestone (5th: 5%, 10th: 10%, 15th: 5%, ...)
#   quantity tier: 5% from 5 copies, 10% from 10 copies
#   sale: the book's own time-boxed discount
# The purchase and quantity tiers add up and compete with the sale
# discount; the larger one wins.

from decimal import Decimal

ZERO = Decimal("0")
PURCHASE_MILESTONE_START = 5
PURCHASE_MILESTONE_EVERY = 5
PURCHASE_TIER_EVEN = Decimal("0.05")
PURCHASE_TIER_ODD = Decimal("0.10")
QUANTITY_TIERS = (  # (minimum quantity, discount), highest first
    (10, Decimal("0.10")),
    (5, Decimal("0.05")),
)


def purchase_tier_discount(purchase_count_before: int) -> Decimal:
    """Discount earned by the purchase being placed.

    ``purchase_count_before`` counts the user's approved orders at the
    moment the new order is created.
    """
    position = purchase_count_before + 1
    if position < PURCHASE_MILESTONE_START:
        return ZERO
    cycle, pos = divmod(position - PURCHASE_MILESTONE_START, PURCHASE_MILESTONE_EVERY)
    if pos != 0:
        return ZERO
    return PURCHASE_TIER_EVEN if cycle % 2 == 0 else PURCHASE_TIER_ODD


def quantity_tier_discount(quantity: int) -> Decimal:
    for minimum, discount in QUANTITY_TIERS:
        if quantity >= minimum:
            return discount
    return ZERO


def sale_discount(book, now=None) -> Decimal:
    """The book's sale discount, or zero outside the sale window."""
    return book.sale_discount(now)


def combined_discount(purchase_count_before: int, quantity: int, sale: Decimal = ZERO) -> Decimal:
    tiers = purchase_tier_discount(purchase_count_before) + quantity_tier_discount(quantity)
    return max(tiers, Decimal(sale))


def next_purchase_preview(purchase_count: int) -> Decimal:
    """Discount the user's next single-copy, non-sale order would earn."""
    return combined_discount(purchase_count, 1, ZERO)


def as_percent(fraction) -> Decimal:
    return (Decimal(str(fraction)) * 100).quantize(Decimal("0.01"))


def discounted_total(unit_price, quantity, discount):
    """Return ``(unit price after discount, line total)`` rounded to cents."""
    cent = Decimal("0.01")
    unit = (Decimal(str(unit_price)) * (1 - Decimal(discount))).quantize(cent)
    return unit, (unit * quantity).quantize(cent)

"""Order and cart pricing.

Pure functions: no I/O, no clock, no configuration lookups beyond the
constants read from ``settings`` as defaults.
"""

from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, Optional, Protocol

from storefront.core.config import settings

CENT = Decimal("0.01")
ZERO = Decimal("0")


class PricedLine(Protocol):
    price: Decimal
    quantity: int


@dataclass(frozen=True)
class Totals:
    subtotal: Decimal
    shipping: Decimal
    tax: Decimal
    discount: Decimal
    total: Decimal


@dataclass(frozen=True)
class CartSummary:
    subtotal: Decimal
    shipping: Decimal
    tax: Decimal
    total: Decimal
    amount_for_free_shipping: Decimal
    free_shipping_threshold: Decimal

    @property
    def message(self) -> Optional[str]:
        if self.amount_for_free_shipping > 0:
            return f"Add {self.amount_for_free_shipping} more for free shipping!"
        return None


def to_money(value) -> Decimal:
    """Round half-up to two decimal places."""
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def subtotal_of(lines: Iterable[PricedLine]) -> Decimal:
    """Sum of price x quantity, unrounded."""
    return sum((Decimal(str(line.price)) * line.quantity for line in lines), ZERO)


def shipping_for(subtotal: Decimal, threshold: Optional[Decimal] = None, fee: Optional[Decimal] = None) -> Decimal:
    threshold = settings.FREE_SHIPPING_THRESHOLD if threshold is None else threshold
    fee = settings.SHIPPING_FEE if fee is None else fee
    return ZERO if subtotal >= threshold else fee


def compute_totals(lines: Iterable[PricedLine], discount=ZERO, *, tax_rate: Optional[Decimal] = None,
                   threshold: Optional[Decimal] = None, fee: Optional[Decimal] = None) -> Totals:
    """Price a set of lines after a discount has been decided.

    Shipping eligibility looks at the pre-discount subtotal while tax is
    charged on the discounted amount. Tax is rounded on its own before it is
    added to the total; everything else is rounded only on output.
    """
    tax_rate = settings.TAX_RATE if tax_rate is None else tax_rate
    discount = Decimal(str(discount))

    subtotal = subtotal_of(lines)
    shipping = shipping_for(subtotal, threshold, fee)
    tax = to_money((subtotal - discount) * tax_rate)
    total = subtotal - discount + shipping + tax

    return Totals(
        subtotal=to_money(subtotal),
        shipping=to_money(shipping),
        tax=tax,
        discount=to_money(discount),
        total=to_money(total),
    )


def cart_summary(lines: Iterable[PricedLine], *, threshold: Optional[Decimal] = None) -> CartSummary:
    """Totals for the cart view, plus how far the cart is from free shipping."""
    threshold = settings.FREE_SHIPPING_THRESHOLD if threshold is None else threshold
    lines = list(lines)
    totals = compute_totals(lines, threshold=threshold)
    remaining = max(ZERO, threshold - subtotal_of(lines))
    return CartSummary(
        subtotal=totals.subtotal,
        shipping=totals.shipping,
        tax=totals.tax,
        total=totals.total,
        amount_for_free_shipping=to_money(remaining),
        free_shipping_threshold=to_money(threshold),
    )

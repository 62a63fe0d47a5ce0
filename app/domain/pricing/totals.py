"""
Totals aggregator.

Deterministic function of effective item prices, add-ons, discount, tax rate,
deposit fraction and gratuity configuration. Each named amount is rounded to
cents before it feeds the next step, so the identities

    total == subtotal - discount_amount + tax_amount
    deposit_amount + balance_amount == total

hold exactly.
"""

from decimal import Decimal
from typing import Iterable, Optional

from ..errors import InvalidPricingInput
from .money import ZERO, percentage_of, quantize, to_decimal
from .schemas import ComputedTotals, GratuityConfig


def addon_amount(quantity: Decimal, unit_price: Decimal) -> Decimal:
    return quantize(to_decimal(quantity) * to_decimal(unit_price))


def compute_totals(
    effective_prices: Iterable[Decimal],
    addon_amounts: Iterable[Decimal],
    discount_percentage: Decimal,
    tax_rate: Decimal,
    deposit_fraction: Decimal,
    gratuity: Optional[GratuityConfig] = None,
) -> ComputedTotals:
    discount_percentage = to_decimal(discount_percentage)
    if discount_percentage < 0 or discount_percentage > 100:
        raise InvalidPricingInput(
            "discount_percentage must be between 0 and 100", field="discount_percentage"
        )

    services_subtotal = quantize(sum((quantize(p) for p in effective_prices), ZERO))
    addons_subtotal = quantize(sum((quantize(a) for a in addon_amounts), ZERO))
    subtotal = services_subtotal + addons_subtotal

    discount_amount = percentage_of(subtotal, discount_percentage)
    after_discount = subtotal - discount_amount
    tax_amount = quantize(after_discount * to_decimal(tax_rate))
    total = after_discount + tax_amount

    deposit_amount = quantize(total * to_decimal(deposit_fraction))
    balance_amount = total - deposit_amount

    # Advisory only - never part of total
    gratuity_percentage = ZERO
    if gratuity is not None and gratuity.enabled:
        gratuity_percentage = to_decimal(gratuity.suggested_percentage)
    gratuity_amount = percentage_of(total, gratuity_percentage)

    return ComputedTotals(
        services_subtotal=services_subtotal,
        addons_subtotal=addons_subtotal,
        subtotal=subtotal,
        discount_percentage=discount_percentage,
        discount_amount=discount_amount,
        after_discount=after_discount,
        tax_rate=to_decimal(tax_rate),
        tax_amount=tax_amount,
        total=total,
        deposit_fraction=to_decimal(deposit_fraction),
        deposit_amount=deposit_amount,
        balance_amount=balance_amount,
        gratuity_percentage=gratuity_percentage,
        gratuity_amount=gratuity_amount,
    )

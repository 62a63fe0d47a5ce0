"""
Override resolver.

Applies an operator-entered hourly or fixed price in place of the calculated
price. The calculated price is always kept so the variance can be shown and
audited.
"""

import logging
from decimal import Decimal
from typing import Optional

from ..errors import InvalidOverride
from .money import ZERO, quantize
from .rate_table import HOURLY_WAIT, TIMED_TOUR
from .schemas import OverrideInput, PricedItem, PriceResult, ServiceItemInput

logger = logging.getLogger(__name__)

# Only these categories carry hours an hourly override can multiply
HOURLY_CATEGORIES = frozenset({TIMED_TOUR, HOURLY_WAIT})


def variance_label(variance: Decimal) -> str:
    if variance < 0:
        return "discount"
    if variance > 0:
        return "premium"
    return "none"


def override_amount(item: ServiceItemInput, override: OverrideInput) -> Decimal:
    """Effective price implied by an enabled override"""
    if override.rate_or_amount <= 0:
        raise InvalidOverride(
            "Override amount must be greater than zero", field="override.rate_or_amount"
        )

    if override.mode == "fixed_override":
        return quantize(override.rate_or_amount)

    if item.service_category not in HOURLY_CATEGORIES or not item.duration_hours:
        raise InvalidOverride(
            f"Hourly override needs an item with hours ({item.service_category} has none)",
            field="override.mode",
        )
    # Recomputed from the current duration every time the item is priced
    return quantize(override.rate_or_amount * item.duration_hours)


def resolve_override(item: ServiceItemInput, price: PriceResult) -> PricedItem:
    """
    Resolve the effective price of an item.

    Args:
        item: Service item, possibly carrying an override
        price: Calculator result for the same item

    Returns:
        PricedItem with calculated and effective prices plus soft warnings
    """
    override: Optional[OverrideInput] = item.override
    calculated = price.calculated_price

    if override is None or not override.enabled:
        return PricedItem(
            service_category=item.service_category,
            pricing_mode="calculated",
            calculated_price=calculated,
            effective_price=calculated,
            variance=ZERO,
            variance_label="none",
            price=price,
        )

    effective = override_amount(item, override)
    variance = effective - calculated
    reason = override.reason.strip() if override.reason else None

    warnings = []
    if variance != 0 and not reason:
        warnings.append("Override differs from the calculated price but no reason was given")
        logger.warning(
            f"⚠️ Override without reason on {item.service_category} item {item.id or '(new)'}: "
            f"calculated {calculated}, effective {effective}"
        )

    return PricedItem(
        service_category=item.service_category,
        pricing_mode=override.mode,
        calculated_price=calculated,
        effective_price=effective,
        variance=variance,
        variance_label=variance_label(variance),
        override_reason=reason,
        warnings=warnings,
        price=price,
    )

"""Pricing service - calculator + override resolver + totals in one place"""

import logging

from .calculators import calculate_price
from .overrides import resolve_override
from .rate_table import RateConfiguration
from .schemas import PricedItem, ServiceItemInput, TotalsPreview, TotalsRequest
from .totals import addon_amount, compute_totals

logger = logging.getLogger(__name__)


def price_item(item: ServiceItemInput, config: RateConfiguration) -> PricedItem:
    """Calculate an item's price and resolve its override, if any"""
    return resolve_override(item, calculate_price(item, config))


def preview_totals(request: TotalsRequest, config: RateConfiguration) -> TotalsPreview:
    """Totals for items that are not persisted yet (live quote preview)"""
    priced = [price_item(item, config) for item in request.service_items]
    totals = compute_totals(
        effective_prices=[p.effective_price for p in priced],
        addon_amounts=[addon_amount(a.quantity, a.unit_price) for a in request.addons],
        discount_percentage=request.discount_percentage,
        tax_rate=config.tax_rate,
        deposit_fraction=config.deposit_fraction,
        gratuity=request.gratuity,
    )
    return TotalsPreview(items=priced, totals=totals, config_version=config.version)

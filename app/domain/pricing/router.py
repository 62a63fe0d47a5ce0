"""Pricing router - live price preview endpoints"""

import logging

from fastapi import APIRouter, Depends

from .rate_table import RateConfiguration
from .repository import get_rate_configuration
from .schemas import PricedItem, ServiceItemInput, TotalsPreview, TotalsRequest
from .service import preview_totals, price_item

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/pricing", tags=["Pricing"])


@router.post("/calculate", response_model=PricedItem)
def calculate_item_price(
    item: ServiceItemInput,
    config: RateConfiguration = Depends(get_rate_configuration),
):
    """Price a single service item (no persistence)"""
    return price_item(item, config)


@router.post("/totals", response_model=TotalsPreview)
def calculate_totals(
    data: TotalsRequest,
    config: RateConfiguration = Depends(get_rate_configuration),
):
    """Price a set of items and aggregate totals (no persistence)"""
    return preview_totals(data, config)


@router.get("/configuration", response_model=RateConfiguration)
def get_configuration(config: RateConfiguration = Depends(get_rate_configuration)):
    """Current rate configuration snapshot"""
    return config

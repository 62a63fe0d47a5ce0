"""Pricing domain schemas - Pydantic models for validation"""

import datetime
from decimal import Decimal
from typing import Literal, Optional

from pydantic import BaseModel, Field, ValidationInfo, field_validator

from ...shared.validators import validate_decimal_places, validate_percentage

ServiceCategory = Literal["timed_tour", "point_to_point_transfer", "hourly_wait", "custom_flat"]
PricingMode = Literal["calculated", "hourly_override", "fixed_override"]


class OverrideInput(BaseModel):
    """Operator-entered manual price for one service item"""

    enabled: bool = True
    mode: Literal["hourly_override", "fixed_override"]
    rate_or_amount: Decimal
    reason: Optional[str] = None

    @field_validator("rate_or_amount")
    @classmethod
    def validate_rate_or_amount(cls, v: Decimal) -> Decimal:
        return validate_decimal_places(v, 2, "rate_or_amount")


class ServiceItemInput(BaseModel):
    """
    One priceable line. Category-specific fields are optional here; the
    calculator for the category decides which are required.
    """

    id: Optional[str] = None
    service_category: ServiceCategory
    description: Optional[str] = None
    date: Optional[datetime.date] = None
    party_size: Optional[int] = None
    duration_hours: Optional[Decimal] = None
    distance_miles: Optional[Decimal] = None
    route_id: Optional[str] = None
    flat_rate: Optional[Decimal] = None
    override: Optional[OverrideInput] = None

    @field_validator("duration_hours", "distance_miles", "flat_rate")
    @classmethod
    def validate_precision(cls, v: Optional[Decimal], info: ValidationInfo) -> Optional[Decimal]:
        return validate_decimal_places(v, 2, info.field_name)


class AddonInput(BaseModel):
    description: str = Field(..., min_length=1, max_length=255)
    quantity: Decimal = Decimal("1")
    unit_price: Decimal

    @field_validator("quantity")
    @classmethod
    def validate_quantity(cls, v: Decimal) -> Decimal:
        if v <= 0:
            raise ValueError("quantity must be positive")
        return validate_decimal_places(v, 2, "quantity")

    @field_validator("unit_price")
    @classmethod
    def validate_unit_price(cls, v: Decimal) -> Decimal:
        if v < 0:
            raise ValueError("unit_price must be non-negative")
        return validate_decimal_places(v, 2, "unit_price")


class GratuityConfig(BaseModel):
    enabled: bool = False
    suggested_percentage: Decimal = Decimal("0")
    optional: bool = True

    @field_validator("suggested_percentage")
    @classmethod
    def validate_suggested_percentage(cls, v: Decimal) -> Decimal:
        return validate_percentage(v, "suggested_percentage")


class PriceResult(BaseModel):
    """Calculator output for one item"""

    service_category: ServiceCategory
    calculated_price: Decimal
    day_type: Optional[str] = None
    season: Optional[str] = None
    rate_tier: Optional[str] = None
    unit_rate: Optional[Decimal] = None
    billable_units: Optional[Decimal] = None
    route_id: Optional[str] = None
    config_version: str
    breakdown: list[str] = []


class PricedItem(BaseModel):
    """Calculator output resolved against an optional override"""

    service_category: ServiceCategory
    pricing_mode: PricingMode
    calculated_price: Decimal
    effective_price: Decimal
    variance: Decimal
    variance_label: Literal["none", "discount", "premium"]
    override_reason: Optional[str] = None
    warnings: list[str] = []
    price: PriceResult


class ComputedTotals(BaseModel):
    services_subtotal: Decimal
    addons_subtotal: Decimal
    subtotal: Decimal
    discount_percentage: Decimal
    discount_amount: Decimal
    after_discount: Decimal
    tax_rate: Decimal
    tax_amount: Decimal
    total: Decimal
    deposit_fraction: Decimal
    deposit_amount: Decimal
    balance_amount: Decimal
    gratuity_percentage: Decimal
    gratuity_amount: Decimal


class TotalsRequest(BaseModel):
    """Ad hoc totals preview for a set of items that is not yet a proposal"""

    service_items: list[ServiceItemInput]
    addons: list[AddonInput] = []
    discount_percentage: Decimal = Decimal("0")
    gratuity: GratuityConfig = GratuityConfig()

    @field_validator("discount_percentage")
    @classmethod
    def validate_discount(cls, v: Decimal) -> Decimal:
        return validate_percentage(v, "discount_percentage")


class TotalsPreview(BaseModel):
    items: list[PricedItem]
    totals: ComputedTotals
    config_version: str

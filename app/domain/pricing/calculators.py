"""
Per-item price calculators.

One calculator per service category, selected through a dispatch table so every
caller (live preview, proposal persistence, reissue) shares one implementation.
A calculator either returns a non-negative price or raises; it never defaults
to zero.
"""

import logging
from decimal import Decimal
from typing import Callable, Optional

from ..errors import InvalidPricingInput, MissingRequiredField, NoRateTierFound
from .day_types import classify_day_type, classify_season
from .money import ZERO, quantize
from .rate_table import (
    ANY_DAY_TYPE,
    CUSTOM_FLAT,
    HOURLY_WAIT,
    POINT_TO_POINT_TRANSFER,
    TIMED_TOUR,
    RateConfiguration,
    RateRule,
)
from .schemas import PriceResult, ServiceItemInput

logger = logging.getLogger(__name__)

# Categories whose price depends on the calendar date
DATE_SENSITIVE_CATEGORIES = frozenset({TIMED_TOUR, HOURLY_WAIT})


def _require(item: ServiceItemInput, field: str):
    value = getattr(item, field)
    if value is None:
        raise MissingRequiredField(
            f"{field} is required to price a {item.service_category} item", field=field
        )
    return value


def _validate_party_size(item: ServiceItemInput, config: RateConfiguration) -> Optional[int]:
    party_size = item.party_size
    if party_size is None:
        return None
    if party_size < 1:
        raise InvalidPricingInput("party_size must be at least 1", field="party_size")
    if not (config.party_size_min <= party_size <= config.party_size_max):
        raise InvalidPricingInput(
            f"party_size must be between {config.party_size_min} and {config.party_size_max}",
            field="party_size",
        )
    return party_size


def _positive(value: Decimal, field: str) -> Decimal:
    if value <= 0:
        raise InvalidPricingInput(f"{field} must be greater than zero", field=field)
    return value


def _lookup(
    config: RateConfiguration,
    category: str,
    day_type: str,
    party_size: Optional[int],
    season: Optional[str],
) -> RateRule:
    rule = config.rate_table().lookup(category, day_type, party_size, season)
    if rule is None:
        raise NoRateTierFound(
            f"No rate tier for {category} (day type={day_type}, party size={party_size}, "
            f"season={season or 'any'}) in configuration {config.version}",
            field="service_category",
        )
    return rule


def _hourly_price(item: ServiceItemInput, config: RateConfiguration) -> PriceResult:
    """Shared formula for timed tours and wait time"""
    service_date = _require(item, "date")
    party_size = _require(item, "party_size")
    hours = _positive(_require(item, "duration_hours"), "duration_hours")
    _validate_party_size(item, config)

    day_type = classify_day_type(service_date, config.weekday_day_types)
    season = classify_season(service_date, config.seasons)
    rule = _lookup(config, item.service_category, day_type, party_size, season)

    billable_hours = max(hours, rule.minimum_units)
    extra_guests = max(0, party_size - rule.included_guests) if rule.per_guest_amount else 0
    hourly_rate = rule.per_unit_amount + rule.per_guest_amount * extra_guests
    price = max(rule.base_amount + billable_hours * hourly_rate, rule.minimum_amount)

    if price <= 0:
        raise NoRateTierFound(
            f"Rate tier {rule.tier_label} for {item.service_category} has no price",
            field="service_category",
        )

    breakdown = [f"{rule.tier_label} ({day_type}) at ${hourly_rate}/hr × {billable_hours} hours"]
    if billable_hours > hours:
        breakdown.append(f"{rule.minimum_units} hour minimum applied")
    if rule.base_amount:
        breakdown.append(f"Base charge ${rule.base_amount}")

    return PriceResult(
        service_category=item.service_category,
        calculated_price=quantize(price),
        day_type=day_type,
        season=season,
        rate_tier=rule.tier_label,
        unit_rate=hourly_rate,
        billable_units=billable_hours,
        config_version=config.version,
        breakdown=breakdown,
    )


def calculate_timed_tour(item: ServiceItemInput, config: RateConfiguration) -> PriceResult:
    return _hourly_price(item, config)


def calculate_hourly_wait(item: ServiceItemInput, config: RateConfiguration) -> PriceResult:
    return _hourly_price(item, config)


def calculate_transfer(item: ServiceItemInput, config: RateConfiguration) -> PriceResult:
    """Fixed fare for a known route, otherwise base + per mile beyond the included miles"""
    party_size = _validate_party_size(item, config)

    if item.route_id:
        route = config.route(item.route_id)
        if route is not None:
            return PriceResult(
                service_category=item.service_category,
                calculated_price=quantize(route.fare),
                rate_tier=f"{route.origin} → {route.destination}",
                route_id=route.route_id,
                config_version=config.version,
                breakdown=[f"Fixed fare {route.origin} → {route.destination}: ${route.fare}"],
            )
        logger.info(f"ℹ️ Route {item.route_id} not in configuration {config.version}, using distance")

    miles = _positive(_require(item, "distance_miles"), "distance_miles")
    season = classify_season(item.date, config.seasons) if item.date else None
    rule = _lookup(config, POINT_TO_POINT_TRANSFER, ANY_DAY_TYPE, party_size, season)

    extra_miles = max(Decimal("0"), miles - rule.included_units)
    price = max(rule.base_amount + extra_miles * rule.per_unit_amount, rule.minimum_amount)
    if price <= 0:
        raise NoRateTierFound(
            f"Rate tier {rule.tier_label} for transfers has no price", field="service_category"
        )

    breakdown = [f"Base ${rule.base_amount} (includes {rule.included_units} miles)"]
    if extra_miles:
        breakdown.append(f"{extra_miles} extra miles × ${rule.per_unit_amount}")
    if price == rule.minimum_amount and rule.minimum_amount:
        breakdown.append(f"Minimum fare ${rule.minimum_amount}")

    return PriceResult(
        service_category=item.service_category,
        calculated_price=quantize(price),
        season=season,
        rate_tier=rule.tier_label,
        unit_rate=rule.per_unit_amount,
        billable_units=miles,
        config_version=config.version,
        breakdown=breakdown,
    )


def calculate_custom_flat(item: ServiceItemInput, config: RateConfiguration) -> PriceResult:
    _validate_party_size(item, config)
    flat_rate = _require(item, "flat_rate")
    if flat_rate < 0:
        raise InvalidPricingInput("flat_rate must be non-negative", field="flat_rate")
    return PriceResult(
        service_category=item.service_category,
        calculated_price=quantize(flat_rate),
        config_version=config.version,
        breakdown=[f"Flat rate ${quantize(flat_rate)}"],
    )


CALCULATORS: dict[str, Callable[[ServiceItemInput, RateConfiguration], PriceResult]] = {
    TIMED_TOUR: calculate_timed_tour,
    POINT_TO_POINT_TRANSFER: calculate_transfer,
    HOURLY_WAIT: calculate_hourly_wait,
    CUSTOM_FLAT: calculate_custom_flat,
}


def calculate_price(item: ServiceItemInput, config: RateConfiguration) -> PriceResult:
    """Price one service item against a configuration snapshot"""
    calculator = CALCULATORS.get(item.service_category)
    if calculator is None:
        raise InvalidPricingInput(
            f"Unknown service category: {item.service_category}", field="service_category"
        )
    result = calculator(item, config)
    if result.calculated_price < ZERO:
        raise InvalidPricingInput("calculated price is negative", field="calculated_price")
    return result

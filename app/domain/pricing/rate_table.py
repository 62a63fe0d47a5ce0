"""Rate Table - immutable rate rules and the versioned configuration snapshot.

A ``RateConfiguration`` is read-only reference data: rules, the weekday to
day-type mapping, season windows and named transfer routes. It is built once per
configuration version and injected into every pricing call.
"""

from decimal import Decimal
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from ...shared.validators import validate_decimal_places

# Service categories (closed set)
TIMED_TOUR = "timed_tour"
POINT_TO_POINT_TRANSFER = "point_to_point_transfer"
HOURLY_WAIT = "hourly_wait"
CUSTOM_FLAT = "custom_flat"

SERVICE_CATEGORIES = (TIMED_TOUR, POINT_TO_POINT_TRANSFER, HOURLY_WAIT, CUSTOM_FLAT)

ANY_DAY_TYPE = "any"

WEEKDAYS = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")


class RateRule(BaseModel):
    """One row of the rate table"""

    model_config = ConfigDict(frozen=True)

    service_category: Literal["timed_tour", "point_to_point_transfer", "hourly_wait"]
    day_type: str = ANY_DAY_TYPE
    season: Optional[str] = None  # None applies to every season
    party_size_min: int = 1
    party_size_max: int = 99
    duration_unit: Literal["hour", "mile"] = "hour"
    base_amount: Decimal = Decimal("0")
    per_unit_amount: Decimal = Decimal("0")
    minimum_units: Decimal = Decimal("0")  # e.g. 4 hour minimum
    included_units: Decimal = Decimal("0")  # e.g. first 10 miles in base
    minimum_amount: Decimal = Decimal("0")  # price floor
    per_guest_amount: Decimal = Decimal("0")  # per hour, per guest above included_guests
    included_guests: int = 0
    priority: int = 0
    label: Optional[str] = None

    @field_validator(
        "base_amount",
        "per_unit_amount",
        "minimum_units",
        "included_units",
        "minimum_amount",
        "per_guest_amount",
    )
    @classmethod
    def validate_non_negative(cls, v: Decimal) -> Decimal:
        if v < 0:
            raise ValueError("rate amounts must be non-negative")
        return v

    @model_validator(mode="after")
    def validate_party_range(self):
        if self.party_size_min < 1 or self.party_size_max < self.party_size_min:
            raise ValueError(
                f"invalid party size range {self.party_size_min}-{self.party_size_max}"
            )
        return self

    def matches(
        self,
        service_category: str,
        day_type: str,
        party_size: Optional[int],
        season: Optional[str],
    ) -> bool:
        if self.service_category != service_category:
            return False
        if self.day_type not in (day_type, ANY_DAY_TYPE):
            return False
        if self.season is not None and self.season != season:
            return False
        if party_size is not None and not (self.party_size_min <= party_size <= self.party_size_max):
            return False
        return True

    @property
    def tier_label(self) -> str:
        return self.label or f"{self.party_size_min}-{self.party_size_max} guests"


class SeasonWindow(BaseModel):
    """Named season between two month-day bounds, inclusive. May wrap the year end."""

    model_config = ConfigDict(frozen=True)

    name: str
    start: str = Field(..., pattern=r"^\d{2}-\d{2}$")  # "MM-DD"
    end: str = Field(..., pattern=r"^\d{2}-\d{2}$")


class TransferRoute(BaseModel):
    """Named origin/destination pair with a fixed fare"""

    model_config = ConfigDict(frozen=True)

    route_id: str
    origin: str
    destination: str
    fare: Decimal

    @field_validator("fare")
    @classmethod
    def validate_fare(cls, v: Decimal) -> Decimal:
        if v <= 0:
            raise ValueError("route fare must be positive")
        return v


class RateConfiguration(BaseModel):
    """Versioned, read-only configuration snapshot"""

    model_config = ConfigDict(frozen=True)

    version: str
    currency: str = "USD"
    tax_rate: Decimal = Decimal("0.091")
    deposit_fraction: Decimal = Decimal("0.5")
    party_size_min: int = 1
    party_size_max: int = 14
    weekday_day_types: dict[str, str]
    seasons: tuple[SeasonWindow, ...] = ()
    routes: tuple[TransferRoute, ...] = ()
    rules: tuple[RateRule, ...]

    @field_validator("weekday_day_types")
    @classmethod
    def validate_weekdays(cls, v: dict[str, str]) -> dict[str, str]:
        normalized = {k.strip().lower(): d for k, d in v.items()}
        missing = [day for day in WEEKDAYS if day not in normalized]
        if missing:
            raise ValueError(f"weekday mapping is missing: {', '.join(missing)}")
        unknown = [day for day in normalized if day not in WEEKDAYS]
        if unknown:
            raise ValueError(f"unknown weekdays in mapping: {', '.join(unknown)}")
        return normalized

    @field_validator("tax_rate")
    @classmethod
    def validate_tax_rate(cls, v: Decimal) -> Decimal:
        if v < 0 or v >= 1:
            raise ValueError("tax_rate must be a fraction between 0 and 1")
        # Proposals store the rate as Numeric(7, 5), e.g. 0.08875
        return validate_decimal_places(v, 5, "tax_rate")

    @field_validator("deposit_fraction")
    @classmethod
    def validate_deposit_fraction(cls, v: Decimal) -> Decimal:
        if v < 0 or v > 1:
            raise ValueError("deposit_fraction must be between 0 and 1")
        return validate_decimal_places(v, 4, "deposit_fraction")

    @model_validator(mode="after")
    def validate_party_bounds(self):
        if self.party_size_min < 1 or self.party_size_max < self.party_size_min:
            raise ValueError("invalid party size bounds")
        return self

    def route(self, route_id: str) -> Optional[TransferRoute]:
        for route in self.routes:
            if route.route_id == route_id:
                return route
        return None

    def rate_table(self) -> "RateTable":
        return RateTable(self.rules)


class RateTable:
    """Pure lookup of rate rules by category, day type, party size and season"""

    def __init__(self, rules):
        self.rules = tuple(rules)

    def lookup(
        self,
        service_category: str,
        day_type: str = ANY_DAY_TYPE,
        party_size: Optional[int] = None,
        season: Optional[str] = None,
    ) -> Optional[RateRule]:
        """
        Return the most specific matching rule, or None.

        Season-specific rules beat season-less ones, exact day types beat "any",
        then higher priority, then the narrowest (highest) party bracket.
        """
        candidates = [
            rule
            for rule in self.rules
            if rule.matches(service_category, day_type, party_size, season)
        ]
        if not candidates:
            return None

        def specificity(rule: RateRule):
            return (
                rule.season is not None,
                rule.day_type != ANY_DAY_TYPE,
                rule.priority,
                rule.party_size_min,
            )

        return max(candidates, key=specificity)

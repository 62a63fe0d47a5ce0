"""
Built-in rate configuration.

Used when no RATE_CONFIG_PATH is configured. Tour and wait-time rates are hourly
by party-size bracket; Thursday-Saturday is the premium day type.
"""

from ...config import CURRENCY, DEPOSIT_FRACTION, TAX_RATE

DEFAULT_CONFIG_VERSION = "builtin-2025.1"

# Hourly tour rates by party bracket
_TOUR_BRACKETS = [(1, 2), (3, 4), (5, 6), (7, 8), (9, 11), (12, 14)]
_TOUR_RATES = {
    "standard": ["85", "95", "105", "115", "130", "140"],  # Sun-Wed, 4 hour minimum
    "premium": ["95", "105", "115", "125", "140", "150"],  # Thu-Sat, 5 hour minimum
}
_TOUR_MINIMUM_HOURS = {"standard": "4", "premium": "5"}

_WAIT_BRACKETS = [(1, 4), (5, 8), (9, 14)]
_WAIT_RATES = {
    "standard": ["75", "95", "110"],
    "premium": ["85", "105", "120"],
}


def _tour_rules() -> list[dict]:
    rules = []
    for day_type, rates in _TOUR_RATES.items():
        for (low, high), rate in zip(_TOUR_BRACKETS, rates):
            rules.append(
                {
                    "service_category": "timed_tour",
                    "day_type": day_type,
                    "party_size_min": low,
                    "party_size_max": high,
                    "duration_unit": "hour",
                    "per_unit_amount": rate,
                    "minimum_units": _TOUR_MINIMUM_HOURS[day_type],
                    "label": f"{low}-{high} guests",
                }
            )
    return rules


def _wait_rules() -> list[dict]:
    rules = []
    for day_type, rates in _WAIT_RATES.items():
        for (low, high), rate in zip(_WAIT_BRACKETS, rates):
            rules.append(
                {
                    "service_category": "hourly_wait",
                    "day_type": day_type,
                    "party_size_min": low,
                    "party_size_max": high,
                    "duration_unit": "hour",
                    "per_unit_amount": rate,
                    "minimum_units": "1",
                    "label": f"{low}-{high} guests",
                }
            )
    return rules


DEFAULT_RATE_CONFIGURATION = {
    "version": DEFAULT_CONFIG_VERSION,
    "currency": CURRENCY,
    "tax_rate": TAX_RATE,
    "deposit_fraction": DEPOSIT_FRACTION,
    "party_size_min": 1,
    "party_size_max": 14,
    "weekday_day_types": {
        "sunday": "standard",
        "monday": "standard",
        "tuesday": "standard",
        "wednesday": "standard",
        "thursday": "premium",
        "friday": "premium",
        "saturday": "premium",
    },
    "seasons": [],
    "routes": [
        {
            "route_id": "seatac_to_walla_walla",
            "origin": "SeaTac Airport",
            "destination": "Walla Walla",
            "fare": "850",
        },
        {
            "route_id": "walla_walla_to_seatac",
            "origin": "Walla Walla",
            "destination": "SeaTac Airport",
            "fare": "850",
        },
    ],
    "rules": _tour_rules()
    + _wait_rules()
    + [
        {
            "service_category": "point_to_point_transfer",
            "duration_unit": "mile",
            "base_amount": "100",
            "per_unit_amount": "3",
            "included_units": "10",
            "minimum_amount": "100",
            "label": "Local transfer",
        }
    ],
}

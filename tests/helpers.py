"""Test doubles and request builders shared across test modules"""

from datetime import date, datetime, timedelta
from decimal import Decimal

from app.domain.proposals.collaborators import PaymentConfirmation

STANDARD_DAY = date(2025, 6, 10)  # Tuesday
PREMIUM_DAY = date(2025, 6, 13)  # Friday
NOW = datetime(2025, 5, 1, 12, 0, 0)


class FixedClock:
    """Callable clock that only moves when a test moves it"""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


class FakePaymentProvider:
    """In-memory payment processor; unknown references are unconfirmed"""

    def __init__(self):
        self.payments: dict[str, PaymentConfirmation] = {}
        self.calls: list[str] = []

    def confirm(self, reference: str, amount, currency: str = "USD", confirmed: bool = True) -> None:
        self.payments[reference] = PaymentConfirmation(
            reference=reference, amount=Decimal(str(amount)), currency=currency, confirmed=confirmed
        )

    def verify(self, reference: str) -> PaymentConfirmation:
        self.calls.append(reference)
        return self.payments.get(
            reference, PaymentConfirmation(reference=reference, amount=Decimal("0"), confirmed=False)
        )


def tour_item(**overrides) -> dict:
    """2 guests, 6 hours on a standard day: 6 x $85 = $510"""
    item = {
        "service_category": "timed_tour",
        "description": "Wine tour",
        "date": STANDARD_DAY,
        "party_size": 2,
        "duration_hours": Decimal("6"),
    }
    item.update(overrides)
    return item


def acceptance(**overrides) -> dict:
    record = {
        "signature": "Jordan Client",
        "name": "Jordan Client",
        "email": "jordan@example.com",
        "terms_accepted": True,
    }
    record.update(overrides)
    return record


def decline(**overrides) -> dict:
    payload = {
        "reason": "The total is above our budget this year",
        "category": "price",
        "desired_changes": "Shorter tour",
        "open_to_counter": True,
    }
    payload.update(overrides)
    return payload

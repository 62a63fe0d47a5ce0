"""
External collaborators of the conversion step.

PaymentConfirmationProvider answers "did this payment clear, and for how much".
BookingStore creates bookings idempotently: the same idempotency key always
yields the same booking, no matter how many times it is called.
"""

import logging
import secrets
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Optional, Protocol

import httpx
from fastapi import Depends
from pydantic import BaseModel
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ...config import (
    BOOKING_NUMBER_PREFIX,
    CURRENCY,
    PAYMENT_API_KEY,
    PAYMENT_TIMEOUT_SECONDS,
    PAYMENT_VERIFICATION_URL,
)
from ...database import get_db
from ...models import Booking
from ..errors import CollaboratorUnavailable
from ..pricing.money import ZERO, to_decimal
from .state_machine import utcnow

logger = logging.getLogger(__name__)

# Provider statuses that mean the funds are captured
CONFIRMED_PAYMENT_STATUSES = {"succeeded", "completed", "paid", "captured"}


class PaymentConfirmation(BaseModel):
    reference: str
    amount: Decimal
    currency: str = CURRENCY
    confirmed: bool


class BookingRequest(BaseModel):
    idempotency_key: str
    source_proposal_id: int
    client_name: Optional[str] = None
    client_email: Optional[str] = None
    client_phone: Optional[str] = None
    party_size: Optional[int] = None
    start_date: Optional[date] = None
    items: list[dict[str, Any]] = []
    subtotal: Decimal
    discount_amount: Decimal
    tax_amount: Decimal
    total: Decimal
    gratuity: Decimal = ZERO
    deposit_amount: Decimal
    deposit_paid: bool = True
    payment_reference: str
    currency: str = CURRENCY
    requested_at: Optional[datetime] = None  # Conversion time; stamps the booking


class BookingReference(BaseModel):
    booking_id: int
    booking_number: str


class PaymentConfirmationProvider(Protocol):
    def verify(self, reference: str) -> PaymentConfirmation: ...


class BookingStore(Protocol):
    def create_booking(self, request: BookingRequest) -> BookingReference: ...


class HttpPaymentConfirmationProvider:
    """
    Verifies payments against the processor's HTTP API.

    Expects GET {base_url}/{reference} to return
    {"reference": ..., "amount": "250.39", "currency": "USD", "status": "succeeded"}.
    """

    def __init__(
        self,
        base_url: Optional[str] = PAYMENT_VERIFICATION_URL,
        api_key: Optional[str] = PAYMENT_API_KEY,
        timeout: float = PAYMENT_TIMEOUT_SECONDS,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/") if base_url else None
        self.api_key = api_key
        self.timeout = timeout
        self.transport = transport

    def verify(self, reference: str) -> PaymentConfirmation:
        if not self.base_url:
            raise CollaboratorUnavailable("Payment verification is not configured")

        headers = {"Accept": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        try:
            with httpx.Client(timeout=self.timeout, transport=self.transport) as http_client:
                response = http_client.get(f"{self.base_url}/{reference}", headers=headers)
        except httpx.HTTPError as e:
            logger.error(f"❌ Payment verification request failed for {reference}: {e}")
            raise CollaboratorUnavailable(
                "Payment provider unreachable", payment_reference=reference
            ) from e

        if response.status_code == 404:
            logger.warning(f"⚠️ Payment {reference} not found at provider")
            return PaymentConfirmation(reference=reference, amount=ZERO, confirmed=False)

        if response.status_code != 200:
            logger.error(f"❌ Payment provider returned {response.status_code}: {response.text}")
            raise CollaboratorUnavailable(
                f"Payment provider returned {response.status_code}",
                payment_reference=reference,
            )

        data = response.json()
        status = str(data.get("status", "")).lower()
        return PaymentConfirmation(
            reference=data.get("reference", reference),
            amount=to_decimal(str(data.get("amount", "0"))),
            currency=str(data.get("currency", CURRENCY)).upper(),
            confirmed=status in CONFIRMED_PAYMENT_STATUSES,
        )


def generate_booking_number(now: datetime) -> str:
    """WWT-<year>-<6 digits of timestamp><3 random digits>"""
    timestamp = int(now.timestamp() * 1000) % 1_000_000
    return f"{BOOKING_NUMBER_PREFIX}-{now.year}-{timestamp:06d}{secrets.randbelow(1000):03d}"


class SqlBookingStore:
    """
    Booking store backed by the bookings table.

    Idempotent on idempotency_key: a repeat call returns the booking created by
    the first one. The insert shares the caller's session, so a conversion that
    fails afterwards rolls the booking back with it.
    """

    def __init__(self, db: Session):
        self.db = db

    def _find(self, idempotency_key: str) -> Optional[Booking]:
        return self.db.query(Booking).filter(Booking.idempotency_key == idempotency_key).first()

    def create_booking(self, request: BookingRequest) -> BookingReference:
        existing = self._find(request.idempotency_key)
        if existing:
            logger.info(f"♻️ Booking {existing.booking_number} already exists for {request.idempotency_key}")
            return BookingReference(booking_id=existing.id, booking_number=existing.booking_number)

        now = request.requested_at or utcnow()
        booking = Booking(
            booking_number=generate_booking_number(now),
            status="confirmed",
            created_at=now,
            **request.model_dump(mode="python", exclude={"requested_at"}),
        )
        self.db.add(booking)
        try:
            self.db.flush()
        except IntegrityError:
            # Another converter inserted the same key first; nothing else is
            # staged in this transaction yet, so a rollback loses no work
            self.db.rollback()
            existing = self._find(request.idempotency_key)
            if not existing:
                raise
            return BookingReference(booking_id=existing.id, booking_number=existing.booking_number)

        logger.info(f"✅ Booking {booking.booking_number} created for {request.idempotency_key}")
        return BookingReference(booking_id=booking.id, booking_number=booking.booking_number)


def get_payment_provider() -> PaymentConfirmationProvider:
    return HttpPaymentConfirmationProvider()


def get_booking_store(db: Session = Depends(get_db)) -> BookingStore:
    return SqlBookingStore(db)

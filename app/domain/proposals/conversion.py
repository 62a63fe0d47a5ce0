"""
Conversion transactor - accepted proposal to confirmed booking, exactly once.

1. A proposal that already links a booking returns that booking.
2. The payment reference must be confirmed for at least the deposit.
3. The booking store is called with idempotency key "proposal:<id>", so a
   retried or concurrent conversion gets the same booking back.
4. The booking link and the converted status are written with one conditional
   update that only matches an accepted proposal without a link. A converter
   that loses that race rolls back and returns the winner's booking.
"""

import logging
from datetime import datetime
from typing import Callable, Optional

from sqlalchemy.orm import Session

from ...models import Proposal
from ..errors import (
    AlreadyConverted,
    CollaboratorUnavailable,
    InvalidStateTransition,
    PaymentNotVerified,
    ProposalNotFound,
)
from ..pricing.money import ZERO, to_decimal
from .collaborators import (
    BookingReference,
    BookingRequest,
    BookingStore,
    PaymentConfirmationProvider,
    SqlBookingStore,
)
from .repository import ProposalRepository
from .schemas import ConversionResponse
from .state_machine import ACCEPTED, resolve_transition, utcnow

logger = logging.getLogger(__name__)


def idempotency_key(proposal_id: int) -> str:
    return f"proposal:{proposal_id}"


def booking_request(proposal: Proposal, payment_reference: str, now: Optional[datetime] = None) -> BookingRequest:
    """Snapshot of the accepted proposal handed to the booking store"""
    items = [
        {
            "service_category": row.service_category,
            "description": row.description,
            "date": row.service_date.isoformat() if row.service_date else None,
            "party_size": row.party_size,
            "duration_hours": str(row.duration_hours) if row.duration_hours is not None else None,
            "price": str(row.effective_price),
        }
        for row in proposal.service_items
    ]
    dates = [row.service_date for row in proposal.service_items if row.service_date]
    party_sizes = [row.party_size for row in proposal.service_items if row.party_size]
    return BookingRequest(
        idempotency_key=idempotency_key(proposal.id),
        source_proposal_id=proposal.id,
        client_name=proposal.client_name,
        client_email=proposal.client_email,
        client_phone=proposal.client_phone,
        party_size=max(party_sizes) if party_sizes else None,
        start_date=min(dates) if dates else None,
        items=items,
        subtotal=proposal.subtotal,
        discount_amount=proposal.discount_amount,
        tax_amount=proposal.tax_amount,
        total=proposal.total,
        gratuity=proposal.accepted_gratuity_amount or ZERO,
        deposit_amount=proposal.deposit_amount,
        deposit_paid=True,
        payment_reference=payment_reference,
        currency=proposal.currency,
        requested_at=now,
    )


class ConversionTransactor:
    """Turns an accepted proposal into exactly one booking"""

    def __init__(
        self,
        db: Session,
        payment_provider: Optional[PaymentConfirmationProvider],
        booking_store: Optional[BookingStore] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.db = db
        self.repo = ProposalRepository()
        self.payment_provider = payment_provider
        self.booking_store = booking_store or SqlBookingStore(db)
        self.clock = clock or utcnow

    def _load(self, proposal_id: int) -> Proposal:
        proposal = self.repo.get_proposal_by_id(self.db, proposal_id)
        if not proposal:
            raise ProposalNotFound("Proposal not found", proposal_id=proposal_id)
        return proposal

    @staticmethod
    def _check_not_converted(proposal: Proposal) -> None:
        if proposal.converted_to_booking_id is not None:
            raise AlreadyConverted(
                f"Proposal already converted to booking {proposal.converted_booking_number}",
                booking_id=proposal.converted_to_booking_id,
                booking_number=proposal.converted_booking_number,
                proposal_id=proposal.id,
            )

    def _verify_payment(self, proposal: Proposal, payment_reference: str) -> None:
        if self.payment_provider is None:
            raise CollaboratorUnavailable("No payment provider configured", proposal_id=proposal.id)

        confirmation = self.payment_provider.verify(payment_reference)
        required = to_decimal(proposal.deposit_amount)
        if not confirmation.confirmed:
            raise PaymentNotVerified(
                f"Payment {payment_reference} is not confirmed",
                field="payment_reference",
                proposal_id=proposal.id,
            )
        if confirmation.currency != proposal.currency:
            raise PaymentNotVerified(
                f"Payment currency {confirmation.currency} does not match {proposal.currency}",
                field="payment_reference",
                proposal_id=proposal.id,
            )
        if confirmation.amount < required:
            raise PaymentNotVerified(
                f"Payment of {confirmation.amount} is less than the required deposit {required}",
                field="payment_reference",
                proposal_id=proposal.id,
                paid=str(confirmation.amount),
                required=str(required),
            )

    def convert(
        self,
        proposal_id: int,
        payment_reference: Optional[str],
        actor_type: str = "staff",
    ) -> ConversionResponse:
        proposal = self._load(proposal_id)
        try:
            return self._convert(proposal, payment_reference, actor_type)
        except AlreadyConverted as e:
            logger.info(f"♻️ Proposal {proposal_id} already converted, returning booking {e.booking_number}")
            return ConversionResponse(
                booking_id=e.booking_id, booking_number=e.booking_number, already_converted=True
            )

    def _convert(self, proposal: Proposal, payment_reference: Optional[str], actor_type: str) -> ConversionResponse:
        self._check_not_converted(proposal)
        transition = resolve_transition(proposal.status, "convert", proposal.id)
        if not payment_reference:
            raise PaymentNotVerified(
                "A payment reference is required to convert",
                field="payment_reference",
                proposal_id=proposal.id,
            )
        self._verify_payment(proposal, payment_reference)

        now = self.clock()
        request = booking_request(proposal, payment_reference, now)
        try:
            booking: BookingReference = self.booking_store.create_booking(request)
            linked = self.repo.link_booking(
                self.db,
                proposal.id,
                booking.booking_id,
                booking.booking_number,
                payment_reference,
                now,
            )
            if not linked:
                self.db.rollback()
                self.db.refresh(proposal)
                self._check_not_converted(proposal)
                raise InvalidStateTransition(
                    f"Proposal is '{proposal.status}', expected '{ACCEPTED}'",
                    proposal_id=proposal.id,
                    status=proposal.status,
                )
            self.repo.log_activity(
                self.db,
                proposal.id,
                action=transition.action,
                description=f"Converted to booking {booking.booking_number}",
                actor_type=actor_type,
                details={
                    "booking_id": booking.booking_id,
                    "booking_number": booking.booking_number,
                    "payment_reference": payment_reference,
                },
                now=now,
            )
            self.db.commit()
        except (AlreadyConverted, InvalidStateTransition):
            raise
        except Exception:
            self.db.rollback()
            raise

        self.db.refresh(proposal)
        logger.info(
            f"🎉 Proposal {proposal.proposal_number} converted to booking {booking.booking_number}"
        )
        return ConversionResponse(booking_id=booking.booking_id, booking_number=booking.booking_number)

"""Proposal router - FastAPI endpoints for proposal pricing and lifecycle"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ...database import get_db
from ..pricing.rate_table import RateConfiguration
from ..pricing.repository import get_rate_configuration
from ..pricing.schemas import ComputedTotals
from .collaborators import (
    BookingStore,
    PaymentConfirmationProvider,
    get_booking_store,
    get_payment_provider,
)
from .schemas import (
    ActivityResponse,
    ConversionResponse,
    ConvertRequest,
    ProposalCreate,
    ProposalItemsUpdate,
    ProposalResponse,
    ReissueRequest,
    TransitionRequest,
)
from .service import Clock, ProposalService, recompute_totals, serialize_proposal, utcnow

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/proposals", tags=["Proposals"])


def get_clock() -> Clock:
    return utcnow


def get_proposal_service(
    db: Session = Depends(get_db),
    config: RateConfiguration = Depends(get_rate_configuration),
    clock: Clock = Depends(get_clock),
    payment_provider: PaymentConfirmationProvider = Depends(get_payment_provider),
    booking_store: BookingStore = Depends(get_booking_store),
) -> ProposalService:
    """Dependency injection for ProposalService"""
    return ProposalService(
        db,
        config,
        clock=clock,
        payment_provider=payment_provider,
        booking_store=booking_store,
    )


@router.post("", response_model=ProposalResponse, status_code=201)
def create_proposal(
    data: ProposalCreate,
    service: ProposalService = Depends(get_proposal_service),
):
    """Create a draft proposal"""
    return serialize_proposal(service.create_proposal(data))


@router.get("/public/{public_id}", response_model=ProposalResponse)
def get_public_proposal(
    public_id: str,
    service: ProposalService = Depends(get_proposal_service),
):
    """Client-facing lookup by public UUID"""
    return serialize_proposal(service.get_proposal_by_public_id(public_id))


@router.get("/{proposal_id}", response_model=ProposalResponse)
def get_proposal(
    proposal_id: int,
    service: ProposalService = Depends(get_proposal_service),
):
    return serialize_proposal(service.get_proposal(proposal_id))


@router.put("/{proposal_id}/items", response_model=ProposalResponse)
def update_proposal_items(
    proposal_id: int,
    data: ProposalItemsUpdate,
    service: ProposalService = Depends(get_proposal_service),
):
    """Replace items and add-ons of an open proposal"""
    return serialize_proposal(service.update_items(proposal_id, data))


@router.get("/{proposal_id}/totals", response_model=ComputedTotals)
def get_proposal_totals(
    proposal_id: int,
    service: ProposalService = Depends(get_proposal_service),
):
    """Totals re-derived from the stored line items"""
    return recompute_totals(service.get_proposal(proposal_id))


@router.post("/{proposal_id}/recompute", response_model=ProposalResponse)
def reprice_proposal(
    proposal_id: int,
    service: ProposalService = Depends(get_proposal_service),
):
    """Re-run the calculators against the current rate configuration"""
    return serialize_proposal(service.reprice(proposal_id))


@router.post("/{proposal_id}/transitions", response_model=ProposalResponse)
def transition_proposal(
    proposal_id: int,
    data: TransitionRequest,
    service: ProposalService = Depends(get_proposal_service),
):
    """Apply a lifecycle event (send, view, accept, decline, expire, convert)"""
    proposal = service.transition(proposal_id, data.event, data.payload, actor_type=data.actor_type)
    return serialize_proposal(proposal)


@router.post("/{proposal_id}/convert", response_model=ConversionResponse)
def convert_proposal(
    proposal_id: int,
    data: ConvertRequest,
    service: ProposalService = Depends(get_proposal_service),
):
    """Convert an accepted proposal to a booking; repeat calls return the same booking"""
    return service.convert(proposal_id, data.payment_reference)


@router.post("/{proposal_id}/reissue", response_model=ProposalResponse, status_code=201)
def reissue_proposal(
    proposal_id: int,
    data: Optional[ReissueRequest] = None,
    service: ProposalService = Depends(get_proposal_service),
):
    """New draft version of a declined or expired proposal"""
    return serialize_proposal(service.reissue(proposal_id, data))


@router.get("/{proposal_id}/activity", response_model=list[ActivityResponse])
def get_proposal_activity(
    proposal_id: int,
    service: ProposalService = Depends(get_proposal_service),
):
    return service.get_activity(proposal_id)

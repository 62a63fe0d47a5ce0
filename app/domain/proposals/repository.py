"""Proposal repository - Database operations for proposals"""

import secrets
from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from ...config import PROPOSAL_NUMBER_PREFIX
from ...models import Proposal, ProposalActivity, ProposalAddon, ProposalServiceItem


class ProposalRepository:
    """Repository for proposal database operations"""

    @staticmethod
    def get_proposal_by_id(db: Session, proposal_id: int) -> Optional[Proposal]:
        return db.query(Proposal).filter(Proposal.id == proposal_id).first()

    @staticmethod
    def get_proposal_by_public_id(db: Session, public_id: str) -> Optional[Proposal]:
        """Get a proposal by public UUID"""
        return db.query(Proposal).filter(Proposal.public_id == public_id).first()

    @staticmethod
    def generate_proposal_number(db: Session, now: datetime) -> str:
        """PRO-<year>-<6 digits>, retried until unused"""
        while True:
            number = f"{PROPOSAL_NUMBER_PREFIX}-{now.year}-{secrets.randbelow(1_000_000):06d}"
            exists = db.query(Proposal.id).filter(Proposal.proposal_number == number).first()
            if not exists:
                return number

    @staticmethod
    def add_proposal(db: Session, proposal: Proposal) -> Proposal:
        """Stage a new proposal; the caller commits"""
        db.add(proposal)
        db.flush()
        return proposal

    @staticmethod
    def compare_and_set(
        db: Session,
        proposal_id: int,
        expected_status: str,
        expected_version: int,
        values: dict,
    ) -> bool:
        """
        Conditional update: applies values only if status and lock_version still
        match what the caller read. Returns False when another writer got there first.
        """
        values = dict(values)
        values["lock_version"] = expected_version + 1
        updated = (
            db.query(Proposal)
            .filter(
                Proposal.id == proposal_id,
                Proposal.status == expected_status,
                Proposal.lock_version == expected_version,
            )
            .update(values, synchronize_session=False)
        )
        return updated == 1

    @staticmethod
    def link_booking(
        db: Session,
        proposal_id: int,
        booking_id: int,
        booking_number: str,
        payment_reference: str,
        now: datetime,
    ) -> bool:
        """
        Set the booking link exactly once. Matches only an accepted proposal
        whose link is still empty, so a second converter updates nothing.
        """
        updated = (
            db.query(Proposal)
            .filter(
                Proposal.id == proposal_id,
                Proposal.status == "accepted",
                Proposal.converted_to_booking_id.is_(None),
            )
            .update(
                {
                    "status": "converted",
                    "converted_to_booking_id": booking_id,
                    "converted_booking_number": booking_number,
                    "payment_reference": payment_reference,
                    "converted_at": now,
                    "lock_version": Proposal.lock_version + 1,
                },
                synchronize_session=False,
            )
        )
        return updated == 1

    @staticmethod
    def replace_line_items(
        db: Session,
        proposal: Proposal,
        service_items: list[ProposalServiceItem],
        addons: list[ProposalAddon],
    ) -> None:
        """Swap the proposal's service items and add-ons (orphans are deleted)"""
        proposal.service_items.clear()
        proposal.addons.clear()
        db.flush()
        proposal.service_items.extend(service_items)
        proposal.addons.extend(addons)
        db.flush()

    @staticmethod
    def log_activity(
        db: Session,
        proposal_id: int,
        action: str,
        description: Optional[str] = None,
        actor_type: str = "system",
        details: Optional[dict] = None,
        now: Optional[datetime] = None,
    ) -> ProposalActivity:
        activity = ProposalActivity(
            proposal_id=proposal_id,
            action=action,
            description=description,
            actor_type=actor_type,
            details=details,
            created_at=now,
        )
        db.add(activity)
        return activity

    @staticmethod
    def get_activity(db: Session, proposal_id: int) -> list[ProposalActivity]:
        return (
            db.query(ProposalActivity)
            .filter(ProposalActivity.proposal_id == proposal_id)
            .order_by(ProposalActivity.id)
            .all()
        )

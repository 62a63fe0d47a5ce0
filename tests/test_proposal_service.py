"""
Tests for ProposalService: creation, editing, lifecycle, lazy expiry, races and reissue
"""

from datetime import timedelta
from decimal import Decimal

import pytest
from pydantic import ValidationError

from app.domain.errors import (
    InvalidStateTransition,
    NoRateTierFound,
    ProposalExpired,
    ProposalNotFound,
)
from app.domain.pricing.schemas import AddonInput, GratuityConfig, OverrideInput, ServiceItemInput
from app.domain.proposals.repository import ProposalRepository
from app.domain.proposals.schemas import ActivityResponse, ProposalCreate, ProposalItemsUpdate, ReissueRequest
from app.domain.proposals.service import grand_total, recompute_totals, serialize_proposal
from app.models import Proposal, ProposalActivity
from helpers import NOW, PREMIUM_DAY, acceptance, decline, tour_item


def new_proposal(service, **overrides):
    data = {
        "client_name": "Jordan Client",
        "client_email": "jordan@example.com",
        "client_phone": "(509) 555-0100",
        "title": "Walla Walla wine weekend",
        "service_items": [tour_item()],
        "discount_percentage": Decimal("10"),
    }
    data.update(overrides)
    return service.create_proposal(ProposalCreate(**data))


def actions(db_session, proposal_id):
    return [a.action for a in ProposalRepository.get_activity(db_session, proposal_id)]


class TestCreateProposal:
    """Draft creation and stored totals"""

    def test_reference_quote(self, service, rate_config):
        proposal = new_proposal(service)
        assert proposal.status == "draft"
        assert proposal.proposal_number.startswith(f"PRO-{NOW.year}-")
        assert proposal.subtotal == Decimal("510.00")
        assert proposal.discount_amount == Decimal("51.00")
        assert proposal.tax_amount == Decimal("41.77")
        assert proposal.total == Decimal("500.77")
        assert proposal.deposit_amount == Decimal("250.39")
        assert proposal.balance_amount == Decimal("250.38")
        assert proposal.valid_until == NOW + timedelta(days=14)
        assert proposal.config_version == rate_config.version
        assert proposal.version_number == 1
        assert proposal.client_phone == "+15095550100"

    def test_stored_totals_match_recompute(self, service):
        proposal = new_proposal(
            service,
            service_items=[tour_item(), tour_item(party_size=6, date=PREMIUM_DAY)],
            addons=[AddonInput(description="Picnic lunch", quantity=Decimal("2"), unit_price=Decimal("24.50"))],
        )
        totals = recompute_totals(proposal)
        assert totals.total == proposal.total
        assert totals.deposit_amount == proposal.deposit_amount
        assert totals.addons_subtotal == Decimal("49.00")

    def test_item_snapshot(self, service, db_session):
        proposal = new_proposal(service)
        row = proposal.service_items[0]
        assert row.calculated_price == row.effective_price == Decimal("510.00")
        assert row.pricing_mode == "calculated"
        assert row.price_breakdown["rate_tier"] == "1-2 guests"
        assert actions(db_session, proposal.id) == ["created"]

    def test_pricing_error_writes_nothing(self, service, db_session):
        service.config = service.config.model_copy(update={"rules": ()})
        with pytest.raises(NoRateTierFound):
            new_proposal(service)
        assert db_session.query(Proposal).count() == 0

    def test_unknown_proposal(self, service):
        with pytest.raises(ProposalNotFound):
            service.get_proposal(404)


class TestEditing:
    """Items, add-ons and discount change only while the proposal is open"""

    def test_update_items_recomputes(self, service, db_session):
        proposal = new_proposal(service)
        updated = service.update_items(
            proposal.id,
            ProposalItemsUpdate(
                service_items=[ServiceItemInput(**tour_item(party_size=4, date=PREMIUM_DAY))],
                discount_percentage=Decimal("0"),
            ),
        )
        assert updated.subtotal == Decimal("630.00")
        assert updated.discount_amount == Decimal("0.00")
        assert updated.total == Decimal("687.33")
        assert len(updated.service_items) == 1
        assert updated.lock_version == 1
        assert actions(db_session, proposal.id) == ["created", "items_updated"]

    def test_override_without_reason_surfaces_warning(self, service):
        proposal = new_proposal(service)
        item = ServiceItemInput(
            **tour_item(),
            override=OverrideInput(mode="fixed_override", rate_or_amount=Decimal("450")),
        )
        updated = service.update_items(proposal.id, ProposalItemsUpdate(service_items=[item]))
        row = updated.service_items[0]
        assert row.calculated_price == Decimal("510.00")
        assert row.effective_price == Decimal("450.00")
        assert row.pricing_mode == "fixed_override"
        assert serialize_proposal(updated).warnings

    def test_edits_rejected_after_acceptance(self, service):
        proposal = new_proposal(service)
        service.transition(proposal.id, "send")
        service.transition(proposal.id, "accept", acceptance())
        with pytest.raises(InvalidStateTransition):
            service.update_items(
                proposal.id, ProposalItemsUpdate(service_items=[ServiceItemInput(**tour_item(party_size=8))])
            )
        assert service.get_proposal(proposal.id).total == Decimal("500.77")

    def test_reprice_uses_current_configuration(self, service, make_service, db_session, rate_config):
        proposal = new_proposal(service)
        raised = tuple(
            rule.model_copy(update={"per_unit_amount": Decimal("90")})
            if rule.service_category == "timed_tour" and rule.day_type == "standard" and rule.party_size_min == 1
            else rule
            for rule in rate_config.rules
        )
        new_config = rate_config.model_copy(update={"version": "2025.2", "rules": raised})

        repriced = make_service(db_session, config=new_config).reprice(proposal.id)
        assert repriced.services_subtotal == Decimal("540.00")
        assert repriced.config_version == "2025.2"
        assert repriced.service_items[0].config_version == "2025.2"

    def test_sent_proposal_cannot_be_emptied(self, service):
        proposal = new_proposal(service)
        service.transition(proposal.id, "send")
        with pytest.raises(InvalidStateTransition) as exc:
            service.update_items(proposal.id, ProposalItemsUpdate(service_items=[]))
        assert exc.value.field == "service_items"

        proposal = service.get_proposal(proposal.id)
        assert len(proposal.service_items) == 1
        assert proposal.total == Decimal("500.77")

    def test_draft_can_be_emptied(self, service):
        proposal = new_proposal(service)
        emptied = service.update_items(proposal.id, ProposalItemsUpdate(service_items=[]))
        assert emptied.service_items == []
        assert emptied.total == Decimal("0.00")


class TestStoredPrecision:
    """Stored inputs reproduce the stored totals after a reload"""

    def test_fine_tax_rate_survives_storage(self, make_service, db_session, rate_config):
        service = make_service(db_session, config=rate_config.model_copy(update={"tax_rate": Decimal("0.08875")}))
        proposal = new_proposal(
            service, service_items=[tour_item(duration_hours=Decimal("7"))], discount_percentage=Decimal("12.35")
        )
        proposal_id, total = proposal.id, proposal.total

        db_session.expire_all()
        reloaded = service.get_proposal(proposal_id)
        assert reloaded.tax_rate == Decimal("0.08875")
        assert reloaded.discount_percentage == Decimal("12.35")
        totals = recompute_totals(reloaded)
        assert totals.total == reloaded.total == total
        assert totals.tax_amount == reloaded.tax_amount
        assert reloaded.total == reloaded.subtotal - reloaded.discount_amount + reloaded.tax_amount

    def test_reprice_without_changes_keeps_total(self, service, db_session):
        item = ServiceItemInput(
            **tour_item(duration_hours=Decimal("6.25")),
            override=OverrideInput(mode="hourly_override", rate_or_amount=Decimal("92.50"), reason="Regular"),
        )
        proposal = new_proposal(service, service_items=[item])
        proposal_id, total = proposal.id, proposal.total

        db_session.expire_all()
        assert service.reprice(proposal_id).total == total

    @pytest.mark.parametrize(
        "fields",
        [
            {"service_items": [tour_item(duration_hours=Decimal("6.125"))]},
            {"discount_percentage": Decimal("12.345")},
            {
                "service_items": [
                    {
                        **tour_item(),
                        "override": {"mode": "fixed_override", "rate_or_amount": "450.005", "reason": "VIP"},
                    }
                ]
            },
            {"addons": [{"description": "Tasting fees", "quantity": "1.5", "unit_price": "19.999"}]},
        ],
    )
    def test_inputs_finer_than_storage_rejected(self, fields):
        data = {"client_name": "Jordan Client", "service_items": [tour_item()], **fields}
        with pytest.raises(ValidationError):
            ProposalCreate(**data)


class TestLifecycle:
    def test_send_view_accept(self, service, clock, db_session):
        proposal = new_proposal(service)
        service.transition(proposal.id, "send", actor_type="staff")
        assert proposal.status == "sent"
        assert proposal.sent_at == NOW

        clock.advance(hours=1)
        service.transition(proposal.id, "view", actor_type="customer")
        clock.advance(hours=1)
        service.transition(proposal.id, "view", actor_type="customer")
        assert proposal.status == "viewed"
        assert proposal.view_count == 2
        assert proposal.first_viewed_at == NOW + timedelta(hours=1)
        assert proposal.last_viewed_at == clock.now

        service.transition(proposal.id, "accept", acceptance(), actor_type="customer")
        assert proposal.status == "accepted"
        assert proposal.accepted_at == clock.now
        assert proposal.acceptance_record["signature"] == "Jordan Client"
        assert actions(db_session, proposal.id) == [
            "created",
            "status_sent",
            "viewed",
            "viewed",
            "status_accepted",
        ]

    def test_send_without_items_rejected(self, service):
        proposal = new_proposal(service, service_items=[])
        with pytest.raises(InvalidStateTransition):
            service.transition(proposal.id, "send")
        assert service.get_proposal(proposal.id).status == "draft"

    def test_view_before_send_rejected(self, service):
        proposal = new_proposal(service)
        with pytest.raises(InvalidStateTransition):
            service.transition(proposal.id, "view")

    def test_accept_without_record_rejected(self, service):
        proposal = new_proposal(service)
        service.transition(proposal.id, "send")
        with pytest.raises(InvalidStateTransition):
            service.transition(proposal.id, "accept")
        with pytest.raises(InvalidStateTransition):
            service.transition(proposal.id, "accept", acceptance(email="not-an-email"))
        assert proposal.status == "sent"

    def test_second_accept_changes_nothing(self, service):
        proposal = new_proposal(service)
        service.transition(proposal.id, "send")
        service.transition(proposal.id, "accept", acceptance())
        record, total, lock_version = dict(proposal.acceptance_record), proposal.total, proposal.lock_version

        with pytest.raises(InvalidStateTransition):
            service.transition(proposal.id, "accept", acceptance(signature="Someone Else", name="Someone Else"))

        proposal = service.get_proposal(proposal.id)
        assert proposal.status == "accepted"
        assert proposal.acceptance_record == record
        assert proposal.total == total
        assert proposal.lock_version == lock_version

    def test_accepted_gratuity_kept_out_of_total(self, service):
        proposal = new_proposal(
            service, gratuity=GratuityConfig(enabled=True, suggested_percentage=Decimal("20"))
        )
        service.transition(proposal.id, "send")
        service.transition(proposal.id, "accept", acceptance(gratuity_percentage="20"))
        assert proposal.total == Decimal("500.77")
        assert proposal.accepted_gratuity_amount == Decimal("100.15")
        assert grand_total(proposal) == Decimal("600.92")

    def test_decline_requires_reason(self, service):
        proposal = new_proposal(service)
        service.transition(proposal.id, "send")
        with pytest.raises(InvalidStateTransition):
            service.transition(proposal.id, "decline", decline(reason="no"))
        assert proposal.status == "sent"

        service.transition(proposal.id, "decline", decline())
        assert proposal.status == "declined"
        assert proposal.decline_feedback["category"] == "price"
        assert proposal.decline_feedback["open_to_counter"] is True

    def test_terminal_states_reject_events(self, service):
        proposal = new_proposal(service)
        service.transition(proposal.id, "decline", decline())
        for event in ("send", "view", "accept", "expire"):
            with pytest.raises(InvalidStateTransition):
                service.transition(proposal.id, event, acceptance() if event == "accept" else None)


class TestExpiry:
    """Lazy expiry on read; explicit expire only after valid_until"""

    def test_read_past_valid_until_persists_expiry(self, service, clock, db_session):
        proposal = new_proposal(service)
        service.transition(proposal.id, "send")
        clock.advance(days=15)

        expired = service.get_proposal(proposal.id)
        assert expired.status == "expired"
        assert expired.expired_at == clock.now
        assert actions(db_session, proposal.id)[-1] == "status_expired"

    def test_accept_after_expiry_then_expire(self, service, clock):
        proposal = new_proposal(service)
        service.transition(proposal.id, "send")
        clock.advance(days=14, seconds=1)

        with pytest.raises(ProposalExpired):
            service.transition(proposal.id, "accept", acceptance())
        assert proposal.status == "sent"

        service.transition(proposal.id, "expire")
        assert proposal.status == "expired"

    def test_expire_within_window_rejected(self, service):
        proposal = new_proposal(service)
        service.transition(proposal.id, "send")
        with pytest.raises(InvalidStateTransition):
            service.transition(proposal.id, "expire")

    def test_accepted_proposals_do_not_expire(self, service, clock):
        proposal = new_proposal(service)
        service.transition(proposal.id, "send")
        service.transition(proposal.id, "accept", acceptance())
        clock.advance(days=30)
        assert service.get_proposal(proposal.id).status == "accepted"


class TestConcurrentWriters:
    """Conditional updates: exactly one of two racing writers wins"""

    def test_stale_writer_loses(self, service, session_factory, make_service):
        proposal = new_proposal(service)
        service.transition(proposal.id, "send")

        other_session = session_factory()
        try:
            stale = make_service(other_session)
            stale.get_proposal(proposal.id)  # loads status "sent"

            service.transition(proposal.id, "accept", acceptance())

            with pytest.raises(InvalidStateTransition):
                stale.transition(proposal.id, "decline", decline())
        finally:
            other_session.close()

        assert service.get_proposal(proposal.id).status == "accepted"

    def test_compare_and_set_checks_version(self, service, db_session):
        proposal = new_proposal(service)
        assert not ProposalRepository.compare_and_set(
            db_session, proposal.id, "draft", proposal.lock_version + 1, {"title": "x"}
        )
        assert not ProposalRepository.compare_and_set(
            db_session, proposal.id, "sent", proposal.lock_version, {"title": "x"}
        )
        assert ProposalRepository.compare_and_set(
            db_session, proposal.id, "draft", proposal.lock_version, {"title": "x"}
        )
        db_session.commit()


class TestReissue:
    def test_reissue_declined_proposal(self, service, db_session):
        original = new_proposal(service)
        service.transition(original.id, "decline", decline())

        reissued = service.reissue(original.id, ReissueRequest(discount_percentage=Decimal("15")))
        assert reissued.id != original.id
        assert reissued.status == "draft"
        assert reissued.parent_proposal_id == original.id
        assert reissued.version_number == 2
        assert reissued.discount_percentage == Decimal("15")
        assert len(reissued.service_items) == 1
        assert reissued.services_subtotal == Decimal("510.00")
        assert actions(db_session, reissued.id) == ["reissued"]
        assert actions(db_session, original.id)[-1] == "superseded"
        assert service.get_proposal(original.id).status == "declined"

    def test_reissue_expired_proposal(self, service, clock):
        original = new_proposal(service)
        service.transition(original.id, "send")
        clock.advance(days=20)
        reissued = service.reissue(original.id)
        assert service.get_proposal(original.id).status == "expired"
        assert reissued.valid_until == clock.now + timedelta(days=14)

    def test_open_proposal_cannot_be_reissued(self, service):
        proposal = new_proposal(service)
        with pytest.raises(InvalidStateTransition):
            service.reissue(proposal.id)

    def test_activity_log(self, service, db_session):
        proposal = new_proposal(service)
        service.transition(proposal.id, "send", actor_type="staff")
        entries = db_session.query(ProposalActivity).filter_by(proposal_id=proposal.id).all()
        assert entries[-1].actor_type == "staff"
        assert entries[-1].details == {"event": "send", "from": "draft", "to": "sent"}

    def test_activity_rows_serialize(self, service):
        proposal = new_proposal(service)
        service.transition(proposal.id, "send", actor_type="staff")
        responses = [ActivityResponse.model_validate(row) for row in service.get_activity(proposal.id)]
        assert [r.action for r in responses] == ["created", "status_sent"]
        assert responses[1].details["to"] == "sent"

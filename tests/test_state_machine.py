"""
Unit tests for the lifecycle transition table
"""

from datetime import datetime, timedelta
from decimal import Decimal
from types import SimpleNamespace

import pytest

from app.domain.errors import InvalidStateTransition, ProposalExpired
from app.domain.proposals.schemas import AcceptanceRecord, DeclineRequest
from app.domain.proposals.state_machine import (
    EVENTS,
    STATUSES,
    TERMINAL_STATES,
    TRANSITIONS,
    accepted_gratuity,
    allowed_events,
    resolve_transition,
)
from helpers import NOW, acceptance


def proposal(**fields):
    values = {
        "id": 1,
        "status": "sent",
        "valid_until": NOW + timedelta(days=14),
        "service_items": [object()],
        "client_name": "Jordan Client",
        "client_email": "jordan@example.com",
        "client_phone": None,
        "view_count": 0,
        "first_viewed_at": None,
        "gratuity_config": None,
        "total": Decimal("500.77"),
    }
    values.update(fields)
    return SimpleNamespace(**values)


class TestTransitionTable:
    def test_terminal_states_accept_no_events(self):
        for status in TERMINAL_STATES:
            assert allowed_events(status) == []

    def test_every_pair_outside_the_table_is_rejected(self):
        for status in STATUSES:
            for event in EVENTS:
                if (status, event) in TRANSITIONS:
                    continue
                with pytest.raises(InvalidStateTransition):
                    resolve_transition(status, event)

    @pytest.mark.parametrize(
        "status,event,target",
        [
            ("draft", "send", "sent"),
            ("sent", "view", "viewed"),
            ("viewed", "view", "viewed"),
            ("sent", "accept", "accepted"),
            ("viewed", "accept", "accepted"),
            ("draft", "decline", "declined"),
            ("viewed", "decline", "declined"),
            ("sent", "expire", "expired"),
            ("accepted", "convert", "converted"),
        ],
    )
    def test_allowed_transitions(self, status, event, target):
        assert resolve_transition(status, event).target == target

    def test_no_resend_and_no_accept_from_draft(self):
        assert "send" not in allowed_events("sent")
        assert "accept" not in allowed_events("draft")
        assert "expire" not in allowed_events("accepted")


class TestGuards:
    def test_send_requires_items(self):
        transition = resolve_transition("draft", "send")
        with pytest.raises(InvalidStateTransition) as exc:
            transition.guard(proposal(status="draft", service_items=[]), None, NOW)
        assert exc.value.field == "service_items"

    def test_send_requires_contact(self):
        transition = resolve_transition("draft", "send")
        with pytest.raises(InvalidStateTransition):
            transition.guard(proposal(status="draft", client_email=None), None, NOW)

    def test_accept_after_valid_until(self):
        transition = resolve_transition("sent", "accept")
        stale = proposal(valid_until=NOW - timedelta(seconds=1))
        with pytest.raises(ProposalExpired):
            transition.guard(stale, AcceptanceRecord(**acceptance()), NOW)

    def test_accept_requires_items(self):
        transition = resolve_transition("viewed", "accept")
        with pytest.raises(InvalidStateTransition) as exc:
            transition.guard(proposal(status="viewed", service_items=[]), AcceptanceRecord(**acceptance()), NOW)
        assert exc.value.field == "service_items"

    def test_accept_requires_terms(self):
        transition = resolve_transition("sent", "accept")
        with pytest.raises(InvalidStateTransition) as exc:
            transition.guard(proposal(), AcceptanceRecord(**acceptance(terms_accepted=False)), NOW)
        assert exc.value.field == "terms_accepted"

    def test_decline_reason_length(self):
        transition = resolve_transition("viewed", "decline")
        with pytest.raises(InvalidStateTransition) as exc:
            transition.guard(proposal(status="viewed"), DeclineRequest(reason="   too much   "), NOW)
        assert exc.value.field == "reason"
        transition.guard(proposal(status="viewed"), DeclineRequest(reason="Too expensive for us"), NOW)

    def test_expire_only_after_valid_until(self):
        transition = resolve_transition("sent", "expire")
        with pytest.raises(InvalidStateTransition):
            transition.guard(proposal(), None, NOW)
        transition.guard(proposal(valid_until=NOW - timedelta(minutes=1)), None, NOW)


class TestEffects:
    def test_view_counts_and_keeps_first_view(self):
        first = datetime(2025, 4, 30, 9, 0)
        values = resolve_transition("viewed", "view").effects(
            proposal(status="viewed", view_count=2, first_viewed_at=first), None, NOW
        )
        assert values == {"view_count": 3, "last_viewed_at": NOW}

    def test_first_view_sets_first_viewed_at(self):
        values = resolve_transition("sent", "view").effects(proposal(), None, NOW)
        assert values["first_viewed_at"] == NOW
        assert values["view_count"] == 1

    def test_decline_feedback(self):
        values = resolve_transition("sent", "decline").effects(
            proposal(),
            DeclineRequest(reason="Dates do not work", category="dates", open_to_counter=True),
            NOW,
        )
        assert values["decline_feedback"]["category"] == "dates"
        assert values["decline_feedback"]["open_to_counter"] is True


class TestAcceptedGratuity:
    def test_client_chosen_percentage(self):
        p = proposal(gratuity_config={"enabled": True, "suggested_percentage": "20", "optional": True})
        record = AcceptanceRecord(**acceptance(gratuity_percentage=Decimal("15")))
        assert accepted_gratuity(p, record) == Decimal("75.12")

    def test_optional_gratuity_declined(self):
        p = proposal(gratuity_config={"enabled": True, "suggested_percentage": "20", "optional": True})
        assert accepted_gratuity(p, AcceptanceRecord(**acceptance())) is None

    def test_required_gratuity_uses_suggestion(self):
        p = proposal(gratuity_config={"enabled": True, "suggested_percentage": "20", "optional": False})
        assert accepted_gratuity(p, AcceptanceRecord(**acceptance())) == Decimal("100.15")

    def test_gratuity_not_offered(self):
        record = AcceptanceRecord(**acceptance(gratuity_percentage=Decimal("15")))
        assert accepted_gratuity(proposal(), record) is None

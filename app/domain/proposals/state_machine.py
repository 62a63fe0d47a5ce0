"""
Proposal lifecycle state machine.

The table maps (status, event) to the next status plus a guard that must pass
and the column values the transition writes. Guards and effects are pure: they
read the loaded proposal and the parsed payload and never touch the session.
The service applies the effects with one conditional update.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Callable, Optional

from ...config import DECLINE_REASON_MIN_LENGTH
from ...utils.sanitization import sanitize_string
from ..errors import InvalidStateTransition, ProposalExpired
from ..pricing.money import ZERO, percentage_of, quantize, to_decimal
from .schemas import AcceptanceRecord, DeclineRequest

logger = logging.getLogger(__name__)

DRAFT = "draft"
SENT = "sent"
VIEWED = "viewed"
ACCEPTED = "accepted"
DECLINED = "declined"
EXPIRED = "expired"
CONVERTED = "converted"

STATUSES = (DRAFT, SENT, VIEWED, ACCEPTED, DECLINED, EXPIRED, CONVERTED)
EVENTS = ("send", "view", "accept", "decline", "expire", "convert")

# Items, add-ons and discount may only change while the proposal is open
EDITABLE_STATES = frozenset({DRAFT, SENT, VIEWED})
EXPIRABLE_STATES = frozenset({DRAFT, SENT, VIEWED})
REISSUABLE_STATES = frozenset({DECLINED, EXPIRED})
TERMINAL_STATES = frozenset({DECLINED, EXPIRED, CONVERTED})

Guard = Callable[[Any, Any, datetime], None]
Effects = Callable[[Any, Any, datetime], dict]


@dataclass(frozen=True)
class Transition:
    source: str
    event: str
    target: str
    guard: Guard
    effects: Effects
    action: str  # activity log action name


def utcnow() -> datetime:
    """Naive UTC, matching the DateTime columns"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def is_past_valid_until(proposal, now: datetime) -> bool:
    return proposal.valid_until is not None and now > proposal.valid_until


def _require_not_expired(proposal, now: datetime) -> None:
    if is_past_valid_until(proposal, now):
        raise ProposalExpired(
            f"Proposal expired on {proposal.valid_until.isoformat()}",
            field="valid_until",
            proposal_id=proposal.id,
        )


# Guards


def _require_items(proposal, action: str) -> None:
    if not proposal.service_items:
        raise InvalidStateTransition(
            f"Cannot {action} a proposal without service items",
            field="service_items",
            proposal_id=proposal.id,
        )


def _guard_send(proposal, payload, now: datetime) -> None:
    _require_not_expired(proposal, now)
    _require_items(proposal, "send")
    if not proposal.client_name or not (proposal.client_email or proposal.client_phone):
        raise InvalidStateTransition(
            "Cannot send a proposal without client name and email or phone",
            field="client_email",
            proposal_id=proposal.id,
        )


def _guard_view(proposal, payload, now: datetime) -> None:
    _require_not_expired(proposal, now)


def _guard_accept(proposal, record: Optional[AcceptanceRecord], now: datetime) -> None:
    _require_not_expired(proposal, now)
    _require_items(proposal, "accept")
    if record is None:
        raise InvalidStateTransition(
            "Acceptance requires a signed acceptance record",
            field="payload",
            proposal_id=proposal.id,
        )
    if not record.terms_accepted:
        raise InvalidStateTransition(
            "Terms must be accepted", field="terms_accepted", proposal_id=proposal.id
        )
    if not record.signature.strip():
        raise InvalidStateTransition(
            "Signature is required", field="signature", proposal_id=proposal.id
        )


def _guard_decline(proposal, request: Optional[DeclineRequest], now: datetime) -> None:
    reason = (request.reason if request else "") or ""
    if len(reason.strip()) < DECLINE_REASON_MIN_LENGTH:
        raise InvalidStateTransition(
            f"Decline reason must be at least {DECLINE_REASON_MIN_LENGTH} characters",
            field="reason",
            proposal_id=proposal.id,
        )


def _guard_expire(proposal, payload, now: datetime) -> None:
    if not is_past_valid_until(proposal, now):
        raise InvalidStateTransition(
            "Proposal is still within its validity window",
            field="valid_until",
            proposal_id=proposal.id,
        )


def _guard_convert(proposal, payload, now: datetime) -> None:
    # Payment and booking checks live in the conversion transactor
    return None


# Effects


def _send_effects(proposal, payload, now: datetime) -> dict:
    return {"sent_at": now}


def _view_effects(proposal, payload, now: datetime) -> dict:
    values = {"view_count": (proposal.view_count or 0) + 1, "last_viewed_at": now}
    if proposal.first_viewed_at is None:
        values["first_viewed_at"] = now
    return values


def accepted_gratuity(proposal, record: AcceptanceRecord) -> Optional[Decimal]:
    """Gratuity the client agreed to, kept apart from the total"""
    gratuity = proposal.gratuity_config or {}
    if not gratuity.get("enabled"):
        return None
    if record.gratuity_percentage is not None:
        percentage = record.gratuity_percentage
    elif gratuity.get("optional", True):
        return None
    else:
        percentage = to_decimal(gratuity.get("suggested_percentage") or 0)
    if percentage <= 0:
        return ZERO
    return quantize(percentage_of(to_decimal(proposal.total), percentage))


def _accept_effects(proposal, record: AcceptanceRecord, now: datetime) -> dict:
    signed = record.model_dump(mode="json")
    signed["accepted_at"] = now.isoformat()
    return {
        "accepted_at": now,
        "acceptance_record": signed,
        "accepted_gratuity_amount": accepted_gratuity(proposal, record),
    }


def _decline_effects(proposal, request: DeclineRequest, now: datetime) -> dict:
    return {
        "declined_at": now,
        "decline_reason": sanitize_string(request.reason.strip()),
        "decline_feedback": {
            "category": request.category,
            "desired_changes": sanitize_string(request.desired_changes),
            "open_to_counter": request.open_to_counter,
        },
    }


def _expire_effects(proposal, payload, now: datetime) -> dict:
    return {"expired_at": now}


def _no_effects(proposal, payload, now: datetime) -> dict:
    return {}


def _build_table() -> dict[tuple[str, str], Transition]:
    rows = [
        (DRAFT, "send", SENT, _guard_send, _send_effects, "status_sent"),
        (SENT, "view", VIEWED, _guard_view, _view_effects, "viewed"),
        (VIEWED, "view", VIEWED, _guard_view, _view_effects, "viewed"),
        (SENT, "accept", ACCEPTED, _guard_accept, _accept_effects, "status_accepted"),
        (VIEWED, "accept", ACCEPTED, _guard_accept, _accept_effects, "status_accepted"),
        (ACCEPTED, "convert", CONVERTED, _guard_convert, _no_effects, "booked"),
    ]
    for source in (DRAFT, SENT, VIEWED):
        rows.append((source, "decline", DECLINED, _guard_decline, _decline_effects, "status_declined"))
    for source in EXPIRABLE_STATES:
        rows.append((source, "expire", EXPIRED, _guard_expire, _expire_effects, "status_expired"))
    return {(row[0], row[1]): Transition(*row) for row in rows}


TRANSITIONS = _build_table()


def resolve_transition(status: str, event: str, proposal_id: Optional[int] = None) -> Transition:
    """Look up the transition for an event; unknown pairs are rejected"""
    transition = TRANSITIONS.get((status, event))
    if transition is None:
        raise InvalidStateTransition(
            f"Cannot {event} a proposal in status '{status}'",
            field="event",
            proposal_id=proposal_id,
            status=status,
            event=event,
        )
    return transition


def allowed_events(status: str) -> list[str]:
    return [event for event in EVENTS if (status, event) in TRANSITIONS]

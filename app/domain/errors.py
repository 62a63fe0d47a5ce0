"""Domain errors shared by the pricing and proposal engines.

Every error carries a stable ``kind`` plus the offending field and/or proposal id
so callers can render a precise message. ``status_code`` is the HTTP mapping used
by the API binding in ``app.main``.
"""

from typing import Any, Optional


class ProposalEngineError(Exception):
    """Base class for pricing and lifecycle errors"""

    kind = "ProposalEngineError"
    status_code = 400

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        proposal_id: Optional[int] = None,
        **context: Any,
    ):
        super().__init__(message)
        self.message = message
        self.field = field
        self.proposal_id = proposal_id
        self.context = context

    def to_dict(self) -> dict:
        payload = {
            "error": self.kind,
            "detail": self.message,
            "field": self.field,
            "proposalId": self.proposal_id,
        }
        if self.context:
            payload["context"] = self.context
        return payload


# Pricing errors


class MissingRequiredField(ProposalEngineError):
    kind = "MissingRequiredField"
    status_code = 422


class InvalidPricingInput(ProposalEngineError):
    kind = "InvalidPricingInput"
    status_code = 422


class NoRateTierFound(ProposalEngineError):
    kind = "NoRateTierFound"
    status_code = 422


class InvalidOverride(ProposalEngineError):
    kind = "InvalidOverride"
    status_code = 422


class InvalidConfiguration(ProposalEngineError):
    kind = "InvalidConfiguration"
    status_code = 500


# Lifecycle errors


class ProposalNotFound(ProposalEngineError):
    kind = "ProposalNotFound"
    status_code = 404


class ProposalExpired(ProposalEngineError):
    kind = "ProposalExpired"
    status_code = 410


class InvalidStateTransition(ProposalEngineError):
    kind = "InvalidStateTransition"
    status_code = 409


class AlreadyConverted(ProposalEngineError):
    """Raised internally when a conversion finds the booking link already set.

    The conversion transactor absorbs it and returns the existing booking.
    """

    kind = "AlreadyConverted"
    status_code = 200

    def __init__(self, message: str, booking_id: int, booking_number: Optional[str], **kwargs):
        super().__init__(message, **kwargs)
        self.booking_id = booking_id
        self.booking_number = booking_number


class PaymentNotVerified(ProposalEngineError):
    kind = "PaymentNotVerified"
    status_code = 402


class CollaboratorUnavailable(ProposalEngineError):
    """Payment provider or booking store failed; retrying is the caller's decision"""

    kind = "CollaboratorUnavailable"
    status_code = 503

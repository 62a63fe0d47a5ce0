"""Proposal domain schemas - Pydantic models for validation"""

import datetime
from decimal import Decimal
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ...shared.validators import validate_email, validate_percentage, validate_us_phone
from ..pricing.schemas import (
    AddonInput,
    ComputedTotals,
    GratuityConfig,
    OverrideInput,
    ServiceItemInput,
)

ProposalStatus = Literal["draft", "sent", "viewed", "accepted", "declined", "expired", "converted"]
ProposalEvent = Literal["send", "view", "accept", "decline", "expire", "convert"]
ActorType = Literal["staff", "customer", "system"]
DeclineCategory = Literal["price", "dates", "services", "timing", "competitor", "other"]


class ProposalCreate(BaseModel):
    """Schema for creating a draft proposal"""

    client_name: Optional[str] = Field(None, max_length=255)
    client_email: Optional[str] = None
    client_phone: Optional[str] = None
    client_company: Optional[str] = Field(None, max_length=255)
    title: Optional[str] = Field(None, max_length=255)
    internal_notes: Optional[str] = None
    service_items: list[ServiceItemInput] = []
    addons: list[AddonInput] = []
    discount_percentage: Decimal = Decimal("0")
    discount_reason: Optional[str] = Field(None, max_length=500)
    gratuity: GratuityConfig = GratuityConfig()
    valid_days: Optional[int] = Field(None, ge=1, le=365)
    valid_until: Optional[datetime.datetime] = None

    @field_validator("client_email")
    @classmethod
    def validate_client_email(cls, v: Optional[str]) -> Optional[str]:
        return validate_email(v)

    @field_validator("client_phone")
    @classmethod
    def validate_client_phone(cls, v: Optional[str]) -> Optional[str]:
        return validate_us_phone(v)

    @field_validator("discount_percentage")
    @classmethod
    def validate_discount(cls, v: Decimal) -> Decimal:
        return validate_percentage(v, "discount_percentage")

    @field_validator("valid_until")
    @classmethod
    def normalize_valid_until(cls, v: Optional[datetime.datetime]) -> Optional[datetime.datetime]:
        # Stored as naive UTC
        if v is not None and v.tzinfo is not None:
            return v.astimezone(datetime.timezone.utc).replace(tzinfo=None)
        return v


class ProposalItemsUpdate(BaseModel):
    """Replace the priced content of an editable proposal"""

    service_items: list[ServiceItemInput]
    addons: list[AddonInput] = []
    discount_percentage: Optional[Decimal] = None
    discount_reason: Optional[str] = Field(None, max_length=500)
    gratuity: Optional[GratuityConfig] = None

    @field_validator("discount_percentage")
    @classmethod
    def validate_discount(cls, v: Optional[Decimal]) -> Optional[Decimal]:
        return validate_percentage(v, "discount_percentage")


class AcceptanceRecord(BaseModel):
    """Client signature and confirmation captured with an acceptance"""

    signature: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1, max_length=255)
    email: str
    phone: Optional[str] = None
    terms_accepted: bool
    cancellation_policy_accepted: bool = True
    gratuity_percentage: Optional[Decimal] = None  # Accepted gratuity, if offered
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None

    @field_validator("email")
    @classmethod
    def validate_signer_email(cls, v: str) -> str:
        return validate_email(v)

    @field_validator("gratuity_percentage")
    @classmethod
    def validate_gratuity(cls, v: Optional[Decimal]) -> Optional[Decimal]:
        return validate_percentage(v, "gratuity_percentage")


class DeclineRequest(BaseModel):
    """Client decline with structured feedback for the sales team"""

    reason: str
    category: DeclineCategory = "other"
    desired_changes: Optional[str] = None
    open_to_counter: bool = False


class ConvertRequest(BaseModel):
    payment_reference: str = Field(..., min_length=1, max_length=255)


class TransitionRequest(BaseModel):
    """Event plus its event-specific payload"""

    event: ProposalEvent
    actor_type: ActorType = "system"
    payload: dict[str, Any] = {}


class ReissueRequest(BaseModel):
    discount_percentage: Optional[Decimal] = None
    discount_reason: Optional[str] = Field(None, max_length=500)
    valid_days: Optional[int] = Field(None, ge=1, le=365)

    @field_validator("discount_percentage")
    @classmethod
    def validate_discount(cls, v: Optional[Decimal]) -> Optional[Decimal]:
        return validate_percentage(v, "discount_percentage")


class ServiceItemResponse(BaseModel):
    id: str
    position: int
    service_category: str
    description: Optional[str] = None
    date: Optional[datetime.date] = None
    party_size: Optional[int] = None
    duration_hours: Optional[Decimal] = None
    distance_miles: Optional[Decimal] = None
    route_id: Optional[str] = None
    flat_rate: Optional[Decimal] = None
    pricing_mode: str
    override: Optional[OverrideInput] = None
    calculated_price: Decimal
    effective_price: Decimal
    price_breakdown: Optional[dict[str, Any]] = None


class AddonResponse(BaseModel):
    description: str
    quantity: Decimal
    unit_price: Decimal
    amount: Decimal


class ProposalResponse(BaseModel):
    id: int
    public_id: str
    proposal_number: str
    status: ProposalStatus
    client_name: Optional[str] = None
    client_email: Optional[str] = None
    client_phone: Optional[str] = None
    client_company: Optional[str] = None
    title: Optional[str] = None
    service_items: list[ServiceItemResponse]
    addons: list[AddonResponse]
    discount_reason: Optional[str] = None
    gratuity: GratuityConfig
    currency: str
    config_version: Optional[str] = None
    totals: ComputedTotals
    accepted_gratuity_amount: Optional[Decimal] = None
    grand_total: Decimal
    valid_until: datetime.datetime
    view_count: int
    sent_at: Optional[datetime.datetime] = None
    first_viewed_at: Optional[datetime.datetime] = None
    last_viewed_at: Optional[datetime.datetime] = None
    accepted_at: Optional[datetime.datetime] = None
    acceptance_record: Optional[dict[str, Any]] = None
    declined_at: Optional[datetime.datetime] = None
    decline_reason: Optional[str] = None
    decline_feedback: Optional[dict[str, Any]] = None
    expired_at: Optional[datetime.datetime] = None
    converted_at: Optional[datetime.datetime] = None
    converted_to_booking_id: Optional[int] = None
    converted_booking_number: Optional[str] = None
    parent_proposal_id: Optional[int] = None
    version_number: int
    warnings: list[str] = []


class ConversionResponse(BaseModel):
    booking_id: int
    booking_number: str
    already_converted: bool = False


class ActivityResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    action: str
    description: Optional[str] = None
    actor_type: str
    details: Optional[dict[str, Any]] = None
    created_at: Optional[datetime.datetime] = None

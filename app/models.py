import uuid

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from .database import Base


def generate_public_id():
    """Generate a unique public ID for secure public access"""
    return str(uuid.uuid4())


class Proposal(Base):
    __tablename__ = "proposals"

    id = Column(Integer, primary_key=True, index=True)
    # Public UUID for client-facing links (prevents enumeration)
    public_id = Column(String(36), unique=True, nullable=False, index=True, default=generate_public_id)
    proposal_number = Column(String(50), unique=True, nullable=False, index=True)
    # draft, sent, viewed, accepted, declined, expired, converted
    status = Column(String(20), default="draft", nullable=False, index=True)
    # Bumped on every write; conditional updates compare it
    lock_version = Column(Integer, default=0, nullable=False)

    # Client contact
    client_name = Column(String(255), nullable=True)
    client_email = Column(String(255), nullable=True)
    client_phone = Column(String(50), nullable=True)
    client_company = Column(String(255), nullable=True)

    title = Column(String(255), nullable=True)
    internal_notes = Column(Text, nullable=True)

    # Pricing inputs
    discount_percentage = Column(Numeric(5, 2), default=0, nullable=False)
    discount_reason = Column(String(500), nullable=True)
    gratuity_config = Column(JSON, nullable=True)  # {"enabled": true, "suggested_percentage": "20", "optional": true}
    tax_rate = Column(Numeric(7, 5), nullable=False)  # e.g. 0.08875
    deposit_fraction = Column(Numeric(5, 4), nullable=False)
    config_version = Column(String(50), nullable=True)  # Rate configuration used for the last repricing
    currency = Column(String(3), default="USD", nullable=False)
    valid_until = Column(DateTime, nullable=False)

    # Computed totals (cache - always re-derivable from items, add-ons, discount and tax)
    services_subtotal = Column(Numeric(12, 2), default=0, nullable=False)
    addons_subtotal = Column(Numeric(12, 2), default=0, nullable=False)
    subtotal = Column(Numeric(12, 2), default=0, nullable=False)
    discount_amount = Column(Numeric(12, 2), default=0, nullable=False)
    tax_amount = Column(Numeric(12, 2), default=0, nullable=False)
    total = Column(Numeric(12, 2), default=0, nullable=False)
    deposit_amount = Column(Numeric(12, 2), default=0, nullable=False)
    balance_amount = Column(Numeric(12, 2), default=0, nullable=False)
    gratuity_amount = Column(Numeric(12, 2), default=0, nullable=False)  # Suggested, advisory

    # Lifecycle
    view_count = Column(Integer, default=0, nullable=False)
    sent_at = Column(DateTime, nullable=True)
    first_viewed_at = Column(DateTime, nullable=True)
    last_viewed_at = Column(DateTime, nullable=True)
    accepted_at = Column(DateTime, nullable=True)
    acceptance_record = Column(JSON, nullable=True)  # signature, name, email, ip, terms flags
    accepted_gratuity_amount = Column(Numeric(12, 2), nullable=True)
    declined_at = Column(DateTime, nullable=True)
    decline_reason = Column(Text, nullable=True)
    decline_feedback = Column(JSON, nullable=True)  # {"category": "price", "desired_changes": ..., "open_to_counter": true}
    expired_at = Column(DateTime, nullable=True)

    # Conversion - set once, never cleared
    converted_to_booking_id = Column(Integer, ForeignKey("bookings.id"), unique=True, nullable=True)
    converted_booking_number = Column(String(50), nullable=True)
    payment_reference = Column(String(255), nullable=True)
    converted_at = Column(DateTime, nullable=True)

    # Reissue chain
    parent_proposal_id = Column(Integer, ForeignKey("proposals.id"), nullable=True)
    version_number = Column(Integer, default=1, nullable=False)

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    service_items = relationship(
        "ProposalServiceItem",
        back_populates="proposal",
        order_by="ProposalServiceItem.position",
        cascade="all, delete-orphan",
    )
    addons = relationship(
        "ProposalAddon",
        back_populates="proposal",
        order_by="ProposalAddon.position",
        cascade="all, delete-orphan",
    )
    activities = relationship(
        "ProposalActivity",
        back_populates="proposal",
        order_by="ProposalActivity.id",
        cascade="all, delete-orphan",
    )
    booking = relationship("Booking", foreign_keys=[converted_to_booking_id])


class ProposalServiceItem(Base):
    __tablename__ = "proposal_service_items"

    id = Column(Integer, primary_key=True, index=True)
    proposal_id = Column(Integer, ForeignKey("proposals.id"), nullable=False, index=True)
    item_key = Column(String(36), nullable=False, default=generate_public_id)  # Stable id across edits
    position = Column(Integer, nullable=False, default=0)

    # timed_tour, point_to_point_transfer, hourly_wait, custom_flat
    service_category = Column(String(50), nullable=False)
    description = Column(Text, nullable=True)
    service_date = Column(Date, nullable=True)
    party_size = Column(Integer, nullable=True)
    duration_hours = Column(Numeric(6, 2), nullable=True)
    distance_miles = Column(Numeric(8, 2), nullable=True)
    route_id = Column(String(100), nullable=True)
    flat_rate = Column(Numeric(12, 2), nullable=True)

    # calculated, hourly_override, fixed_override
    pricing_mode = Column(String(20), default="calculated", nullable=False)
    override_enabled = Column(Boolean, default=False, nullable=False)
    override_mode = Column(String(20), nullable=True)
    override_rate_or_amount = Column(Numeric(12, 2), nullable=True)
    override_reason = Column(Text, nullable=True)

    calculated_price = Column(Numeric(12, 2), nullable=False)
    effective_price = Column(Numeric(12, 2), nullable=False)
    price_breakdown = Column(JSON, nullable=True)
    config_version = Column(String(50), nullable=True)

    proposal = relationship("Proposal", back_populates="service_items")


class ProposalAddon(Base):
    __tablename__ = "proposal_addons"

    id = Column(Integer, primary_key=True, index=True)
    proposal_id = Column(Integer, ForeignKey("proposals.id"), nullable=False, index=True)
    position = Column(Integer, nullable=False, default=0)
    description = Column(String(255), nullable=False)
    quantity = Column(Numeric(8, 2), nullable=False, default=1)
    unit_price = Column(Numeric(12, 2), nullable=False)
    amount = Column(Numeric(12, 2), nullable=False)

    proposal = relationship("Proposal", back_populates="addons")


class ProposalActivity(Base):
    """Append-only audit trail of proposal events"""

    __tablename__ = "proposal_activity"

    id = Column(Integer, primary_key=True, index=True)
    proposal_id = Column(Integer, ForeignKey("proposals.id"), nullable=False, index=True)
    action = Column(String(50), nullable=False)  # status_sent, items_updated, booked, ...
    description = Column(Text, nullable=True)
    actor_type = Column(String(20), default="system", nullable=False)  # staff, customer, system
    details = Column(JSON, nullable=True)
    created_at = Column(DateTime, server_default=func.now())

    proposal = relationship("Proposal", back_populates="activities")


class Booking(Base):
    """Confirmed booking written by the default booking store"""

    __tablename__ = "bookings"

    id = Column(Integer, primary_key=True, index=True)
    booking_number = Column(String(50), unique=True, nullable=False, index=True)
    # One booking per key; conversion uses "proposal:<id>"
    idempotency_key = Column(String(100), unique=True, nullable=False, index=True)
    source_proposal_id = Column(Integer, nullable=True, index=True)

    client_name = Column(String(255), nullable=True)
    client_email = Column(String(255), nullable=True)
    client_phone = Column(String(50), nullable=True)
    party_size = Column(Integer, nullable=True)
    start_date = Column(Date, nullable=True)
    items = Column(JSON, nullable=True)

    subtotal = Column(Numeric(12, 2), nullable=False)
    discount_amount = Column(Numeric(12, 2), default=0, nullable=False)
    tax_amount = Column(Numeric(12, 2), default=0, nullable=False)
    total = Column(Numeric(12, 2), nullable=False)
    gratuity = Column(Numeric(12, 2), default=0, nullable=False)
    deposit_amount = Column(Numeric(12, 2), nullable=False)
    deposit_paid = Column(Boolean, default=False, nullable=False)
    payment_reference = Column(String(255), nullable=True)
    currency = Column(String(3), default="USD", nullable=False)

    status = Column(String(20), default="confirmed", nullable=False)
    created_at = Column(DateTime, server_default=func.now())

"""Proposal service - Business logic for the proposal lifecycle"""

import logging
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Callable, Optional

from pydantic import ValidationError
from sqlalchemy.orm import Session

from ...config import PROPOSAL_VALID_DAYS
from ...models import Proposal, ProposalAddon, ProposalServiceItem, generate_public_id
from ...utils.sanitization import sanitize_string, unescape_string
from ..errors import InvalidStateTransition, ProposalNotFound
from ..pricing.money import ZERO, to_decimal
from ..pricing.rate_table import RateConfiguration
from ..pricing.schemas import (
    AddonInput,
    ComputedTotals,
    GratuityConfig,
    OverrideInput,
    PricedItem,
    ServiceItemInput,
)
from ..pricing.service import price_item
from ..pricing.totals import addon_amount, compute_totals
from .collaborators import BookingStore, PaymentConfirmationProvider
from .conversion import ConversionTransactor
from .repository import ProposalRepository
from .schemas import (
    AcceptanceRecord,
    AddonResponse,
    DeclineRequest,
    ProposalCreate,
    ProposalItemsUpdate,
    ProposalResponse,
    ReissueRequest,
    ServiceItemResponse,
)
from .state_machine import (
    DRAFT,
    EDITABLE_STATES,
    EXPIRABLE_STATES,
    REISSUABLE_STATES,
    Transition,
    is_past_valid_until,
    resolve_transition,
    utcnow,
)

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]

TOTAL_COLUMNS = (
    "services_subtotal",
    "addons_subtotal",
    "subtotal",
    "discount_amount",
    "tax_amount",
    "total",
    "deposit_amount",
    "balance_amount",
    "gratuity_amount",
)


def gratuity_of(proposal: Proposal) -> Optional[GratuityConfig]:
    return GratuityConfig(**proposal.gratuity_config) if proposal.gratuity_config else None


def recompute_totals(proposal: Proposal) -> ComputedTotals:
    """
    Derive totals from the proposal's stored line items.

    Pure: reads effective prices, add-on amounts, discount, tax rate and deposit
    fraction and returns fresh totals without touching the database.
    """
    return compute_totals(
        effective_prices=[item.effective_price for item in proposal.service_items],
        addon_amounts=[addon.amount for addon in proposal.addons],
        discount_percentage=proposal.discount_percentage,
        tax_rate=proposal.tax_rate,
        deposit_fraction=proposal.deposit_fraction,
        gratuity=gratuity_of(proposal),
    )


def grand_total(proposal: Proposal) -> Decimal:
    return to_decimal(proposal.total) + to_decimal(proposal.accepted_gratuity_amount or ZERO)


def _totals_columns(totals: ComputedTotals) -> dict:
    return {column: getattr(totals, column) for column in TOTAL_COLUMNS}


def _item_row(position: int, item: ServiceItemInput, priced: PricedItem, config_version: str) -> ProposalServiceItem:
    override = item.override
    return ProposalServiceItem(
        item_key=item.id or generate_public_id(),
        position=position,
        service_category=item.service_category,
        description=sanitize_string(item.description),
        service_date=item.date,
        party_size=item.party_size,
        duration_hours=item.duration_hours,
        distance_miles=item.distance_miles,
        route_id=item.route_id,
        flat_rate=item.flat_rate,
        pricing_mode=priced.pricing_mode,
        override_enabled=bool(override and override.enabled),
        override_mode=override.mode if override else None,
        override_rate_or_amount=override.rate_or_amount if override else None,
        override_reason=sanitize_string(override.reason) if override else None,
        calculated_price=priced.calculated_price,
        effective_price=priced.effective_price,
        price_breakdown=priced.price.model_dump(mode="json"),
        config_version=config_version,
    )


def _addon_row(position: int, addon: AddonInput) -> ProposalAddon:
    return ProposalAddon(
        position=position,
        description=sanitize_string(addon.description),
        quantity=addon.quantity,
        unit_price=addon.unit_price,
        amount=addon_amount(addon.quantity, addon.unit_price),
    )


def _override_of(row: ProposalServiceItem) -> Optional[OverrideInput]:
    if not row.override_mode:
        return None
    return OverrideInput(
        enabled=row.override_enabled,
        mode=row.override_mode,
        rate_or_amount=row.override_rate_or_amount,
        reason=unescape_string(row.override_reason),
    )


def item_input(row: ProposalServiceItem) -> ServiceItemInput:
    """Rebuild the pricing input of a stored service item"""
    return ServiceItemInput(
        id=row.item_key,
        service_category=row.service_category,
        description=unescape_string(row.description),
        date=row.service_date,
        party_size=row.party_size,
        duration_hours=row.duration_hours,
        distance_miles=row.distance_miles,
        route_id=row.route_id,
        flat_rate=row.flat_rate,
        override=_override_of(row),
    )


def addon_input(row: ProposalAddon) -> AddonInput:
    return AddonInput(description=unescape_string(row.description), quantity=row.quantity, unit_price=row.unit_price)


def serialize_proposal(proposal: Proposal) -> ProposalResponse:
    """Build the API representation of a proposal"""
    items = []
    warnings = []
    for row in proposal.service_items:
        items.append(
            ServiceItemResponse(
                id=row.item_key,
                position=row.position,
                service_category=row.service_category,
                description=row.description,
                date=row.service_date,
                party_size=row.party_size,
                duration_hours=row.duration_hours,
                distance_miles=row.distance_miles,
                route_id=row.route_id,
                flat_rate=row.flat_rate,
                pricing_mode=row.pricing_mode,
                override=_override_of(row),
                calculated_price=row.calculated_price,
                effective_price=row.effective_price,
                price_breakdown=row.price_breakdown,
            )
        )
        if row.override_enabled and row.effective_price != row.calculated_price and not row.override_reason:
            warnings.append(f"Item {row.position + 1}: override has no reason")

    return ProposalResponse(
        id=proposal.id,
        public_id=proposal.public_id,
        proposal_number=proposal.proposal_number,
        status=proposal.status,
        client_name=proposal.client_name,
        client_email=proposal.client_email,
        client_phone=proposal.client_phone,
        client_company=proposal.client_company,
        title=proposal.title,
        service_items=items,
        addons=[
            AddonResponse(
                description=a.description, quantity=a.quantity, unit_price=a.unit_price, amount=a.amount
            )
            for a in proposal.addons
        ],
        discount_reason=proposal.discount_reason,
        gratuity=gratuity_of(proposal) or GratuityConfig(),
        currency=proposal.currency,
        config_version=proposal.config_version,
        totals=recompute_totals(proposal),
        accepted_gratuity_amount=proposal.accepted_gratuity_amount,
        grand_total=grand_total(proposal),
        valid_until=proposal.valid_until,
        view_count=proposal.view_count or 0,
        sent_at=proposal.sent_at,
        first_viewed_at=proposal.first_viewed_at,
        last_viewed_at=proposal.last_viewed_at,
        accepted_at=proposal.accepted_at,
        acceptance_record=proposal.acceptance_record,
        declined_at=proposal.declined_at,
        decline_reason=proposal.decline_reason,
        decline_feedback=proposal.decline_feedback,
        expired_at=proposal.expired_at,
        converted_at=proposal.converted_at,
        converted_to_booking_id=proposal.converted_to_booking_id,
        converted_booking_number=proposal.converted_booking_number,
        parent_proposal_id=proposal.parent_proposal_id,
        version_number=proposal.version_number,
        warnings=warnings,
    )


class ProposalService:
    """Service layer for proposal pricing and lifecycle operations"""

    def __init__(
        self,
        db: Session,
        config: RateConfiguration,
        clock: Clock = utcnow,
        payment_provider: Optional[PaymentConfirmationProvider] = None,
        booking_store: Optional[BookingStore] = None,
    ):
        self.db = db
        self.config = config
        self.clock = clock
        self.repo = ProposalRepository()
        self.payment_provider = payment_provider
        self.booking_store = booking_store

    # Pricing

    def _price_lines(
        self,
        service_items: list[ServiceItemInput],
        addons: list[AddonInput],
        discount_percentage: Decimal,
        gratuity: Optional[GratuityConfig],
    ) -> tuple[list[ProposalServiceItem], list[ProposalAddon], ComputedTotals]:
        """Price every line against the current configuration (no writes)"""
        priced = [price_item(item, self.config) for item in service_items]
        for item in priced:
            for warning in item.warnings:
                logger.warning(f"⚠️ {warning}")
        totals = compute_totals(
            effective_prices=[p.effective_price for p in priced],
            addon_amounts=[addon_amount(a.quantity, a.unit_price) for a in addons],
            discount_percentage=discount_percentage,
            tax_rate=self.config.tax_rate,
            deposit_fraction=self.config.deposit_fraction,
            gratuity=gratuity,
        )
        item_rows = [
            _item_row(position, item, p, self.config.version)
            for position, (item, p) in enumerate(zip(service_items, priced))
        ]
        addon_rows = [_addon_row(position, addon) for position, addon in enumerate(addons)]
        return item_rows, addon_rows, totals

    # Reads

    def _load(self, proposal_id: int) -> Proposal:
        proposal = self.repo.get_proposal_by_id(self.db, proposal_id)
        if not proposal:
            raise ProposalNotFound("Proposal not found", proposal_id=proposal_id)
        return proposal

    def get_proposal(self, proposal_id: int) -> Proposal:
        """Get a proposal, persisting expiry first if its validity window has passed"""
        return self._expire_if_stale(self._load(proposal_id))

    def get_proposal_by_public_id(self, public_id: str) -> Proposal:
        proposal = self.repo.get_proposal_by_public_id(self.db, public_id)
        if not proposal:
            raise ProposalNotFound("Proposal not found")
        return self._expire_if_stale(proposal)

    def _expire_if_stale(self, proposal: Proposal) -> Proposal:
        now = self.clock()
        if proposal.status not in EXPIRABLE_STATES or not is_past_valid_until(proposal, now):
            return proposal

        logger.info(f"⏰ Proposal {proposal.proposal_number} passed valid_until, expiring")
        transition = resolve_transition(proposal.status, "expire", proposal.id)
        try:
            self._apply(proposal, transition, None, "system", now)
        except InvalidStateTransition:
            # Someone else moved it first; whatever they wrote wins
            self.db.refresh(proposal)
        return proposal

    def get_activity(self, proposal_id: int):
        self._load(proposal_id)
        return self.repo.get_activity(self.db, proposal_id)

    # Writes

    def create_proposal(
        self,
        data: ProposalCreate,
        actor_type: str = "staff",
        parent: Optional[Proposal] = None,
    ) -> Proposal:
        """Create a draft proposal with priced items and stored totals"""
        now = self.clock()
        item_rows, addon_rows, totals = self._price_lines(
            data.service_items, data.addons, data.discount_percentage, data.gratuity
        )
        valid_until = data.valid_until or now + timedelta(days=data.valid_days or PROPOSAL_VALID_DAYS)

        try:
            proposal = Proposal(
                proposal_number=self.repo.generate_proposal_number(self.db, now),
                status=DRAFT,
                lock_version=0,
                client_name=sanitize_string(data.client_name),
                client_email=data.client_email,
                client_phone=data.client_phone,
                client_company=sanitize_string(data.client_company),
                title=sanitize_string(data.title),
                internal_notes=sanitize_string(data.internal_notes),
                discount_percentage=data.discount_percentage,
                discount_reason=sanitize_string(data.discount_reason),
                gratuity_config=data.gratuity.model_dump(mode="json"),
                tax_rate=self.config.tax_rate,
                deposit_fraction=self.config.deposit_fraction,
                config_version=self.config.version,
                currency=self.config.currency,
                valid_until=valid_until,
                view_count=0,
                parent_proposal_id=parent.id if parent else None,
                version_number=parent.version_number + 1 if parent else 1,
                created_at=now,
                updated_at=now,
                **_totals_columns(totals),
            )
            proposal.service_items = item_rows
            proposal.addons = addon_rows
            self.repo.add_proposal(self.db, proposal)

            self.repo.log_activity(
                self.db,
                proposal.id,
                action="reissued" if parent else "created",
                description=(
                    f"Reissued from {parent.proposal_number}" if parent else "Proposal created"
                ),
                actor_type=actor_type,
                details={"total": str(totals.total), "config_version": self.config.version},
                now=now,
            )
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        self.db.refresh(proposal)
        logger.info(
            f"📝 Created proposal {proposal.proposal_number} "
            f"({len(item_rows)} items, total {totals.total} {proposal.currency})"
        )
        return proposal

    def update_items(self, proposal_id: int, data: ProposalItemsUpdate, actor_type: str = "staff") -> Proposal:
        """Replace items and add-ons of an open proposal and recompute totals"""
        proposal = self.get_proposal(proposal_id)
        discount = data.discount_percentage if data.discount_percentage is not None else proposal.discount_percentage
        gratuity = data.gratuity if data.gratuity is not None else gratuity_of(proposal)
        values = {}
        if data.discount_reason is not None:
            values["discount_reason"] = sanitize_string(data.discount_reason)
        return self._rewrite_lines(
            proposal,
            data.service_items,
            data.addons,
            discount,
            gratuity,
            action="items_updated",
            actor_type=actor_type,
            extra_values=values,
        )

    def reprice(self, proposal_id: int, actor_type: str = "staff") -> Proposal:
        """Re-run the calculators for an open proposal against the current rates"""
        proposal = self.get_proposal(proposal_id)
        return self._rewrite_lines(
            proposal,
            [item_input(row) for row in proposal.service_items],
            [addon_input(row) for row in proposal.addons],
            proposal.discount_percentage,
            gratuity_of(proposal),
            action="repriced",
            actor_type=actor_type,
        )

    def _rewrite_lines(
        self,
        proposal: Proposal,
        service_items: list[ServiceItemInput],
        addons: list[AddonInput],
        discount_percentage: Decimal,
        gratuity: Optional[GratuityConfig],
        action: str,
        actor_type: str,
        extra_values: Optional[dict] = None,
    ) -> Proposal:
        if proposal.status not in EDITABLE_STATES:
            raise InvalidStateTransition(
                f"Proposal in status '{proposal.status}' can no longer be edited",
                proposal_id=proposal.id,
                status=proposal.status,
            )
        # Only a draft may be emptied; a sent proposal has to stay acceptable
        if not service_items and proposal.status != DRAFT:
            raise InvalidStateTransition(
                f"A {proposal.status} proposal must keep at least one service item",
                field="service_items",
                proposal_id=proposal.id,
                status=proposal.status,
            )

        now = self.clock()
        item_rows, addon_rows, totals = self._price_lines(service_items, addons, discount_percentage, gratuity)
        values = {
            "discount_percentage": discount_percentage,
            "gratuity_config": gratuity.model_dump(mode="json") if gratuity else None,
            "tax_rate": self.config.tax_rate,
            "deposit_fraction": self.config.deposit_fraction,
            "config_version": self.config.version,
            "updated_at": now,
            **_totals_columns(totals),
            **(extra_values or {}),
        }

        try:
            if not self.repo.compare_and_set(
                self.db, proposal.id, proposal.status, proposal.lock_version, values
            ):
                raise InvalidStateTransition(
                    "Proposal was modified concurrently; reload and retry",
                    proposal_id=proposal.id,
                )
            self.repo.replace_line_items(self.db, proposal, item_rows, addon_rows)
            self.repo.log_activity(
                self.db,
                proposal.id,
                action=action,
                description=f"{len(item_rows)} items, total {totals.total}",
                actor_type=actor_type,
                details={"total": str(totals.total), "config_version": self.config.version},
                now=now,
            )
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        self.db.refresh(proposal)
        logger.info(f"💰 Proposal {proposal.proposal_number} {action}: total {proposal.total}")
        return proposal

    def transition(
        self,
        proposal_id: int,
        event: str,
        payload: Optional[dict] = None,
        actor_type: str = "system",
    ) -> Proposal:
        """Apply a lifecycle event; rejected events leave the proposal untouched"""
        payload = payload or {}
        if event == "convert":
            self.convert(proposal_id, payload.get("payment_reference"), actor_type)
            return self._load(proposal_id)

        proposal = self._load(proposal_id)
        transition = resolve_transition(proposal.status, event, proposal.id)
        parsed = self._parse_payload(proposal, event, payload)
        now = self.clock()
        transition.guard(proposal, parsed, now)
        self._apply(proposal, transition, parsed, actor_type, now)
        return proposal

    @staticmethod
    def _parse_payload(proposal: Proposal, event: str, payload: dict):
        models = {"accept": AcceptanceRecord, "decline": DeclineRequest}
        model = models.get(event)
        if model is None or not payload:
            return None
        try:
            return model(**payload)
        except ValidationError as e:
            error = e.errors()[0]
            field = ".".join(str(part) for part in error.get("loc", ())) or None
            raise InvalidStateTransition(
                f"Invalid {event} payload: {error.get('msg')}",
                field=field,
                proposal_id=proposal.id,
            ) from e

    def _apply(
        self,
        proposal: Proposal,
        transition: Transition,
        parsed,
        actor_type: str,
        now: datetime,
    ) -> None:
        values = transition.effects(proposal, parsed, now)
        values["status"] = transition.target
        values["updated_at"] = now

        try:
            if not self.repo.compare_and_set(
                self.db, proposal.id, proposal.status, proposal.lock_version, values
            ):
                raise InvalidStateTransition(
                    "Proposal was modified concurrently; reload and retry",
                    proposal_id=proposal.id,
                    event=transition.event,
                )
            details = {"event": transition.event, "from": transition.source, "to": transition.target}
            if transition.event == "decline":
                details.update(values["decline_feedback"])
            self.repo.log_activity(
                self.db,
                proposal.id,
                action=transition.action,
                description=f"{transition.source} -> {transition.target}",
                actor_type=actor_type,
                details=details,
                now=now,
            )
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        self.db.refresh(proposal)
        logger.info(
            f"🔄 Proposal {proposal.proposal_number}: {transition.source} -> {transition.target} "
            f"({transition.event} by {actor_type})"
        )

    def convert(self, proposal_id: int, payment_reference: Optional[str], actor_type: str = "staff"):
        """Turn an accepted proposal into exactly one booking"""
        transactor = ConversionTransactor(
            db=self.db,
            payment_provider=self.payment_provider,
            booking_store=self.booking_store,
            clock=self.clock,
        )
        return transactor.convert(proposal_id, payment_reference, actor_type=actor_type)

    def reissue(self, proposal_id: int, data: Optional[ReissueRequest] = None, actor_type: str = "staff") -> Proposal:
        """New draft version of a declined or expired proposal, priced at current rates"""
        data = data or ReissueRequest()
        source = self.get_proposal(proposal_id)
        if source.status not in REISSUABLE_STATES:
            raise InvalidStateTransition(
                f"Only declined or expired proposals can be reissued (status '{source.status}')",
                proposal_id=source.id,
                status=source.status,
            )

        discount = data.discount_percentage if data.discount_percentage is not None else source.discount_percentage
        create = ProposalCreate(
            client_name=unescape_string(source.client_name),
            client_email=source.client_email,
            client_phone=source.client_phone,
            client_company=unescape_string(source.client_company),
            title=unescape_string(source.title),
            internal_notes=unescape_string(source.internal_notes),
            service_items=[item_input(row) for row in source.service_items],
            addons=[addon_input(row) for row in source.addons],
            discount_percentage=discount,
            discount_reason=data.discount_reason if data.discount_reason is not None else unescape_string(source.discount_reason),
            gratuity=gratuity_of(source) or GratuityConfig(),
            valid_days=data.valid_days,
        )
        reissued = self.create_proposal(create, actor_type=actor_type, parent=source)

        self.repo.log_activity(
            self.db,
            source.id,
            action="superseded",
            description=f"Reissued as {reissued.proposal_number}",
            actor_type=actor_type,
            details={"reissued_proposal_id": reissued.id},
            now=self.clock(),
        )
        self.db.commit()
        return reissued

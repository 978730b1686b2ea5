"""Pricebook update workflow.

Proposal lifecycle: PENDING -> APPROVED | REJECTED (both terminal).

propose_updates() turns qualifying extracted positions into proposals:
a matched pricebook item yields a ``price_update``; an unmatched position
yields a new, inactive item plus a paired ``new_item`` proposal. Each
position is committed on its own, so an item and its proposal are stored
together or not at all.

apply_proposal() is the only write path to the canonical catalog. The item
mutation and the status flip share one transaction.
"""

from __future__ import annotations

import logging
from decimal import ROUND_HALF_UP, Decimal
from typing import Callable, Sequence
from uuid import UUID, uuid4

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from priceintel.config import PricingConfig
from priceintel.errors import ConflictError, NotFoundError, PersistenceError, ProposalStateError
from priceintel.models import (
    Decision,
    OfferPosition,
    PositionCategory,
    PriceBookItem,
    PriceUpdateProposal,
    ProposalStatus,
    UpdateType,
    to_money,
)
from priceintel.workflow.matching import NO_MATCH, CatalogMatcher
from priceintel.workflow.repository import SqlUnitOfWork

logger = logging.getLogger(__name__)

MINUTES_QUANTUM = Decimal("0.0001")
PCT_QUANTUM = Decimal("0.01")


def price_change_pct(old_price: Decimal, new_price: Decimal) -> Decimal | None:
    """(new - old) / old x 100, undefined for a zero old price."""
    if old_price == 0:
        return None
    return ((new_price - old_price) / old_price * 100).quantize(PCT_QUANTUM, rounding=ROUND_HALF_UP)


def minutes_for_price(price: Decimal, hourly_rate: Decimal) -> Decimal:
    return (price * 60 / hourly_rate).quantize(MINUTES_QUANTUM, rounding=ROUND_HALF_UP)


def new_item_from_position(position: OfferPosition, config: PricingConfig) -> PriceBookItem:
    """Inactive catalog item priced from an extracted position.

    Labor positions are costed in minutes at the hourly rate; every other
    category is costed as material.
    """
    labor = position.category is PositionCategory.LABOR
    return PriceBookItem(
        title=position.description,
        code=f"AUTO_{uuid4().hex[:12].upper()}",
        unit=position.unit,
        branch=position.trade_category,
        base_material_cost=Decimal("0") if labor else position.unit_price,
        base_minutes=minutes_for_price(position.unit_price, config.hourly_rate) if labor else Decimal("0"),
        markup_material_pct=config.default_markup_pct,
        overhead_pct=config.default_overhead_pct,
        region_factor=config.default_region_factor,
        is_active=False,
        variant_group=position.work_type,
    )


def rescale_cost(item: PriceBookItem, new_price: Decimal, hourly_rate: Decimal) -> PriceBookItem:
    """Copy of ``item`` whose effective unit price equals ``new_price``.

    Labor-only items change their minutes, material-only (or unpriced) items
    their material cost; mixed items scale both by the same factor.
    """
    material = item.base_material_cost
    labor_cost = item.base_minutes * hourly_rate / 60

    if labor_cost == 0:
        update = {"base_material_cost": to_money(new_price)}
    elif material == 0:
        update = {"base_minutes": minutes_for_price(new_price, hourly_rate)}
    else:
        factor = new_price / (material + labor_cost)
        minutes = (item.base_minutes * factor).quantize(MINUTES_QUANTUM, rounding=ROUND_HALF_UP)
        remainder = to_money(new_price - minutes * hourly_rate / 60)
        update = {"base_minutes": minutes, "base_material_cost": max(remainder, Decimal("0"))}

    return item.model_copy(update=update)


class PricebookWorkflow:
    """Creates and resolves pricebook update proposals."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        config: PricingConfig,
        unit_of_work: Callable[[async_sessionmaker[AsyncSession]], SqlUnitOfWork] = SqlUnitOfWork,
    ):
        self.session_factory = session_factory
        self.config = config
        self._unit_of_work = unit_of_work

    def unit_of_work(self) -> SqlUnitOfWork:
        return self._unit_of_work(self.session_factory)

    async def propose_updates(
        self, positions: Sequence[OfferPosition], source_document: str
    ) -> list[PriceUpdateProposal]:
        """Create proposals for the qualifying positions of one source document.

        Duplicates (an open proposal already exists for the same item and
        source document) are logged and skipped.

        Raises:
            PersistenceError: If the store fails; positions committed before
                the failure stay committed
        """
        qualifying = [p for p in positions if p.qualifies_for_market(self.config.confidence_threshold)]
        if not qualifying:
            return []

        try:
            async with self.unit_of_work() as uow:
                candidates = await uow.catalog.list_matchable_items()
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Could not load pricebook items: {exc}") from exc

        matcher = CatalogMatcher(candidates, self.config)
        proposals: list[PriceUpdateProposal] = []

        for position in qualifying:
            try:
                async with self.unit_of_work() as uow:
                    proposal, created = await self._propose_one(uow, matcher, position, source_document)
                    await uow.commit()
            except ConflictError as exc:
                logger.info(f"Skipped duplicate proposal: {exc}")
                continue
            except SQLAlchemyError as exc:
                raise PersistenceError(
                    f"Could not store proposal for {position.description!r}: {exc}"
                ) from exc

            if created is not None:
                matcher.add(created)
            proposals.append(proposal)

        logger.info(
            f"Created {len(proposals)} proposals from {len(qualifying)} qualifying positions "
            f"of {source_document}"
        )
        return proposals

    async def _propose_one(
        self,
        uow: SqlUnitOfWork,
        matcher: CatalogMatcher,
        position: OfferPosition,
        source_document: str,
    ) -> tuple[PriceUpdateProposal, PriceBookItem | None]:
        match = matcher.match(position.description, position.unit, position.trade_category)

        if match is not None:
            item = match.item
            if await uow.proposals.has_open(item.id, source_document):
                raise ConflictError(
                    f"Open proposal for {item.code} from {source_document} already exists"
                )
            old_price = item.effective_unit_price(self.config.hourly_rate)
            proposal = await uow.proposals.create(
                PriceUpdateProposal(
                    pricebook_item_id=item.id,
                    source_document=source_document,
                    update_type=UpdateType.PRICE_UPDATE,
                    old_price=old_price,
                    new_price=position.unit_price,
                    price_change_pct=price_change_pct(old_price, position.unit_price),
                    match_method=match.method,
                    description=position.description,
                    unit=position.unit,
                    trade_category=position.trade_category,
                )
            )
            return proposal, None

        item = await uow.catalog.create_item(new_item_from_position(position, self.config))
        proposal = await uow.proposals.create(
            PriceUpdateProposal(
                pricebook_item_id=item.id,
                source_document=source_document,
                update_type=UpdateType.NEW_ITEM,
                new_price=position.unit_price,
                match_method=NO_MATCH,
                description=position.description,
                unit=position.unit,
                trade_category=position.trade_category,
            )
        )
        return proposal, item

    async def apply_proposal(
        self,
        proposal_id: UUID,
        decision: Decision,
        resolved_by: str | None = None,
        note: str | None = None,
    ) -> PriceUpdateProposal:
        """Approve or reject a pending proposal.

        Approval mutates the pricebook item and flips the status in one
        transaction; rejection only flips the status.

        Raises:
            NotFoundError: If the proposal or its item does not exist
            ProposalStateError: If the proposal is already approved or rejected
            PersistenceError: If the transaction fails (nothing is changed)
        """
        try:
            async with self.unit_of_work() as uow:
                proposal = await uow.proposals.get(proposal_id)
                if proposal is None:
                    raise NotFoundError(f"Proposal {proposal_id} not found")
                if proposal.status.is_terminal:
                    raise ProposalStateError(
                        f"Proposal {proposal_id} is already {proposal.status.value}"
                    )

                if decision is Decision.APPROVE:
                    await self._apply_to_item(uow, proposal)
                    status = ProposalStatus.APPROVED
                else:
                    status = ProposalStatus.REJECTED

                resolved = await uow.proposals.set_status(
                    proposal.id,
                    status,
                    resolved_by=resolved_by,
                    note=note,
                    expected=ProposalStatus.PENDING,
                )
                await uow.commit()
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Could not resolve proposal {proposal_id}: {exc}") from exc

        logger.info(
            f"Proposal {proposal_id} ({proposal.update_type.value}) {status.value}"
            + (f" by {resolved_by}" if resolved_by else "")
        )
        return resolved

    async def _apply_to_item(self, uow: SqlUnitOfWork, proposal: PriceUpdateProposal) -> None:
        item = None
        if proposal.pricebook_item_id is not None:
            item = await uow.catalog.get_item(proposal.pricebook_item_id)
        if item is None:
            raise NotFoundError(f"Pricebook item for proposal {proposal.id} not found")

        if proposal.update_type is UpdateType.NEW_ITEM:
            updated = item.model_copy(update={"is_active": True})
        else:
            updated = rescale_cost(item, proposal.new_price, self.config.hourly_rate)
        await uow.catalog.mutate_item(updated)

    async def list_proposals(
        self, status: ProposalStatus | None = None, limit: int | None = None
    ) -> list[PriceUpdateProposal]:
        async with self.unit_of_work() as uow:
            return await uow.proposals.list_proposals(status, limit)

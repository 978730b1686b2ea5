"""Pricebook and proposal stores.

The workflow talks to two collaborator interfaces (PricingCatalogStore,
ProposalStore). The SQL implementations share one AsyncSession inside a
SqlUnitOfWork so that catalog and proposal writes commit or roll back
together.
"""

from __future__ import annotations

import logging
from typing import Protocol
from uuid import UUID

from sqlalchemy import exists, or_, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from priceintel.canonical.key_generator import market_key
from priceintel.db.models import PriceBookItemModel, PriceUpdateModel
from priceintel.errors import ConflictError, NotFoundError, PersistenceError, ProposalStateError
from priceintel.models import (
    PriceBookItem,
    PriceUpdateProposal,
    ProposalStatus,
    UpdateType,
    utcnow,
)

logger = logging.getLogger(__name__)

OPEN_STATUSES = (ProposalStatus.PENDING.value, ProposalStatus.APPROVED.value)


class PricingCatalogStore(Protocol):
    async def get_item(self, item_id: UUID) -> PriceBookItem | None: ...

    async def list_active_items(self) -> list[PriceBookItem]: ...

    async def list_matchable_items(self) -> list[PriceBookItem]: ...

    async def create_item(self, item: PriceBookItem) -> PriceBookItem: ...

    async def mutate_item(self, item: PriceBookItem) -> PriceBookItem: ...


class ProposalStore(Protocol):
    async def create(self, proposal: PriceUpdateProposal) -> PriceUpdateProposal: ...

    async def get(self, proposal_id: UUID) -> PriceUpdateProposal | None: ...

    async def list_pending(self, limit: int | None = None) -> list[PriceUpdateProposal]: ...

    async def set_status(
        self,
        proposal_id: UUID,
        status: ProposalStatus,
        resolved_by: str | None = None,
        note: str | None = None,
        expected: ProposalStatus | None = None,
    ) -> PriceUpdateProposal: ...

    async def has_open(self, item_id: UUID, source_document: str) -> bool: ...


class SqlPricingCatalogStore:
    """Pricebook items in the ``pricebook_items`` table."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_item(self, item_id: UUID) -> PriceBookItem | None:
        row = await self.session.get(PriceBookItemModel, item_id)
        return _row_to_item(row) if row is not None else None

    async def list_active_items(self) -> list[PriceBookItem]:
        stmt = (
            select(PriceBookItemModel)
            .where(PriceBookItemModel.is_active.is_(True))
            .order_by(PriceBookItemModel.code)
        )
        result = await self.session.execute(stmt)
        return [_row_to_item(row) for row in result.scalars()]

    async def list_matchable_items(self) -> list[PriceBookItem]:
        """Active items plus inactive ones still awaiting new_item approval."""
        awaiting_approval = exists().where(
            PriceUpdateModel.pricebook_item_id == PriceBookItemModel.id,
            PriceUpdateModel.update_type == UpdateType.NEW_ITEM.value,
            PriceUpdateModel.status == ProposalStatus.PENDING.value,
        )
        stmt = (
            select(PriceBookItemModel)
            .where(or_(PriceBookItemModel.is_active.is_(True), awaiting_approval))
            .order_by(PriceBookItemModel.code)
        )
        result = await self.session.execute(stmt)
        return [_row_to_item(row) for row in result.scalars()]

    async def create_item(self, item: PriceBookItem) -> PriceBookItem:
        now = utcnow()
        row = PriceBookItemModel(
            id=item.id,
            market_key=market_key(item.title, item.unit, item.branch),
            created_at=item.created_at or now,
            updated_at=item.updated_at or now,
        )
        _apply_item(row, item)
        self.session.add(row)
        try:
            await self.session.flush()
        except IntegrityError as exc:
            raise PersistenceError(f"Could not create pricebook item {item.code}: {exc.orig}") from exc
        return _row_to_item(row)

    async def mutate_item(self, item: PriceBookItem) -> PriceBookItem:
        row = await self.session.get(PriceBookItemModel, item.id)
        if row is None:
            raise NotFoundError(f"Pricebook item {item.id} not found")
        _apply_item(row, item)
        row.market_key = market_key(item.title, item.unit, item.branch)
        row.updated_at = utcnow()
        await self.session.flush()
        return _row_to_item(row)


class SqlProposalStore:
    """Price update proposals in the ``price_updates`` table."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, proposal: PriceUpdateProposal) -> PriceUpdateProposal:
        """Insert a proposal.

        Raises:
            ConflictError: If an open proposal for the same item and source
                document already exists (unique index violation)
        """
        row = PriceUpdateModel(
            id=proposal.id,
            pricebook_item_id=proposal.pricebook_item_id,
            source_document=proposal.source_document,
            update_type=proposal.update_type.value,
            old_price=proposal.old_price,
            new_price=proposal.new_price,
            price_change_pct=proposal.price_change_pct,
            status=proposal.status.value,
            match_method=proposal.match_method,
            description=proposal.description,
            unit=proposal.unit,
            trade_category=proposal.trade_category,
            created_at=proposal.created_at,
        )
        self.session.add(row)
        try:
            await self.session.flush()
        except IntegrityError as exc:
            raise ConflictError(
                f"Open proposal for item {proposal.pricebook_item_id} "
                f"from {proposal.source_document} already exists"
            ) from exc
        return _row_to_proposal(row)

    async def get(self, proposal_id: UUID) -> PriceUpdateProposal | None:
        row = await self.session.get(PriceUpdateModel, proposal_id)
        return _row_to_proposal(row) if row is not None else None

    async def list_proposals(
        self, status: ProposalStatus | None = None, limit: int | None = None
    ) -> list[PriceUpdateProposal]:
        stmt = select(PriceUpdateModel).order_by(
            PriceUpdateModel.created_at, PriceUpdateModel.id
        )
        if status is not None:
            stmt = stmt.where(PriceUpdateModel.status == status.value)
        if limit is not None:
            stmt = stmt.limit(limit)
        result = await self.session.execute(stmt)
        return [_row_to_proposal(row) for row in result.scalars()]

    async def list_pending(self, limit: int | None = None) -> list[PriceUpdateProposal]:
        return await self.list_proposals(ProposalStatus.PENDING, limit)

    async def set_status(
        self,
        proposal_id: UUID,
        status: ProposalStatus,
        resolved_by: str | None = None,
        note: str | None = None,
        expected: ProposalStatus | None = None,
    ) -> PriceUpdateProposal:
        """Change the status, optionally only if it currently is ``expected``.

        Raises:
            NotFoundError: If the proposal does not exist
            ProposalStateError: If the current status is not ``expected``
        """
        values: dict = {"status": status.value}
        if status.is_terminal:
            values.update(resolved_at=utcnow(), resolved_by=resolved_by)
        if note is not None:
            values["note"] = note

        stmt = update(PriceUpdateModel).where(PriceUpdateModel.id == proposal_id)
        if expected is not None:
            stmt = stmt.where(PriceUpdateModel.status == expected.value)
        result = await self.session.execute(
            stmt.values(**values).execution_options(synchronize_session=False)
        )

        row = await self.session.get(PriceUpdateModel, proposal_id, populate_existing=True)
        if row is None:
            raise NotFoundError(f"Proposal {proposal_id} not found")
        if result.rowcount == 0:
            raise ProposalStateError(f"Proposal {proposal_id} is already {row.status}")
        return _row_to_proposal(row)

    async def has_open(self, item_id: UUID, source_document: str) -> bool:
        stmt = select(
            exists().where(
                PriceUpdateModel.pricebook_item_id == item_id,
                PriceUpdateModel.source_document == source_document,
                PriceUpdateModel.status.in_(OPEN_STATUSES),
            )
        )
        return bool((await self.session.execute(stmt)).scalar())


class SqlUnitOfWork:
    """One session shared by the catalog and proposal stores.

    Usage:
        async with SqlUnitOfWork(session_factory) as uow:
            await uow.proposals.create(...)
            await uow.commit()

    Leaving the block without commit() discards all pending writes.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory
        self.session: AsyncSession | None = None

    async def __aenter__(self) -> SqlUnitOfWork:
        self.session = self._session_factory()
        self.catalog = SqlPricingCatalogStore(self.session)
        self.proposals = SqlProposalStore(self.session)
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        try:
            await self.session.rollback()
        finally:
            await self.session.close()

    async def commit(self) -> None:
        """Commit pending writes.

        Raises:
            PersistenceError: If the commit fails (the session is rolled back)
        """
        try:
            await self.session.commit()
        except SQLAlchemyError as exc:
            await self.session.rollback()
            raise PersistenceError(f"Commit failed: {exc}") from exc

    async def rollback(self) -> None:
        await self.session.rollback()


def _apply_item(row: PriceBookItemModel, item: PriceBookItem) -> None:
    row.code = item.code
    row.title = item.title
    row.unit = item.unit
    row.branch = item.branch
    row.base_material_cost = item.base_material_cost
    row.base_minutes = item.base_minutes
    row.markup_material_pct = item.markup_material_pct
    row.overhead_pct = item.overhead_pct
    row.region_factor = item.region_factor
    row.is_active = item.is_active
    row.variant_group = item.variant_group


def _row_to_item(row: PriceBookItemModel) -> PriceBookItem:
    return PriceBookItem(
        id=row.id,
        title=row.title,
        code=row.code,
        unit=row.unit,
        branch=row.branch,
        base_material_cost=row.base_material_cost,
        base_minutes=row.base_minutes,
        markup_material_pct=row.markup_material_pct,
        overhead_pct=row.overhead_pct,
        region_factor=row.region_factor,
        is_active=row.is_active,
        variant_group=row.variant_group,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _row_to_proposal(row: PriceUpdateModel) -> PriceUpdateProposal:
    return PriceUpdateProposal(
        id=row.id,
        pricebook_item_id=row.pricebook_item_id,
        source_document=row.source_document,
        update_type=UpdateType(row.update_type),
        old_price=row.old_price,
        new_price=row.new_price,
        price_change_pct=row.price_change_pct,
        status=ProposalStatus(row.status),
        match_method=row.match_method,
        description=row.description,
        unit=row.unit,
        trade_category=row.trade_category,
        created_at=row.created_at,
        resolved_at=row.resolved_at,
        resolved_by=row.resolved_by,
        note=row.note,
    )

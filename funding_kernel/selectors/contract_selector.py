"""
Module: funding_kernel.selectors.contract_selector
Responsibility: Read-only contract queries: lookup with allocations,
    filtered listing, flattened export rows and the allocation-total check.
Architecture position: Kernel > Selectors.
"""

from __future__ import annotations

from collections.abc import Iterable

from sqlalchemy import func, select

from funding_kernel.db.types import ZERO
from funding_kernel.domain.dtos import (
    AllocationInfo,
    AllocationValidation,
    ContractExportRow,
    ContractFilter,
    ContractInfo,
    Page,
)
from funding_kernel.models.contract import Allocation, Channel, Contract, ContractScope
from funding_kernel.selectors.allocation_selector import AllocationSelector
from funding_kernel.selectors.base import BaseSelector


def to_contract_info(
    contract: Contract, allocations: tuple[AllocationInfo, ...] = ()
) -> ContractInfo:
    return ContractInfo(
        id=contract.id,
        style_ref=contract.style_ref,
        scope=ContractScope(contract.scope),
        customer=contract.customer,
        total_committed_amount=contract.total_committed_amount,
        contract_date=contract.contract_date,
        campaign_start=contract.campaign_start,
        campaign_end=contract.campaign_end,
        created_by=contract.created_by,
        created_at=contract.created_at,
        updated_at=contract.updated_at,
        allocations=allocations,
    )


class ContractSelector(BaseSelector):
    """Queries over contracts and their allocations."""

    def _with_allocations(self, contracts: list[Contract]) -> list[ContractInfo]:
        grouped = AllocationSelector(self.session).for_contracts(c.id for c in contracts)
        return [to_contract_info(c, grouped.get(c.id, ())) for c in contracts]

    def get(self, contract_id: int) -> ContractInfo | None:
        contract = self.session.get(Contract, contract_id)
        if contract is None:
            return None
        return self._with_allocations([contract])[0]

    def exists(self, contract_id: int) -> bool:
        return self.session.get(Contract, contract_id) is not None

    def list(
        self,
        filters: ContractFilter | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> Page:
        """
        Contracts matching every supplied filter, newest first.

        style and customer match case-insensitive substrings; created_by and
        scope match exactly.
        """
        filters = filters or ContractFilter()
        conditions = []
        if filters.created_by is not None:
            conditions.append(Contract.created_by == filters.created_by)
        if filters.style:
            conditions.append(Contract.style_ref.ilike(f"%{filters.style}%"))
        if filters.customer:
            conditions.append(Contract.customer.ilike(f"%{filters.customer}%"))
        if filters.scope is not None:
            conditions.append(Contract.scope == ContractScope(filters.scope).value)

        query = (
            select(Contract)
            .where(*conditions)
            .order_by(Contract.created_at.desc(), Contract.id.desc())
            .limit(limit)
            .offset(offset)
        )
        contracts = list(self.session.scalars(query))
        total = self.session.scalar(
            select(func.count(Contract.id)).where(*conditions)
        ) or 0

        return Page(
            items=tuple(self._with_allocations(contracts)),
            total=total,
            limit=limit,
            offset=offset,
        )

    def export_rows(self, contract_ids: Iterable[int] | None = None) -> list[ContractExportRow]:
        """
        One row per contract x allocation, ordered by contract id then channel.

        Contracts without allocations yield a single row with no channel.
        None exports every contract.
        """
        query = select(Contract).order_by(Contract.id)
        if contract_ids is not None:
            ids = list(contract_ids)
            if not ids:
                return []
            query = query.where(Contract.id.in_(ids))

        rows = []
        for contract in self.session.scalars(query):
            allocations = sorted(contract.allocations, key=lambda a: a.channel)
            for allocation in allocations or [None]:
                rows.append(
                    ContractExportRow(
                        contract_id=contract.id,
                        style_ref=contract.style_ref,
                        scope=ContractScope(contract.scope),
                        customer=contract.customer,
                        total_committed_amount=contract.total_committed_amount,
                        contract_date=contract.contract_date,
                        campaign_start=contract.campaign_start,
                        campaign_end=contract.campaign_end,
                        created_by=contract.created_by,
                        created_at=contract.created_at,
                        channel=Channel(allocation.channel) if allocation else None,
                        allocated_amount=allocation.allocated_amount if allocation else None,
                    )
                )
        return rows

    def allocation_validation(self, contract_id: int) -> AllocationValidation | None:
        """Committed vs allocated totals; None when the contract does not exist."""
        contract = self.session.get(Contract, contract_id)
        if contract is None:
            return None
        amounts = self.session.scalars(
            select(Allocation.allocated_amount).where(Allocation.contract_id == contract_id)
        )
        return AllocationValidation.compute(
            contract_id=contract_id,
            total_committed=contract.total_committed_amount,
            total_allocated=sum(amounts, ZERO),
        )

"""
Module: funding_kernel.selectors.allocation_selector
Responsibility: Read-only allocation queries: lookup, listing, spend
    utilization, nearing-limit detection and per-channel summaries.
Architecture position: Kernel > Selectors.

Spend positions come from allocation_balances, which the spend-tracking
feed maintains.  An allocation without a balance row has spent 0 and
remaining equal to its allocated amount.

Sums and ratios are computed over Decimals in Python rather than with SQL
aggregates so every backend yields the same exact values.
"""

from __future__ import annotations

from collections.abc import Iterable
from decimal import Decimal

from sqlalchemy import func, select

from funding_kernel.db.types import HUNDRED, ZERO, round_money
from funding_kernel.domain.dtos import (
    AllocationInfo,
    AllocationUtilization,
    ChannelSummary,
    Page,
)
from funding_kernel.models.contract import Allocation, AllocationBalance, Channel
from funding_kernel.selectors.base import BaseSelector

DEFAULT_NEARING_LIMIT_PCT = Decimal("90")


def utilization_of(spent: Decimal, allocated: Decimal) -> Decimal:
    """spent / allocated * 100, or 0 for a zero allocation."""
    if allocated <= ZERO:
        return ZERO
    return spent / allocated * HUNDRED


class AllocationSelector(BaseSelector):
    """Queries over allocations joined to their spend balances."""

    def _balances(self, allocation_ids: Iterable[int]) -> dict[int, AllocationBalance]:
        ids = list(allocation_ids)
        if not ids:
            return {}
        rows = self.session.scalars(
            select(AllocationBalance).where(AllocationBalance.allocation_id.in_(ids))
        )
        return {row.allocation_id: row for row in rows}

    def _to_infos(self, allocations: list[Allocation]) -> list[AllocationInfo]:
        balances = self._balances(a.id for a in allocations)
        return [to_allocation_info(a, balances.get(a.id)) for a in allocations]

    def get(self, allocation_id: int) -> AllocationInfo | None:
        allocation = self.session.get(Allocation, allocation_id)
        if allocation is None:
            return None
        return self._to_infos([allocation])[0]

    def for_contracts(self, contract_ids: Iterable[int]) -> dict[int, tuple[AllocationInfo, ...]]:
        """Allocations grouped by contract, each group ordered by channel."""
        ids = list(contract_ids)
        if not ids:
            return {}
        grouped: dict[int, list[AllocationInfo]] = {cid: [] for cid in ids}
        allocations = list(
            self.session.scalars(
                select(Allocation)
                .where(Allocation.contract_id.in_(ids))
                .order_by(Allocation.contract_id, Allocation.channel)
            )
        )
        for info in self._to_infos(allocations):
            grouped[info.contract_id].append(info)
        return {cid: tuple(items) for cid, items in grouped.items()}

    def list(
        self,
        contract_id: int | None = None,
        channel: Channel | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> Page:
        """Newest first."""
        query = select(Allocation)
        count_query = select(func.count(Allocation.id))
        if contract_id is not None:
            query = query.where(Allocation.contract_id == contract_id)
            count_query = count_query.where(Allocation.contract_id == contract_id)
        if channel is not None:
            query = query.where(Allocation.channel == Channel(channel).value)
            count_query = count_query.where(Allocation.channel == Channel(channel).value)

        allocations = list(
            self.session.scalars(
                query.order_by(Allocation.created_at.desc(), Allocation.id.desc())
                .limit(limit)
                .offset(offset)
            )
        )
        total = self.session.scalar(count_query) or 0
        return Page(
            items=tuple(self._to_infos(allocations)),
            total=total,
            limit=limit,
            offset=offset,
        )

    def _all_infos(self, contract_id: int | None = None) -> list[AllocationInfo]:
        query = select(Allocation).order_by(Allocation.id)
        if contract_id is not None:
            query = query.where(Allocation.contract_id == contract_id)
        return self._to_infos(list(self.session.scalars(query)))

    def utilization(self, contract_id: int | None = None) -> list[AllocationUtilization]:
        """Utilization per allocation, highest first (ties by allocation id)."""
        rows = [
            (info, utilization_of(info.spent_amount, info.allocated_amount))
            for info in self._all_infos(contract_id)
        ]
        rows.sort(key=lambda row: (-row[1], row[0].id))
        return [
            AllocationUtilization(allocation=info, utilization_pct=round_money(pct))
            for info, pct in rows
        ]

    def nearing_limit(
        self, threshold_pct: Decimal = DEFAULT_NEARING_LIMIT_PCT
    ) -> list[AllocationUtilization]:
        """Allocations with a non-zero amount whose utilization >= threshold."""
        rows = [
            (info, utilization_of(info.spent_amount, info.allocated_amount))
            for info in self._all_infos()
            if info.allocated_amount > ZERO
        ]
        rows = [row for row in rows if row[1] >= threshold_pct]
        rows.sort(key=lambda row: (-row[1], row[0].id))
        return [
            AllocationUtilization(allocation=info, utilization_pct=round_money(pct))
            for info, pct in rows
        ]

    def channel_summary(self) -> list[ChannelSummary]:
        """One row per channel that has allocations, ordered by channel."""
        by_channel: dict[Channel, list[AllocationInfo]] = {}
        for info in self._all_infos():
            by_channel.setdefault(info.channel, []).append(info)

        summaries = []
        for channel in sorted(by_channel, key=lambda c: c.value):
            infos = by_channel[channel]
            utilizations = [
                utilization_of(i.spent_amount, i.allocated_amount) for i in infos
            ]
            summaries.append(
                ChannelSummary(
                    channel=channel,
                    allocation_count=len(infos),
                    total_allocated=sum((i.allocated_amount for i in infos), ZERO),
                    total_spent=sum((i.spent_amount for i in infos), ZERO),
                    total_remaining=sum((i.remaining_balance for i in infos), ZERO),
                    avg_utilization_pct=round_money(
                        sum(utilizations, ZERO) / len(utilizations)
                    ),
                )
            )
        return summaries


def to_allocation_info(
    allocation: Allocation, balance: AllocationBalance | None = None
) -> AllocationInfo:
    if balance is None:
        spent = ZERO
        remaining = allocation.allocated_amount
    else:
        spent = balance.spent_amount
        remaining = balance.remaining_balance
    return AllocationInfo(
        id=allocation.id,
        contract_id=allocation.contract_id,
        channel=Channel(allocation.channel),
        allocated_amount=allocation.allocated_amount,
        spent_amount=spent,
        remaining_balance=remaining,
        created_at=allocation.created_at,
        updated_at=allocation.updated_at,
    )

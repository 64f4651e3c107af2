"""
Reconciliation Engine -- derive a consistent two-channel split from either
representation.

Pure functions.  Given the contract total and one side of the split (as a
percentage or as an amount), produce both channels' amounts and percentages.
Out-of-range inputs are clamped, not rejected: clamping is how an entry form
keeps the split usable while the user types.  Rejection is the invariant
model's job.

Arithmetic keeps full Decimal precision; rounding for display belongs to
the presentation layer.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum

from funding_kernel.db.types import HUNDRED, ZERO
from funding_kernel.models.contract import Channel


@dataclass(frozen=True)
class ChannelSplit:
    """
    Both representations of a two-channel split.

    Guarantees:
        - inline_amount + ecomm_amount == total
        - inline_percentage + ecomm_percentage == 100
    """

    total: Decimal
    inline_amount: Decimal
    ecomm_amount: Decimal
    inline_percentage: Decimal
    ecomm_percentage: Decimal

    def amount_for(self, channel: Channel) -> Decimal:
        return self.inline_amount if channel is Channel.INLINE else self.ecomm_amount


class SplitPreset(Enum):
    """Quick-pick splits, as (inline %, ecomm %)."""

    EVEN = (50, 50)
    SIXTY_FORTY = (60, 40)
    SEVENTY_THIRTY = (70, 30)
    EIGHTY_TWENTY = (80, 20)
    ALL_INLINE = (100, 0)
    ALL_ECOMM = (0, 100)

    @property
    def inline_percentage(self) -> Decimal:
        return Decimal(self.value[0])

    @property
    def ecomm_percentage(self) -> Decimal:
        return Decimal(self.value[1])

    @property
    def label(self) -> str:
        return f"{self.value[0]}/{self.value[1]}"


def clamp(value: Decimal, lower: Decimal, upper: Decimal) -> Decimal:
    return max(lower, min(value, upper))


def _build(
    total: Decimal,
    channel: Channel,
    amount: Decimal,
    other_amount: Decimal,
    pct: Decimal,
    other_pct: Decimal,
) -> ChannelSplit:
    if channel is Channel.INLINE:
        return ChannelSplit(total, amount, other_amount, pct, other_pct)
    return ChannelSplit(total, other_amount, amount, other_pct, pct)


def split_from_percentage(
    total: Decimal, pct: Decimal, channel: Channel = Channel.INLINE
) -> ChannelSplit:
    """
    Split ``total`` giving ``channel`` ``pct`` percent and the rest to the other.

    pct is clamped to [0, 100].
    """
    pct = clamp(pct, ZERO, HUNDRED)
    other_pct = HUNDRED - pct
    amount = total * pct / HUNDRED
    return _build(total, channel, amount, total - amount, pct, other_pct)


def split_from_amount(
    total: Decimal, amount: Decimal, channel: Channel = Channel.INLINE
) -> ChannelSplit:
    """
    Split ``total`` giving ``channel`` ``amount`` and the rest to the other.

    amount is clamped to [0, total].  With a zero total ``channel`` gets 0%
    and the other channel 100%.
    """
    amount = clamp(amount, ZERO, max(total, ZERO))
    other_amount = total - amount
    pct = amount / total * HUNDRED if total > ZERO else ZERO
    other_pct = HUNDRED - pct
    return _build(total, channel, amount, other_amount, pct, other_pct)


def apply_preset(total: Decimal, preset: SplitPreset) -> ChannelSplit:
    return split_from_percentage(total, preset.inline_percentage, Channel.INLINE)

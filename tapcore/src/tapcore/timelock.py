"""
Timelock resolution for a transaction draft.

nLockTime is only enforced when at least one input opts into BIP68 relative
lock-times, so absolute and relative timelocks are resolved together here.
"""

from __future__ import annotations

from dataclasses import dataclass

from tapcore.constants import SEQUENCE_FINAL, SEQUENCE_LOCKTIME_ONLY
from tapcore.errors import LocktimeRequiresRelativeTimelock
from tapcore.models import TransactionDraft


@dataclass(frozen=True)
class InputTimelock:
    """Timelock view of a single input, as seen by older()/after() predicates."""

    index: int
    relative_height: int | None
    locktime_active: bool
    locktime: int | None

    def older_satisfied(self, height: int) -> bool:
        return (
            self.locktime_active
            and self.relative_height is not None
            and self.relative_height >= height
        )

    def after_satisfied(self, height: int) -> bool:
        return self.locktime_active and self.locktime is not None and self.locktime >= height


@dataclass(frozen=True)
class TimelockContext:
    active: bool
    locktime: int | None
    relative_heights: dict[int, int | None]

    def for_input(self, index: int) -> InputTimelock:
        return InputTimelock(
            index=index,
            relative_height=self.relative_heights.get(index),
            locktime_active=self.active,
            locktime=self.locktime,
        )

    def sequence(self, index: int) -> int:
        """Consensus nSequence of an input."""
        height = self.relative_heights.get(index)
        if height is not None:
            return height
        return SEQUENCE_LOCKTIME_ONLY if self.active else SEQUENCE_FINAL

    @property
    def n_locktime(self) -> int:
        if self.active and self.locktime is not None:
            return self.locktime
        return 0


def require_relative_timelock(draft: TransactionDraft) -> None:
    """Reject an absolute locktime on a draft without relative timelocks."""
    if not draft.has_relative_timelock():
        raise LocktimeRequiresRelativeTimelock()


def resolve(draft: TransactionDraft) -> TimelockContext:
    if draft.locktime is not None:
        require_relative_timelock(draft)

    return TimelockContext(
        active=draft.has_relative_timelock(),
        locktime=draft.locktime,
        relative_heights={index: tx_input.sequence for index, tx_input in draft.inputs.items()},
    )

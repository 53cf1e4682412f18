"""
Incremental edits of the transaction draft: inputs, outputs, fee and locktime.
"""

from __future__ import annotations

from loguru import logger

from tapcore.constants import LOCKTIME_THRESHOLD, MAX_RELATIVE_HEIGHT
from tapcore.errors import (
    DoubleSpend,
    InvalidLocktime,
    InvalidRelativeHeight,
    MissingOutput,
    MultipleImplicitOutputs,
    UnboundInput,
)
from tapcore.models import TxInput, TxOutput
from tapcore.timelock import require_relative_timelock
from tapwallet.state import WalletState


def add_input(state: WalletState, index: int, utxo_index: int) -> TxInput | None:
    """
    Bind a UTXO to the input at index, replacing what was there.

    Returns:
        The replaced input, if any
    """
    utxo = state.get_utxo(utxo_index)
    for other_index, other in state.draft.inputs.items():
        if other_index != index and other.utxo is not None and other.utxo.outpoint == utxo.outpoint:
            raise DoubleSpend(utxo.outpoint)

    old = state.draft.inputs.get(index)
    state.draft.inputs[index] = TxInput(utxo=utxo)
    logger.info(f"Input #{index} spends {utxo.outpoint}")
    return old


def delete_input(state: WalletState, index: int) -> TxInput:
    if index not in state.draft.inputs:
        raise UnboundInput(index)
    removed = state.draft.inputs.pop(index)
    if state.draft.locktime is not None and not state.draft.has_relative_timelock():
        logger.warning("No input enables relative timelocks anymore, the locktime cannot apply")
    return removed


def set_sequence(state: WalletState, index: int, height: int) -> None:
    """Enable the relative timelock of an input (0 only enables nLockTime)."""
    if not 0 <= height <= MAX_RELATIVE_HEIGHT:
        raise InvalidRelativeHeight(height)
    if index not in state.draft.inputs:
        raise UnboundInput(index)
    state.draft.inputs[index].sequence = height
    logger.info(f"Input #{index} relative timelock set to {height} block(s)")


def disable_sequence(state: WalletState, index: int) -> None:
    if index not in state.draft.inputs:
        raise UnboundInput(index)
    state.draft.inputs[index].sequence = None
    logger.info(f"Input #{index} relative timelock disabled")
    if state.draft.locktime is not None and not state.draft.has_relative_timelock():
        logger.warning("No input enables relative timelocks anymore, the locktime cannot apply")


def add_output(
    state: WalletState, index: int, descriptor: str, value: int | None = None
) -> TxOutput | None:
    """
    Set the output at index. An output without value receives whatever the
    inputs provide beyond the other outputs and the fee.
    """
    parsed = state.parse(descriptor)
    if value is None:
        for other_index, other in state.draft.outputs.items():
            if other_index != index and other.value is None:
                raise MultipleImplicitOutputs()

    old = state.draft.outputs.get(index)
    state.draft.outputs[index] = TxOutput(descriptor=str(parsed), value=value)
    logger.info(
        f"Output #{index} pays {value if value is not None else 'the remainder'} to {parsed}"
    )
    return old


def delete_output(state: WalletState, index: int) -> TxOutput:
    if index not in state.draft.outputs:
        raise MissingOutput(index)
    return state.draft.outputs.pop(index)


def set_locktime(state: WalletState, height: int) -> None:
    if not 0 <= height < LOCKTIME_THRESHOLD:
        raise InvalidLocktime(height)
    require_relative_timelock(state.draft)
    state.draft.locktime = height
    logger.info(f"Locktime set to height {height}")


def clear_locktime(state: WalletState) -> None:
    state.draft.locktime = None


def set_fee(state: WalletState, fee: int) -> None:
    if fee < 0:
        raise ValueError("Fee must not be negative")
    state.draft.fee = fee

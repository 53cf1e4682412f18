"""
Transaction assembly: turns the draft into a fully signed transaction and
advances the UTXO chain once it is broadcast.
"""

from __future__ import annotations

from dataclasses import dataclass

from loguru import logger

from tapcore.constants import SIGHASH_DEFAULT
from tapcore.descriptor import Descriptor
from tapcore.errors import (
    MissingOutput,
    MultipleImplicitOutputs,
    NegativeImplicitValue,
    TxidMismatch,
    UnboundInput,
)
from tapcore.models import TransactionDraft, TxInput, Utxo
from tapcore.satisfier import Witness, satisfy
from tapcore.sighash import taproot_sighash
from tapcore.timelock import TimelockContext, resolve
from tapcore.transaction import Transaction, TxIn, TxOut
from tapwallet.state import WalletState


@dataclass
class UnsignedTransaction:
    transaction: Transaction
    utxos: list[Utxo]
    input_descriptors: list[Descriptor]
    output_descriptors: list[Descriptor]
    timelocks: TimelockContext

    @property
    def prevouts(self) -> list[TxOut]:
        return [
            TxOut(utxo.value, descriptor.script_pubkey())
            for utxo, descriptor in zip(self.utxos, self.input_descriptors)
        ]


@dataclass
class BuiltTransaction:
    transaction: Transaction
    fee: int
    witnesses: list[Witness]

    @property
    def hex(self) -> str:
        return self.transaction.hex()

    @property
    def txid(self) -> str:
        return self.transaction.txid

    @property
    def weight(self) -> int:
        return self.transaction.weight

    @property
    def vsize(self) -> int:
        return self.transaction.vsize

    @property
    def fee_rate(self) -> float:
        """sat/vB"""
        return self.fee / self.vsize


def _contiguous(indices: list[int]) -> int | None:
    """First missing index of 0..max, or None when there is no gap."""
    for expected, index in enumerate(sorted(indices)):
        if expected != index:
            return expected
    return None


def output_values(draft: TransactionDraft, available: int) -> list[int]:
    """
    Resolve output values, filling in the single value-omitted output.

    Raises:
        MultipleImplicitOutputs: more than one output omits its value
        NegativeImplicitValue: inputs do not cover the outputs plus the fee
    """
    outputs = [draft.outputs[i] for i in sorted(draft.outputs)]
    implicit = [i for i, output in enumerate(outputs) if output.value is None]
    if len(implicit) > 1:
        raise MultipleImplicitOutputs()

    explicit_total = sum(output.value for output in outputs if output.value is not None)
    required = explicit_total + draft.fee
    remainder = available - required
    if remainder < 0:
        raise NegativeImplicitValue(available, required)

    return [output.value if output.value is not None else remainder for output in outputs]


def prepare(state: WalletState) -> UnsignedTransaction:
    """
    Validate the draft and build the unsigned transaction.

    Every descriptor is parsed and compiled here, before anything is signed.
    """
    draft = state.draft
    timelocks = resolve(draft)

    if not draft.inputs:
        raise UnboundInput(0)
    gap = _contiguous(list(draft.inputs))
    if gap is not None:
        raise UnboundInput(gap)
    if not draft.outputs:
        raise MissingOutput(0)
    gap = _contiguous(list(draft.outputs))
    if gap is not None:
        raise MissingOutput(gap)

    utxos = []
    for index in sorted(draft.inputs):
        utxo = draft.inputs[index].utxo
        if utxo is None:
            raise UnboundInput(index)
        utxos.append(utxo)

    input_descriptors = [state.parse(utxo.descriptor) for utxo in utxos]
    output_descriptors = [state.parse(draft.outputs[i].descriptor) for i in sorted(draft.outputs)]
    # Compile every tree before anything is signed
    for descriptor in input_descriptors + output_descriptors:
        descriptor.taptree

    values = output_values(draft, sum(utxo.value for utxo in utxos))

    tx = Transaction(
        inputs=[
            TxIn(bytes.fromhex(utxo.txid), utxo.vout, timelocks.sequence(index))
            for index, utxo in enumerate(utxos)
        ],
        outputs=[
            TxOut(value, descriptor.script_pubkey())
            for value, descriptor in zip(values, output_descriptors)
        ],
        locktime=timelocks.n_locktime,
    )
    return UnsignedTransaction(tx, utxos, input_descriptors, output_descriptors, timelocks)


def build(state: WalletState) -> BuiltTransaction:
    """
    Sign every input of the draft.

    Raises:
        NoSatisfyingPath: an input cannot be spent with the active secrets;
            nothing is returned for the other inputs either
    """
    unsigned = prepare(state)
    tx = unsigned.transaction
    prevouts = unsigned.prevouts

    witnesses = []
    for index, descriptor in enumerate(unsigned.input_descriptors):

        def sighash(leaf_hash: bytes | None, index: int = index) -> bytes:
            return taproot_sighash(tx, index, prevouts, SIGHASH_DEFAULT, leaf_hash)

        witnesses.append(
            satisfy(descriptor.taptree, state.store, unsigned.timelocks.for_input(index), sighash)
        )

    for tx_in, witness in zip(tx.inputs, witnesses):
        tx_in.witness = witness.items

    fee = sum(out.value for out in prevouts) - sum(out.value for out in tx.outputs)
    built = BuiltTransaction(tx, fee, witnesses)
    logger.info(f"Built transaction {built.txid} ({built.vsize} vB, {built.fee_rate:.2f} sat/vB)")
    return built


def finalize(state: WalletState, txid: str | None = None, chain: bool = True) -> list[Utxo]:
    """
    Record the draft transaction as broadcast.

    Spent UTXOs are removed, every output becomes a new UTXO and the draft is
    reset. With `chain`, output 0 is bound to input 0 of the new draft.

    Raises:
        TxidMismatch: txid is given and differs from the draft's txid
    """
    unsigned = prepare(state)
    computed = unsigned.transaction.txid
    if txid is not None and txid.strip().lower() != computed:
        raise TxidMismatch(computed, txid)

    spent = {utxo.outpoint for utxo in unsigned.utxos}
    state.utxos = [utxo for utxo in state.utxos if utxo.outpoint not in spent]

    created = []
    for vout, (tx_out, descriptor) in enumerate(
        zip(unsigned.transaction.outputs, unsigned.output_descriptors)
    ):
        utxo = Utxo(txid=computed, vout=vout, value=tx_out.value, descriptor=str(descriptor))
        created.append(state.add_utxo(utxo))

    state.draft = TransactionDraft()
    if chain:
        state.draft.inputs[0] = TxInput(utxo=created[0])
        logger.info(f"Chained {created[0].outpoint} into input #0 of the new draft")

    logger.info(f"Finalized transaction {computed}")
    return created

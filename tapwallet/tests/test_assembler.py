"""
Tests for transaction assembly, signing and finalization.
"""

import pytest

from tapcore.constants import SEQUENCE_FINAL, SEQUENCE_LOCKTIME_ONLY
from tapcore.crypto import schnorr_verify
from tapcore.errors import (
    MissingOutput,
    NegativeImplicitValue,
    NoSatisfyingPath,
    TxidMismatch,
    UnboundInput,
)
from tapcore.models import Utxo
from tapcore.sighash import taproot_sighash
from tapcore.transaction import deserialize_transaction
from tapwallet import assembler, draft


@pytest.fixture
def payment(funded, keys):
    """Pay 0.5 BTC to the second key and the change to the third."""
    draft.add_input(funded, 0, 0)
    draft.add_output(funded, 0, f"tr({keys[1]})", 50_000_000)
    draft.add_output(funded, 1, f"tr({keys[2]})")
    draft.set_fee(funded, 1000)
    return funded


class TestBuild:
    def test_implicit_output_gets_remainder(self, payment):
        built = assembler.build(payment)
        values = [out.value for out in built.transaction.outputs]
        assert values == [50_000_000, 49_999_000]
        assert built.fee == 1000
        assert built.fee_rate == pytest.approx(1000 / built.vsize)

    def test_key_path_signature_verifies(self, payment):
        built = assembler.build(payment)
        unsigned = assembler.prepare(payment)
        descriptor = unsigned.input_descriptors[0]

        (signature,) = built.transaction.inputs[0].witness
        message = taproot_sighash(built.transaction, 0, unsigned.prevouts)
        assert schnorr_verify(descriptor.taptree.output_key, message, signature)

    def test_script_path_spend(self, funded, keys):
        funded.store.set_key_active(bytes.fromhex(keys[0]), False)
        funded.add_utxo(
            Utxo(
                txid="aa" * 32,
                vout=3,
                value=20_000,
                descriptor=f"tr({keys[0]},and_v(v:pk({keys[1]}),older(10)))",
            )
        )
        draft.add_input(funded, 0, 1)
        draft.set_sequence(funded, 0, 10)
        draft.add_output(funded, 0, f"tr({keys[2]})")

        built = assembler.build(funded)
        tx_in = built.transaction.inputs[0]
        leaf = built.witnesses[0].leaf

        assert tx_in.sequence == 10
        assert tx_in.witness[-2] == leaf.script
        message = taproot_sighash(
            built.transaction, 0, assembler.prepare(funded).prevouts, leaf_hash=leaf.leaf_hash
        )
        assert schnorr_verify(bytes.fromhex(keys[1]), message, tx_in.witness[0])

    def test_output_serializes(self, payment):
        built = assembler.build(payment)
        parsed = deserialize_transaction(bytes.fromhex(built.hex))
        assert parsed.txid == built.txid
        assert parsed.version == 2

    def test_unsatisfiable_input(self, payment, keys):
        payment.store.set_key_active(bytes.fromhex(keys[0]), False)
        with pytest.raises(NoSatisfyingPath) as excinfo:
            assembler.build(payment)
        assert excinfo.value.input_index == 0


class TestTwoInputs:
    @pytest.fixture
    def two_inputs(self, funded, keys):
        funded.add_utxo(
            Utxo(txid="dd" * 32, vout=2, value=10_000, descriptor=f"tr({keys[3]})")
        )
        draft.add_input(funded, 0, 0)
        draft.add_input(funded, 1, 1)
        draft.add_output(funded, 0, f"tr({keys[1]})")
        draft.set_fee(funded, 500)
        return funded

    def test_every_input_signs_its_own_message(self, two_inputs):
        built = assembler.build(two_inputs)
        unsigned = assembler.prepare(two_inputs)

        assert built.transaction.outputs[0].value == 100_010_000 - 500
        for index, descriptor in enumerate(unsigned.input_descriptors):
            (signature,) = built.transaction.inputs[index].witness
            message = taproot_sighash(built.transaction, index, unsigned.prevouts)
            assert schnorr_verify(descriptor.taptree.output_key, message, signature)

        # Input #1 does not verify against input #0's message
        other = taproot_sighash(built.transaction, 0, unsigned.prevouts)
        (signature,) = built.transaction.inputs[1].witness
        assert not schnorr_verify(
            unsigned.input_descriptors[1].taptree.output_key, other, signature
        )

    def test_second_input_failure_aborts_build(self, two_inputs, keys):
        two_inputs.store.set_key_active(bytes.fromhex(keys[3]), False)
        before = two_inputs.model_copy(deep=True)

        with pytest.raises(NoSatisfyingPath) as excinfo:
            assembler.build(two_inputs)

        assert excinfo.value.input_index == 1
        assert two_inputs == before


class TestTimelockFields:
    def test_no_timelocks(self, payment):
        tx = assembler.prepare(payment).transaction
        assert tx.inputs[0].sequence == SEQUENCE_FINAL
        assert tx.locktime == 0

    def test_locktime_enabled_by_sequence_zero(self, payment, keys):
        payment.add_utxo(
            Utxo(txid="bb" * 32, vout=0, value=10_000, descriptor=f"tr({keys[0]})")
        )
        draft.add_input(payment, 1, 1)
        draft.set_sequence(payment, 1, 0)
        draft.set_locktime(payment, 800_000)

        tx = assembler.prepare(payment).transaction
        assert tx.locktime == 800_000
        assert tx.inputs[0].sequence == SEQUENCE_LOCKTIME_ONLY
        assert tx.inputs[1].sequence == 0


class TestValidation:
    def test_input_gap(self, payment, keys):
        payment.add_utxo(Utxo(txid="cc" * 32, vout=0, value=1, descriptor=f"tr({keys[0]})"))
        draft.add_input(payment, 2, 1)
        with pytest.raises(UnboundInput) as excinfo:
            assembler.prepare(payment)
        assert excinfo.value.index == 1

    def test_no_inputs(self, state, keys):
        draft.add_output(state, 0, f"tr({keys[1]})", 1)
        with pytest.raises(UnboundInput):
            assembler.prepare(state)

    def test_output_gap(self, payment):
        draft.delete_output(payment, 0)
        with pytest.raises(MissingOutput) as excinfo:
            assembler.prepare(payment)
        assert excinfo.value.index == 0

    def test_insufficient_funds(self, payment, keys):
        draft.add_output(payment, 0, f"tr({keys[1]})", 100_000_000)
        with pytest.raises(NegativeImplicitValue):
            assembler.build(payment)

    def test_all_explicit_outputs_may_leave_extra_fee(self, payment, keys):
        draft.add_output(payment, 1, f"tr({keys[2]})", 40_000_000)
        built = assembler.build(payment)
        assert built.fee == 10_000_000


class TestFinalize:
    def test_chains_first_output(self, payment):
        built = assembler.build(payment)
        created = assembler.finalize(payment, built.txid)

        assert [utxo.outpoint for utxo in created] == [f"{built.txid}:0", f"{built.txid}:1"]
        assert payment.utxos == created
        assert list(payment.draft.outputs) == []
        assert payment.draft.inputs[0].utxo == created[0]
        assert payment.draft.fee == 0

    def test_without_chaining(self, payment):
        assembler.finalize(payment, chain=False)
        assert payment.draft.inputs == {}
        assert len(payment.utxos) == 2

    def test_txid_mismatch(self, payment):
        with pytest.raises(TxidMismatch):
            assembler.finalize(payment, "00" * 32)
        # Nothing changed
        assert len(payment.utxos) == 1
        assert 0 in payment.draft.inputs

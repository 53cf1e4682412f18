"""
BIP341 signature hash for Taproot key-path and tapscript spends.
"""

from __future__ import annotations

from tapcore.constants import (
    CODESEP_POS_NONE,
    SIGHASH_ALL,
    SIGHASH_DEFAULT,
    TAPSCRIPT_KEY_VERSION,
)
from tapcore.crypto import sha256, tagged_hash
from tapcore.errors import TransactionError
from tapcore.transaction import Transaction, TxOut


def taproot_sighash(
    tx: Transaction,
    input_index: int,
    prevouts: list[TxOut],
    hash_type: int = SIGHASH_DEFAULT,
    leaf_hash: bytes | None = None,
) -> bytes:
    """
    Compute the BIP341 signature message digest for one input.

    Args:
        tx: Transaction being signed (witnesses are ignored)
        input_index: Index of the input being signed
        prevouts: Outputs spent by every input, in input order
        hash_type: SIGHASH_DEFAULT or SIGHASH_ALL
        leaf_hash: Tapleaf hash for script-path spends, None for key path

    Returns:
        32-byte digest to be signed with BIP340
    """
    if hash_type not in (SIGHASH_DEFAULT, SIGHASH_ALL):
        raise TransactionError(f"Unsupported sighash type: {hash_type:#04x}")
    if input_index >= len(tx.inputs):
        raise TransactionError("Input index out of range")
    if len(prevouts) != len(tx.inputs):
        raise TransactionError("Every input needs its spent output")

    sha_prevouts = sha256(b"".join(tx_in.serialize_outpoint() for tx_in in tx.inputs))
    sha_amounts = sha256(b"".join(out.value.to_bytes(8, "little") for out in prevouts))
    sha_scriptpubkeys = sha256(
        b"".join(TxOut(0, out.script_pubkey).serialize()[8:] for out in prevouts)
    )
    sha_sequences = sha256(
        b"".join(tx_in.sequence.to_bytes(4, "little") for tx_in in tx.inputs)
    )
    sha_outputs = sha256(b"".join(out.serialize() for out in tx.outputs))

    ext_flag = 0 if leaf_hash is None else 1

    msg = bytes([0x00, hash_type])  # epoch
    msg += tx.version.to_bytes(4, "little")
    msg += tx.locktime.to_bytes(4, "little")
    msg += sha_prevouts + sha_amounts + sha_scriptpubkeys + sha_sequences
    msg += sha_outputs
    msg += bytes([ext_flag * 2])  # spend type, no annex
    msg += input_index.to_bytes(4, "little")

    if leaf_hash is not None:
        msg += leaf_hash
        msg += bytes([TAPSCRIPT_KEY_VERSION])
        msg += CODESEP_POS_NONE.to_bytes(4, "little")

    return tagged_hash("TapSighash", msg)

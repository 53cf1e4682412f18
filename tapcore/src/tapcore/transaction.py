"""
Segwit transaction serialization and parsing.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from tapcore.constants import TX_VERSION
from tapcore.crypto import hash256
from tapcore.errors import TransactionError
from tapcore.script import encode_varint, read_varint


@dataclass
class TxIn:
    txid: bytes  # display byte order
    vout: int
    sequence: int
    script_sig: bytes = b""
    witness: list[bytes] = field(default_factory=list)

    def serialize_outpoint(self) -> bytes:
        return self.txid[::-1] + self.vout.to_bytes(4, "little")

    def serialize(self) -> bytes:
        return (
            self.serialize_outpoint()
            + encode_varint(len(self.script_sig))
            + self.script_sig
            + self.sequence.to_bytes(4, "little")
        )

    def serialize_witness(self) -> bytes:
        out = encode_varint(len(self.witness))
        for item in self.witness:
            out += encode_varint(len(item)) + item
        return out


@dataclass
class TxOut:
    value: int
    script_pubkey: bytes

    def serialize(self) -> bytes:
        return (
            self.value.to_bytes(8, "little")
            + encode_varint(len(self.script_pubkey))
            + self.script_pubkey
        )


@dataclass
class Transaction:
    inputs: list[TxIn]
    outputs: list[TxOut]
    locktime: int = 0
    version: int = TX_VERSION

    def has_witness(self) -> bool:
        return any(tx_in.witness for tx_in in self.inputs)

    def serialize(self, include_witness: bool = True) -> bytes:
        with_witness = include_witness and self.has_witness()

        out = self.version.to_bytes(4, "little")
        if with_witness:
            out += b"\x00\x01"

        out += encode_varint(len(self.inputs))
        for tx_in in self.inputs:
            out += tx_in.serialize()

        out += encode_varint(len(self.outputs))
        for tx_out in self.outputs:
            out += tx_out.serialize()

        if with_witness:
            for tx_in in self.inputs:
                out += tx_in.serialize_witness()

        out += self.locktime.to_bytes(4, "little")
        return out

    @property
    def txid(self) -> str:
        return hash256(self.serialize(include_witness=False))[::-1].hex()

    @property
    def weight(self) -> int:
        base_size = len(self.serialize(include_witness=False))
        total_size = len(self.serialize())
        return base_size * 3 + total_size

    @property
    def vsize(self) -> int:
        return (self.weight + 3) // 4

    def hex(self) -> str:
        return self.serialize().hex()


def deserialize_transaction(tx_bytes: bytes) -> Transaction:
    try:
        offset = 0
        version = int.from_bytes(tx_bytes[offset : offset + 4], "little")
        offset += 4

        has_witness = False
        if tx_bytes[offset] == 0x00 and tx_bytes[offset + 1] == 0x01:
            has_witness = True
            offset += 2

        input_count, offset = read_varint(tx_bytes, offset)
        inputs: list[TxIn] = []

        for _ in range(input_count):
            txid = tx_bytes[offset : offset + 32][::-1]
            offset += 32

            vout = int.from_bytes(tx_bytes[offset : offset + 4], "little")
            offset += 4

            script_len, offset = read_varint(tx_bytes, offset)
            script_sig = tx_bytes[offset : offset + script_len]
            offset += script_len

            sequence = int.from_bytes(tx_bytes[offset : offset + 4], "little")
            offset += 4

            inputs.append(TxIn(txid, vout, sequence, script_sig))

        output_count, offset = read_varint(tx_bytes, offset)
        outputs: list[TxOut] = []

        for _ in range(output_count):
            value = int.from_bytes(tx_bytes[offset : offset + 8], "little")
            offset += 8

            script_len, offset = read_varint(tx_bytes, offset)
            script = tx_bytes[offset : offset + script_len]
            offset += script_len

            outputs.append(TxOut(value, script))

        if has_witness:
            for tx_in in inputs:
                stack_count, offset = read_varint(tx_bytes, offset)
                for _ in range(stack_count):
                    item_len, offset = read_varint(tx_bytes, offset)
                    tx_in.witness.append(tx_bytes[offset : offset + item_len])
                    offset += item_len

        if len(tx_bytes) != offset + 4:
            raise ValueError("unexpected length")
        locktime = int.from_bytes(tx_bytes[offset : offset + 4], "little")
        return Transaction(inputs, outputs, locktime, version)

    except Exception as e:
        raise TransactionError(f"Failed to parse transaction: {e}") from e

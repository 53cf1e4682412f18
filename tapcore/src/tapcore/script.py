"""
Bitcoin Script encoding helpers for tapscript.

A script is built from a list of elements: ``int`` elements are opcodes,
``bytes`` elements are data pushes.
"""

from __future__ import annotations

from typing import Union

OP_0 = 0x00
OP_PUSHDATA1 = 0x4C
OP_PUSHDATA2 = 0x4D
OP_PUSHDATA4 = 0x4E
OP_1NEGATE = 0x4F
OP_1 = 0x51
OP_16 = 0x60
OP_IF = 0x63
OP_NOTIF = 0x64
OP_ELSE = 0x67
OP_ENDIF = 0x68
OP_VERIFY = 0x69
OP_TOALTSTACK = 0x6B
OP_FROMALTSTACK = 0x6C
OP_IFDUP = 0x73
OP_DUP = 0x76
OP_SWAP = 0x7C
OP_SIZE = 0x82
OP_EQUAL = 0x87
OP_EQUALVERIFY = 0x88
OP_0NOTEQUAL = 0x92
OP_ADD = 0x93
OP_BOOLAND = 0x9A
OP_BOOLOR = 0x9B
OP_NUMEQUAL = 0x9C
OP_NUMEQUALVERIFY = 0x9D
OP_SHA256 = 0xA8
OP_CHECKSIG = 0xAC
OP_CHECKSIGVERIFY = 0xAD
OP_CHECKLOCKTIMEVERIFY = 0xB1
OP_CHECKSEQUENCEVERIFY = 0xB2
OP_CHECKSIGADD = 0xBA

OPCODE_NAMES = {
    OP_0: "OP_0",
    OP_1NEGATE: "OP_1NEGATE",
    OP_IF: "OP_IF",
    OP_NOTIF: "OP_NOTIF",
    OP_ELSE: "OP_ELSE",
    OP_ENDIF: "OP_ENDIF",
    OP_VERIFY: "OP_VERIFY",
    OP_TOALTSTACK: "OP_TOALTSTACK",
    OP_FROMALTSTACK: "OP_FROMALTSTACK",
    OP_IFDUP: "OP_IFDUP",
    OP_DUP: "OP_DUP",
    OP_SWAP: "OP_SWAP",
    OP_SIZE: "OP_SIZE",
    OP_EQUAL: "OP_EQUAL",
    OP_EQUALVERIFY: "OP_EQUALVERIFY",
    OP_0NOTEQUAL: "OP_0NOTEQUAL",
    OP_ADD: "OP_ADD",
    OP_BOOLAND: "OP_BOOLAND",
    OP_BOOLOR: "OP_BOOLOR",
    OP_NUMEQUAL: "OP_NUMEQUAL",
    OP_NUMEQUALVERIFY: "OP_NUMEQUALVERIFY",
    OP_SHA256: "OP_SHA256",
    OP_CHECKSIG: "OP_CHECKSIG",
    OP_CHECKSIGVERIFY: "OP_CHECKSIGVERIFY",
    OP_CHECKLOCKTIMEVERIFY: "OP_CHECKLOCKTIMEVERIFY",
    OP_CHECKSEQUENCEVERIFY: "OP_CHECKSEQUENCEVERIFY",
    OP_CHECKSIGADD: "OP_CHECKSIGADD",
}
for _n in range(1, 17):
    OPCODE_NAMES[OP_1 + _n - 1] = f"OP_{_n}"

ScriptElement = Union[int, bytes]

# Opcodes that have a fused VERIFY form
VERIFY_FORMS = {
    OP_CHECKSIG: OP_CHECKSIGVERIFY,
    OP_EQUAL: OP_EQUALVERIFY,
    OP_NUMEQUAL: OP_NUMEQUALVERIFY,
}


def encode_varint(value: int) -> bytes:
    if value < 0xFD:
        return bytes([value])
    if value <= 0xFFFF:
        return b"\xfd" + value.to_bytes(2, "little")
    if value <= 0xFFFFFFFF:
        return b"\xfe" + value.to_bytes(4, "little")
    return b"\xff" + value.to_bytes(8, "little")


def read_varint(data: bytes, offset: int) -> tuple[int, int]:
    first = data[offset]
    offset += 1

    if first < 0xFD:
        return first, offset
    if first == 0xFD:
        return int.from_bytes(data[offset : offset + 2], "little"), offset + 2
    if first == 0xFE:
        return int.from_bytes(data[offset : offset + 4], "little"), offset + 4
    return int.from_bytes(data[offset : offset + 8], "little"), offset + 8


def encode_script_number(value: int) -> bytes:
    """Minimal little-endian sign-magnitude encoding (CScriptNum)."""
    if value == 0:
        return b""

    negative = value < 0
    magnitude = abs(value)
    result = bytearray()
    while magnitude:
        result.append(magnitude & 0xFF)
        magnitude >>= 8

    if result[-1] & 0x80:
        result.append(0x80 if negative else 0x00)
    elif negative:
        result[-1] |= 0x80
    return bytes(result)


def push_int(value: int) -> ScriptElement:
    """Script element pushing an integer with the minimal encoding."""
    if value == 0:
        return OP_0
    if value == -1:
        return OP_1NEGATE
    if 1 <= value <= 16:
        return OP_1 + value - 1
    return encode_script_number(value)


def serialize_push(data: bytes) -> bytes:
    length = len(data)
    if length < OP_PUSHDATA1:
        return bytes([length]) + data
    if length <= 0xFF:
        return bytes([OP_PUSHDATA1, length]) + data
    if length <= 0xFFFF:
        return bytes([OP_PUSHDATA2]) + length.to_bytes(2, "little") + data
    return bytes([OP_PUSHDATA4]) + length.to_bytes(4, "little") + data


def serialize_script(elements: list[ScriptElement]) -> bytes:
    out = bytearray()
    for element in elements:
        if isinstance(element, int):
            out.append(element)
        elif len(element) == 0:
            out.append(OP_0)
        else:
            out += serialize_push(element)
    return bytes(out)


def script_to_asm(elements: list[ScriptElement]) -> str:
    """Human-readable rendering used by the CLI."""
    parts = []
    for element in elements:
        if isinstance(element, int):
            parts.append(OPCODE_NAMES.get(element, f"OP_UNKNOWN<{element:#04x}>"))
        else:
            parts.append(f"<{element.hex()}>")
    return " ".join(parts)


def p2tr_script_pubkey(output_key: bytes) -> bytes:
    """OP_1 <32-byte x-only output key>"""
    return bytes([OP_1, 0x20]) + output_key

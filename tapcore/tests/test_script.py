"""
Tests for script encoding helpers.
"""

import pytest

from tapcore.script import (
    OP_0,
    OP_1,
    OP_1NEGATE,
    OP_CHECKSIG,
    encode_script_number,
    encode_varint,
    push_int,
    read_varint,
    script_to_asm,
    serialize_push,
    serialize_script,
)


@pytest.mark.parametrize(
    "value,expected",
    [
        (0, ""),
        (1, "01"),
        (127, "7f"),
        (128, "8000"),
        (255, "ff00"),
        (256, "0001"),
        (65535, "ffff00"),
        (-1, "81"),
        (-128, "8080"),
    ],
)
def test_encode_script_number(value, expected):
    assert encode_script_number(value).hex() == expected


def test_push_int_uses_small_opcodes():
    assert push_int(0) == OP_0
    assert push_int(-1) == OP_1NEGATE
    assert push_int(1) == OP_1
    assert push_int(16) == 0x60
    assert push_int(17) == b"\x11"


class TestVarint:
    def test_encode(self):
        assert encode_varint(5) == bytes([5])
        assert encode_varint(0xFD) == bytes([0xFD, 0xFD, 0x00])
        assert encode_varint(0x10000) == bytes([0xFE, 0x00, 0x00, 0x01, 0x00])

    def test_read(self):
        assert read_varint(bytes([0xFD, 0x01, 0x00]), 0) == (1, 3)
        assert read_varint(bytes([0xAA, 0x05]), 1) == (5, 2)


class TestSerialize:
    def test_push_lengths(self):
        assert serialize_push(b"\xab") == b"\x01\xab"
        assert serialize_push(b"\x00" * 80)[:2] == bytes([0x4C, 80])

    def test_empty_push_is_op_0(self):
        assert serialize_script([b"", OP_1]) == bytes([OP_0, OP_1])

    def test_key_and_checksig(self):
        key = bytes(range(32))
        assert serialize_script([key, OP_CHECKSIG]) == b"\x20" + key + b"\xac"

    def test_asm(self):
        assert script_to_asm([b"\x01\x02", OP_CHECKSIG, push_int(3)]) == "<0102> OP_CHECKSIG OP_3"

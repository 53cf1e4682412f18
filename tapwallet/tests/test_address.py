"""
Tests for P2TR address encoding.
"""

import pytest

from tapcore.descriptor import parse_descriptor
from tapcore.models import NetworkType, SecretStore
from tapwallet.address import (
    descriptor_address,
    output_key_to_p2tr_address,
    p2tr_address_to_output_key,
)

# BIP86 first receiving address of the "abandon ... about" test wallet
BIP86_INTERNAL_KEY = "cc8a4bc64d897bddc5fbc2f670f7a8ba0b386779106cf1223c6fc5d7cd6fc115"
BIP86_OUTPUT_KEY = "a60869f0dbcf1dc659c9cecbaf8050135ea9e8cdc487053f1dc6880949dc684c"
BIP86_ADDRESS = "bc1p5cyxnuxmeuwuvkwfem96lqzszd02n6xdcjrs20cac6yqjjwudpxqkedrcr"


def test_bip86_address():
    assert output_key_to_p2tr_address(bytes.fromhex(BIP86_OUTPUT_KEY)) == BIP86_ADDRESS


def test_descriptor_address():
    store = SecretStore()
    store.import_public(bytes.fromhex(BIP86_INTERNAL_KEY))
    parsed = parse_descriptor(f"tr({BIP86_INTERNAL_KEY})", store)
    assert descriptor_address(parsed) == BIP86_ADDRESS


@pytest.mark.parametrize(
    "network,prefix",
    [("mainnet", "bc1p"), ("testnet", "tb1p"), ("signet", "tb1p"), ("regtest", "bcrt1p")],
)
def test_network_prefix(network, prefix):
    address = output_key_to_p2tr_address(bytes.fromhex(BIP86_OUTPUT_KEY), network)
    assert address.startswith(prefix)
    assert p2tr_address_to_output_key(address, network).hex() == BIP86_OUTPUT_KEY


def test_decode_rejects_other_network():
    with pytest.raises(ValueError):
        p2tr_address_to_output_key(BIP86_ADDRESS, "regtest")


def test_rejects_bad_key_length():
    with pytest.raises(ValueError):
        output_key_to_p2tr_address(b"\x01" * 33)


def test_bip350_vector():
    # BIP350 valid witness v1 address for the generator point's x coordinate
    address = "bc1p0xlxvlhemja6c4dqv22uapctqupfhlxm9h8z3k2e72q4k9hcz7vqzk5jj0"
    output_key = bytes.fromhex(
        "79be667ef9dcbbac55a06295ce870b07029bfcdb2dce28d959f2815b16f81798"
    )
    assert output_key_to_p2tr_address(output_key, NetworkType.MAINNET) == address
    assert p2tr_address_to_output_key(address) == output_key


def test_rejects_segwit_v0_address():
    with pytest.raises(ValueError):
        p2tr_address_to_output_key("bc1qw508d6qejxtdg4y5r3zarvary0c5xw7kv8f3t4")


def test_unknown_network():
    with pytest.raises(ValueError, match="Unknown network"):
        output_key_to_p2tr_address(bytes.fromhex(BIP86_OUTPUT_KEY), "liquid")

"""
Bitcoin address generation utilities.
"""

from __future__ import annotations

from embit import bech32

from tapcore.constants import BECH32_HRP
from tapcore.descriptor import Descriptor
from tapcore.models import NetworkType


def _hrp(network: NetworkType | str) -> str:
    try:
        return BECH32_HRP[NetworkType(network).value]
    except ValueError as e:
        raise ValueError(f"Unknown network: {network}") from e


def output_key_to_p2tr_address(
    output_key: bytes, network: NetworkType | str = NetworkType.MAINNET
) -> str:
    """
    Convert a Taproot output key to a P2TR address.
    BIP350 bech32m encoding, witness version 1.
    """
    if len(output_key) != 32:
        raise ValueError(f"Invalid x-only output key length: {len(output_key)}")

    address = bech32.encode(_hrp(network), 1, output_key)
    if address is None:
        raise ValueError(f"Failed to encode output key {output_key.hex()}")
    return address


def p2tr_address_to_output_key(
    address: str, network: NetworkType | str = NetworkType.MAINNET
) -> bytes:
    """Witness program of a P2TR address. Bech32 (non-m) checksums are rejected."""
    version, program = bech32.decode(_hrp(network), address)
    if version != 1 or program is None or len(program) != 32:
        raise ValueError(f"Not a {NetworkType(network).value} P2TR address: {address}")
    return bytes(program)


def descriptor_address(
    descriptor: Descriptor, network: NetworkType | str = NetworkType.MAINNET
) -> str:
    return output_key_to_p2tr_address(descriptor.taptree.output_key, network)

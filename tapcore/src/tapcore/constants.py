"""
Bitcoin consensus and Taproot constants.

Values follow BIP68 (relative lock-time), BIP65 (CHECKLOCKTIMEVERIFY),
BIP341 (Taproot) and BIP342 (Tapscript).
"""

from __future__ import annotations

# Transaction version 2 is required for BIP68 relative lock-times
TX_VERSION = 2

# nSequence that disables both relative lock-time and nLockTime for an input
SEQUENCE_FINAL = 0xFFFFFFFF

# nSequence for inputs without a relative lock-time when nLockTime must be
# enforced: bit 31 (disable flag) is set, but the input is not final
SEQUENCE_LOCKTIME_ONLY = 0xFFFFFFFE

# Largest relative block height that fits the BIP68 16-bit field
MAX_RELATIVE_HEIGHT = 0xFFFF

# nLockTime values below this are block heights, above are Unix timestamps
LOCKTIME_THRESHOLD = 500_000_000

# BIP341
TAPROOT_LEAF_TAPSCRIPT = 0xC0
SIGHASH_DEFAULT = 0x00
SIGHASH_ALL = 0x01

# BIP342: key version for BIP340 public keys in tapscript
TAPSCRIPT_KEY_VERSION = 0x00

# No OP_CODESEPARATOR executed
CODESEP_POS_NONE = 0xFFFFFFFF

# BIP341 "H" point: provably unspendable internal key (no known discrete log)
NUMS_INTERNAL_KEY = "50929b74c1a04954b78b4b6035e97a5e078a5a0f28ec96d547bfee9ace803ac0"

SECP256K1_N = int("FFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFEBAAEDCE6AF48A03BBFD25E8CD0364141", 16)

# Address human-readable parts by network
BECH32_HRP = {
    "mainnet": "bc",
    "testnet": "tb",
    "signet": "tb",
    "regtest": "bcrt",
}

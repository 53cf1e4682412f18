"""
tapcore - Taproot descriptor compiler and witness satisfier

Parses tr() descriptors with Miniscript leaves, builds the Taproot
commitment, and produces BIP340/BIP341 witnesses from a secret store.
"""

__version__ = "0.1.0"

from tapcore.descriptor import Descriptor, add_checksum, checksum, parse_descriptor
from tapcore.errors import (
    DescriptorSyntaxError,
    LocktimeRequiresRelativeTimelock,
    NegativeImplicitValue,
    NoSatisfyingPath,
    TapError,
    UnboundInput,
    UnknownKeyOrImage,
)
from tapcore.models import (
    ImagePair,
    KeyPair,
    NetworkType,
    SecretStore,
    TransactionDraft,
    TxInput,
    TxOutput,
    Utxo,
)
from tapcore.satisfier import Witness, satisfy
from tapcore.taptree import TapLeaf, TapTree, compile_taptree
from tapcore.timelock import TimelockContext, resolve
from tapcore.transaction import Transaction, TxIn, TxOut, deserialize_transaction

__all__ = [
    "Descriptor",
    "DescriptorSyntaxError",
    "ImagePair",
    "KeyPair",
    "LocktimeRequiresRelativeTimelock",
    "NegativeImplicitValue",
    "NetworkType",
    "NoSatisfyingPath",
    "SecretStore",
    "TapError",
    "TapLeaf",
    "TapTree",
    "TimelockContext",
    "Transaction",
    "TransactionDraft",
    "TxIn",
    "TxInput",
    "TxOut",
    "TxOutput",
    "UnboundInput",
    "UnknownKeyOrImage",
    "Utxo",
    "Witness",
    "add_checksum",
    "checksum",
    "compile_taptree",
    "deserialize_transaction",
    "parse_descriptor",
    "resolve",
    "satisfy",
]

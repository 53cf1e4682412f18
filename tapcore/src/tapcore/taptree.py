"""
Taproot commitment: tapleaf/tapbranch hashing, Merkle paths and control blocks
(BIP341).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from functools import cached_property
from typing import Union

from loguru import logger

from tapcore.constants import TAPROOT_LEAF_TAPSCRIPT
from tapcore.crypto import tagged_hash, tweak_public_key
from tapcore.miniscript import Node
from tapcore.script import encode_varint, p2tr_script_pubkey


@dataclass(frozen=True)
class Branch:
    """Inner node of a script tree: `{left,right}`."""

    left: ScriptTree
    right: ScriptTree

    def __str__(self) -> str:
        return f"{{{self.left},{self.right}}}"


ScriptTree = Union[Node, Branch]


def tapleaf_hash(script: bytes, leaf_version: int = TAPROOT_LEAF_TAPSCRIPT) -> bytes:
    return tagged_hash("TapLeaf", bytes([leaf_version]) + encode_varint(len(script)) + script)


def tapbranch_hash(a: bytes, b: bytes) -> bytes:
    # Children are committed in lexicographic order
    if b < a:
        a, b = b, a
    return tagged_hash("TapBranch", a + b)


@dataclass(frozen=True)
class TapLeaf:
    index: int
    miniscript: Node
    script: bytes
    merkle_path: tuple[bytes, ...]
    leaf_version: int = TAPROOT_LEAF_TAPSCRIPT

    @cached_property
    def leaf_hash(self) -> bytes:
        return tapleaf_hash(self.script, self.leaf_version)


@dataclass(frozen=True)
class TapTree:
    internal_key: bytes
    leaves: tuple[TapLeaf, ...]
    merkle_root: bytes | None
    output_key: bytes
    parity: bool

    def script_pubkey(self) -> bytes:
        return p2tr_script_pubkey(self.output_key)

    def control_block(self, leaf: TapLeaf) -> bytes:
        """(leaf_version | parity) || internal_key || merkle path"""
        first = leaf.leaf_version | int(self.parity)
        return bytes([first]) + self.internal_key + b"".join(leaf.merkle_path)


@dataclass
class _PendingLeaf:
    miniscript: Node
    script: bytes
    path: list[bytes] = field(default_factory=list)


def _build(tree: ScriptTree) -> tuple[bytes, list[_PendingLeaf]]:
    if isinstance(tree, Branch):
        left_hash, left_leaves = _build(tree.left)
        right_hash, right_leaves = _build(tree.right)
        # Paths are listed from the leaf up to the root
        for leaf in left_leaves:
            leaf.path.append(right_hash)
        for leaf in right_leaves:
            leaf.path.append(left_hash)
        return tapbranch_hash(left_hash, right_hash), left_leaves + right_leaves

    script = tree.script()
    return tapleaf_hash(script), [_PendingLeaf(tree, script)]


def compile_taptree(internal_key: bytes, script_tree: ScriptTree | None) -> TapTree:
    """
    Build the Taproot commitment for an internal key and an optional script tree.

    Without a script tree the output is key-path only and is tweaked with the
    internal key alone (BIP86).
    """
    if script_tree is None:
        merkle_root = None
        pending: list[_PendingLeaf] = []
    else:
        merkle_root, pending = _build(script_tree)

    output_key, parity = tweak_public_key(internal_key, merkle_root)
    leaves = tuple(
        TapLeaf(index=i, miniscript=leaf.miniscript, script=leaf.script, merkle_path=tuple(leaf.path))
        for i, leaf in enumerate(pending)
    )
    logger.debug(
        f"Compiled taptree with {len(leaves)} leaf/leaves, output key {output_key.hex()}"
    )
    return TapTree(
        internal_key=internal_key,
        leaves=leaves,
        merkle_root=merkle_root,
        output_key=output_key,
        parity=parity,
    )

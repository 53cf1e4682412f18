"""
Tests for the Taproot commitment.
"""

from tapcore.crypto import tweak_public_key
from tapcore.descriptor import parse_descriptor
from tapcore.miniscript import pk
from tapcore.models import SecretStore
from tapcore.taptree import Branch, compile_taptree, tapbranch_hash, tapleaf_hash

# BIP341 wallet test vectors, single leaf output
VECTOR_INTERNAL_KEY = "187791b6f712a8ea41c8ecdd0ee77fab3e85263b37e1ec18a3651926b3a6cf27"
VECTOR_LEAF_KEY = "d85a959b0290bf19bb89ed43c916be835475d013da4b362117393e25a48229b8"
VECTOR_LEAF_HASH = "5b75adecf53548f3ec6ad7d78383bf84cc57b55a3127c72b9a2481752dd88b21"
VECTOR_OUTPUT_KEY = "147c9c57132f6e7ecddba9800bb0c4449251c92a1e60371ee77557b6620f3ea3"
VECTOR_CONTROL_BLOCK = "c1187791b6f712a8ea41c8ecdd0ee77fab3e85263b37e1ec18a3651926b3a6cf27"


def fold_path(leaf_hash: bytes, path: tuple[bytes, ...]) -> bytes:
    node = leaf_hash
    for sibling in path:
        node = tapbranch_hash(node, sibling)
    return node


def test_bip341_single_leaf_vector():
    store = SecretStore()
    store.import_public(bytes.fromhex(VECTOR_INTERNAL_KEY))
    store.import_public(bytes.fromhex(VECTOR_LEAF_KEY))

    descriptor = parse_descriptor(f"tr({VECTOR_INTERNAL_KEY},pk({VECTOR_LEAF_KEY}))", store)
    tree = descriptor.taptree

    assert tree.leaves[0].script.hex() == f"20{VECTOR_LEAF_KEY}ac"
    assert tree.leaves[0].leaf_hash.hex() == VECTOR_LEAF_HASH
    assert tree.merkle_root.hex() == VECTOR_LEAF_HASH
    assert tree.output_key.hex() == VECTOR_OUTPUT_KEY
    assert tree.control_block(tree.leaves[0]).hex() == VECTOR_CONTROL_BLOCK
    assert descriptor.script_pubkey().hex() == f"5120{VECTOR_OUTPUT_KEY}"


def test_branch_hash_is_order_independent():
    a, b = b"\x01" * 32, b"\x02" * 32
    assert tapbranch_hash(a, b) == tapbranch_hash(b, a)


class TestCompile:
    def test_key_path_only(self, keys):
        internal_key = bytes.fromhex(keys[0])
        tree = compile_taptree(internal_key, None)
        assert tree.merkle_root is None
        assert tree.leaves == ()
        assert (tree.output_key, tree.parity) == tweak_public_key(internal_key, None)

    def test_leaf_order_and_paths(self, keys):
        a, b, c = (pk(bytes.fromhex(k)) for k in keys[1:4])
        tree = compile_taptree(bytes.fromhex(keys[0]), Branch(a, Branch(b, c)))

        assert [leaf.miniscript for leaf in tree.leaves] == [a, b, c]
        leaf_a, leaf_b, leaf_c = tree.leaves
        assert leaf_a.merkle_path == (tapbranch_hash(leaf_b.leaf_hash, leaf_c.leaf_hash),)
        assert leaf_b.merkle_path == (leaf_c.leaf_hash, leaf_a.leaf_hash)
        assert leaf_c.merkle_path == (leaf_b.leaf_hash, leaf_a.leaf_hash)
        for leaf in tree.leaves:
            assert fold_path(leaf.leaf_hash, leaf.merkle_path) == tree.merkle_root

    def test_control_block_layout(self, keys):
        a, b = (pk(bytes.fromhex(k)) for k in keys[1:3])
        tree = compile_taptree(bytes.fromhex(keys[0]), Branch(a, b))
        control = tree.control_block(tree.leaves[0])

        assert len(control) == 33 + 32
        assert control[0] & 0xFE == 0xC0
        assert control[0] & 1 == int(tree.parity)
        assert control[1:33].hex() == keys[0]
        assert control[33:] == tree.leaves[1].leaf_hash

    def test_single_leaf_has_empty_path(self, store, keys):
        descriptor = parse_descriptor(
            f"tr({keys[0]},multi_a(2,{keys[1]},{keys[2]},{keys[3]}))", store
        )
        tree = descriptor.taptree
        assert tree.leaves[0].merkle_path == ()
        assert tree.merkle_root == tapleaf_hash(tree.leaves[0].script)

    def test_compilation_is_deterministic(self, store, keys):
        text = f"tr({keys[0]},{{pk({keys[1]}),and_v(v:pk({keys[2]}),older(144))}})"
        first = parse_descriptor(text, store).taptree
        second = parse_descriptor(text, store).taptree
        assert first.output_key == second.output_key
        assert first.merkle_root == second.merkle_root

"""
Tests for the descriptor parser.
"""

import pytest

from tapcore.crypto import normalize_secret, xonly_from_secret
from tapcore.descriptor import add_checksum, checksum, parse_descriptor, tokenize
from tapcore.errors import DescriptorSyntaxError, UnknownKeyOrImage
from tapcore.miniscript import Multi, Wrap
from tapcore.taptree import Branch

UNKNOWN_KEY = xonly_from_secret(normalize_secret((99).to_bytes(32, "big"))).hex()


def test_bip380_checksum():
    assert checksum("raw(deadbeef)") == "89f8spxm"
    assert add_checksum("raw(deadbeef)") == "raw(deadbeef)#89f8spxm"


def test_tokenize_positions():
    tokens = tokenize("tr( ab ,{")
    assert [(t.text, t.position) for t in tokens] == [
        ("tr", 0),
        ("(", 2),
        ("ab", 4),
        (",", 7),
        ("{", 8),
        ("<end>", 9),
    ]


class TestParse:
    def test_key_only(self, store, keys):
        descriptor = parse_descriptor(f"tr({keys[0]})", store)
        assert descriptor.internal_key.hex() == keys[0]
        assert descriptor.tree is None
        assert str(descriptor) == f"tr({keys[0]})"

    def test_tree_shape(self, store, keys):
        text = f"tr({keys[0]},{{pk({keys[1]}),{{pk({keys[2]}),pk({keys[3]})}}}})"
        descriptor = parse_descriptor(text, store)
        assert isinstance(descriptor.tree, Branch)
        assert isinstance(descriptor.tree.right, Branch)
        assert str(descriptor) == text

    def test_whitespace_is_ignored(self, store, keys):
        spaced = parse_descriptor(f" tr( {keys[0]} , pk( {keys[1]} ) ) ", store)
        assert spaced == parse_descriptor(f"tr({keys[0]},pk({keys[1]}))", store)

    def test_uppercase_hex_is_canonicalized(self, store, keys):
        descriptor = parse_descriptor(f"tr({keys[0].upper()})", store)
        assert str(descriptor) == f"tr({keys[0]})"

    def test_checksum_round_trip(self, store, keys):
        descriptor = parse_descriptor(f"tr({keys[0]},multi_a(2,{keys[1]},{keys[2]}))", store)
        assert parse_descriptor(descriptor.with_checksum(), store) == descriptor

    def test_bad_checksum(self, store, keys):
        with pytest.raises(DescriptorSyntaxError, match="checksum"):
            parse_descriptor(f"tr({keys[0]})#qqqqqqqq", store)

    def test_thresh_gets_wrappers(self, store, keys):
        a, b, c = keys[1:4]
        descriptor = parse_descriptor(f"tr({keys[0]},thresh(2,pk({a}),pk({b}),pk({c})))", store)
        assert str(descriptor.tree) == f"thresh(2,pk({a}),s:pk({b}),s:pk({c}))"

    def test_and_v_gets_verify(self, store, keys):
        descriptor = parse_descriptor(f"tr({keys[0]},and_v(pk({keys[1]}),older(10)))", store)
        assert str(descriptor.tree) == f"and_v(v:pk({keys[1]}),older(10))"

    def test_explicit_wrappers(self, store, keys):
        descriptor = parse_descriptor(
            f"tr({keys[0]},and_b(pk({keys[1]}),a:older(10)))", store
        )
        assert descriptor.tree.right == Wrap("a", descriptor.tree.right.sub)

    def test_sugar_wrappers(self, store, keys):
        descriptor = parse_descriptor(f"tr({keys[0]},or_i(pk({keys[1]}),l:pk({keys[2]})))", store)
        assert f"or_i(0,pk({keys[2]}))" in str(descriptor)

    def test_sha256_and_alias(self, store, keys, image):
        first = parse_descriptor(f"tr({keys[0]},sha256({image}))", store)
        second = parse_descriptor(f"tr({keys[0]},sha256_preimage({image}))", store)
        assert first == second

    def test_multi_a(self, store, keys):
        descriptor = parse_descriptor(f"tr({keys[0]},multi_a(2,{keys[1]},{keys[2]}))", store)
        assert isinstance(descriptor.tree, Multi)
        assert descriptor.tree.k == 2


class TestErrors:
    def test_unknown_key(self, store, keys):
        with pytest.raises(UnknownKeyOrImage, match=UNKNOWN_KEY):
            parse_descriptor(f"tr({keys[0]},pk({UNKNOWN_KEY}))", store)

    def test_unknown_image(self, store, keys):
        with pytest.raises(UnknownKeyOrImage, match="image"):
            parse_descriptor(f"tr({keys[0]},sha256({'00' * 32}))", store)

    def test_missing_paren_reports_offset(self, store, keys):
        text = f"tr({keys[0]}"
        with pytest.raises(DescriptorSyntaxError) as excinfo:
            parse_descriptor(text, store)
        assert excinfo.value.position == len(text)

    def test_unknown_fragment(self, store, keys):
        with pytest.raises(DescriptorSyntaxError, match="Unknown Miniscript fragment") as excinfo:
            parse_descriptor(f"tr({keys[0]},pkh({keys[1]}))", store)
        assert excinfo.value.token == "pkh"
        assert excinfo.value.position == 68

    def test_unknown_wrapper(self, store, keys):
        with pytest.raises(DescriptorSyntaxError, match="wrapper"):
            parse_descriptor(f"tr({keys[0]},x:pk({keys[1]}))", store)

    def test_not_taproot(self, store, keys):
        with pytest.raises(DescriptorSyntaxError, match="tr"):
            parse_descriptor(f"wpkh({keys[0]})", store)

    def test_short_key(self, store):
        with pytest.raises(DescriptorSyntaxError, match="hex"):
            parse_descriptor("tr(abcd)", store)

    def test_trailing_input(self, store, keys):
        with pytest.raises(DescriptorSyntaxError, match="trailing"):
            parse_descriptor(f"tr({keys[0]}))", store)

    @pytest.mark.parametrize("fragment", ["older(0)", "older(65536)", "after(0)", "after(500000000)"])
    def test_timelock_ranges(self, store, keys, fragment):
        with pytest.raises(DescriptorSyntaxError):
            parse_descriptor(f"tr({keys[0]},and_v(v:pk({keys[1]}),{fragment}))", store)

    @pytest.mark.parametrize("number", ["²", "١", "１"])
    def test_only_ascii_digits(self, store, keys, number):
        text = f"tr({keys[0]},and_v(v:pk({keys[1]}),older({number})))"
        with pytest.raises(DescriptorSyntaxError) as excinfo:
            parse_descriptor(text, store)
        assert excinfo.value.token == number
        assert excinfo.value.position == text.index(number)

    def test_non_ascii_threshold(self, store, keys):
        with pytest.raises(DescriptorSyntaxError, match="Expected an integer"):
            parse_descriptor(f"tr({keys[0]},thresh(²,pk({keys[1]}),pk({keys[2]})))", store)

    def test_threshold_out_of_range(self, store, keys):
        with pytest.raises(DescriptorSyntaxError, match="threshold"):
            parse_descriptor(f"tr({keys[0]},multi_a(3,{keys[1]},{keys[2]}))", store)

    def test_leaf_must_be_b(self, store, keys):
        with pytest.raises(DescriptorSyntaxError, match="type B"):
            parse_descriptor(f"tr({keys[0]},v:pk({keys[1]}))", store)

    def test_type_error_names_fragment(self, store, keys):
        with pytest.raises(DescriptorSyntaxError, match="or_d") as excinfo:
            parse_descriptor(f"tr({keys[0]},or_d(older(1),pk({keys[1]})))", store)
        assert excinfo.value.token == "or_d"

"""
Parser for Taproot output descriptors with Miniscript leaves.

    tr(KEY)
    tr(KEY,TREE)          TREE := {TREE,TREE} | MINISCRIPT

Keys and hash images are 64-character hex strings and must be present in the
secret store. An optional BIP380 `#checksum` suffix is verified.
"""

from __future__ import annotations

import re
from collections.abc import Callable
from dataclasses import dataclass
from functools import cached_property
from typing import NamedTuple

from tapcore.constants import LOCKTIME_THRESHOLD, MAX_RELATIVE_HEIGHT
from tapcore.crypto import CryptoError, validate_xonly
from tapcore.errors import DescriptorSyntaxError
from tapcore.miniscript import (
    After,
    And,
    AndOr,
    Image,
    Just,
    Key,
    Multi,
    Node,
    Older,
    Or,
    Threshold,
    Wrap,
    as_verify,
    as_wrapped,
)
from tapcore.models import SecretStore
from tapcore.taptree import Branch, ScriptTree, TapTree, compile_taptree

INPUT_CHARSET = (
    "0123456789()[],'/*abcdefgh@:$%{}IJKLMNOPQRSTUVW"
    'XYZ&+-.;<=>?!^_|~ijklmnopqrstuvwxyzABCDEFGH`#"\\ '
)
CHECKSUM_CHARSET = "qpzry9x8gf2tvdw0s3jn54khce6mua7l"

WRAPPERS = "ascdvjntlu"

_TOKEN_RE = re.compile(r"\s*(?:([A-Za-z0-9_]+)|(\S))")
_HEX64_RE = re.compile(r"^[0-9a-fA-F]{64}$")
_DECIMAL_RE = re.compile(r"^[0-9]+$")


def polymod(c: int, val: int) -> int:
    c0 = c >> 35
    c = ((c & 0x7FFFFFFFF) << 5) ^ val
    if c0 & 1:
        c ^= 0xF5DEE51989
    if c0 & 2:
        c ^= 0xA9FDCA3312
    if c0 & 4:
        c ^= 0x1BAB10E32D
    if c0 & 8:
        c ^= 0x3706B1677A
    if c0 & 16:
        c ^= 0x644D626FFD
    return c


def checksum(desc: str) -> str:
    """BIP380 descriptor checksum"""
    c = 1
    cls = 0
    clscount = 0
    for i, ch in enumerate(desc):
        pos = INPUT_CHARSET.find(ch)
        if pos == -1:
            raise DescriptorSyntaxError("Invalid character", token=ch, position=i)
        c = polymod(c, pos & 31)
        cls = cls * 3 + (pos >> 5)
        clscount += 1
        if clscount == 3:
            c = polymod(c, cls)
            cls = 0
            clscount = 0
    if clscount > 0:
        c = polymod(c, cls)
    for _ in range(8):
        c = polymod(c, 0)
    c ^= 1

    return "".join(CHECKSUM_CHARSET[(c >> (5 * (7 - j))) & 31] for j in range(8))


def add_checksum(desc: str) -> str:
    desc = desc.split("#")[0]
    return f"{desc}#{checksum(desc)}"


@dataclass(frozen=True)
class Descriptor:
    internal_key: bytes
    tree: ScriptTree | None = None

    def __str__(self) -> str:
        if self.tree is None:
            return f"tr({self.internal_key.hex()})"
        return f"tr({self.internal_key.hex()},{self.tree})"

    def with_checksum(self) -> str:
        return add_checksum(str(self))

    @cached_property
    def taptree(self) -> TapTree:
        return compile_taptree(self.internal_key, self.tree)

    def script_pubkey(self) -> bytes:
        return self.taptree.script_pubkey()


class Token(NamedTuple):
    text: str
    position: int

    @property
    def is_word(self) -> bool:
        return bool(self.text) and (self.text[0].isalnum() or self.text[0] == "_")


END = "<end>"


def tokenize(text: str) -> list[Token]:
    tokens = []
    position = 0
    while position < len(text):
        match = _TOKEN_RE.match(text, position)
        if match is None:
            # Only trailing whitespace is left
            break
        group = 1 if match.group(1) is not None else 2
        tokens.append(Token(match.group(group), match.start(group)))
        position = match.end()
    tokens.append(Token(END, len(text)))
    return tokens


class _Parser:
    def __init__(self, text: str, store: SecretStore):
        self.tokens = tokenize(text)
        self.index = 0
        self.store = store

    def peek(self) -> Token:
        return self.tokens[self.index]

    def next(self) -> Token:
        token = self.tokens[self.index]
        if token.text != END:
            self.index += 1
        return token

    def fail(self, message: str, token: Token) -> DescriptorSyntaxError:
        return DescriptorSyntaxError(message, token=token.text, position=token.position)

    def expect(self, text: str) -> Token:
        token = self.next()
        if token.text != text:
            raise self.fail(f"Expected {text!r}", token)
        return token

    def parse(self) -> Descriptor:
        head = self.next()
        if head.text != "tr":
            raise self.fail("Only tr() descriptors are supported", head)
        self.expect("(")
        internal_key = self.parse_key()

        tree = None
        if self.peek().text == ",":
            self.next()
            tree = self.parse_tree()
        self.expect(")")

        trailing = self.next()
        if trailing.text != END:
            raise self.fail("Unexpected trailing input", trailing)
        return Descriptor(internal_key, tree)

    def parse_tree(self) -> ScriptTree:
        if self.peek().text == "{":
            self.next()
            left = self.parse_tree()
            self.expect(",")
            right = self.parse_tree()
            self.expect("}")
            return Branch(left, right)

        start = self.peek()
        leaf = self.parse_miniscript()
        if leaf.ms_type.base != "B":
            raise self.fail(f"Script leaf must be of type B, not {leaf.ms_type}", start)
        return leaf

    def parse_miniscript(self) -> Node:
        token = self.next()
        if not token.is_word:
            raise self.fail("Expected a Miniscript fragment", token)

        wrappers = ""
        if self.peek().text == ":":
            self.next()
            wrappers = token.text
            unknown = [w for w in wrappers if w not in WRAPPERS]
            if unknown:
                raise self.fail(f"Unknown wrapper {unknown[0]!r}", token)
            token = self.next()
            if not token.is_word:
                raise self.fail("Expected a Miniscript fragment", token)

        node = self.parse_fragment(token)
        for wrapper in reversed(wrappers):
            node = self.build(token, lambda w=wrapper, n=node: _apply_wrapper(w, n))
        return node

    def build(self, token: Token, factory: Callable[[], Node]) -> Node:
        """Construct a node, attaching the token position to type errors."""
        try:
            return factory()
        except DescriptorSyntaxError as e:
            if e.position is not None:
                raise
            raise self.fail(str(e), token) from e

    def parse_fragment(self, token: Token) -> Node:
        name = token.text
        if name in ("0", "1"):
            return Just(name == "1")

        if name in ("pk", "pk_k"):
            self.expect("(")
            key = self.parse_key()
            self.expect(")")
            return Wrap("c", Key(key)) if name == "pk" else Key(key)

        if name in ("sha256", "sha256_preimage"):
            self.expect("(")
            image = self.parse_image()
            self.expect(")")
            return Image(image)

        if name in ("after", "older"):
            self.expect("(")
            value_token = self.peek()
            value = self.parse_int()
            self.expect(")")
            if name == "after" and not 1 <= value < LOCKTIME_THRESHOLD:
                raise self.fail("after() takes a block height below 500000000", value_token)
            if name == "older" and not 1 <= value <= MAX_RELATIVE_HEIGHT:
                raise self.fail("older() takes a relative block height of 1 to 65535", value_token)
            return After(value) if name == "after" else Older(value)

        if name == "multi_a":
            self.expect("(")
            k = self.parse_int()
            keys = []
            while self.peek().text == ",":
                self.next()
                keys.append(self.parse_key())
            self.expect(")")
            if not keys:
                raise self.fail("multi_a() needs at least one key", token)
            return self.build(token, lambda: Multi(k, tuple(keys)))

        if name in ("and_v", "and_b", "or_b", "or_c", "or_d", "or_i"):
            self.expect("(")
            left = self.parse_miniscript()
            self.expect(",")
            right = self.parse_miniscript()
            self.expect(")")
            kind = name[-1]
            if name == "and_v":
                left = self.build(token, lambda: as_verify(left))
                return self.build(token, lambda: And(kind, left, right))
            if name == "and_b":
                return self.build(token, lambda: And(kind, left, as_wrapped(right)))
            if name == "or_b":
                return self.build(token, lambda: Or(kind, left, as_wrapped(right)))
            if name == "or_c":
                return self.build(token, lambda: Or(kind, left, as_verify(right)))
            return self.build(token, lambda: Or(kind, left, right))

        if name == "andor":
            self.expect("(")
            cond = self.parse_miniscript()
            self.expect(",")
            then = self.parse_miniscript()
            self.expect(",")
            otherwise = self.parse_miniscript()
            self.expect(")")
            return self.build(token, lambda: AndOr(cond, then, otherwise))

        if name == "thresh":
            self.expect("(")
            k = self.parse_int()
            subs = []
            while self.peek().text == ",":
                self.next()
                subs.append(self.parse_miniscript())
            self.expect(")")
            if not subs:
                raise self.fail("thresh() needs at least one sub-expression", token)
            return self.build(
                token,
                lambda: Threshold(k, (subs[0],) + tuple(as_wrapped(sub) for sub in subs[1:])),
            )

        raise self.fail("Unknown Miniscript fragment", token)

    def parse_int(self) -> int:
        token = self.next()
        if not _DECIMAL_RE.match(token.text):
            raise self.fail("Expected an integer", token)
        return int(token.text)

    def parse_hex32(self, kind: str) -> tuple[bytes, Token]:
        token = self.next()
        if not _HEX64_RE.match(token.text):
            raise self.fail(f"Expected a 64-character hex {kind}", token)
        return bytes.fromhex(token.text), token

    def parse_key(self) -> bytes:
        key, token = self.parse_hex32("public key")
        try:
            validate_xonly(key)
        except CryptoError as e:
            raise self.fail("Not a valid x-only public key", token) from e
        self.store.get_key(key)
        return key

    def parse_image(self) -> bytes:
        image, _ = self.parse_hex32("hash")
        self.store.get_image(image)
        return image


def _apply_wrapper(wrapper: str, node: Node) -> Node:
    if wrapper == "t":
        return And("v", node, Just(True))
    if wrapper == "l":
        return Or("i", Just(False), node)
    if wrapper == "u":
        return Or("i", node, Just(False))
    return Wrap(wrapper, node)


def parse_descriptor(text: str, store: SecretStore) -> Descriptor:
    """
    Parse a descriptor string against the secret store.

    Raises:
        DescriptorSyntaxError: malformed input, bad checksum or type error
        UnknownKeyOrImage: a key or image is not in the store
    """
    body = text.strip()
    if "#" in body:
        body, given = body.rsplit("#", 1)
        expected = checksum(body)
        if given.strip() != expected:
            raise DescriptorSyntaxError(
                f"Invalid descriptor checksum, expected {expected}",
                token=given,
                position=len(body) + 1,
            )
    return _Parser(body, store).parse()

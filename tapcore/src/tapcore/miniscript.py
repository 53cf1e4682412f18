"""
Miniscript policy tree for tapscript leaves.

Each node is an immutable fragment carrying its Miniscript type (base type
B/V/K/W plus the z/o/n/d/u properties, see https://bitcoin.sipa.be/miniscript/),
its tapscript encoding, and its (dis)satisfaction logic.

Witnesses are lists of stack items in serialization order: the last item ends
up on top of the stack and is consumed first by the script.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass
from functools import cached_property
from itertools import combinations

from tapcore.errors import DescriptorSyntaxError
from tapcore.script import (
    OP_0,
    OP_0NOTEQUAL,
    OP_1,
    OP_ADD,
    OP_BOOLAND,
    OP_BOOLOR,
    OP_CHECKLOCKTIMEVERIFY,
    OP_CHECKSEQUENCEVERIFY,
    OP_CHECKSIG,
    OP_CHECKSIGADD,
    OP_DUP,
    OP_ELSE,
    OP_ENDIF,
    OP_EQUAL,
    OP_EQUALVERIFY,
    OP_FROMALTSTACK,
    OP_IF,
    OP_IFDUP,
    OP_NOTIF,
    OP_NUMEQUAL,
    OP_SHA256,
    OP_SIZE,
    OP_SWAP,
    OP_TOALTSTACK,
    OP_VERIFY,
    VERIFY_FORMS,
    ScriptElement,
    push_int,
    serialize_script,
)

TRUE = b"\x01"
FALSE = b""


@dataclass(frozen=True)
class MiniscriptType:
    base: str
    props: frozenset[str] = frozenset()

    def has_all(self, props: str) -> bool:
        return all(p in self.props for p in props)

    def __getattr__(self, name: str) -> bool:
        if name in ("z", "o", "n", "d", "u"):
            return name in self.props
        raise AttributeError(name)

    def __str__(self) -> str:
        return self.base + "".join(p for p in "zondu" if p in self.props)


def _type(base: str, **props: bool) -> MiniscriptType:
    return MiniscriptType(base, frozenset(name for name, flag in props.items() if flag))


class Satisfaction:
    """A witness for a fragment, or the absence of one."""

    def __init__(self, witness: list[bytes] | None):
        self.witness = witness

    @classmethod
    def unavailable(cls) -> Satisfaction:
        return cls(None)

    def __bool__(self) -> bool:
        return self.witness is not None

    def __add__(self, other: Satisfaction) -> Satisfaction:
        if self.witness is None or other.witness is None:
            return Satisfaction.unavailable()
        return Satisfaction(self.witness + other.witness)

    def __repr__(self) -> str:
        if self.witness is None:
            return "Satisfaction(unavailable)"
        return f"Satisfaction([{', '.join(item.hex() for item in self.witness)}])"


def first_available(*options: Callable[[], Satisfaction]) -> Satisfaction:
    """Evaluate alternatives left to right and keep the first that works."""
    for option in options:
        sat = option()
        if sat:
            return sat
    return Satisfaction.unavailable()


class SatisfactionMaterial(ABC):
    """Secrets and timelock context available while satisfying one leaf."""

    @abstractmethod
    def sign(self, pubkey: bytes) -> bytes | None:
        """Signature by pubkey for the current leaf, if its secret is active"""

    @abstractmethod
    def preimage(self, image: bytes) -> bytes | None:
        """Preimage of a SHA-256 image, if it is active"""

    @abstractmethod
    def check_older(self, height: int) -> bool:
        """Whether the spending input's relative timelock covers height"""

    @abstractmethod
    def check_after(self, height: int) -> bool:
        """Whether the transaction locktime covers height"""


class Node:
    """A Miniscript fragment."""

    def __post_init__(self) -> None:
        # Type errors surface when the fragment is built
        self.ms_type

    @cached_property
    def ms_type(self) -> MiniscriptType:
        return self._compute_type()

    def _compute_type(self) -> MiniscriptType:
        raise NotImplementedError

    @property
    def subs(self) -> tuple[Node, ...]:
        return ()

    def elements(self) -> list[ScriptElement]:
        raise NotImplementedError

    def script(self) -> bytes:
        return serialize_script(self.elements())

    def keys(self) -> list[bytes]:
        """All public keys in order of appearance."""
        return [key for sub in self.subs for key in sub.keys()]

    def images(self) -> list[bytes]:
        return [image for sub in self.subs for image in sub.images()]

    def satisfy(self, material: SatisfactionMaterial) -> Satisfaction:
        raise NotImplementedError

    def dissatisfy(self) -> Satisfaction:
        raise NotImplementedError


def _require(condition: bool, message: str) -> None:
    if not condition:
        raise DescriptorSyntaxError(message)


@dataclass(frozen=True)
class Just(Node):
    value: bool

    def _compute_type(self) -> MiniscriptType:
        return _type("B", z=True, u=True, d=not self.value)

    def elements(self) -> list[ScriptElement]:
        return [OP_1 if self.value else OP_0]

    def satisfy(self, material: SatisfactionMaterial) -> Satisfaction:
        return Satisfaction([]) if self.value else Satisfaction.unavailable()

    def dissatisfy(self) -> Satisfaction:
        return Satisfaction.unavailable() if self.value else Satisfaction([])

    def __str__(self) -> str:
        return "1" if self.value else "0"


@dataclass(frozen=True)
class Key(Node):
    """pk_k: pushes a public key, to be checked by a c: wrapper."""

    pubkey: bytes

    def _compute_type(self) -> MiniscriptType:
        return _type("K", o=True, n=True, d=True, u=True)

    def keys(self) -> list[bytes]:
        return [self.pubkey]

    def elements(self) -> list[ScriptElement]:
        return [self.pubkey]

    def satisfy(self, material: SatisfactionMaterial) -> Satisfaction:
        signature = material.sign(self.pubkey)
        if signature is None:
            return Satisfaction.unavailable()
        return Satisfaction([signature])

    def dissatisfy(self) -> Satisfaction:
        return Satisfaction([FALSE])

    def __str__(self) -> str:
        return f"pk_k({self.pubkey.hex()})"


@dataclass(frozen=True)
class Image(Node):
    """sha256(H): hash-lock satisfied by revealing the 32-byte preimage."""

    digest: bytes

    def _compute_type(self) -> MiniscriptType:
        return _type("B", o=True, n=True, d=True, u=True)

    def images(self) -> list[bytes]:
        return [self.digest]

    def elements(self) -> list[ScriptElement]:
        return [OP_SIZE, push_int(32), OP_EQUALVERIFY, OP_SHA256, self.digest, OP_EQUAL]

    def satisfy(self, material: SatisfactionMaterial) -> Satisfaction:
        preimage = material.preimage(self.digest)
        if preimage is None:
            return Satisfaction.unavailable()
        return Satisfaction([preimage])

    def dissatisfy(self) -> Satisfaction:
        return Satisfaction([bytes(32)])

    def __str__(self) -> str:
        return f"sha256({self.digest.hex()})"


@dataclass(frozen=True)
class After(Node):
    height: int

    def _compute_type(self) -> MiniscriptType:
        return _type("B", z=True)

    def elements(self) -> list[ScriptElement]:
        return [push_int(self.height), OP_CHECKLOCKTIMEVERIFY]

    def satisfy(self, material: SatisfactionMaterial) -> Satisfaction:
        return Satisfaction([]) if material.check_after(self.height) else Satisfaction.unavailable()

    def dissatisfy(self) -> Satisfaction:
        return Satisfaction.unavailable()

    def __str__(self) -> str:
        return f"after({self.height})"


@dataclass(frozen=True)
class Older(Node):
    height: int

    def _compute_type(self) -> MiniscriptType:
        return _type("B", z=True)

    def elements(self) -> list[ScriptElement]:
        return [push_int(self.height), OP_CHECKSEQUENCEVERIFY]

    def satisfy(self, material: SatisfactionMaterial) -> Satisfaction:
        return Satisfaction([]) if material.check_older(self.height) else Satisfaction.unavailable()

    def dissatisfy(self) -> Satisfaction:
        return Satisfaction.unavailable()

    def __str__(self) -> str:
        return f"older({self.height})"


@dataclass(frozen=True)
class Multi(Node):
    """multi_a(k, K1, ..., Kn): k-of-n CHECKSIGADD multisig."""

    k: int
    pubkeys: tuple[bytes, ...]

    def _compute_type(self) -> MiniscriptType:
        _require(1 <= self.k <= len(self.pubkeys), "multi_a threshold out of range")
        _require(len(set(self.pubkeys)) == len(self.pubkeys), "multi_a keys must be distinct")
        return _type("B", u=True, d=True)

    def keys(self) -> list[bytes]:
        return list(self.pubkeys)

    def elements(self) -> list[ScriptElement]:
        elements: list[ScriptElement] = [self.pubkeys[0], OP_CHECKSIG]
        for pubkey in self.pubkeys[1:]:
            elements += [pubkey, OP_CHECKSIGADD]
        return elements + [push_int(self.k), OP_NUMEQUAL]

    def satisfy(self, material: SatisfactionMaterial) -> Satisfaction:
        # Leftmost k available keys sign, the rest push empty signatures
        items: list[bytes] = []
        count = 0
        for pubkey in self.pubkeys:
            signature = material.sign(pubkey) if count < self.k else None
            if signature is None:
                items.append(FALSE)
            else:
                items.append(signature)
                count += 1
        if count < self.k:
            return Satisfaction.unavailable()
        return Satisfaction(items[::-1])

    def dissatisfy(self) -> Satisfaction:
        return Satisfaction([FALSE] * len(self.pubkeys))

    def __str__(self) -> str:
        return f"multi_a({self.k},{','.join(key.hex() for key in self.pubkeys)})"


@dataclass(frozen=True)
class And(Node):
    """and_v(X,Y) or and_b(X,Y)."""

    kind: str
    left: Node
    right: Node

    @property
    def subs(self) -> tuple[Node, ...]:
        return (self.left, self.right)

    def _compute_type(self) -> MiniscriptType:
        x, y = self.left.ms_type, self.right.ms_type
        if self.kind == "v":
            _require(x.base == "V", "and_v: first argument must be of type V")
            _require(y.base in "BKV", "and_v: second argument must be of type B, K or V")
            return _type(
                y.base,
                z=x.z and y.z,
                o=(x.z and y.o) or (x.o and y.z),
                n=x.n or (x.z and y.n),
                u=y.u,
            )
        _require(x.base == "B", "and_b: first argument must be of type B")
        _require(y.base == "W", "and_b: second argument must be of type W")
        return _type(
            "B",
            z=x.z and y.z,
            o=(x.z and y.o) or (x.o and y.z),
            n=x.n or (x.z and y.n),
            d=x.d and y.d,
            u=True,
        )

    def elements(self) -> list[ScriptElement]:
        elements = self.left.elements() + self.right.elements()
        if self.kind == "b":
            elements.append(OP_BOOLAND)
        return elements

    def satisfy(self, material: SatisfactionMaterial) -> Satisfaction:
        # Both sides are evaluated so that every blocking predicate gets reported
        sat_left = self.left.satisfy(material)
        sat_right = self.right.satisfy(material)
        return sat_right + sat_left

    def dissatisfy(self) -> Satisfaction:
        if self.kind == "v":
            return Satisfaction.unavailable()
        return self.right.dissatisfy() + self.left.dissatisfy()

    def __str__(self) -> str:
        return f"and_{self.kind}({self.left},{self.right})"


@dataclass(frozen=True)
class Or(Node):
    """or_b, or_c, or_d and or_i disjunctions."""

    kind: str
    left: Node
    right: Node

    @property
    def subs(self) -> tuple[Node, ...]:
        return (self.left, self.right)

    def _compute_type(self) -> MiniscriptType:
        x, z = self.left.ms_type, self.right.ms_type
        name = f"or_{self.kind}"
        if self.kind == "b":
            _require(x.base == "B" and x.d, f"{name}: first argument must be of type Bd")
            _require(z.base == "W" and z.d, f"{name}: second argument must be of type Wd")
            return _type(
                "B", z=x.z and z.z, o=(x.z and z.o) or (x.o and z.z), d=True, u=True
            )
        if self.kind in ("c", "d"):
            _require(x.base == "B" and x.has_all("du"), f"{name}: first argument must be Bdu")
            if self.kind == "c":
                _require(z.base == "V", f"{name}: second argument must be of type V")
                return _type("V", z=x.z and z.z, o=x.o and z.z)
            _require(z.base == "B", f"{name}: second argument must be of type B")
            return _type("B", z=x.z and z.z, o=x.o and z.z, d=z.d, u=z.u)
        _require(
            x.base == z.base and x.base in "BKV",
            f"{name}: both arguments must be of the same type B, K or V",
        )
        return _type(x.base, o=x.z and z.z, u=x.u and z.u, d=x.d or z.d)

    def elements(self) -> list[ScriptElement]:
        x, z = self.left.elements(), self.right.elements()
        if self.kind == "b":
            return x + z + [OP_BOOLOR]
        if self.kind == "c":
            return x + [OP_NOTIF] + z + [OP_ENDIF]
        if self.kind == "d":
            return x + [OP_IFDUP, OP_NOTIF] + z + [OP_ENDIF]
        return [OP_IF] + x + [OP_ELSE] + z + [OP_ENDIF]

    def satisfy(self, material: SatisfactionMaterial) -> Satisfaction:
        x, z = self.left, self.right
        if self.kind == "b":
            return first_available(
                lambda: z.dissatisfy() + x.satisfy(material),
                lambda: z.satisfy(material) + x.dissatisfy(),
            )
        if self.kind in ("c", "d"):
            return first_available(
                lambda: x.satisfy(material),
                lambda: z.satisfy(material) + x.dissatisfy(),
            )
        return first_available(
            lambda: x.satisfy(material) + Satisfaction([TRUE]),
            lambda: z.satisfy(material) + Satisfaction([FALSE]),
        )

    def dissatisfy(self) -> Satisfaction:
        x, z = self.left, self.right
        if self.kind in ("b", "d"):
            return z.dissatisfy() + x.dissatisfy()
        if self.kind == "c":
            return Satisfaction.unavailable()
        return first_available(
            lambda: x.dissatisfy() + Satisfaction([TRUE]),
            lambda: z.dissatisfy() + Satisfaction([FALSE]),
        )

    def __str__(self) -> str:
        return f"or_{self.kind}({self.left},{self.right})"


@dataclass(frozen=True)
class AndOr(Node):
    """andor(X,Y,Z): if X then Y else Z."""

    cond: Node
    then: Node
    otherwise: Node

    @property
    def subs(self) -> tuple[Node, ...]:
        return (self.cond, self.then, self.otherwise)

    def _compute_type(self) -> MiniscriptType:
        x, y, z = self.cond.ms_type, self.then.ms_type, self.otherwise.ms_type
        _require(x.base == "B" and x.has_all("du"), "andor: first argument must be Bdu")
        _require(
            y.base == z.base and y.base in "BKV",
            "andor: second and third arguments must be of the same type B, K or V",
        )
        return _type(
            y.base,
            z=x.z and y.z and z.z,
            o=(x.z and y.o and z.o) or (x.o and y.z and z.z),
            u=y.u and z.u,
            d=z.d,
        )

    def elements(self) -> list[ScriptElement]:
        return (
            self.cond.elements()
            + [OP_NOTIF]
            + self.otherwise.elements()
            + [OP_ELSE]
            + self.then.elements()
            + [OP_ENDIF]
        )

    def satisfy(self, material: SatisfactionMaterial) -> Satisfaction:
        def then_branch() -> Satisfaction:
            cond = self.cond.satisfy(material)
            if not cond:
                return cond
            return self.then.satisfy(material) + cond

        return first_available(
            then_branch,
            lambda: self.otherwise.satisfy(material) + self.cond.dissatisfy(),
        )

    def dissatisfy(self) -> Satisfaction:
        return self.otherwise.dissatisfy() + self.cond.dissatisfy()

    def __str__(self) -> str:
        return f"andor({self.cond},{self.then},{self.otherwise})"


@dataclass(frozen=True)
class Threshold(Node):
    """thresh(k, X1, ..., Xn)"""

    k: int
    branches: tuple[Node, ...]

    @property
    def subs(self) -> tuple[Node, ...]:
        return self.branches

    def _compute_type(self) -> MiniscriptType:
        n = len(self.branches)
        _require(1 <= self.k <= n, "thresh threshold out of range")
        first = self.branches[0].ms_type
        _require(first.base == "B" and first.has_all("du"), "thresh: first argument must be Bdu")
        for branch in self.branches[1:]:
            t = branch.ms_type
            _require(t.base == "W" and t.has_all("du"), "thresh: other arguments must be Wdu")

        types = [branch.ms_type for branch in self.branches]
        non_zero = [t for t in types if not t.z]
        return _type(
            "B",
            z=not non_zero,
            o=len(non_zero) == 1 and non_zero[0].o,
            d=True,
            u=True,
        )

    def elements(self) -> list[ScriptElement]:
        elements = self.branches[0].elements()
        for branch in self.branches[1:]:
            elements += branch.elements() + [OP_ADD]
        return elements + [push_int(self.k), OP_EQUAL]

    def satisfy(self, material: SatisfactionMaterial) -> Satisfaction:
        n = len(self.branches)
        dissats = [branch.dissatisfy() for branch in self.branches]
        sats: dict[int, Satisfaction] = {}

        def sat(i: int) -> Satisfaction:
            if i not in sats:
                sats[i] = self.branches[i].satisfy(material)
            return sats[i]

        # Combinations come out in lexicographic order: leftmost branches win
        for chosen in combinations(range(n), self.k):
            if not all(dissats[i] for i in range(n) if i not in chosen):
                continue
            if not all(sat(i) for i in chosen):
                continue
            witness = Satisfaction([])
            for i in reversed(range(n)):
                witness = witness + (sats[i] if i in chosen else dissats[i])
            return witness
        return Satisfaction.unavailable()

    def dissatisfy(self) -> Satisfaction:
        witness = Satisfaction([])
        for branch in reversed(self.branches):
            witness = witness + branch.dissatisfy()
        return witness

    def __str__(self) -> str:
        return f"thresh({self.k},{','.join(str(branch) for branch in self.branches)})"


@dataclass(frozen=True)
class Wrap(Node):
    """Single-letter wrappers a: s: c: d: v: j: n:"""

    wrapper: str
    sub: Node

    @property
    def subs(self) -> tuple[Node, ...]:
        return (self.sub,)

    def _compute_type(self) -> MiniscriptType:
        x = self.sub.ms_type
        w = self.wrapper
        if w == "a":
            _require(x.base == "B", "a: requires a B expression")
            return _type("W", d=x.d, u=x.u)
        if w == "s":
            _require(x.base == "B" and x.o, "s: requires a Bo expression")
            return _type("W", d=x.d, u=x.u)
        if w == "c":
            _require(x.base == "K", "c: requires a K expression")
            return _type("B", o=x.o, n=x.n, d=x.d, u=True)
        if w == "d":
            _require(x.base == "V" and x.z, "d: requires a Vz expression")
            return _type("B", o=True, n=True, d=True, u=True)
        if w == "v":
            _require(x.base == "B", "v: requires a B expression")
            return _type("V", z=x.z, o=x.o, n=x.n)
        if w == "j":
            _require(x.base == "B" and x.n, "j: requires a Bn expression")
            return _type("B", o=x.o, n=True, d=True, u=x.u)
        if w == "n":
            _require(x.base == "B", "n: requires a B expression")
            return _type("B", z=x.z, o=x.o, n=x.n, d=x.d, u=True)
        raise DescriptorSyntaxError(f"Unknown wrapper: {w}")

    def elements(self) -> list[ScriptElement]:
        x = self.sub.elements()
        w = self.wrapper
        if w == "a":
            return [OP_TOALTSTACK] + x + [OP_FROMALTSTACK]
        if w == "s":
            return [OP_SWAP] + x
        if w == "c":
            return x + [OP_CHECKSIG]
        if w == "d":
            return [OP_DUP, OP_IF] + x + [OP_ENDIF]
        if w == "v":
            last = x[-1]
            if isinstance(last, int) and last in VERIFY_FORMS:
                return x[:-1] + [VERIFY_FORMS[last]]
            return x + [OP_VERIFY]
        if w == "j":
            return [OP_SIZE, OP_0NOTEQUAL, OP_IF] + x + [OP_ENDIF]
        return x + [OP_0NOTEQUAL]

    def satisfy(self, material: SatisfactionMaterial) -> Satisfaction:
        if self.wrapper == "d":
            return self.sub.satisfy(material) + Satisfaction([TRUE])
        return self.sub.satisfy(material)

    def dissatisfy(self) -> Satisfaction:
        if self.wrapper == "v":
            return Satisfaction.unavailable()
        if self.wrapper in ("d", "j"):
            return Satisfaction([FALSE])
        return self.sub.dissatisfy()

    def _is_pk_alias(self) -> bool:
        return self.wrapper == "c" and isinstance(self.sub, Key)

    def __str__(self) -> str:
        if self._is_pk_alias():
            return f"pk({self.sub.pubkey.hex()})"  # type: ignore[attr-defined]
        inner = str(self.sub)
        if isinstance(self.sub, Wrap) and not self.sub._is_pk_alias():
            # Wrappers chain without repeating the colon: "sv:..."
            return f"{self.wrapper}{inner}"
        return f"{self.wrapper}:{inner}"


def pk(pubkey: bytes) -> Node:
    return Wrap("c", Key(pubkey))


def as_verify(node: Node) -> Node:
    """Coerce a B expression into a V one with the v: wrapper."""
    if node.ms_type.base == "B":
        return Wrap("v", node)
    return node


def as_wrapped(node: Node) -> Node:
    """Coerce a B expression into a W one, preferring the cheaper s: wrapper."""
    if node.ms_type.base != "B":
        return node
    if node.ms_type.o:
        return Wrap("s", node)
    return Wrap("a", node)

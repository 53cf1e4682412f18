"""
Spend-path selection and witness construction for Taproot inputs.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass

from loguru import logger

from tapcore.crypto import schnorr_sign, tweak_secret
from tapcore.errors import LeafAttempt, NoSatisfyingPath
from tapcore.miniscript import SatisfactionMaterial
from tapcore.models import SecretStore
from tapcore.taptree import TapLeaf, TapTree
from tapcore.timelock import InputTimelock

# Computes the sighash for a leaf hash (None for the key path)
SighashFunction = Callable[[bytes | None], bytes]


@dataclass
class Witness:
    items: list[bytes]
    leaf: TapLeaf | None = None

    @property
    def is_key_path(self) -> bool:
        return self.leaf is None


class LeafMaterial(SatisfactionMaterial):
    """
    Active secrets and timelocks for one leaf of one input.

    Every predicate that cannot be discharged is recorded in `blockers`.
    """

    def __init__(
        self,
        store: SecretStore,
        timelock: InputTimelock,
        message: Callable[[], bytes],
    ):
        self.store = store
        self.timelock = timelock
        self._message = message
        self._digest: bytes | None = None
        self.blockers: list[str] = []

    @property
    def digest(self) -> bytes:
        if self._digest is None:
            self._digest = self._message()
        return self._digest

    def sign(self, pubkey: bytes) -> bytes | None:
        secret = self.store.active_secret(pubkey)
        if secret is None:
            self.blockers.append(f"pk({pubkey.hex()}): missing active key")
            return None
        return schnorr_sign(secret, self.digest)

    def preimage(self, image: bytes) -> bytes | None:
        preimage = self.store.active_preimage(image)
        if preimage is None:
            self.blockers.append(f"sha256({image.hex()}): missing active preimage")
        return preimage

    def check_older(self, height: int) -> bool:
        if not self.timelock.older_satisfied(height):
            self.blockers.append(f"older({height}): relative timelock unmet")
            return False
        return True

    def check_after(self, height: int) -> bool:
        if not self.timelock.after_satisfied(height):
            self.blockers.append(f"after({height}): absolute timelock unmet")
            return False
        return True


def satisfy(
    tap_tree: TapTree,
    store: SecretStore,
    timelock: InputTimelock,
    sighash: SighashFunction,
) -> Witness:
    """
    Build the witness for spending a Taproot output.

    The key path is used whenever the internal key's secret is active.
    Otherwise the first satisfiable leaf in tree order is chosen.

    Raises:
        NoSatisfyingPath: neither the key path nor any leaf can be satisfied
    """
    secret = store.active_secret(tap_tree.internal_key)
    if secret is not None:
        tweaked = tweak_secret(secret, tap_tree.merkle_root)
        signature = schnorr_sign(tweaked, sighash(None))
        logger.debug(f"Input #{timelock.index}: key path spend")
        return Witness([signature])

    key_path_blocker = f"internal key {tap_tree.internal_key.hex()}: missing active key"
    attempts: list[LeafAttempt] = []

    for leaf in tap_tree.leaves:
        material = LeafMaterial(store, timelock, lambda leaf=leaf: sighash(leaf.leaf_hash))
        sat = leaf.miniscript.satisfy(material)
        if sat:
            logger.debug(f"Input #{timelock.index}: script path spend via leaf #{leaf.index}")
            items = sat.witness + [leaf.script, tap_tree.control_block(leaf)]  # type: ignore[operator]
            return Witness(items, leaf)
        attempts.append(LeafAttempt(leaf.index, str(leaf.miniscript), material.blockers))

    raise NoSatisfyingPath(timelock.index, key_path_blocker, attempts)

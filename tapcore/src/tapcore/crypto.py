"""
Cryptographic primitives for Taproot: tagged hashes, x-only keys, tweaks and
BIP340 Schnorr signatures.
"""

from __future__ import annotations

import hashlib

from coincurve import PrivateKey, PublicKeyXOnly

from tapcore.constants import SECP256K1_N
from tapcore.errors import TapError


class CryptoError(TapError):
    pass


def sha256(data: bytes) -> bytes:
    return hashlib.sha256(data).digest()


def hash256(data: bytes) -> bytes:
    return hashlib.sha256(hashlib.sha256(data).digest()).digest()


def tagged_hash(tag: str, data: bytes) -> bytes:
    """BIP340 tagged hash: SHA256(SHA256(tag) || SHA256(tag) || data)"""
    tag_hash = hashlib.sha256(tag.encode("utf-8")).digest()
    return hashlib.sha256(tag_hash + tag_hash + data).digest()


def has_even_y(secret: bytes) -> bool:
    return PrivateKey(secret).public_key.format(compressed=True)[0] == 0x02


def normalize_secret(secret: bytes) -> bytes:
    """
    Return the secret whose public key has an even y-coordinate.

    Both d and n - d share the same x-only public key; tapscript signing
    works directly with the even one.
    """
    try:
        if has_even_y(secret):
            return secret
    except ValueError as e:
        raise CryptoError(f"Invalid secret key: {e}") from e

    negated = SECP256K1_N - int.from_bytes(secret, "big")
    return negated.to_bytes(32, "big")


def generate_secret() -> bytes:
    """Generate a fresh secret key with an even public key."""
    return normalize_secret(PrivateKey().secret)


def xonly_from_secret(secret: bytes) -> bytes:
    return PrivateKey(secret).public_key.format(compressed=True)[1:]


def validate_xonly(pubkey: bytes) -> bytes:
    """Check that 32 bytes are the x-coordinate of a curve point."""
    if len(pubkey) != 32:
        raise CryptoError(f"Invalid x-only public key length: {len(pubkey)}")
    try:
        PublicKeyXOnly(pubkey)
    except ValueError as e:
        raise CryptoError(f"Invalid x-only public key {pubkey.hex()}: {e}") from e
    return pubkey


def taproot_tweak(internal_key: bytes, merkle_root: bytes | None) -> bytes:
    """
    BIP341 tweak t = hash_TapTweak(P || merkle_root).

    Key-path-only outputs commit to P alone (BIP86).
    """
    return tagged_hash("TapTweak", internal_key + (merkle_root or b""))


def tweak_public_key(internal_key: bytes, merkle_root: bytes | None) -> tuple[bytes, bool]:
    """
    Compute the output key Q = P + tG.

    Returns:
        (x-only output key, parity) where parity is True for odd y
    """
    tweak = taproot_tweak(internal_key, merkle_root)
    try:
        xonly = PublicKeyXOnly(internal_key)
        xonly.tweak_add(tweak)
    except ValueError as e:
        raise CryptoError(f"Failed to tweak {internal_key.hex()}: {e}") from e
    return xonly.format(), bool(xonly.parity)


def tweak_secret(secret: bytes, merkle_root: bytes | None) -> bytes:
    """Private counterpart of tweak_public_key, for key-path signing."""
    even_secret = normalize_secret(secret)
    internal_key = xonly_from_secret(even_secret)
    tweak = int.from_bytes(taproot_tweak(internal_key, merkle_root), "big")

    if tweak >= SECP256K1_N:
        raise CryptoError("Tweak exceeds curve order")

    tweaked = (int.from_bytes(even_secret, "big") + tweak) % SECP256K1_N
    if tweaked == 0:
        raise CryptoError("Tweaked secret key is zero")
    return tweaked.to_bytes(32, "big")


def schnorr_sign(secret: bytes, message: bytes) -> bytes:
    """BIP340 Schnorr signature (64 bytes) over a 32-byte digest."""
    if len(message) != 32:
        raise CryptoError(f"Schnorr signing requires a 32-byte digest, got {len(message)} bytes")
    return PrivateKey(secret).sign_schnorr(message)


def schnorr_verify(pubkey: bytes, message: bytes, signature: bytes) -> bool:
    try:
        return PublicKeyXOnly(pubkey).verify(signature, message)
    except Exception:
        return False

"""
Core data models using Pydantic for validation and serialization.

Byte values are held as lowercase hex strings so that the models serialize
to JSON unchanged.
"""

from __future__ import annotations

import os
from enum import Enum

from loguru import logger
from pydantic import BaseModel, Field, field_validator

from tapcore.crypto import (
    CryptoError,
    generate_secret,
    normalize_secret,
    sha256,
    validate_xonly,
    xonly_from_secret,
)
from tapcore.errors import UnknownKeyOrImage


class NetworkType(str, Enum):
    MAINNET = "mainnet"
    TESTNET = "testnet"
    SIGNET = "signet"
    REGTEST = "regtest"


def _validate_hex32(v: str) -> str:
    v = v.lower()
    try:
        raw = bytes.fromhex(v)
    except ValueError as e:
        raise ValueError(f"Invalid hex: {v}") from e
    if len(raw) != 32:
        raise ValueError(f"Expected 32 bytes, got {len(raw)}")
    return v


def parse_hex32(value: str, kind: str = "value") -> bytes:
    """Decode a 32-byte hex string given on the command line."""
    try:
        return bytes.fromhex(_validate_hex32(value.strip()))
    except ValueError as e:
        raise CryptoError(f"Invalid {kind} {value!r}: {e}") from e


class KeyPair(BaseModel):
    """
    A static key pair.

    `secret` is None for public-only keys (for example an unspendable NUMS
    internal key); such keys never sign.
    """

    secret: str | None = None
    public: str
    active: bool = True

    @field_validator("secret", "public")
    @classmethod
    def validate_hex(cls, v: str | None) -> str | None:
        if v is None:
            return v
        return _validate_hex32(v)

    @property
    def can_sign(self) -> bool:
        return self.active and self.secret is not None

    @property
    def public_bytes(self) -> bytes:
        return bytes.fromhex(self.public)

    @property
    def secret_bytes(self) -> bytes | None:
        return bytes.fromhex(self.secret) if self.secret is not None else None


class ImagePair(BaseModel):
    """A SHA-256 hash lock: preimage (when known) and its image."""

    preimage: str | None = None
    image: str
    active: bool = True

    @field_validator("preimage", "image")
    @classmethod
    def validate_hex(cls, v: str | None) -> str | None:
        if v is None:
            return v
        return _validate_hex32(v)

    @property
    def can_reveal(self) -> bool:
        return self.active and self.preimage is not None

    @property
    def image_bytes(self) -> bytes:
        return bytes.fromhex(self.image)


class SecretStore(BaseModel):
    """
    Key pairs and hash preimages available to the wallet.

    Entries are only ever added or toggled between active and passive;
    insertion order is preserved.
    """

    keys: list[KeyPair] = Field(default_factory=list)
    images: list[ImagePair] = Field(default_factory=list)

    def find_key(self, pubkey: bytes) -> KeyPair | None:
        public = pubkey.hex()
        for pair in self.keys:
            if pair.public == public:
                return pair
        return None

    def find_image(self, image: bytes) -> ImagePair | None:
        digest = image.hex()
        for pair in self.images:
            if pair.image == digest:
                return pair
        return None

    def get_key(self, pubkey: bytes) -> KeyPair:
        pair = self.find_key(pubkey)
        if pair is None:
            raise UnknownKeyOrImage(pubkey.hex(), "key")
        return pair

    def get_image(self, image: bytes) -> ImagePair:
        pair = self.find_image(image)
        if pair is None:
            raise UnknownKeyOrImage(image.hex(), "image")
        return pair

    def active_secret(self, pubkey: bytes) -> bytes | None:
        """Secret for pubkey if the pair is known, active and spendable."""
        pair = self.find_key(pubkey)
        if pair is None or not pair.can_sign:
            return None
        return pair.secret_bytes

    def active_preimage(self, image: bytes) -> bytes | None:
        pair = self.find_image(image)
        if pair is None or not pair.can_reveal:
            return None
        return bytes.fromhex(pair.preimage)  # type: ignore[arg-type]

    def generate_keys(self, count: int) -> list[KeyPair]:
        created = []
        for _ in range(count):
            secret = generate_secret()
            pair = KeyPair(secret=secret.hex(), public=xonly_from_secret(secret).hex())
            self.keys.append(pair)
            created.append(pair)
        logger.info(f"Generated {count} key pair(s)")
        return created

    def import_secret(self, secret: bytes) -> KeyPair:
        secret = normalize_secret(secret)
        public = xonly_from_secret(secret)
        existing = self.find_key(public)
        if existing is not None:
            if existing.secret is None:
                existing.secret = secret.hex()
                logger.info(f"Added secret to public-only key {public.hex()}")
            return existing

        pair = KeyPair(secret=secret.hex(), public=public.hex())
        self.keys.append(pair)
        logger.info(f"Imported key {public.hex()}")
        return pair

    def import_public(self, pubkey: bytes) -> KeyPair:
        validate_xonly(pubkey)
        existing = self.find_key(pubkey)
        if existing is not None:
            return existing

        pair = KeyPair(public=pubkey.hex())
        self.keys.append(pair)
        logger.info(f"Imported public-only key {pubkey.hex()}")
        return pair

    def generate_images(self, count: int) -> list[ImagePair]:
        created = []
        for _ in range(count):
            preimage = os.urandom(32)
            pair = ImagePair(preimage=preimage.hex(), image=sha256(preimage).hex())
            self.images.append(pair)
            created.append(pair)
        logger.info(f"Generated {count} image(s)")
        return created

    def import_preimage(self, preimage: bytes) -> ImagePair:
        image = sha256(preimage)
        existing = self.find_image(image)
        if existing is not None:
            if existing.preimage is None:
                existing.preimage = preimage.hex()
                logger.info(f"Added preimage to image {image.hex()}")
            return existing

        pair = ImagePair(preimage=preimage.hex(), image=image.hex())
        self.images.append(pair)
        logger.info(f"Imported preimage of {image.hex()}")
        return pair

    def import_image(self, image: bytes) -> ImagePair:
        existing = self.find_image(image)
        if existing is not None:
            return existing

        pair = ImagePair(image=image.hex())
        self.images.append(pair)
        logger.info(f"Imported image {image.hex()} without preimage")
        return pair

    def set_key_active(self, pubkey: bytes, active: bool) -> KeyPair:
        pair = self.get_key(pubkey)
        pair.active = active
        logger.info(f"Key {pair.public} is now {'active' if active else 'passive'}")
        return pair

    def toggle_key(self, pubkey: bytes) -> KeyPair:
        return self.set_key_active(pubkey, not self.get_key(pubkey).active)

    def set_image_active(self, image: bytes, active: bool) -> ImagePair:
        pair = self.get_image(image)
        pair.active = active
        logger.info(f"Image {pair.image} is now {'active' if active else 'passive'}")
        return pair

    def toggle_image(self, image: bytes) -> ImagePair:
        return self.set_image_active(image, not self.get_image(image).active)


class Utxo(BaseModel):
    """An unspent output locked by one of our descriptors."""

    txid: str
    vout: int = Field(..., ge=0)
    value: int = Field(..., ge=0)
    descriptor: str

    @field_validator("txid")
    @classmethod
    def validate_txid(cls, v: str) -> str:
        return _validate_hex32(v)

    @property
    def outpoint(self) -> str:
        return f"{self.txid}:{self.vout}"


class TxInput(BaseModel):
    """
    Draft input.

    `sequence` is the relative timelock in blocks, or None when the relative
    timelock is disabled for this input.
    """

    utxo: Utxo | None = None
    sequence: int | None = Field(default=None, ge=0, le=0xFFFF)


class TxOutput(BaseModel):
    """Draft output; `value` None means "whatever remains after the fee"."""

    descriptor: str
    value: int | None = Field(default=None, ge=0)


class TransactionDraft(BaseModel):
    inputs: dict[int, TxInput] = Field(default_factory=dict)
    outputs: dict[int, TxOutput] = Field(default_factory=dict)
    fee: int = Field(default=0, ge=0)
    locktime: int | None = Field(default=None, ge=0)

    def has_relative_timelock(self) -> bool:
        return any(tx_input.sequence is not None for tx_input in self.inputs.values())

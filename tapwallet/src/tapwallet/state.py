"""
Persistent wallet state: secret store, inbound address, UTXOs and the
transaction draft, stored as pretty-printed JSON.
"""

from __future__ import annotations

from pathlib import Path

from loguru import logger
from pydantic import BaseModel, Field, ValidationError

from tapcore.descriptor import Descriptor, parse_descriptor
from tapcore.errors import (
    MissingInboundAddress,
    StateCorrupt,
    StateExists,
    StateMissing,
    UnknownUtxo,
)
from tapcore.models import SecretStore, TransactionDraft, Utxo


class WalletState(BaseModel):
    store: SecretStore = Field(default_factory=SecretStore)
    inbound: str | None = None
    utxos: list[Utxo] = Field(default_factory=list)
    draft: TransactionDraft = Field(default_factory=TransactionDraft)

    def to_json(self) -> str:
        return self.model_dump_json(indent=2) + "\n"

    def parse(self, descriptor: str) -> Descriptor:
        return parse_descriptor(descriptor, self.store)

    def set_inbound(self, descriptor: str) -> Descriptor:
        """Set the descriptor that the next funding transaction pays to."""
        parsed = self.parse(descriptor)
        self.inbound = str(parsed)
        logger.info(f"Inbound descriptor set to {self.inbound}")
        return parsed

    def fund_inbound(self, txid: str, vout: int, value: int) -> Utxo:
        """Record a payment to the inbound descriptor as a new UTXO."""
        if self.inbound is None:
            raise MissingInboundAddress()

        utxo = Utxo(txid=txid, vout=vout, value=value, descriptor=self.inbound)
        self.inbound = None
        return self.add_utxo(utxo)

    def add_utxo(self, utxo: Utxo) -> Utxo:
        for existing in self.utxos:
            if existing.outpoint == utxo.outpoint:
                return existing
        self.utxos.append(utxo)
        logger.info(f"New UTXO #{len(self.utxos) - 1}: {utxo.outpoint} ({utxo.value} sat)")
        return utxo

    def get_utxo(self, index: int) -> Utxo:
        if not 0 <= index < len(self.utxos):
            raise UnknownUtxo(index)
        return self.utxos[index]


def load_state(path: Path) -> WalletState:
    if not path.exists():
        raise StateMissing(str(path))
    try:
        return WalletState.model_validate_json(path.read_text(encoding="utf-8"))
    except (UnicodeDecodeError, ValidationError) as e:
        raise StateCorrupt(f"State file {path} is corrupt: {e}") from e


def save_state(state: WalletState, path: Path) -> None:
    tmp = path.with_name(path.name + ".tmp")
    tmp.write_text(state.to_json(), encoding="utf-8")
    tmp.replace(path)
    logger.debug(f"Saved state to {path}")


def init_state(path: Path, force: bool = False) -> WalletState:
    if path.exists() and not force:
        raise StateExists(f"State file {path} already exists (use --force to overwrite)")
    state = WalletState()
    save_state(state, path)
    logger.info(f"Initialized empty state at {path}")
    return state

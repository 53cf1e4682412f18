"""
Pytest configuration and fixtures for wallet tests.
"""

from pathlib import Path

import pytest
from loguru import logger

from tapcore.models import Utxo
from tapwallet.state import WalletState

FUNDING_TXID = "f0" * 31 + "01"


@pytest.fixture(autouse=True)
def reset_logging():
    """The CLI points loguru at captured streams; drop those sinks afterwards."""
    yield
    logger.remove()


@pytest.fixture
def state() -> WalletState:
    """State with four deterministic keys, one preimage and nothing else."""
    state = WalletState()
    for n in range(1, 5):
        state.store.import_secret(n.to_bytes(32, "big"))
    state.store.import_preimage(bytes(range(32)))
    return state


@pytest.fixture
def keys(state: WalletState) -> list[str]:
    return [pair.public for pair in state.store.keys]


@pytest.fixture
def funded(state: WalletState, keys: list[str]) -> WalletState:
    """State holding a single 1 BTC UTXO locked to the first key."""
    state.add_utxo(
        Utxo(txid=FUNDING_TXID, vout=0, value=100_000_000, descriptor=f"tr({keys[0]})")
    )
    return state


@pytest.fixture
def state_file(tmp_path: Path) -> Path:
    return tmp_path / "state.json"

"""
Shared fixtures for tapcore tests.
"""

import pytest

from tapcore.models import SecretStore


@pytest.fixture
def store() -> SecretStore:
    """Store with four deterministic keys and one preimage, all active."""
    store = SecretStore()
    for n in range(1, 5):
        store.import_secret(n.to_bytes(32, "big"))
    store.import_preimage(bytes(range(32)))
    return store


@pytest.fixture
def keys(store: SecretStore) -> list[str]:
    return [pair.public for pair in store.keys]


@pytest.fixture
def image(store: SecretStore) -> str:
    return store.images[0].image

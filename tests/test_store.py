from __future__ import annotations

import pytest

from vaultwatch.core.models import TokenMetadata
from vaultwatch.core.store import RegistryStore

TOKEN = "0xA0b86991c6218b36c1d19D4a2e9Eb0cE3606eB48"


def _metadata(balance: str = "100") -> TokenMetadata:
    return TokenMetadata(name="USD Coin", symbol="USDC", decimals=6, balance=balance)


def test_lookup_is_case_insensitive() -> None:
    store = RegistryStore()
    store.put(TOKEN, _metadata())

    assert store.get(TOKEN.lower()) == _metadata()
    assert store.get(TOKEN.upper().replace("0X", "0x")) == _metadata()
    assert TOKEN.lower() in store
    assert list(store.all()) == [TOKEN.lower()]


def test_put_overwrites_and_remove_is_noop_when_absent() -> None:
    store = RegistryStore()
    store.put(TOKEN, _metadata("1"))
    store.put(TOKEN, _metadata("2"))

    assert store.get(TOKEN).balance == "2"
    assert store.remove(TOKEN) == _metadata("2")
    assert store.remove(TOKEN) is None
    assert store.get(TOKEN) is None
    assert len(store) == 0


def test_all_returns_an_independent_copy() -> None:
    store = RegistryStore()
    store.put(TOKEN, _metadata())

    snapshot = store.all()
    snapshot.clear()
    snapshot["0xdead"] = _metadata("0")

    assert store.get(TOKEN) == _metadata()
    assert "0xdead" not in store


def test_metadata_records_are_immutable() -> None:
    metadata = _metadata()
    with pytest.raises(AttributeError):
        metadata.balance = "0"  # type: ignore[misc]
    assert metadata.with_balance("5").balance == "5"
    assert metadata.balance == "100"


def test_empty_address_is_rejected() -> None:
    store = RegistryStore()
    with pytest.raises(ValueError):
        store.get("  ")
    assert "" not in store

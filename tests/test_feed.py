from __future__ import annotations

import asyncio

import pytest

from vaultwatch.core.feed import ChangeFeed
from vaultwatch.core.models import ChangeEvent, TokenMetadata
from vaultwatch.core.store import RegistryStore

TOKEN = "0x6b175474e89094c44da98b954eedeac495271d0f"


def _metadata(balance: str) -> TokenMetadata:
    return TokenMetadata(name="Dai Stablecoin", symbol="DAI", decimals=18, balance=balance)


def test_snapshot_is_taken_at_subscribe_time() -> None:
    store = RegistryStore()
    store.put(TOKEN, _metadata("1"))
    feed = ChangeFeed(store)

    snapshot, subscription = feed.subscribe_all()
    store.put(TOKEN, _metadata("2"))
    feed.emit(ChangeEvent(TOKEN, _metadata("2")))

    assert snapshot[TOKEN].balance == "1"
    event = subscription.get_nowait()
    assert event.metadata.balance == "2"
    assert subscription.get_nowait() is None


def test_every_observer_receives_events_in_order() -> None:
    feed = ChangeFeed(RegistryStore())
    _, first = feed.subscribe_all()
    _, second = feed.subscribe_all()

    for balance in ("1", "2", "3"):
        feed.emit(ChangeEvent(TOKEN, _metadata(balance)))

    assert feed.subscriber_count == 2
    for subscription in (first, second):
        balances = []
        while subscription.pending:
            balances.append(subscription.get_nowait().metadata.balance)
        assert balances == ["1", "2", "3"]


def test_slow_observer_drops_oldest_events() -> None:
    feed = ChangeFeed(RegistryStore(), buffer_size=2)
    _, slow = feed.subscribe_all()

    for balance in ("1", "2", "3", "4"):
        feed.emit(ChangeEvent(TOKEN, _metadata(balance)))

    assert slow.dropped == 2
    assert slow.get_nowait().metadata.balance == "3"
    assert slow.get_nowait().metadata.balance == "4"


def test_closed_subscription_stops_receiving() -> None:
    feed = ChangeFeed(RegistryStore())
    _, subscription = feed.subscribe_all()
    feed.emit(ChangeEvent(TOKEN, _metadata("1")))

    subscription.close()
    feed.emit(ChangeEvent(TOKEN, _metadata("2")))

    assert feed.subscriber_count == 0
    assert subscription.closed

    async def consume() -> list:
        return [event.metadata.balance async for event in subscription]

    assert asyncio.run(consume()) == ["1"]


def test_async_reader_wakes_on_emit() -> None:
    async def scenario() -> None:
        feed = ChangeFeed(RegistryStore())
        _, subscription = feed.subscribe_all()

        reader = asyncio.ensure_future(subscription.get())
        await asyncio.sleep(0)
        assert not reader.done()

        feed.emit(ChangeEvent(TOKEN, _metadata("9")))
        event = await asyncio.wait_for(reader, timeout=1)
        assert event.metadata.balance == "9"

        feed.close()
        with pytest.raises(StopAsyncIteration):
            await subscription.get()

    asyncio.run(scenario())


def test_buffer_size_must_be_positive() -> None:
    with pytest.raises(ValueError):
        ChangeFeed(RegistryStore(), buffer_size=0)

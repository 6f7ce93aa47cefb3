from __future__ import annotations

import asyncio

import pytest

from vaultwatch.adapters.fixture_ledger import FixtureLedger
from vaultwatch.adapters.rpc_handler import TokenRegistryHandler
from vaultwatch.core.addresses import NATIVE_TOKEN_ADDRESS
from vaultwatch.core.errors import AdapterFailure, InvalidOperation
from vaultwatch.core.feed import FeedSubscription
from vaultwatch.core.synchronizer import Synchronizer

VAULT = "0x00000000000000000000000000000000000000aa"
TOKEN = "0xa0b86991c6218b36c1d19d4a2e9eb0ce3606eb48"

FIXTURE = {
    "native_balances": {VAULT: "1000"},
    "tokens": {
        TOKEN: {"name": "USD Coin", "symbol": "USDC", "decimals": 6, "balances": {VAULT: "2500000"}},
    },
}


async def _handler() -> tuple[TokenRegistryHandler, Synchronizer]:
    synchronizer = Synchronizer(FixtureLedger(FIXTURE))
    await synchronizer.initialize(VAULT)
    return TokenRegistryHandler(synchronizer), synchronizer


def test_register_and_resolve_operations() -> None:
    async def scenario() -> None:
        handler, synchronizer = await _handler()

        entry = await handler.handle({"params": ["register", TOKEN.upper().replace("0X", "0x")]})
        assert entry.address == TOKEN
        assert entry.metadata.balance == "2500000"

        assert await handler.handle({"params": ["resolve", TOKEN]}) == entry.metadata
        assert await handler.handle({"params": ["resolve", "0x00000000000000000000000000000000000000ee"]}) is None

        everything = await handler.handle({"params": ["resolve"]})
        assert set(everything) == {NATIVE_TOKEN_ADDRESS, TOKEN}
        await synchronizer.dispose()

    asyncio.run(scenario())


def test_subscribe_returns_snapshot_and_stream() -> None:
    async def scenario() -> None:
        handler, synchronizer = await _handler()

        snapshot, stream = await handler.handle({"params": ["subscribe"]})
        await handler.handle({"params": ["register", TOKEN]})

        assert set(snapshot) == {NATIVE_TOKEN_ADDRESS}
        assert isinstance(stream, FeedSubscription)
        assert stream.get_nowait().address == TOKEN
        await synchronizer.dispose()

    asyncio.run(scenario())


@pytest.mark.parametrize(
    "request_body",
    [
        {},
        {"params": []},
        {"params": ["remove", TOKEN]},
        {"params": ["register"]},
        {"params": ["register", ""]},
        {"params": ["register", "   "]},
        {"params": ["register", 42]},
    ],
)
def test_invalid_operations_are_rejected(request_body) -> None:
    async def scenario() -> None:
        handler, synchronizer = await _handler()
        with pytest.raises(InvalidOperation):
            await handler.handle(request_body)
        await synchronizer.dispose()

    asyncio.run(scenario())


def test_unknown_token_registration_fails_cleanly() -> None:
    async def scenario() -> None:
        handler, synchronizer = await _handler()
        with pytest.raises(AdapterFailure):
            await handler.handle({"params": ["register", "0x00000000000000000000000000000000000000ee"]})
        assert set(synchronizer.get_all()) == {NATIVE_TOKEN_ADDRESS}
        await synchronizer.dispose()

    asyncio.run(scenario())

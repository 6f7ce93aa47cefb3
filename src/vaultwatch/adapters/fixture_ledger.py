"""JSON fixture ledger adapter.

Implements the core LedgerPort from a static JSON document so the watcher can
run end to end without a node connection. Published events update the
fixture's balances as a real ledger would, so a token registered after a
replay reads the post-replay balance.

Fixture shape::

    {
      "native_balances": {"<holder>": "<raw amount>"},
      "tokens": {
        "<token>": {"name": "...", "symbol": "...", "decimals": 18,
                    "balances": {"<holder>": "<raw amount>"}}
      },
      "events": [
        {"kind": "transfer", "token": "...", "from": "...", "to": "...", "value": "..."},
        {"kind": "deposit", "vault": "...", "token": "...", "amount": "..."},
        {"kind": "withdrawal", "vault": "...", "token": "...", "amount": "..."}
      ]
    }
"""

from __future__ import annotations

import asyncio
import json
import logging
from functools import partial
from typing import AsyncIterator, Callable, Dict, List, Optional, Tuple

from vaultwatch.core.addresses import normalize_address
from vaultwatch.core.models import (
    DEPOSIT,
    VAULT_EVENT_KINDS,
    WITHDRAWAL,
    TokenInfo,
    TransferEvent,
    VaultEvent,
)

LOGGER = logging.getLogger(__name__)

TRANSFER = "transfer"

_Key = Tuple[str, str]


class FixtureLedger:
    """In-process ledger that satisfies the LedgerPort contract."""

    def __init__(self, fixture: Optional[dict] = None) -> None:
        fixture = fixture or {}
        self._native: Dict[str, int] = {
            normalize_address(holder): int(amount)
            for holder, amount in fixture.get("native_balances", {}).items()
        }
        self._tokens: Dict[str, TokenInfo] = {}
        self._balances: Dict[str, Dict[str, int]] = {}
        for address, entry in fixture.get("tokens", {}).items():
            self.add_token(
                address,
                name=entry["name"],
                symbol=entry["symbol"],
                decimals=int(entry.get("decimals", 18)),
                balances=entry.get("balances", {}),
            )
        self._events: List[dict] = list(fixture.get("events", []))
        self._queues: Dict[_Key, List[asyncio.Queue]] = {}

    @classmethod
    def from_file(cls, path: str) -> "FixtureLedger":
        with open(path, "r", encoding="utf-8") as handle:
            return cls(json.load(handle))

    @property
    def events(self) -> List[dict]:
        return list(self._events)

    def add_token(
        self,
        address: str,
        *,
        name: str,
        symbol: str,
        decimals: int = 18,
        balances: Optional[Dict[str, str]] = None,
    ) -> None:
        token = normalize_address(address)
        self._tokens[token] = TokenInfo(name=name, symbol=symbol, decimals=decimals)
        self._balances[token] = {
            normalize_address(holder): int(amount) for holder, amount in (balances or {}).items()
        }

    def listener_count(self, kind: str, address: str) -> int:
        return len(self._queues.get((kind, normalize_address(address)), []))

    # ── LedgerPort reads ──────────────────────────────────────────────

    async def read_token_metadata(self, address: str) -> TokenInfo:
        token = normalize_address(address)
        if token not in self._tokens:
            raise LookupError(f"Unknown token contract {token}")
        return self._tokens[token]

    async def read_balance(self, address: str, holder: str) -> str:
        token = normalize_address(address)
        if token not in self._balances:
            raise LookupError(f"Unknown token contract {token}")
        return str(self._balances[token].get(normalize_address(holder), 0))

    async def read_native_balance(self, holder: str) -> str:
        return str(self._native.get(normalize_address(holder), 0))

    # ── LedgerPort subscriptions ──────────────────────────────────────

    def subscribe_transfers(self, address: str) -> AsyncIterator[TransferEvent]:
        return self._attach((TRANSFER, normalize_address(address)))

    def subscribe_vault_events(self, vault: str, kind: str) -> AsyncIterator[VaultEvent]:
        if kind not in VAULT_EVENT_KINDS:
            raise ValueError(f"Unsupported vault event kind: {kind}")
        return self._attach((kind, normalize_address(vault)))

    def _attach(self, key: _Key) -> "FixtureSubscription":
        queue: asyncio.Queue = asyncio.Queue()
        self._queues.setdefault(key, []).append(queue)
        return FixtureSubscription(queue, partial(self._detach, key, queue))

    def _detach(self, key: _Key, queue: asyncio.Queue) -> None:
        queues = self._queues.get(key, [])
        if queue in queues:
            queues.remove(queue)

    # ── Event publication ─────────────────────────────────────────────

    def publish(self, event: dict) -> None:
        """Apply one fixture event to the ledger state and deliver it to listeners."""

        kind = event.get("kind")
        if kind == TRANSFER:
            token = normalize_address(event["token"])
            sender = normalize_address(event["from"])
            recipient = normalize_address(event["to"])
            value = int(event["value"])
            balances = self._balances.setdefault(token, {})
            balances[sender] = balances.get(sender, 0) - value
            balances[recipient] = balances.get(recipient, 0) + value
            self._deliver((TRANSFER, token), TransferEvent(sender, recipient, str(value)))
        elif kind in (DEPOSIT, WITHDRAWAL):
            vault = normalize_address(event["vault"])
            token = normalize_address(event["token"])
            amount = int(event["amount"])
            self._move_vault_funds(vault, token, amount if kind == DEPOSIT else -amount)
            self._deliver((kind, vault), VaultEvent(token, str(amount)))
        else:
            raise ValueError(f"Unsupported fixture event kind: {kind!r}")

    async def replay(self, interval: float = 0.0) -> int:
        """Publish every fixture event in order, pausing ``interval`` between them."""

        for event in self._events:
            self.publish(event)
            await asyncio.sleep(interval)
        LOGGER.info("Replayed %s fixture event(s)", len(self._events))
        return len(self._events)

    def _move_vault_funds(self, vault: str, token: str, delta: int) -> None:
        if token in self._balances:
            holders = self._balances[token]
            holders[vault] = holders.get(vault, 0) + delta
        else:
            self._native[vault] = self._native.get(vault, 0) + delta

    def _deliver(self, key: _Key, payload) -> None:
        queues = self._queues.get(key, [])
        LOGGER.debug("Delivering %s event to %s listener(s)", key[0], len(queues))
        for queue in list(queues):
            queue.put_nowait(payload)


class FixtureSubscription:
    """One attached listener queue, iterable until ``aclose()`` detaches it.

    Closing works whether or not iteration ever started.
    """

    def __init__(self, queue: asyncio.Queue, detach: Callable[[], None]) -> None:
        self._queue = queue
        self._detach = detach
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def __aiter__(self) -> "FixtureSubscription":
        return self

    async def __anext__(self):
        if self._closed:
            raise StopAsyncIteration
        return await self._queue.get()

    async def aclose(self) -> None:
        if not self._closed:
            self._closed = True
            self._detach()

"""Core token registry synchronizer.

This module is ledger-agnostic. It only relies on the ledger port, and it is
the single writer of the registry store: every mutation goes store first,
then exactly one ChangeEvent on the feed, with no suspension point between.

Balance updates (read current balance, apply delta, write back) run under a
per-token lock so two events for the same token can never lose an update.
"""

from __future__ import annotations

import asyncio
import logging
from functools import partial
from typing import AsyncIterator, Awaitable, Callable, Dict, List, Optional, Set, Tuple

from vaultwatch.core.addresses import NATIVE_TOKEN_ADDRESS, is_native, normalize_address, same_address
from vaultwatch.core.balances import apply_transfer, credit, debit, normalize_balance
from vaultwatch.core.config import SyncConfig
from vaultwatch.core.errors import (
    AdapterFailure,
    InvalidOperation,
    TokenRegistryError,
    UnknownToken,
)
from vaultwatch.core.feed import ChangeFeed, FeedSubscription
from vaultwatch.core.models import (
    DEPOSIT,
    WITHDRAWAL,
    ChangeEvent,
    TokenEntry,
    TokenMetadata,
    TransferEvent,
    VaultEvent,
)
from vaultwatch.core.ports import LedgerPort
from vaultwatch.core.store import RegistryStore

LOGGER = logging.getLogger(__name__)

StreamFactory = Callable[[], AsyncIterator]
EventHandler = Callable[[str, object], Awaitable[None]]


class _Listener:
    """A listener task and the ledger stream it is currently reading."""

    __slots__ = ("stream", "task")

    def __init__(self, stream: AsyncIterator) -> None:
        self.stream = stream
        self.task: Optional[asyncio.Task] = None


class Synchronizer:
    """Owns the registry store, its ledger subscriptions, and the change feed."""

    def __init__(
        self,
        ledger: LedgerPort,
        config: Optional[SyncConfig] = None,
        store: Optional[RegistryStore] = None,
    ) -> None:
        self._ledger = ledger
        self._config = config or SyncConfig()
        self._store = store if store is not None else RegistryStore()
        self._feed = ChangeFeed(self._store, self._config.feed_buffer_size)
        self._vault: Optional[str] = None
        self._listeners: Dict[str, List[_Listener]] = {}
        self._locks: Dict[str, asyncio.Lock] = {}
        self._pending: Dict[str, asyncio.Future] = {}
        self._teardowns: Set[asyncio.Future] = set()
        self._disposed = False

    @property
    def vault(self) -> Optional[str]:
        return self._vault

    @property
    def feed(self) -> ChangeFeed:
        return self._feed

    # ── Lifecycle ─────────────────────────────────────────────────────

    async def initialize(self, vault_address: str) -> TokenEntry:
        """Track the vault's native balance and keep it current from vault events."""

        self._ensure_open()
        if self._vault is not None:
            raise RuntimeError("Synchronizer is already initialized")

        vault = _canonical(vault_address)
        raw_balance = await self._call_ledger(
            self._ledger.read_native_balance(vault),
            f"native balance of {vault}",
        )
        native = self._config.native_token
        metadata = TokenMetadata(
            name=native.name,
            symbol=native.symbol,
            decimals=native.decimals,
            balance=self._checked_balance(raw_balance, NATIVE_TOKEN_ADDRESS),
        )
        self._ensure_open()

        await self._watch(
            NATIVE_TOKEN_ADDRESS,
            [
                (partial(self._ledger.subscribe_vault_events, vault, DEPOSIT), self._on_deposit),
                (partial(self._ledger.subscribe_vault_events, vault, WITHDRAWAL), self._on_withdrawal),
            ],
        )
        self._vault = vault
        self._commit(NATIVE_TOKEN_ADDRESS, metadata)
        LOGGER.info("Tracking vault %s (native balance %s)", vault, metadata.balance)
        return TokenEntry(NATIVE_TOKEN_ADDRESS, metadata)

    async def dispose(self) -> None:
        """Cancel every listener and pending registration, then close the feed."""

        if self._disposed:
            return
        self._disposed = True

        listeners = [listener for group in self._listeners.values() for listener in group]
        pending = list(self._pending.values())
        self._listeners.clear()
        self._pending.clear()
        for future in pending:
            future.cancel()

        await self._stop_listeners(listeners)
        leftovers = pending + list(self._teardowns)
        if leftovers:
            await asyncio.gather(*leftovers, return_exceptions=True)

        self._feed.close()
        LOGGER.info("Synchronizer disposed (%s listener(s) cancelled)", len(listeners))

    # ── Registration ──────────────────────────────────────────────────

    async def register(self, address: str) -> TokenEntry:
        """Register a token, or return the existing entry if already known.

        Concurrent calls for the same address share one in-flight fetch, so
        a token never ends up with more than one transfer subscription.
        """

        self._ensure_initialized()
        address = _canonical(address)

        existing = self._store.get(address)
        if existing is not None:
            return TokenEntry(address, existing)

        pending = self._pending.get(address)
        if pending is None:
            pending = asyncio.ensure_future(self._register_new(address))
            self._pending[address] = pending
            pending.add_done_callback(partial(self._forget_pending, address))
        return await asyncio.shield(pending)

    async def _register_new(self, address: str) -> TokenEntry:
        vault = self._vault
        try:
            info, raw_balance = await asyncio.wait_for(
                asyncio.gather(
                    self._ledger.read_token_metadata(address),
                    self._ledger.read_balance(address, vault),
                ),
                timeout=self._config.fetch_timeout,
            )
            metadata = TokenMetadata(
                name=str(info.name),
                symbol=str(info.symbol),
                decimals=int(info.decimals),
                balance=normalize_balance(raw_balance),
            )
        except asyncio.TimeoutError as exc:
            raise AdapterFailure(f"Timed out fetching token {address}") from exc
        except Exception as exc:
            raise AdapterFailure(f"Failed to fetch token {address}: {exc}") from exc

        self._ensure_open()
        existing = self._store.get(address)
        if existing is not None:
            return TokenEntry(address, existing)

        await self._watch(address, [(partial(self._ledger.subscribe_transfers, address), self._on_transfer)])
        self._commit(address, metadata)
        LOGGER.info("Registered token %s (%s)", address, metadata.symbol)
        return TokenEntry(address, metadata)

    def _forget_pending(self, address: str, future: asyncio.Future) -> None:
        if self._pending.get(address) is future:
            del self._pending[address]
        if not future.cancelled():
            # Mark a failure as retrieved even if every caller was cancelled.
            future.exception()

    # ── Reads ─────────────────────────────────────────────────────────

    def resolve(self, address: str) -> Optional[TokenMetadata]:
        """Return stored metadata, or None when the token is not registered."""

        try:
            return self._store.get(address)
        except ValueError:
            return None

    def get_all(self) -> Dict[str, TokenMetadata]:
        return self._store.all()

    def subscribe(self) -> Tuple[Dict[str, TokenMetadata], FeedSubscription]:
        return self._feed.subscribe_all()

    def subscription_count(self, address: str) -> int:
        listeners = self._listeners.get(_canonical(address), [])
        return sum(1 for listener in listeners if not listener.task.done())

    # ── Mutations ─────────────────────────────────────────────────────

    async def modify(self, address: str, balance: str) -> TokenEntry:
        """Overwrite a token's balance and emit the change."""

        address = _canonical(address)
        async with self._lock_for(address):
            return self._set_balance(address, balance)

    def remove(self, address: str) -> bool:
        """Drop a token and cancel its ledger subscription.

        Returns False when the token was not registered. The token's lock is
        kept so a modify() already waiting on it stays serialized with any
        later re-registration.
        """

        address = _canonical(address)
        if is_native(address):
            raise InvalidOperation("The native token cannot be removed")

        listeners = self._listeners.pop(address, [])
        if listeners:
            for listener in listeners:
                listener.task.cancel()
            teardown = asyncio.ensure_future(self._stop_listeners(listeners))
            self._teardowns.add(teardown)
            teardown.add_done_callback(self._teardowns.discard)
        if self._store.remove(address) is None:
            return False

        self._feed.emit(ChangeEvent(address, None))
        LOGGER.info("Removed token %s", address)
        return True

    def _set_balance(self, address: str, balance: str) -> TokenEntry:
        canonical = normalize_balance(balance)
        current = self._store.get(address)
        if current is None:
            raise UnknownToken(address)
        metadata = current.with_balance(canonical)
        self._commit(address, metadata)
        return TokenEntry(address, metadata)

    def _commit(self, address: str, metadata: TokenMetadata) -> None:
        self._store.put(address, metadata)
        self._feed.emit(ChangeEvent(address, metadata))
        LOGGER.debug("Token %s balance is now %s", address, metadata.balance)

    # ── Event handling ────────────────────────────────────────────────

    async def _on_transfer(self, address: str, event: TransferEvent) -> None:
        async with self._lock_for(address):
            current = self._store.get(address)
            if current is None:
                return
            balance = apply_transfer(current.balance, event, self._vault)
            if balance is None:
                return
            self._set_balance(address, balance)

    async def _on_deposit(self, address: str, event: VaultEvent) -> None:
        if not same_address(event.token, address):
            return
        async with self._lock_for(address):
            current = self._store.get(address)
            if current is None:
                return
            self._set_balance(address, credit(current.balance, event.amount))

    async def _on_withdrawal(self, address: str, event: VaultEvent) -> None:
        if not same_address(event.token, address):
            return
        async with self._lock_for(address):
            current = self._store.get(address)
            if current is None:
                return
            self._set_balance(address, debit(current.balance, event.amount))

    async def _watch(self, address: str, sources: List[Tuple[StreamFactory, EventHandler]]) -> None:
        """Open every stream, then start one listener task per stream.

        Streams are opened here rather than inside the tasks so the ledger
        subscription exists by the time register()/initialize() returns. If
        any stream fails to open, the ones already opened are closed and no
        listener is started. The success path never suspends, so the caller
        can commit right after without an event slipping in between.
        """

        opened: List[Tuple[AsyncIterator, StreamFactory, EventHandler]] = []
        try:
            for open_stream, handler in sources:
                opened.append((open_stream(), open_stream, handler))
        except Exception as exc:
            for stream, _, _ in opened:
                await _close_stream(stream)
            raise AdapterFailure(f"Failed to subscribe to events for {address}: {exc}") from exc

        listeners = self._listeners.setdefault(address, [])
        for stream, open_stream, handler in opened:
            listener = _Listener(stream)
            listener.task = asyncio.ensure_future(self._listen(address, listener, open_stream, handler))
            listeners.append(listener)

    async def _listen(
        self,
        address: str,
        listener: _Listener,
        open_stream: StreamFactory,
        handler: EventHandler,
    ) -> None:
        """Feed one ledger stream into ``handler`` for as long as the token lives."""

        delay = self._config.resubscribe_delay
        while True:
            try:
                async for event in listener.stream:
                    delay = self._config.resubscribe_delay
                    await self._dispatch(address, handler, event)
                LOGGER.warning("Event stream for %s ended; resubscribing", address)
            except Exception:
                LOGGER.exception("Event stream for %s failed; resubscribing in %.1fs", address, delay)
            finally:
                await _close_stream(listener.stream)

            await asyncio.sleep(delay)
            delay = min(delay * 2, self._config.max_resubscribe_delay)
            try:
                listener.stream = open_stream()
            except Exception:
                LOGGER.exception("Resubscribe for %s failed", address)
                listener.stream = _empty_stream()

    async def _stop_listeners(self, listeners: List[_Listener]) -> None:
        # A task cancelled before its first step never reaches its finally,
        # so the current stream is closed here as well.
        for listener in listeners:
            listener.task.cancel()
        if listeners:
            await asyncio.gather(*(listener.task for listener in listeners), return_exceptions=True)
        for listener in listeners:
            await _close_stream(listener.stream)

    async def _dispatch(self, address: str, handler: EventHandler, event: object) -> None:
        # A bad event must never terminate the subscription.
        try:
            await handler(address, event)
        except TokenRegistryError as exc:
            LOGGER.warning("Dropping event for %s: %s", address, exc)
        except Exception:
            LOGGER.exception("Dropping event for %s after handler error", address)

    # ── Helpers ───────────────────────────────────────────────────────

    def _lock_for(self, address: str) -> asyncio.Lock:
        lock = self._locks.get(address)
        if lock is None:
            lock = self._locks[address] = asyncio.Lock()
        return lock

    async def _call_ledger(self, call: Awaitable, what: str):
        try:
            return await asyncio.wait_for(call, timeout=self._config.fetch_timeout)
        except asyncio.TimeoutError as exc:
            raise AdapterFailure(f"Timed out reading {what}") from exc
        except Exception as exc:
            raise AdapterFailure(f"Failed reading {what}: {exc}") from exc

    def _checked_balance(self, raw_balance, address: str) -> str:
        try:
            return normalize_balance(raw_balance)
        except TokenRegistryError as exc:
            raise AdapterFailure(f"Ledger returned an invalid balance for {address}: {exc}") from exc

    def _ensure_open(self) -> None:
        if self._disposed:
            raise RuntimeError("Synchronizer has been disposed")

    def _ensure_initialized(self) -> None:
        self._ensure_open()
        if self._vault is None:
            raise RuntimeError("Synchronizer is not initialized")


def _canonical(address) -> str:
    try:
        return normalize_address(address)
    except ValueError as exc:
        raise InvalidOperation(f"Invalid address {address!r}") from exc


async def _close_stream(stream: AsyncIterator) -> None:
    aclose = getattr(stream, "aclose", None)
    if aclose is None:
        return
    try:
        await aclose()
    except Exception:
        LOGGER.debug("Ignoring error while closing event stream", exc_info=True)


async def _empty_stream() -> AsyncIterator:
    return
    yield

"""Ports (interfaces) used by the synchronizer.

Ports define the minimal contract for the ledger adapter so that the core
can be reused with different ledger clients.
"""

from __future__ import annotations

from typing import AsyncIterator, Protocol, Union

from vaultwatch.core.models import TokenInfo, TransferEvent, VaultEvent

Amount = Union[int, str]


class LedgerPort(Protocol):
    """Ledger reads and event streams required by the synchronizer.

    Subscription methods must register with the ledger as soon as they are
    called, so no event published after the call is missed even if the
    returned iterator is not consumed right away. The iterator's ``aclose()``
    must release that registration even if iteration never started.
    """

    async def read_token_metadata(self, address: str) -> TokenInfo:
        ...

    async def read_balance(self, address: str, holder: str) -> Amount:
        ...

    async def read_native_balance(self, holder: str) -> Amount:
        ...

    def subscribe_transfers(self, address: str) -> AsyncIterator[TransferEvent]:
        ...

    def subscribe_vault_events(self, vault: str, kind: str) -> AsyncIterator[VaultEvent]:
        ...

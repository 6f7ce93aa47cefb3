"""Core domain models.

These dataclasses are shared across the core and adapters to avoid tight
coupling to any ledger-client types. All of them are frozen so a snapshot
handed to a reader can never be mutated behind the store's back.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, replace
from typing import Optional

DEPOSIT = "deposit"
WITHDRAWAL = "withdrawal"
VAULT_EVENT_KINDS = (DEPOSIT, WITHDRAWAL)


@dataclass(frozen=True)
class TokenInfo:
    """Static token attributes as reported by the ledger."""

    name: str
    symbol: str
    decimals: int


@dataclass(frozen=True)
class TokenMetadata:
    """Registry record for one token; balance is a raw integer string."""

    name: str
    symbol: str
    decimals: int
    balance: str

    def with_balance(self, balance: str) -> "TokenMetadata":
        return replace(self, balance=balance)

    def as_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class TokenEntry:
    """Address plus metadata, as returned by registration."""

    address: str
    metadata: TokenMetadata


@dataclass(frozen=True)
class ChangeEvent:
    """Full current metadata for a token after a mutation.

    ``metadata`` is None when the token was removed from the registry.
    """

    address: str
    metadata: Optional[TokenMetadata]

    @property
    def removed(self) -> bool:
        return self.metadata is None


@dataclass(frozen=True)
class TransferEvent:
    """A token transfer observed on the ledger."""

    sender: str
    recipient: str
    value: str


@dataclass(frozen=True)
class VaultEvent:
    """A deposit into or withdrawal out of the vault itself."""

    token: str
    amount: str

"""Typed failures surfaced by the token registry."""

from __future__ import annotations


class TokenRegistryError(Exception):
    """Base class for every failure returned to registry callers."""


class InvalidOperation(TokenRegistryError):
    """Raised for unrecognized or malformed registry commands."""


class AdapterFailure(TokenRegistryError):
    """Raised when a ledger read or subscription fails or times out."""


class InvalidBalance(TokenRegistryError):
    """Raised when a balance is missing, malformed, or would go negative."""


class UnknownToken(TokenRegistryError):
    """Raised when an operation targets a token that is not registered."""

    def __init__(self, address: str) -> None:
        self.address = address
        super().__init__(f"Token {address} is not registered")

"""Helpers for working with token and holder addresses."""

from __future__ import annotations

from typing import Optional

# Sentinel used by the ledger for its base currency.
NATIVE_TOKEN_ADDRESS = "0x0000000000000000000000000000000000000000"


def normalize_address(address: str) -> str:
    """Return the canonical lowercase form of an address."""

    if not isinstance(address, str) or not address.strip():
        raise ValueError("An address is required")
    return address.strip().lower()


def same_address(left: Optional[str], right: Optional[str]) -> bool:
    """Compare two addresses case-insensitively; missing values never match."""

    if not left or not right:
        return False
    return left.strip().lower() == right.strip().lower()


def is_native(address: str) -> bool:
    return normalize_address(address) == NATIVE_TOKEN_ADDRESS

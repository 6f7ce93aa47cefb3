"""Balance parsing and arithmetic (core domain).

Balances and event values are raw integer strings in the token's smallest
unit. Decimals are never applied here; mixing scales is left to display code.
"""

from __future__ import annotations

import re
from typing import Optional, Union

from vaultwatch.core.addresses import same_address
from vaultwatch.core.errors import InvalidBalance
from vaultwatch.core.models import TransferEvent

_RAW_AMOUNT = re.compile(r"^[0-9]+$")


def parse_amount(value: Union[int, str, None]) -> int:
    """Parse a non-negative raw integer amount."""

    if value is None or value == "":
        raise InvalidBalance("balance is required")
    if isinstance(value, bool):
        raise InvalidBalance(f"Invalid amount: {value!r}")
    if isinstance(value, int):
        if value < 0:
            raise InvalidBalance(f"Amount must be non-negative: {value}")
        return value
    text = str(value).strip()
    if not _RAW_AMOUNT.match(text):
        raise InvalidBalance(f"Invalid amount: {value!r}")
    return int(text)


def format_balance(amount: int) -> str:
    if amount < 0:
        raise InvalidBalance(f"Balance would become negative: {amount}")
    return str(amount)


def normalize_balance(value: Union[int, str, None]) -> str:
    """Return the canonical string form of a balance ("007" -> "7")."""

    return format_balance(parse_amount(value))


def credit(balance: str, amount: Union[int, str]) -> str:
    return format_balance(parse_amount(balance) + parse_amount(amount))


def debit(balance: str, amount: Union[int, str]) -> str:
    return format_balance(parse_amount(balance) - parse_amount(amount))


def apply_transfer(balance: str, event: TransferEvent, vault: str) -> Optional[str]:
    """Return the vault's new balance after a transfer, or None if unaffected.

    A self-transfer (vault is both sender and recipient) applies both deltas
    and nets to zero.
    """

    incoming = same_address(event.recipient, vault)
    outgoing = same_address(event.sender, vault)
    if not incoming and not outgoing:
        return None

    value = parse_amount(event.value)
    amount = parse_amount(balance)
    if incoming:
        amount += value
    if outgoing:
        amount -= value
    return format_balance(amount)

"""Shared change-feed formatting helpers.

Keeping formatting here prevents drift between output channels. Decimals are
applied only at this layer; the core keeps raw integer amounts.
"""

from __future__ import annotations

import json
from decimal import Decimal
from typing import Dict, Optional

from vaultwatch.core.addresses import NATIVE_TOKEN_ADDRESS
from vaultwatch.core.models import ChangeEvent, TokenMetadata


def format_amount(raw_balance: str, decimals: int) -> str:
    """Render a raw integer balance in whole-token units ("1250000", 6 -> "1.25")."""

    # Built from a string so no context rounding applies to large balances.
    amount = Decimal(f"{int(raw_balance)}E-{int(decimals)}")
    text = format(amount, "f")
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return text


def format_token_label(address: str, metadata: Optional[TokenMetadata], aliases: Dict[str, str]) -> str:
    """Return a human-friendly token label, using configured aliases."""

    alias = aliases.get(address)
    if alias:
        return f"{alias} ({address})"
    if address == NATIVE_TOKEN_ADDRESS and metadata is not None:
        return f"{metadata.symbol} (native)"
    if metadata is not None:
        return f"{metadata.symbol} ({address})"
    return address


def _format_text(event: ChangeEvent, aliases: Dict[str, str]) -> str:
    label = format_token_label(event.address, event.metadata, aliases)
    if event.metadata is None:
        return f"{label}: removed"
    metadata = event.metadata
    display = format_amount(metadata.balance, metadata.decimals)
    return f"{label}: {display} {metadata.symbol} [raw {metadata.balance}]"


def _format_json(event: ChangeEvent) -> str:
    payload = {
        "address": event.address,
        "metadata": event.metadata.as_dict() if event.metadata is not None else None,
    }
    return json.dumps(payload, sort_keys=True)


def format_change(event: ChangeEvent, mode: str = "text", aliases: Optional[Dict[str, str]] = None) -> str:
    """Return one change event formatted for the requested mode."""

    if mode == "text":
        return _format_text(event, aliases or {})
    if mode == "json":
        return _format_json(event)
    raise ValueError(f"Unsupported output format: {mode}")


def format_snapshot(
    snapshot: Dict[str, TokenMetadata],
    mode: str = "text",
    aliases: Optional[Dict[str, str]] = None,
) -> str:
    """Format a full registry snapshot, one token per line, sorted by address."""

    lines = [
        format_change(ChangeEvent(address, snapshot[address]), mode, aliases)
        for address in sorted(snapshot)
    ]
    return "\n".join(lines)

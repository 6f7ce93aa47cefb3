"""Core configuration dataclasses.

We keep config parsing outside the core, but these dataclasses define the
shape the core expects so the app layer can build them safely.
"""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True)
class NativeTokenConfig:
    """Display attributes for the ledger's base currency."""

    name: str = "Ether"
    symbol: str = "ETH"
    decimals: int = 18


@dataclass(frozen=True)
class SyncConfig:
    """Timeouts, retry and buffering settings for the synchronizer."""

    fetch_timeout: float = 10.0
    resubscribe_delay: float = 1.0
    max_resubscribe_delay: float = 60.0
    feed_buffer_size: int = 256
    native_token: NativeTokenConfig = field(default_factory=NativeTokenConfig)

"""Static configuration for vaultwatch.

All user-editable settings (vault, tokens, ledger fixture, timeouts, output,
logging) live in a single JSON file for quick edits without touching Python.
"""

import json
import os

from dotenv import load_dotenv

from vaultwatch.core.addresses import normalize_address
from vaultwatch.core.config import NativeTokenConfig, SyncConfig

load_dotenv()

PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", ".."))

# VAULTWATCH_CONFIG points at an alternate file, e.g. per-environment configs.
CONFIG_PATH = os.getenv("VAULTWATCH_CONFIG", os.path.join(PROJECT_ROOT, "config.json"))


def _load_json_config() -> dict:
    """Load config.json with a flat, user-friendly schema."""

    if not os.path.exists(CONFIG_PATH):
        raise FileNotFoundError(f"Config file not found: {CONFIG_PATH}")

    with open(CONFIG_PATH, "r", encoding="utf-8") as handle:
        return json.load(handle)


def _resolve_path(path: str) -> str:
    if os.path.isabs(path):
        return path
    return os.path.join(PROJECT_ROOT, path)


def _normalize_tokens(raw_tokens: list[dict]) -> tuple[list[str], dict[str, str]]:
    """Return enabled token addresses and an alias map keyed by address."""

    tokens: list[str] = []
    aliases: dict[str, str] = {}
    for entry in raw_tokens:
        address = entry.get("address")
        if not address:
            continue
        if not entry.get("enabled", True):
            continue
        address = normalize_address(address)
        if address not in tokens:
            tokens.append(address)
        alias = entry.get("alias")
        if alias:
            aliases[address] = alias
    return tokens, aliases


_CONFIG = _load_json_config()

# Expose the raw config for modules that need structured access.
CONFIG = _CONFIG

# The vault can come from the environment so one config serves many vaults.
_vault = _CONFIG.get("vault", {})
VAULT_ADDRESS = os.getenv("VAULT_ADDRESS") or _vault.get("address", "")

# Tokens registered at startup, plus display aliases for output.
TOKENS, TOKEN_ALIASES = _normalize_tokens(_CONFIG.get("tokens", []))

# Ledger fixture replayed by the run command.
_ledger = _CONFIG.get("ledger", {})
LEDGER_FIXTURE = _resolve_path(_ledger.get("fixture", "fixtures/ledger.json"))
REPLAY_INTERVAL = float(_ledger.get("replay_interval", 0.5))

# Synchronizer behaviour.
# - FETCH_TIMEOUT: seconds allowed for registration reads
# - RESUBSCRIBE_DELAY / MAX_RESUBSCRIBE_DELAY: backoff bounds for event streams
# - FEED_BUFFER_SIZE: per-observer buffer before oldest events are dropped
_sync = _CONFIG.get("sync", {})
FETCH_TIMEOUT = float(_sync.get("fetch_timeout", 10))
RESUBSCRIBE_DELAY = float(_sync.get("resubscribe_delay", 1))
MAX_RESUBSCRIBE_DELAY = float(_sync.get("max_resubscribe_delay", 60))
FEED_BUFFER_SIZE = int(_sync.get("feed_buffer_size", 256))

_native = _CONFIG.get("native_token", {})
NATIVE_TOKEN = NativeTokenConfig(
    name=_native.get("name", "Ether"),
    symbol=_native.get("symbol", "ETH"),
    decimals=int(_native.get("decimals", 18)),
)

SYNC_CONFIG = SyncConfig(
    fetch_timeout=FETCH_TIMEOUT,
    resubscribe_delay=RESUBSCRIBE_DELAY,
    max_resubscribe_delay=MAX_RESUBSCRIBE_DELAY,
    feed_buffer_size=FEED_BUFFER_SIZE,
    native_token=NATIVE_TOKEN,
)

# Output format for the console feed: "text" or "json".
OUTPUT_FORMAT = _CONFIG.get("output", {}).get("format", "text")

# Logging configuration (optional).
LOGGING = _CONFIG.get("logging", {})

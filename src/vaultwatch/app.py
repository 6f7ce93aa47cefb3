"""Application entry point for the vaultwatch balance watcher."""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
from logging.handlers import RotatingFileHandler
from typing import Optional

from art import tprint

from vaultwatch import settings
from vaultwatch.adapters.feed_formatting import format_change, format_snapshot
from vaultwatch.adapters.fixture_ledger import FixtureLedger
from vaultwatch.core.errors import TokenRegistryError
from vaultwatch.core.feed import FeedSubscription
from vaultwatch.core.synchronizer import Synchronizer

NAME = "VAULTWATCH"
FONT = "tarty-1"

LOGGER = logging.getLogger(__name__)


def _print_banner() -> None:
    tprint(NAME, FONT, space=1)


class _RedactingFormatter(logging.Formatter):
    def __init__(self, secrets: list[str], fmt: str, datefmt: Optional[str] = None) -> None:
        super().__init__(fmt=fmt, datefmt=datefmt)
        self._secrets = [secret for secret in secrets if secret]

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        for secret in self._secrets:
            message = message.replace(secret, "***")
        return message


def _collect_redaction_values(config: dict) -> list[str]:
    redact_cfg = config.get("redact", {}) if config else {}
    if not redact_cfg.get("enabled", False):
        return []
    values = []
    for name in redact_cfg.get("patterns", []):
        value = os.getenv(name)
        if value:
            values.append(value)
    return sorted(set(values), key=len, reverse=True)


def _configure_logging() -> None:
    config = settings.LOGGING or {}
    if not config.get("enabled", False):
        return

    level_name = str(config.get("level", "INFO")).upper()
    level = getattr(logging, level_name, logging.INFO)

    fmt = "%(asctime)s %(levelname)s %(name)s: %(message)s"
    datefmt = "%Y-%m-%d %H:%M:%S"
    formatter = _RedactingFormatter(_collect_redaction_values(config), fmt=fmt, datefmt=datefmt)

    handlers: list[logging.Handler] = []

    if config.get("console", True):
        console_handler = logging.StreamHandler()
        console_handler.setLevel(level)
        console_handler.setFormatter(formatter)
        handlers.append(console_handler)

    file_cfg = config.get("file", {})
    if file_cfg.get("enabled", False):
        path = file_cfg.get("path", "logs/vaultwatch.log")
        if not os.path.isabs(path):
            path = os.path.join(settings.PROJECT_ROOT, path)
        directory = os.path.dirname(path)
        if directory:
            os.makedirs(directory, exist_ok=True)

        file_handler = RotatingFileHandler(
            path,
            maxBytes=int(file_cfg.get("max_bytes", 5 * 1024 * 1024)),
            backupCount=int(file_cfg.get("backup_count", 5)),
            encoding="utf-8",
        )
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        handlers.append(file_handler)

    if not handlers:
        return

    logging.basicConfig(level=level, handlers=handlers)


async def _start(ledger: FixtureLedger) -> Synchronizer:
    """Initialize the vault and register every configured token."""

    if not settings.VAULT_ADDRESS:
        raise RuntimeError("vault.address (or VAULT_ADDRESS) is required")

    synchronizer = Synchronizer(ledger, settings.SYNC_CONFIG)
    await synchronizer.initialize(settings.VAULT_ADDRESS)

    # A token that fails to register is skipped so the rest still get tracked.
    for address in settings.TOKENS:
        try:
            await synchronizer.register(address)
        except TokenRegistryError:
            LOGGER.exception("Failed to register token %s", address)
    LOGGER.info("%s token(s) are tracked", len(synchronizer.get_all()))
    return synchronizer


async def _print_feed(subscription: FeedSubscription) -> None:
    async for event in subscription:
        print(format_change(event, settings.OUTPUT_FORMAT, settings.TOKEN_ALIASES), flush=True)


async def _watch(duration: Optional[float]) -> None:
    ledger = FixtureLedger.from_file(settings.LEDGER_FIXTURE)
    synchronizer = await _start(ledger)

    snapshot, subscription = synchronizer.subscribe()
    print(format_snapshot(snapshot, settings.OUTPUT_FORMAT, settings.TOKEN_ALIASES), flush=True)

    printer = asyncio.ensure_future(_print_feed(subscription))
    replay = asyncio.ensure_future(ledger.replay(settings.REPLAY_INTERVAL))
    try:
        if duration is None:
            await printer
        else:
            await asyncio.sleep(duration)
    finally:
        replay.cancel()
        await synchronizer.dispose()
        await asyncio.gather(printer, replay, return_exceptions=True)


async def _snapshot() -> None:
    ledger = FixtureLedger.from_file(settings.LEDGER_FIXTURE)
    synchronizer = await _start(ledger)
    try:
        print(format_snapshot(synchronizer.get_all(), settings.OUTPUT_FORMAT, settings.TOKEN_ALIASES))
    finally:
        await synchronizer.dispose()


def _run(duration: Optional[float]) -> None:
    _print_banner()
    _configure_logging()
    LOGGER.info("Starting vaultwatch for vault %s", settings.VAULT_ADDRESS)
    try:
        asyncio.run(_watch(duration))
    except KeyboardInterrupt:
        LOGGER.info("Interrupted; shutting down")


def main(argv: Optional[list[str]] = None) -> None:
    parser = argparse.ArgumentParser(prog="vaultwatch")
    subparsers = parser.add_subparsers(dest="command")

    run_parser = subparsers.add_parser("run", help="Track the vault and stream balance changes")
    run_parser.add_argument(
        "--duration",
        type=float,
        default=None,
        help="Stop after this many seconds instead of running until interrupted.",
    )
    subparsers.add_parser("snapshot", help="Print current balances for the configured tokens and exit")

    args = parser.parse_args(argv)
    if args.command == "snapshot":
        _configure_logging()
        asyncio.run(_snapshot())
        return
    _run(getattr(args, "duration", None))


if __name__ == "__main__":
    main()

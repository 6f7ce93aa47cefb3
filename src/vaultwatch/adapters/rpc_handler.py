"""Command surface for the request-routing layer.

The dispatcher passes requests shaped as ``{"params": [operation, *args]}``.
Only the registry operations below are routed; everything else is rejected
with InvalidOperation.
"""

from __future__ import annotations

import logging
from typing import Any

from vaultwatch.core.errors import InvalidOperation
from vaultwatch.core.synchronizer import Synchronizer

LOGGER = logging.getLogger(__name__)

SUBSCRIBE = "subscribe"
REGISTER = "register"
RESOLVE = "resolve"


class TokenRegistryHandler:
    """Routes registry commands to a Synchronizer."""

    def __init__(self, synchronizer: Synchronizer) -> None:
        self._synchronizer = synchronizer

    async def handle(self, request: dict) -> Any:
        params = list(request.get("params") or [])
        if not params:
            raise InvalidOperation("Missing token registry operation")

        operation = params[0]
        LOGGER.debug("Token registry operation: %s", operation)

        if operation == SUBSCRIBE:
            return self._synchronizer.subscribe()

        if operation == REGISTER:
            address = params[1] if len(params) > 1 else None
            if not address:
                raise InvalidOperation("register requires a token address")
            return await self._synchronizer.register(address)

        if operation == RESOLVE:
            if len(params) > 1 and params[1]:
                return self._synchronizer.resolve(params[1])
            return self._synchronizer.get_all()

        raise InvalidOperation(f"Invalid token registry operation: {operation!r}")

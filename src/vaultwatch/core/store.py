"""In-process registry store.

Pure data with no I/O. The synchronizer is the only writer; any number of
readers may call ``get``/``all`` at any time.
"""

from __future__ import annotations

from typing import Dict, Optional

from vaultwatch.core.addresses import normalize_address
from vaultwatch.core.models import TokenMetadata


class RegistryStore:
    """Mapping of token address to its current metadata."""

    def __init__(self) -> None:
        self._tokens: Dict[str, TokenMetadata] = {}

    def get(self, address: str) -> Optional[TokenMetadata]:
        """Return metadata for a token, or None if it is not registered."""

        return self._tokens.get(normalize_address(address))

    def put(self, address: str, metadata: TokenMetadata) -> None:
        """Store metadata, overwriting any previous record."""

        self._tokens[normalize_address(address)] = metadata

    def remove(self, address: str) -> Optional[TokenMetadata]:
        """Delete a token and return what was stored; absent tokens are a no-op."""

        return self._tokens.pop(normalize_address(address), None)

    def all(self) -> Dict[str, TokenMetadata]:
        """Return an independent copy of every record.

        Values are frozen dataclasses, so a shallow copy is enough to keep
        callers from aliasing the store.
        """

        return dict(self._tokens)

    def __contains__(self, address: object) -> bool:
        if not isinstance(address, str) or not address.strip():
            return False
        return normalize_address(address) in self._tokens

    def __len__(self) -> int:
        return len(self._tokens)

"""
mintdesk_core.registry
----------------------
TokenRegistry: the local list of tokens the user created or added.

Loaded from the StorageProvider on construction and written through on every
mutation. Records are never removed. Callers always receive copies, so a
snapshot taken at the start of a reconciliation cycle is not affected by
later updates.
"""

from __future__ import annotations
from decimal import Decimal
from typing import Dict, List, Optional

from mintdesk_core.logger import get_logger
from mintdesk_core.storage.models import TokenRecord
from mintdesk_core.storage.provider import StorageProvider
from mintdesk_core.utils import canonical_json, now_ms

log = get_logger("mintdesk.registry")


class TokenRegistry:
    def __init__(self, storage: StorageProvider):
        self.storage = storage
        self._tokens: Dict[str, TokenRecord] = {rec.mint: rec for rec in storage.list_tokens()}
        self._last_ts = max((r.timestamp for r in self._tokens.values()), default=0)
        log.info(f"[REGISTRY] loaded {len(self._tokens)} token(s)")

    def __len__(self) -> int:
        return len(self._tokens)

    def __contains__(self, mint: str) -> bool:
        return mint in self._tokens

    def _next_timestamp(self) -> int:
        # strictly increasing so creation order survives same-millisecond adds
        self._last_ts = max(now_ms(), self._last_ts + 1)
        return self._last_ts

    def get(self, mint: str) -> Optional[TokenRecord]:
        rec = self._tokens.get(mint)
        return rec.copy() if rec else None

    def add(self, record: TokenRecord) -> bool:
        """Append a record. Returns False (and changes nothing) for a known mint."""
        if record.mint in self._tokens:
            return False
        rec = record.copy(timestamp=record.timestamp or self._next_timestamp())
        self._last_ts = max(self._last_ts, rec.timestamp)
        self.storage.upsert_token(rec)
        self._tokens[rec.mint] = rec
        log.info(f"[REGISTRY] added token={rec.mint} name={rec.name!r}")
        return True

    def update(
        self,
        mint: str,
        supply: Optional[Decimal] = None,
        balance: Optional[Decimal] = None,
        name: Optional[str] = None,
    ) -> TokenRecord:
        current = self._tokens[mint]
        changes = {}
        if supply is not None and supply != current.supply:
            changes["supply"] = supply
        if balance is not None and balance != current.balance:
            changes["balance"] = balance
        if name is not None and name != current.name:
            changes["name"] = name
        if not changes:
            return current.copy()
        rec = current.copy(**changes)
        self.storage.upsert_token(rec)
        self._tokens[mint] = rec
        return rec.copy()

    def rename(self, mint: str, name: str) -> TokenRecord:
        return self.update(mint, name=name)

    def snapshot(self) -> List[TokenRecord]:
        """Copies of every record, newest first."""
        return sorted((r.copy() for r in self._tokens.values()), key=lambda r: r.timestamp, reverse=True)

    def to_json(self) -> bytes:
        """Canonical serialization of the whole registry, keyed by mint."""
        return canonical_json({mint: rec.to_dict() for mint, rec in self._tokens.items()})

"""
mintdesk_core.vault
-------------------
KeyVault: durable custody of one mint authority keypair per token.

- store() overwrites any earlier record for the token (never merges)
- retrieve() returns None when nothing usable is stored; it never raises on absence
- regenerate() fabricates a *new* authority. It does not recover the lost one:
  anything the ledger still ties to the old key (e.g. freezing) stays out of reach.

Write failures propagate as StorageError: a keypair that was not persisted
is an authority that cannot be recovered later.
"""

from __future__ import annotations
from typing import Optional

from mintdesk_core.crypto import Keypair
from mintdesk_core.logger import get_logger
from mintdesk_core.storage.models import SigningKeyRecord
from mintdesk_core.storage.provider import StorageProvider

log = get_logger("mintdesk.vault")


class KeyVault:
    def __init__(self, storage: StorageProvider):
        self.storage = storage

    def store(self, token_id: str, keypair: Keypair) -> SigningKeyRecord:
        rec = SigningKeyRecord.from_keypair(token_id, keypair)
        self.storage.upsert_key(rec)
        self.storage.log_event("authority.stored", {"token_id": token_id, "public_id": keypair.public_id})
        log.info(f"[VAULT] stored authority token={token_id} public_id={keypair.public_id}")
        return rec

    def retrieve(self, token_id: str) -> Optional[Keypair]:
        rec = self.storage.get_key(token_id)
        if rec is None:
            return None
        try:
            return rec.to_keypair()
        except ValueError as e:
            log.warning(f"[VAULT] unusable authority record token={token_id}: {e}")
            return None

    def has_key(self, token_id: str) -> bool:
        return self.retrieve(token_id) is not None

    def regenerate(self, token_id: str) -> Keypair:
        keypair = Keypair.generate()
        self.store(token_id, keypair)
        self.storage.log_event("authority.regenerated", {"token_id": token_id, "public_id": keypair.public_id})
        log.warning(f"[VAULT] regenerated authority token={token_id} new_public_id={keypair.public_id}")
        return keypair

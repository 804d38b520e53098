# mintdesk_core/storage/provider.py
from __future__ import annotations
from typing import Any, Dict, List, Optional

from mintdesk_core.storage.models import SigningKeyRecord, TokenRecord


class StorageProvider:
    """
    Repository interface over the durable local store.

    KeyVault and TokenRegistry are written against this interface only, so
    an encrypted or remote-backed provider can be substituted without
    touching lifecycle logic. Implementations must make every write durable
    before returning and raise StorageError when they cannot.
    """

    # signing keys
    def upsert_key(self, rec: SigningKeyRecord) -> None:
        raise NotImplementedError

    def get_key(self, token_id: str) -> Optional[SigningKeyRecord]:
        raise NotImplementedError

    def list_keys(self) -> List[Dict[str, Any]]:
        """Public view of stored keys (no secret material)."""
        raise NotImplementedError

    # tokens
    def upsert_token(self, rec: TokenRecord) -> None:
        raise NotImplementedError

    def get_token(self, mint: str) -> Optional[TokenRecord]:
        raise NotImplementedError

    def list_tokens(self) -> List[TokenRecord]:
        raise NotImplementedError

    # audit
    def log_event(self, event_type: str, payload: Dict[str, Any]) -> None:
        raise NotImplementedError

    def flush(self) -> None:
        return

    def close(self) -> None:
        return

from typing import Optional, Dict, Any, List
from mintdesk_core.storage.models import SigningKeyRecord, TokenRecord
from mintdesk_core.storage.provider import StorageProvider


class InMemoryStorage(StorageProvider):
    def __init__(self):
        self.keys: Dict[str, SigningKeyRecord] = {}
        self.tokens: Dict[str, TokenRecord] = {}
        self.audit = []

    def upsert_key(self, rec: SigningKeyRecord):
        self.keys[rec.token_id] = SigningKeyRecord.from_dict(rec.to_dict())

    def get_key(self, token_id: str) -> Optional[SigningKeyRecord]:
        rec = self.keys.get(token_id)
        return SigningKeyRecord.from_dict(rec.to_dict()) if rec else None

    def list_keys(self) -> List[Dict[str, Any]]:
        return [
            {"token_id": rec.token_id, "public_id": rec.public_id, "created_at": rec.created_at}
            for rec in self.keys.values()
        ]

    def upsert_token(self, rec: TokenRecord):
        self.tokens[rec.mint] = rec.copy()

    def get_token(self, mint: str) -> Optional[TokenRecord]:
        rec = self.tokens.get(mint)
        return rec.copy() if rec else None

    def list_tokens(self) -> List[TokenRecord]:
        return sorted((rec.copy() for rec in self.tokens.values()), key=lambda r: r.timestamp)

    # audit
    def log_event(self, event_type: str, payload: Dict[str, Any]):
        self.audit.append((event_type, payload))

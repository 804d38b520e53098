# mintdesk_core/storage/models.py
from __future__ import annotations
from dataclasses import dataclass, field, replace
from decimal import Decimal
from typing import Any, Dict

from mintdesk_core.crypto import Keypair
from mintdesk_core.utils import b64d, b64e, format_amount, now_ts


@dataclass
class SigningKeyRecord:
    """
    Storage-level representation of a token's mint authority.

    One record per token id; a new record for the same token overwrites the
    old one. The secret is excluded from repr and must never be logged.
    """
    token_id: str
    public_id: str
    secret: bytes = field(repr=False)
    created_at: str = field(default_factory=now_ts)

    @classmethod
    def from_keypair(cls, token_id: str, keypair: Keypair) -> "SigningKeyRecord":
        return cls(token_id=token_id, public_id=keypair.public_id, secret=keypair.secret)

    def to_keypair(self) -> Keypair:
        kp = Keypair.from_secret(self.secret)
        if kp.public_id != self.public_id:
            raise ValueError("stored public id does not match secret")
        return kp

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tokenId": self.token_id,
            "publicId": self.public_id,
            "secretBytes": b64e(self.secret),
            "createdAt": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SigningKeyRecord":
        return cls(
            token_id=data["tokenId"],
            public_id=data["publicId"],
            secret=b64d(data["secretBytes"]),
            created_at=data.get("createdAt") or now_ts(),
        )


@dataclass
class TokenRecord:
    """
    A token the user created or added. supply/balance are cached display
    amounts; the ledger is authoritative. decimals never change after creation.
    """
    mint: str
    name: str
    decimals: int
    supply: Decimal = Decimal(0)
    balance: Decimal = Decimal(0)
    timestamp: int = 0

    def copy(self, **changes: Any) -> "TokenRecord":
        return replace(self, **changes)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "mint": self.mint,
            "name": self.name,
            "decimals": self.decimals,
            "supply": format_amount(self.supply),
            "balance": format_amount(self.balance),
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TokenRecord":
        return cls(
            mint=data["mint"],
            name=data.get("name", ""),
            decimals=int(data["decimals"]),
            supply=Decimal(str(data.get("supply", "0"))),
            balance=Decimal(str(data.get("balance", "0"))),
            timestamp=int(data.get("timestamp", 0)),
        )

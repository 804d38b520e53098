"""
mintdesk_core.crypto
--------------------
Signing identities used by the lifecycle manager:

- Keypair: a software-held Ed25519 mint authority. The 64-byte secret is the
  32-byte seed followed by the 32-byte public key; the public id is the
  base58 encoding of the public key.
- WalletIdentity: the connected user wallet. Only its public id is known
  here; signing on its behalf belongs to the wallet adapter behind the
  LedgerGateway.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Tuple, Union

from cryptography.hazmat.primitives.asymmetric import ed25519

from .constants import SECRET_KEY_BYTES
from .utils import b58e, validate_address


# --------- Ed25519 (sign/verify) ----------
def ed25519_generate() -> Tuple[bytes, bytes]:
    sk = ed25519.Ed25519PrivateKey.generate()
    pk = sk.public_key()
    return sk.private_bytes_raw(), pk.public_bytes_raw()

def ed25519_public(priv_raw: bytes) -> bytes:
    return ed25519.Ed25519PrivateKey.from_private_bytes(priv_raw).public_key().public_bytes_raw()

def ed25519_sign(priv_raw: bytes, data: bytes) -> bytes:
    sk = ed25519.Ed25519PrivateKey.from_private_bytes(priv_raw)
    return sk.sign(data)

def ed25519_verify(pub_raw: bytes, sig: bytes, data: bytes) -> bool:
    try:
        ed25519.Ed25519PublicKey.from_public_bytes(pub_raw).verify(sig, data)
        return True
    except Exception:
        return False


@dataclass(frozen=True)
class Keypair:
    public_id: str
    secret: bytes = field(repr=False)

    @classmethod
    def generate(cls) -> "Keypair":
        priv, pub = ed25519_generate()
        return cls(public_id=b58e(pub), secret=priv + pub)

    @classmethod
    def from_secret(cls, secret: bytes) -> "Keypair":
        """Rebuild a keypair from its 64-byte secret, checking the embedded public key."""
        secret = bytes(secret)
        if len(secret) != SECRET_KEY_BYTES:
            raise ValueError(f"secret must be {SECRET_KEY_BYTES} bytes, got {len(secret)}")
        seed, pub = secret[:32], secret[32:]
        if ed25519_public(seed) != pub:
            raise ValueError("secret seed does not match its public key")
        return cls(public_id=b58e(pub), secret=secret)

    @property
    def public_bytes(self) -> bytes:
        return self.secret[32:]

    def sign(self, data: bytes) -> bytes:
        return ed25519_sign(self.secret[:32], data)

    def verify(self, sig: bytes, data: bytes) -> bool:
        return ed25519_verify(self.public_bytes, sig, data)


@dataclass(frozen=True)
class WalletIdentity:
    public_id: str

    def __post_init__(self):
        validate_address(self.public_id, "wallet address")


Signer = Union[Keypair, WalletIdentity]

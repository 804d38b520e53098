"""
mintdesk_core.utils
-------------------
Lightweight helpers for timestamps, base64/base58 encoding, canonical JSON,
address validation and display/base-unit amount conversion.

Every amount handed to a LedgerGateway is an int in base units; every amount
held in a TokenRecord or TransactionRecord is a Decimal display value.
"""

from __future__ import annotations
import base64, json, time, hashlib
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Union

import base58

from .constants import ADDRESS_BYTES, MAX_DECIMALS
from .errors import InvalidAddressError, InvalidAmountError

Amount = Union[int, float, str, Decimal]


def b64e(b: bytes) -> str:
    return base64.b64encode(b).decode("ascii")

def b64d(s: str) -> bytes:
    return base64.b64decode(s.encode("ascii"))

def b58e(b: bytes) -> str:
    return base58.b58encode(b).decode("ascii")

def now_ts() -> str:
    # RFC3339 / ISO 8601 in UTC, second precision
    return time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime())

def now_ms() -> int:
    return int(time.time() * 1000)

def canonical_json(obj: Dict[str, Any]) -> bytes:
    return json.dumps(obj, separators=(",", ":"), sort_keys=True, ensure_ascii=False).encode("utf-8")

def sha256(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def is_valid_address(address: Any) -> bool:
    if not isinstance(address, str) or not address:
        return False
    try:
        raw = base58.b58decode(address)
    except ValueError:
        return False
    return len(raw) == ADDRESS_BYTES


def validate_address(address: Any, what: str = "address") -> str:
    if not is_valid_address(address):
        raise InvalidAddressError(f"Invalid {what}: {address!r}")
    return address


def validate_decimals(decimals: Any) -> int:
    if isinstance(decimals, bool) or not isinstance(decimals, int) or not 0 <= decimals <= MAX_DECIMALS:
        raise InvalidAmountError(f"Decimals must be an integer in 0..{MAX_DECIMALS}, got {decimals!r}")
    return decimals


def to_decimal(amount: Amount) -> Decimal:
    """Coerce a user-supplied amount to Decimal (floats go through str())."""
    if isinstance(amount, bool):
        raise InvalidAmountError(f"Invalid amount: {amount!r}")
    if isinstance(amount, float):
        amount = str(amount)
    try:
        value = Decimal(amount)
    except (InvalidOperation, TypeError, ValueError):
        raise InvalidAmountError(f"Invalid amount: {amount!r}") from None
    if not value.is_finite():
        raise InvalidAmountError(f"Invalid amount: {amount!r}")
    return value


def require_positive(amount: Amount) -> Decimal:
    value = to_decimal(amount)
    if value <= 0:
        raise InvalidAmountError(f"Amount must be positive, got {amount!r}")
    return value


def to_base_units(amount: Amount, decimals: int) -> int:
    """Display amount -> integer base units, using the token's own decimals."""
    scaled = to_decimal(amount).scaleb(decimals)
    if scaled != scaled.to_integral_value():
        raise InvalidAmountError(
            f"Amount {amount!r} has more than {decimals} decimal places"
        )
    return int(scaled)


def from_base_units(base_units: Union[int, str], decimals: int) -> Decimal:
    """Integer base units -> exact Decimal display amount."""
    return Decimal(int(base_units)) / (Decimal(10) ** decimals)


def format_amount(value: Decimal) -> str:
    return format(value, "f")

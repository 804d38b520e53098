# mintdesk_core/config.py
from __future__ import annotations
from dataclasses import dataclass, asdict
from decimal import Decimal
from typing import Any, Dict, Optional
import os

from .constants import (
    DEFAULT_DECIMALS,
    HISTORY_LIMIT,
    MIN_CREATION_BALANCE_SOL,
    RECONCILE_INTERVAL_S,
)


@dataclass
class MintDeskConfig:
    min_creation_balance: Decimal = MIN_CREATION_BALANCE_SOL  # SOL
    default_decimals: int = DEFAULT_DECIMALS
    reconcile_interval: float = RECONCILE_INTERVAL_S           # seconds
    history_limit: int = HISTORY_LIMIT
    storage_provider: str = "sqlite"                           # sqlite | memory
    sqlite_path: str = "db/mintdesk.db"

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


_ENV = {
    "min_creation_balance": ("MINTDESK_MIN_CREATION_BALANCE", Decimal),
    "default_decimals": ("MINTDESK_DEFAULT_DECIMALS", int),
    "reconcile_interval": ("MINTDESK_RECONCILE_INTERVAL", float),
    "history_limit": ("MINTDESK_HISTORY_LIMIT", int),
    "storage_provider": ("MINTDESK_STORAGE_PROVIDER", str),
    "sqlite_path": ("MINTDESK_DB_PATH", str),
}


def load_config(config: Optional[Dict[str, Any]] = None) -> MintDeskConfig:
    """
    Resolve settings: explicit dict first, then MINTDESK_* environment
    variables, then defaults.
    """
    config = config or {}
    values: Dict[str, Any] = {}
    for key, (env_name, cast) in _ENV.items():
        raw = config.get(key)
        if raw is None:
            raw = os.getenv(env_name)
        if raw is None:
            continue
        try:
            values[key] = cast(str(raw)) if cast is Decimal else cast(raw)
        except (ArithmeticError, ValueError) as e:
            raise ValueError(f"Invalid value for {key} ({env_name}): {raw!r}") from e
    return MintDeskConfig(**values)

# mintdesk_core/ledger/__init__.py
from mintdesk_core.ledger.ledger_base import (
    HoldingAccount,
    LedgerGateway,
    MintInfo,
    SignatureInfo,
    TokenBalanceEntry,
    TransactionDetail,
)
from mintdesk_core.ledger.ledger_local import LocalLedger

__all__ = [
    "HoldingAccount",
    "LedgerGateway",
    "LocalLedger",
    "MintInfo",
    "SignatureInfo",
    "TokenBalanceEntry",
    "TransactionDetail",
]

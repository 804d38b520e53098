"""
mintdesk_core.errors
--------------------
Error taxonomy shared by the lifecycle manager, the vault and ledger gateways.

Validation errors are raised before any ledger call. LedgerError is what a
LedgerGateway raises; the lifecycle manager translates its codes into the
funds / rate-limit / destination-account errors the caller can act on.
"""

from __future__ import annotations
from typing import Optional


class MintDeskError(Exception):
    remedy: Optional[str] = None

    def __init__(self, message: str = "", remedy: Optional[str] = None):
        super().__init__(message)
        if remedy is not None:
            self.remedy = remedy


# --------- validation ----------
class ValidationError(MintDeskError):
    pass


class InvalidAddressError(ValidationError):
    pass


class InvalidAmountError(ValidationError):
    pass


class WalletNotConnectedError(ValidationError):
    remedy = "Connect a wallet first."


class UnknownTokenError(ValidationError):
    remedy = "Create the token or add it to the registry first."


# --------- funds ----------
class FundsError(MintDeskError):
    pass


class InsufficientBalanceError(FundsError):
    pass


class InsufficientFeeBalanceError(FundsError):
    remedy = "You need a small amount of SOL to pay transaction fees."


class InsufficientTokenBalanceError(FundsError):
    pass


class RateLimitError(MintDeskError):
    remedy = (
        "Faucet limit reached. Get SOL from an alternate source, e.g. "
        "https://faucet.solana.com or `solana airdrop 1 <address>`."
    )


class AuthorityLostError(MintDeskError):
    """
    No usable mint authority was stored for a token and a new one was generated.

    Not raised out of mint operations: it is attached to the result as a
    degraded-success warning.
    """
    remedy = (
        "A new mint authority was generated. It cannot act for the lost key "
        "(e.g. freezing accounts) unless the ledger reassigned the authority."
    )


class StorageError(MintDeskError):
    pass


# --------- ledger ----------
class LedgerError(MintDeskError):
    RATE_LIMITED = "rate_limited"
    INSUFFICIENT_FUNDS = "insufficient_funds"
    INSUFFICIENT_TOKENS = "insufficient_tokens"
    ACCOUNT_NOT_FOUND = "account_not_found"
    OWNER_MISMATCH = "owner_mismatch"
    AUTHORITY_MISMATCH = "authority_mismatch"
    UNAVAILABLE = "unavailable"

    def __init__(self, message: str = "", code: Optional[str] = None, remedy: Optional[str] = None):
        super().__init__(message, remedy=remedy)
        self.code = code


class NetworkError(LedgerError):
    def __init__(self, message: str = "ledger unavailable", remedy: Optional[str] = None):
        super().__init__(message, code=LedgerError.UNAVAILABLE, remedy=remedy)


class AccountNotFoundError(LedgerError):
    def __init__(self, message: str = "account not found", remedy: Optional[str] = None):
        super().__init__(message, code=LedgerError.ACCOUNT_NOT_FOUND, remedy=remedy)


class DestinationAccountError(LedgerError):
    remedy = "Could not create the recipient token account. Make sure you have enough SOL for fees."

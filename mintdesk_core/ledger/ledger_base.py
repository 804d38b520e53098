from __future__ import annotations
from dataclasses import dataclass, field
from typing import List, Optional

from mintdesk_core.crypto import Keypair, Signer


@dataclass
class MintInfo:
    address: str
    decimals: int
    supply: int                      # base units
    mint_authority: Optional[str] = None
    freeze_authority: Optional[str] = None


@dataclass
class HoldingAccount:
    address: str
    mint: str
    owner: str
    amount: int = 0                  # base units


@dataclass
class SignatureInfo:
    signature: str
    slot: int = 0
    block_time: Optional[int] = None  # unix seconds


@dataclass
class TokenBalanceEntry:
    account_index: int
    mint: str
    owner: str
    amount: str                      # raw base units, as the ledger reports it
    decimals: int


@dataclass
class TransactionDetail:
    signature: str
    slot: int = 0
    block_time: Optional[int] = None
    pre_token_balances: Optional[List[TokenBalanceEntry]] = field(default_factory=list)
    post_token_balances: Optional[List[TokenBalanceEntry]] = field(default_factory=list)


class LedgerGateway:
    """
    Narrow async contract over the remote ledger.

    Amounts crossing this boundary are integers in base units. Implementations
    own transport, timeouts and retries; failures surface as LedgerError (or a
    subclass) carrying one of the LedgerError codes. Signers are either a
    software Keypair or the connected WalletIdentity.
    """
    name: str = "base"

    async def get_balance(self, address: str) -> int:
        """Native balance in lamports."""
        raise NotImplementedError

    async def create_mint(
        self,
        payer: Keypair,
        mint_authority: str,
        freeze_authority: Optional[str],
        decimals: int,
    ) -> str:
        raise NotImplementedError

    async def get_or_create_holding_account(self, payer: Signer, mint: str, owner: str) -> HoldingAccount:
        raise NotImplementedError

    async def mint_to(self, authority: Keypair, mint: str, account: str, amount: int) -> str:
        raise NotImplementedError

    async def transfer(
        self,
        payer: Signer,
        source_account: str,
        dest_account: str,
        signer_owner: Signer,
        amount: int,
    ) -> str:
        raise NotImplementedError

    async def get_mint_info(self, mint: str) -> MintInfo:
        raise NotImplementedError

    async def get_account_info(self, account: str) -> HoldingAccount:
        raise NotImplementedError

    async def request_funding(self, keypair: Keypair) -> str:
        raise NotImplementedError

    async def get_signatures_for_address(self, address: str, limit: int) -> List[SignatureInfo]:
        """Most recent first."""
        raise NotImplementedError

    async def get_transaction_detail(self, signature: str) -> Optional[TransactionDetail]:
        """None when the transaction is unavailable."""
        raise NotImplementedError

    async def confirm_transaction(self, signature: str) -> bool:
        raise NotImplementedError

    async def close(self) -> None:
        return

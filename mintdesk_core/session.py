"""
mintdesk_core.session
---------------------
MintDeskSession wires the components together for one UI session and is
the surface the UI layer talks to:

- connect()/disconnect() a wallet; the reconciliation timer runs only
  while a wallet is connected and is cancelled on disconnect/close
- create/mint/transfer/add delegate to the TokenLifecycleManager
- a selected token and its current transaction list (never cached beyond
  the current view)
- registry snapshot, native balance and per-operation in-progress flags
"""

from __future__ import annotations
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, List, Optional

from mintdesk_core.config import MintDeskConfig, load_config
from mintdesk_core.crypto import Keypair, WalletIdentity
from mintdesk_core.errors import UnknownTokenError
from mintdesk_core.history import HistoryReconstructor, TransactionRecord
from mintdesk_core.ledger.ledger_base import LedgerGateway
from mintdesk_core.lifecycle import AddResult, CreateResult, MintResult, TokenLifecycleManager, TransferResult
from mintdesk_core.locks import TokenLocks
from mintdesk_core.logger import get_logger
from mintdesk_core.reconciler import BalanceReconciler, ReconcileReport
from mintdesk_core.registry import TokenRegistry
from mintdesk_core.storage import StorageProvider, load_storage_provider
from mintdesk_core.storage.models import TokenRecord
from mintdesk_core.utils import Amount, validate_address
from mintdesk_core.vault import KeyVault

log = get_logger("mintdesk.session")


@dataclass
class SessionView:
    wallet: Optional[str]
    native_balance: Optional[Decimal]
    tokens: List[TokenRecord] = field(default_factory=list)
    selected: Optional[str] = None
    transactions: List[TransactionRecord] = field(default_factory=list)
    in_progress: Dict[str, bool] = field(default_factory=dict)


class MintDeskSession:
    def __init__(
        self,
        ledger: LedgerGateway,
        storage: Optional[StorageProvider] = None,
        config: Optional[MintDeskConfig] = None,
    ):
        self.config = config or load_config()
        self.ledger = ledger
        self.storage = storage or load_storage_provider(self.config.to_dict())
        self.locks = TokenLocks()
        self.vault = KeyVault(self.storage)
        self.registry = TokenRegistry(self.storage)
        self.manager = TokenLifecycleManager(
            ledger, self.vault, self.registry, config=self.config, locks=self.locks,
        )
        self.reconciler = BalanceReconciler(
            ledger,
            self.registry,
            locks=self.locks,
            interval=self.config.reconcile_interval,
            wallet_provider=lambda: self.manager.wallet,
        )
        self.history = HistoryReconstructor(ledger, limit=self.config.history_limit)
        self.manager.after_change = self.reconciler.run_once
        self.selected: Optional[str] = None
        self.transactions: List[TransactionRecord] = []

    # ------------------------------------------------------------------
    # Wallet connection
    # ------------------------------------------------------------------
    @property
    def wallet(self) -> Optional[WalletIdentity]:
        return self.manager.wallet

    async def connect(self, wallet: WalletIdentity | str) -> None:
        if isinstance(wallet, str):
            wallet = WalletIdentity(wallet)
        if self.wallet is not None and self.wallet != wallet:
            await self.disconnect()
        self.manager.wallet = wallet
        log.info(f"[SESSION] wallet connected {wallet.public_id}")
        await self.reconciler.refresh_native_balance(wallet)
        self.reconciler.start()

    async def disconnect(self) -> None:
        try:
            await self.reconciler.stop()
        finally:
            if self.wallet is not None:
                log.info(f"[SESSION] wallet disconnected {self.wallet.public_id}")
            self.manager.wallet = None
            self.reconciler.native_balance = None
            self.transactions = []

    async def close(self) -> None:
        await self.disconnect()
        await self.ledger.close()
        self.storage.close()

    async def __aenter__(self) -> "MintDeskSession":
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------
    async def create_token(self, name: str, decimals: Optional[int] = None) -> CreateResult:
        result = await self.manager.create_token(name, decimals)
        self.selected = result.record.mint
        return result

    async def mint_tokens(self, amount: Amount, mint: Optional[str] = None) -> MintResult:
        return await self.manager.mint_tokens(self._target(mint), amount)

    async def transfer_tokens(self, recipient: str, amount: Amount, mint: Optional[str] = None) -> TransferResult:
        return await self.manager.transfer_tokens(self._target(mint), recipient, amount)

    async def add_existing_token(self, mint_address: str, display_name: str = "") -> AddResult:
        return await self.manager.add_existing_token(mint_address, display_name)

    async def reconcile(self) -> ReconcileReport:
        return await self.reconciler.run_once()

    def _target(self, mint: Optional[str]) -> str:
        mint = mint or self.selected
        if mint is None:
            raise UnknownTokenError("Please create or select a token first")
        return mint

    # ------------------------------------------------------------------
    # Selection and history
    # ------------------------------------------------------------------
    def select_token(self, mint: str) -> TokenRecord:
        validate_address(mint, "token address")
        record = self.registry.get(mint)
        if record is None:
            raise UnknownTokenError(f"Unknown token: {mint}")
        if mint != self.selected:
            self.transactions = []
        self.selected = mint
        return record

    async def load_history(self, mint: Optional[str] = None) -> List[TransactionRecord]:
        mint = self._target(mint)
        with self.manager.busy("history"):
            records = await self.history.reconstruct(mint)
        if mint == self.selected:
            self.transactions = records
        return records

    @staticmethod
    def generate_test_recipient() -> str:
        """A throwaway address for trying out transfers."""
        return Keypair.generate().public_id

    # ------------------------------------------------------------------
    # UI view
    # ------------------------------------------------------------------
    def view(self) -> SessionView:
        return SessionView(
            wallet=self.wallet.public_id if self.wallet else None,
            native_balance=self.reconciler.native_balance,
            tokens=self.registry.snapshot(),
            selected=self.selected,
            transactions=list(self.transactions),
            in_progress=self.manager.in_progress,
        )

"""
mintdesk_core.reconciler
------------------------
BalanceReconciler: re-derives cached supply/balance of every registered token
from the ledger.

A cycle works on a registry snapshot taken at its start. Each token is
refreshed under that token's lock, so it never interleaves with a lifecycle
operation on the same token. A failure for one token keeps that token's
cached values and does not stop the others. Running a cycle twice against an
unchanged ledger leaves the registry byte-identical.

start()/stop() manage a cancellable asyncio task that runs a cycle every
`interval` seconds while a wallet is connected and at least one token is
registered.
"""

from __future__ import annotations
import asyncio
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Callable, Dict, List, Optional, Tuple

from mintdesk_core.constants import LAMPORTS_PER_SOL, RECONCILE_INTERVAL_S
from mintdesk_core.crypto import WalletIdentity
from mintdesk_core.errors import LedgerError
from mintdesk_core.ledger.ledger_base import LedgerGateway
from mintdesk_core.locks import TokenLocks
from mintdesk_core.logger import get_logger
from mintdesk_core.registry import TokenRegistry
from mintdesk_core.storage.models import TokenRecord
from mintdesk_core.utils import from_base_units

log = get_logger("mintdesk.reconciler")


async def fetch_token_amounts(
    ledger: LedgerGateway,
    record: TokenRecord,
    account: str,
) -> Tuple[Decimal, Decimal]:
    """(supply, balance) of `account` as display amounts, using the mint's own decimals."""
    mint_info = await ledger.get_mint_info(record.mint)
    acc = await ledger.get_account_info(account)
    if mint_info.decimals != record.decimals:
        log.warning(
            f"[RECONCILE] decimals mismatch token={record.mint} "
            f"cached={record.decimals} ledger={mint_info.decimals}"
        )
    return (
        from_base_units(mint_info.supply, mint_info.decimals),
        from_base_units(acc.amount, mint_info.decimals),
    )


@dataclass
class ReconcileReport:
    refreshed: List[str] = field(default_factory=list)
    failed: Dict[str, str] = field(default_factory=dict)
    native_balance: Optional[Decimal] = None

    @property
    def ok(self) -> bool:
        return not self.failed


class BalanceReconciler:
    def __init__(
        self,
        ledger: LedgerGateway,
        registry: TokenRegistry,
        locks: Optional[TokenLocks] = None,
        interval: float = RECONCILE_INTERVAL_S,
        wallet_provider: Optional[Callable[[], Optional[WalletIdentity]]] = None,
    ):
        self.ledger = ledger
        self.registry = registry
        self.locks = locks or TokenLocks()
        self.interval = interval
        self.wallet_provider = wallet_provider or (lambda: None)
        self.native_balance: Optional[Decimal] = None
        self.last_report: Optional[ReconcileReport] = None
        self._task: Optional[asyncio.Task] = None

    # ------------------------------------------------------------------
    # One cycle
    # ------------------------------------------------------------------
    async def refresh_native_balance(self, wallet: WalletIdentity) -> Optional[Decimal]:
        try:
            lamports = await self.ledger.get_balance(wallet.public_id)
        except LedgerError as e:
            log.warning(f"[RECONCILE] native balance fetch failed wallet={wallet.public_id}: {e}")
            return self.native_balance
        self.native_balance = Decimal(lamports) / LAMPORTS_PER_SOL
        return self.native_balance

    async def _reconcile_token(self, wallet: WalletIdentity, record: TokenRecord, report: ReconcileReport) -> None:
        async with self.locks.get(record.mint):
            try:
                account = await self.ledger.get_or_create_holding_account(wallet, record.mint, wallet.public_id)
                supply, balance = await fetch_token_amounts(self.ledger, record, account.address)
            except LedgerError as e:
                # keep the cached values for this token, carry on with the rest
                log.warning(f"[RECONCILE] token={record.mint} kept cached values: {e}")
                report.failed[record.mint] = str(e)
                return
            self.registry.update(record.mint, supply=supply, balance=balance)
            report.refreshed.append(record.mint)

    async def run_once(self) -> ReconcileReport:
        report = ReconcileReport()
        wallet = self.wallet_provider()
        if wallet is None:
            return report

        report.native_balance = await self.refresh_native_balance(wallet)
        snapshot = self.registry.snapshot()
        if snapshot:
            await asyncio.gather(*(self._reconcile_token(wallet, rec, report) for rec in snapshot))
        log.info(f"[RECONCILE] refreshed={len(report.refreshed)} failed={len(report.failed)}")
        self.last_report = report
        return report

    # ------------------------------------------------------------------
    # Timer
    # ------------------------------------------------------------------
    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def _should_run(self) -> bool:
        return self.wallet_provider() is not None and len(self.registry) > 0

    async def _tick(self) -> None:
        if self._should_run():
            await self.run_once()
        elif self.wallet_provider() is not None:
            await self.refresh_native_balance(self.wallet_provider())

    async def _loop(self) -> None:
        while True:
            try:
                await self._tick()
            except Exception:
                # a failed cycle must not end the timer; the next tick retries
                log.exception("[RECONCILE] cycle failed")
            await asyncio.sleep(self.interval)

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.get_running_loop().create_task(self._loop())
        log.info(f"[RECONCILE] timer started interval={self.interval}s")

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        except Exception:
            log.exception("[RECONCILE] timer ended with an error")
        log.info("[RECONCILE] timer stopped")

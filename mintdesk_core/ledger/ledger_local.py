# mintdesk_core/ledger/ledger_local.py
"""
In-process ledger implementing LedgerGateway.

Models what the lifecycle manager depends on: lamport balances with fees and
rent, a rate-limited faucet, mints with authorities, holding accounts keyed
by (owner, mint), and a signature log with pre/post token-balance snapshots.

Snapshot convention: a transaction's pre/post token balances list the token
accounts it touched that held a non-zero balance at that point, in the order
they were touched. A first mint into an empty account therefore shows (0, 1)
entries and a transfer into a fresh account (1, 2).
"""
from __future__ import annotations
import asyncio, copy, os, time
from collections import Counter
from typing import Dict, List, Optional, Set, Tuple

from mintdesk_core.constants import LAMPORTS_PER_SOL
from mintdesk_core.crypto import Keypair, Signer
from mintdesk_core.errors import AccountNotFoundError, LedgerError
from mintdesk_core.ledger.ledger_base import (
    HoldingAccount,
    LedgerGateway,
    MintInfo,
    SignatureInfo,
    TokenBalanceEntry,
    TransactionDetail,
)
from mintdesk_core.logger import get_logger
from mintdesk_core.utils import b58e, sha256, validate_address

log = get_logger("mintdesk.ledger.local")

FEE_LAMPORTS = 5_000
MINT_RENT_LAMPORTS = 1_461_600
ACCOUNT_RENT_LAMPORTS = 2_039_280


class LocalLedger(LedgerGateway):
    name = "local"

    def __init__(
        self,
        airdrop_lamports: int = LAMPORTS_PER_SOL,
        airdrop_limit: Optional[int] = None,
        strict_authority: bool = False,
        latency: float = 0.0,
    ):
        self.airdrop_lamports = airdrop_lamports
        self.airdrop_limit = airdrop_limit
        # when False, a mint_to signed by a different keypair reassigns the
        # mint authority to it instead of failing
        self.strict_authority = strict_authority
        self.latency = latency

        self.lamports: Dict[str, int] = {}
        self.mints: Dict[str, MintInfo] = {}
        self.accounts: Dict[str, HoldingAccount] = {}
        self._account_index: Dict[Tuple[str, str], str] = {}
        self._txs: Dict[str, TransactionDetail] = {}
        self._tx_refs: List[Tuple[str, Set[str]]] = []
        self._dropped: Set[str] = set()
        self._failures: Dict[str, List[Exception]] = {}
        self._airdrops = 0
        self._slot = 0
        self._genesis = int(time.time())
        self.calls: Counter = Counter()

    # ------------------------------------------------------------------
    # Test / setup helpers
    # ------------------------------------------------------------------
    def fund(self, address: str, lamports: int) -> None:
        self.lamports[address] = self.lamports.get(address, 0) + lamports

    def fail_next(self, op: str, error: Exception, times: int = 1) -> None:
        """Make the next `times` calls to `op` raise `error`."""
        self._failures.setdefault(op, []).extend([error] * times)

    def drop_transaction(self, signature: str) -> None:
        """Make a recorded transaction's detail unavailable."""
        self._dropped.add(signature)

    def token_balance(self, owner: str, mint: str) -> int:
        addr = self._account_index.get((owner, mint))
        return self.accounts[addr].amount if addr else 0

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------
    async def _enter(self, op: str) -> None:
        self.calls[op] += 1
        await asyncio.sleep(self.latency)
        pending = self._failures.get(op)
        if pending:
            raise pending.pop(0)

    def _charge(self, signer: Signer, lamports: int) -> None:
        have = self.lamports.get(signer.public_id, 0)
        if have < lamports:
            raise LedgerError(
                f"Transaction simulation failed: insufficient funds for fee "
                f"(payer {signer.public_id} has {have}, needs {lamports})",
                code=LedgerError.INSUFFICIENT_FUNDS,
            )
        self.lamports[signer.public_id] = have - lamports

    def _snapshot(self, accounts: List[str]) -> List[TokenBalanceEntry]:
        entries = []
        for addr in accounts:
            acc = self.accounts[addr]
            if acc.amount:
                entries.append(TokenBalanceEntry(
                    account_index=len(entries),
                    mint=acc.mint,
                    owner=acc.owner,
                    amount=str(acc.amount),
                    decimals=self.mints[acc.mint].decimals,
                ))
        return entries

    def _record(self, refs: Set[str], pre=None, post=None) -> str:
        self._slot += 1
        sig = b58e(os.urandom(64))
        self._txs[sig] = TransactionDetail(
            signature=sig,
            slot=self._slot,
            block_time=self._genesis + self._slot,
            pre_token_balances=pre if pre is not None else [],
            post_token_balances=post if post is not None else [],
        )
        self._tx_refs.append((sig, refs))
        return sig

    def _get_mint(self, mint: str) -> MintInfo:
        info = self.mints.get(mint)
        if info is None:
            raise AccountNotFoundError(f"Mint not found: {mint}")
        return info

    def _get_account(self, account: str) -> HoldingAccount:
        acc = self.accounts.get(account)
        if acc is None:
            raise AccountNotFoundError(f"TokenAccountNotFoundError: {account}")
        return acc

    # ------------------------------------------------------------------
    # LedgerGateway
    # ------------------------------------------------------------------
    async def get_balance(self, address: str) -> int:
        await self._enter("get_balance")
        return self.lamports.get(address, 0)

    async def create_mint(self, payer, mint_authority, freeze_authority, decimals) -> str:
        await self._enter("create_mint")
        self._charge(payer, FEE_LAMPORTS + MINT_RENT_LAMPORTS)
        mint = b58e(os.urandom(32))
        self.mints[mint] = MintInfo(
            address=mint,
            decimals=decimals,
            supply=0,
            mint_authority=mint_authority,
            freeze_authority=freeze_authority,
        )
        self._record({mint, payer.public_id})
        log.debug(f"[LOCAL] create_mint {mint} decimals={decimals}")
        return mint

    async def get_or_create_holding_account(self, payer, mint, owner) -> HoldingAccount:
        await self._enter("get_or_create_holding_account")
        self._get_mint(mint)
        validate_address(owner, "owner address")
        addr = self._account_index.get((owner, mint))
        if addr is None:
            self._charge(payer, FEE_LAMPORTS + ACCOUNT_RENT_LAMPORTS)
            addr = b58e(bytes.fromhex(sha256(f"{owner}:{mint}".encode("utf-8"))))
            self.accounts[addr] = HoldingAccount(address=addr, mint=mint, owner=owner)
            self._account_index[(owner, mint)] = addr
            self._record({mint, owner, addr, payer.public_id})
        return copy.copy(self.accounts[addr])

    async def mint_to(self, authority: Keypair, mint, account, amount) -> str:
        await self._enter("mint_to")
        info = self._get_mint(mint)
        acc = self._get_account(account)
        if acc.mint != mint:
            raise LedgerError(f"Account {account} does not hold mint {mint}", code=LedgerError.ACCOUNT_NOT_FOUND)
        if info.mint_authority != authority.public_id:
            if self.strict_authority:
                raise LedgerError(
                    f"{authority.public_id} is not the mint authority of {mint}",
                    code=LedgerError.AUTHORITY_MISMATCH,
                )
            log.info(f"[LOCAL] mint authority of {mint} reassigned to {authority.public_id}")
            info.mint_authority = authority.public_id
        self._charge(authority, FEE_LAMPORTS)
        pre = self._snapshot([account])
        acc.amount += amount
        info.supply += amount
        post = self._snapshot([account])
        return self._record({mint, account, acc.owner, authority.public_id}, pre, post)

    async def transfer(self, payer, source_account, dest_account, signer_owner, amount) -> str:
        await self._enter("transfer")
        src = self._get_account(source_account)
        dst = self._get_account(dest_account)
        if src.mint != dst.mint:
            raise LedgerError("Account mint mismatch", code=LedgerError.ACCOUNT_NOT_FOUND)
        if src.owner != signer_owner.public_id:
            raise LedgerError("Owner does not match", code=LedgerError.OWNER_MISMATCH)
        if src.amount < amount:
            raise LedgerError(
                f"Insufficient token balance: account holds {src.amount}, needs {amount}",
                code=LedgerError.INSUFFICIENT_TOKENS,
            )
        self._charge(payer, FEE_LAMPORTS)
        touched = [source_account, dest_account]
        pre = self._snapshot(touched)
        src.amount -= amount
        dst.amount += amount
        post = self._snapshot(touched)
        return self._record({src.mint, source_account, dest_account, src.owner, dst.owner}, pre, post)

    async def get_mint_info(self, mint: str) -> MintInfo:
        await self._enter("get_mint_info")
        return copy.copy(self._get_mint(mint))

    async def get_account_info(self, account: str) -> HoldingAccount:
        await self._enter("get_account_info")
        return copy.copy(self._get_account(account))

    async def request_funding(self, keypair: Keypair) -> str:
        await self._enter("request_funding")
        if self.airdrop_limit is not None and self._airdrops >= self.airdrop_limit:
            raise LedgerError("429 Too Many Requests: airdrop limit reached", code=LedgerError.RATE_LIMITED)
        self._airdrops += 1
        self.fund(keypair.public_id, self.airdrop_lamports)
        return self._record({keypair.public_id})

    async def get_signatures_for_address(self, address: str, limit: int) -> List[SignatureInfo]:
        await self._enter("get_signatures_for_address")
        out = []
        for sig, refs in reversed(self._tx_refs):
            if len(out) >= limit:
                break
            if address in refs:
                tx = self._txs[sig]
                out.append(SignatureInfo(signature=sig, slot=tx.slot, block_time=tx.block_time))
        return out

    async def get_transaction_detail(self, signature: str) -> Optional[TransactionDetail]:
        await self._enter("get_transaction_detail")
        if signature in self._dropped:
            return None
        tx = self._txs.get(signature)
        return copy.deepcopy(tx) if tx else None

    async def confirm_transaction(self, signature: str) -> bool:
        await self._enter("confirm_transaction")
        return signature in self._txs

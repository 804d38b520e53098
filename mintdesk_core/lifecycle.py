"""
mintdesk_core.lifecycle
-----------------------
TokenLifecycleManager: create, mint, transfer and add-existing operations
for the connected wallet, and the per-token authority state machine:

    UNINITIALIZED -> CREATING -> ACTIVE_AUTHORITY_KNOWN
                                 ACTIVE_AUTHORITY_LOST      (no usable key in the vault)
                                 ACTIVE_AUTHORITY_RECOVERED (a new key was regenerated)

Inputs are validated before any ledger call. LedgerError codes are translated
into FundsError / RateLimitError / DestinationAccountError so callers can act
on them. Writes to a token's record or authority key happen under that
token's lock.
"""

from __future__ import annotations
from collections import Counter
from contextlib import contextmanager
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Awaitable, Callable, Dict, List, Optional, Set, Tuple

from mintdesk_core.config import MintDeskConfig
from mintdesk_core.constants import LAMPORTS_PER_SOL
from mintdesk_core.crypto import Keypair, WalletIdentity
from mintdesk_core.errors import (
    AccountNotFoundError,
    AuthorityLostError,
    DestinationAccountError,
    InsufficientBalanceError,
    InsufficientFeeBalanceError,
    InsufficientTokenBalanceError,
    InvalidAddressError,
    LedgerError,
    NetworkError,
    RateLimitError,
    UnknownTokenError,
    ValidationError,
    WalletNotConnectedError,
)
from mintdesk_core.ledger.ledger_base import LedgerGateway
from mintdesk_core.locks import TokenLocks
from mintdesk_core.logger import get_logger
from mintdesk_core.reconciler import fetch_token_amounts
from mintdesk_core.registry import TokenRegistry
from mintdesk_core.storage.models import TokenRecord
from mintdesk_core.utils import (
    Amount,
    from_base_units,
    require_positive,
    to_base_units,
    validate_address,
    validate_decimals,
)
from mintdesk_core.vault import KeyVault

log = get_logger("mintdesk.lifecycle")

OPERATIONS = ("create", "mint", "transfer", "add", "history")


class TokenState(str, Enum):
    UNINITIALIZED = "uninitialized"
    CREATING = "creating"
    ACTIVE_AUTHORITY_KNOWN = "active:authority_known"
    ACTIVE_AUTHORITY_LOST = "active:authority_lost"
    ACTIVE_AUTHORITY_RECOVERED = "active:authority_recovered"


@dataclass
class CreateResult:
    record: TokenRecord
    authority: str
    holding_account: str


@dataclass
class MintResult:
    record: TokenRecord
    signature: str
    amount: Decimal
    base_units: int
    authority: str
    authority_recovered: bool = False
    warnings: List[AuthorityLostError] = field(default_factory=list)

    @property
    def degraded(self) -> bool:
        return bool(self.warnings)


@dataclass
class TransferResult:
    record: TokenRecord
    signature: str
    amount: Decimal
    base_units: int
    recipient: str
    source_account: str
    destination_account: str
    payer: str


@dataclass
class AddResult:
    record: TokenRecord
    added: bool
    message: str


class TokenLifecycleManager:
    def __init__(
        self,
        ledger: LedgerGateway,
        vault: KeyVault,
        registry: TokenRegistry,
        config: Optional[MintDeskConfig] = None,
        locks: Optional[TokenLocks] = None,
        wallet: Optional[WalletIdentity] = None,
    ):
        self.ledger = ledger
        self.vault = vault
        self.registry = registry
        self.config = config or MintDeskConfig()
        self.locks = locks or TokenLocks()
        self.wallet = wallet
        # awaited after a successful mint/transfer (e.g. a full reconciliation)
        self.after_change: Optional[Callable[[], Awaitable[object]]] = None
        self._states: Dict[str, TokenState] = {}
        self._busy: Counter = Counter()
        # mints whose regenerated authority has not been funded yet
        self._unfunded: Set[str] = set()

    # ------------------------------------------------------------------
    # State and flags
    # ------------------------------------------------------------------
    def state_of(self, mint: str) -> TokenState:
        state = self._states.get(mint)
        if state is not None:
            return state
        if mint not in self.registry:
            return TokenState.UNINITIALIZED
        if self.vault.has_key(mint):
            return TokenState.ACTIVE_AUTHORITY_KNOWN
        return TokenState.ACTIVE_AUTHORITY_LOST

    def _set_state(self, mint: str, state: TokenState) -> None:
        previous = self.state_of(mint)
        self._states[mint] = state
        if previous != state:
            log.info(f"[STATE] token={mint} {previous.value} -> {state.value}")

    def is_busy(self, op: str) -> bool:
        return self._busy[op] > 0

    @property
    def in_progress(self) -> Dict[str, bool]:
        return {op: self.is_busy(op) for op in OPERATIONS}

    @contextmanager
    def busy(self, op: str):
        self._busy[op] += 1
        try:
            yield
        finally:
            self._busy[op] -= 1

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _require_wallet(self) -> WalletIdentity:
        if self.wallet is None:
            raise WalletNotConnectedError("Please connect your wallet")
        return self.wallet

    def _require_token(self, mint: str) -> TokenRecord:
        record = self.registry.get(mint)
        if record is None:
            raise UnknownTokenError(f"Unknown token: {mint}")
        return record

    @staticmethod
    def _translate(err: LedgerError) -> Exception:
        if err.code == LedgerError.RATE_LIMITED:
            return RateLimitError(str(err))
        if err.code == LedgerError.INSUFFICIENT_FUNDS:
            return InsufficientFeeBalanceError(f"Insufficient SOL for transaction fees: {err}")
        if err.code == LedgerError.INSUFFICIENT_TOKENS:
            return InsufficientTokenBalanceError(f"Insufficient token balance for transfer: {err}")
        return err

    def _raise_translated(self, err: LedgerError, tag: str):
        translated = self._translate(err)
        if isinstance(translated, RateLimitError):
            log.warning(f"[{tag}] rate limited: {err}")
        else:
            log.error(f"[{tag}] failed: {err}")
        if translated is err:
            raise err
        raise translated from err

    async def _fund(self, keypair: Keypair) -> None:
        sig = await self.ledger.request_funding(keypair)
        await self.ledger.confirm_transaction(sig)

    async def _refresh(self, record: TokenRecord, account: str) -> TokenRecord:
        """Post-operation refresh of the caller's cached supply/balance; failure keeps the cache."""
        try:
            supply, balance = await fetch_token_amounts(self.ledger, record, account)
        except LedgerError as e:
            log.warning(f"[REFRESH] token={record.mint} kept cached values: {e}")
            return self.registry.get(record.mint)
        return self.registry.update(record.mint, supply=supply, balance=balance)

    async def _after_change(self) -> None:
        if self.after_change is not None:
            await self.after_change()

    # ------------------------------------------------------------------
    # createToken
    # ------------------------------------------------------------------
    async def create_token(self, name: str, decimals: Optional[int] = None) -> CreateResult:
        name = (name or "").strip()
        if not name:
            raise ValidationError("Please enter a token name")
        decimals = validate_decimals(self.config.default_decimals if decimals is None else decimals)
        wallet = self._require_wallet()

        with self.busy("create"):
            lamports = await self.ledger.get_balance(wallet.public_id)
            threshold = self.native_balance_threshold()
            if lamports < threshold:
                log.warning(f"[CREATE] wallet={wallet.public_id} balance={lamports} below {threshold} lamports")
                raise InsufficientBalanceError(
                    f"Insufficient SOL balance. You need at least "
                    f"{self.config.min_creation_balance} SOL to create a token.",
                    remedy=f"Get test SOL from https://faucet.solana.com or `solana airdrop 1 {wallet.public_id}`.",
                )

            authority = Keypair.generate()
            try:
                await self._fund(authority)
                mint = await self.ledger.create_mint(authority, authority.public_id, authority.public_id, decimals)
            except LedgerError as e:
                self._raise_translated(e, "CREATE")

            async with self.locks.get(mint):
                self._set_state(mint, TokenState.CREATING)
                # persist before anything else can fail: the mint now exists on the ledger
                self.vault.store(mint, authority)
                try:
                    account = await self.ledger.get_or_create_holding_account(authority, mint, wallet.public_id)
                except LedgerError as e:
                    # not registered; add_existing_token can pick the mint up later
                    self._states.pop(mint, None)
                    self._raise_translated(e, "CREATE")
                record = TokenRecord(mint=mint, name=name, decimals=decimals)
                self.registry.add(record)
                self._set_state(mint, TokenState.ACTIVE_AUTHORITY_KNOWN)

        self.registry.storage.log_event("token.created", {"mint": mint, "name": name, "decimals": decimals})
        log.info(f"[CREATE] token={mint} name={name!r} decimals={decimals}")
        return CreateResult(record=self.registry.get(mint), authority=authority.public_id, holding_account=account.address)

    # ------------------------------------------------------------------
    # mintTokens
    # ------------------------------------------------------------------
    async def _resolve_authority(self, mint: str) -> Tuple[Keypair, bool]:
        """
        Stored authority, or a regenerated (and funded) one. Caller holds the token lock.

        A regenerated key whose funding failed stays stored but is marked
        unfunded; the next resolve funds it before it signs anything.
        """
        authority = self.vault.retrieve(mint)
        if authority is not None and mint not in self._unfunded:
            if self._states.get(mint) != TokenState.ACTIVE_AUTHORITY_RECOVERED:
                self._set_state(mint, TokenState.ACTIVE_AUTHORITY_KNOWN)
            return authority, False

        if authority is None:
            self._set_state(mint, TokenState.ACTIVE_AUTHORITY_LOST)
            log.warning(f"[MINT] no usable authority for token={mint}, regenerating")
            authority = self.vault.regenerate(mint)
            self._unfunded.add(mint)
        else:
            log.info(f"[MINT] retrying funding of regenerated authority token={mint}")

        try:
            await self._fund(authority)
        except LedgerError as e:
            self._raise_translated(e, "MINT")
        self._unfunded.discard(mint)
        self._set_state(mint, TokenState.ACTIVE_AUTHORITY_RECOVERED)
        return authority, True

    async def mint_tokens(self, mint: str, amount: Amount) -> MintResult:
        value = require_positive(amount)
        wallet = self._require_wallet()
        record = self._require_token(mint)
        base_units = to_base_units(value, record.decimals)

        with self.busy("mint"):
            async with self.locks.get(mint):
                authority, recovered = await self._resolve_authority(mint)
                try:
                    account = await self.ledger.get_or_create_holding_account(authority, mint, wallet.public_id)
                    signature = await self.ledger.mint_to(authority, mint, account.address, base_units)
                except LedgerError as e:
                    self._raise_translated(e, "MINT")
                await self._refresh(record, account.address)

            self.registry.storage.log_event("token.minted", {
                "mint": mint, "amount": str(value), "signature": signature, "recovered": recovered,
            })
            log.info(f"[MINT] token={mint} amount={value} signature={signature}")
            await self._after_change()

        warnings = []
        if recovered:
            warnings.append(AuthorityLostError(
                f"Mint authority for {mint} was not found and has been regenerated"
            ))
        return MintResult(
            record=self.registry.get(mint),
            signature=signature,
            amount=value,
            base_units=base_units,
            authority=authority.public_id,
            authority_recovered=recovered,
            warnings=warnings,
        )

    # ------------------------------------------------------------------
    # transferTokens
    # ------------------------------------------------------------------
    async def transfer_tokens(self, mint: str, recipient: str, amount: Amount) -> TransferResult:
        validate_address(recipient, "recipient address")
        value = require_positive(amount)
        wallet = self._require_wallet()
        record = self._require_token(mint)
        base_units = to_base_units(value, record.decimals)

        with self.busy("transfer"):
            async with self.locks.get(mint):
                # the mint authority pays for account creation when we hold a funded one
                authority = None if mint in self._unfunded else self.vault.retrieve(mint)
                payer = authority or wallet
                try:
                    source = await self.ledger.get_or_create_holding_account(payer, mint, wallet.public_id)
                except LedgerError as e:
                    self._raise_translated(e, "TRANSFER")

                try:
                    dest = await self.ledger.get_or_create_holding_account(payer, mint, recipient)
                except LedgerError as e:
                    if e.code == LedgerError.INSUFFICIENT_FUNDS:
                        self._raise_translated(e, "TRANSFER")
                    log.error(f"[TRANSFER] recipient account creation failed token={mint}: {e}")
                    raise DestinationAccountError(
                        f"Error creating recipient token account: {e}", code=e.code
                    ) from e

                try:
                    signature = await self.ledger.transfer(payer, source.address, dest.address, wallet, base_units)
                    confirmed = await self.ledger.confirm_transaction(signature)
                except LedgerError as e:
                    self._raise_translated(e, "TRANSFER")
                if not confirmed:
                    log.error(f"[TRANSFER] not confirmed signature={signature}")
                    raise NetworkError(f"Transaction {signature} was not confirmed")

                await self._refresh(record, source.address)

            self.registry.storage.log_event("token.transferred", {
                "mint": mint, "amount": str(value), "recipient": recipient, "signature": signature,
            })
            log.info(f"[TRANSFER] token={mint} amount={value} to={recipient} signature={signature}")
            await self._after_change()

        return TransferResult(
            record=self.registry.get(mint),
            signature=signature,
            amount=value,
            base_units=base_units,
            recipient=recipient,
            source_account=source.address,
            destination_account=dest.address,
            payer=payer.public_id,
        )

    # ------------------------------------------------------------------
    # addExistingToken
    # ------------------------------------------------------------------
    async def add_existing_token(self, mint_address: str, display_name: str = "") -> AddResult:
        mint = validate_address(mint_address, "token address")
        wallet = self._require_wallet()

        with self.busy("add"):
            existing = self.registry.get(mint)
            if existing is not None:
                log.info(f"[ADD] token={mint} already registered")
                return AddResult(record=existing, added=False, message="Token already in your registry")

            async with self.locks.get(mint):
                try:
                    mint_info = await self.ledger.get_mint_info(mint)
                except AccountNotFoundError as e:
                    raise InvalidAddressError(f"Invalid token address: no mint at {mint}") from e
                except LedgerError as e:
                    self._raise_translated(e, "ADD")
                try:
                    account = await self.ledger.get_or_create_holding_account(wallet, mint, wallet.public_id)
                    acc = await self.ledger.get_account_info(account.address)
                except LedgerError as e:
                    self._raise_translated(e, "ADD")

                name = (display_name or "").strip() or f"Token {len(self.registry) + 1}"
                record = TokenRecord(
                    mint=mint,
                    name=name,
                    decimals=mint_info.decimals,
                    supply=from_base_units(mint_info.supply, mint_info.decimals),
                    balance=from_base_units(acc.amount, mint_info.decimals),
                )
                added = self.registry.add(record)

        if not added:
            return AddResult(record=self.registry.get(mint), added=False, message="Token already in your registry")
        log.info(f"[ADD] token={mint} name={name!r} state={self.state_of(mint).value}")
        return AddResult(record=self.registry.get(mint), added=True, message="Token added successfully")

    def native_balance_threshold(self) -> int:
        """Creation threshold in lamports."""
        return int(self.config.min_creation_balance * LAMPORTS_PER_SOL)

import asyncio
from decimal import Decimal

import pytest

from mintdesk_core.constants import LAMPORTS_PER_SOL
from mintdesk_core.crypto import Keypair, WalletIdentity
from mintdesk_core.errors import (
    AuthorityLostError,
    DestinationAccountError,
    InsufficientBalanceError,
    InsufficientFeeBalanceError,
    InsufficientTokenBalanceError,
    InvalidAddressError,
    InvalidAmountError,
    LedgerError,
    RateLimitError,
    UnknownTokenError,
    ValidationError,
    WalletNotConnectedError,
)
from mintdesk_core.ledger import LocalLedger
from mintdesk_core.lifecycle import TokenLifecycleManager, TokenState
from mintdesk_core.reconciler import BalanceReconciler
from mintdesk_core.registry import TokenRegistry
from mintdesk_core.vault import KeyVault


def _ledger_calls(ledger):
    return sum(ledger.calls.values())


def test_create_rejects_low_balance_before_ledger_write(manager, ledger, wallet):
    ledger.lamports[wallet.public_id] = LAMPORTS_PER_SOL // 100 - 1

    async def scenario():
        with pytest.raises(InsufficientBalanceError) as exc:
            await manager.create_token("Gold")
        assert "faucet" in exc.value.remedy

    asyncio.run(scenario())
    assert ledger.calls["create_mint"] == 0
    assert ledger.calls["request_funding"] == 0
    assert len(manager.registry) == 0


def test_create_validation(manager, ledger, storage):
    async def scenario():
        with pytest.raises(ValidationError):
            await manager.create_token("   ")
        with pytest.raises(InvalidAmountError):
            await manager.create_token("Gold", decimals=12)
        orphan = TokenLifecycleManager(ledger, KeyVault(storage), TokenRegistry(storage))
        with pytest.raises(WalletNotConnectedError):
            await orphan.create_token("Gold")

    asyncio.run(scenario())
    assert _ledger_calls(ledger) == 0


def test_create_token(manager, ledger, storage, wallet):
    async def scenario():
        result = await manager.create_token("Gold", decimals=9)
        rec = result.record
        assert (rec.name, rec.decimals, rec.supply, rec.balance) == ("Gold", 9, 0, 0)
        assert manager.vault.retrieve(rec.mint).public_id == result.authority
        info = await ledger.get_mint_info(rec.mint)
        assert info.mint_authority == info.freeze_authority == result.authority
        assert ledger.accounts[result.holding_account].owner == wallet.public_id
        assert manager.state_of(rec.mint) == TokenState.ACTIVE_AUTHORITY_KNOWN
        return rec

    rec = asyncio.run(scenario())
    assert len(manager.registry) == 1
    assert ("token.created", {"mint": rec.mint, "name": "Gold", "decimals": 9}) in storage.audit


def test_create_rate_limited_aborts(wallet, storage, caplog):
    ledger = LocalLedger(airdrop_limit=0)
    ledger.fund(wallet.public_id, LAMPORTS_PER_SOL)
    manager = TokenLifecycleManager(ledger, KeyVault(storage), TokenRegistry(storage), wallet=wallet)

    async def scenario():
        with pytest.raises(RateLimitError) as exc:
            await manager.create_token("Gold")
        assert "alternate source" in exc.value.remedy

    asyncio.run(scenario())
    assert ledger.calls["create_mint"] == 0
    assert len(manager.registry) == 0
    assert "rate limited" in caplog.text
    assert not [r for r in caplog.records if r.levelname == "ERROR"]


def test_mint_rejects_non_positive_without_ledger(manager, ledger):
    async def scenario():
        rec = (await manager.create_token("Gold")).record
        before = _ledger_calls(ledger)
        for bad in [0, -5, "0", "-0.1"]:
            with pytest.raises(InvalidAmountError):
                await manager.mint_tokens(rec.mint, bad)
        with pytest.raises(InvalidAmountError):
            await manager.mint_tokens(rec.mint, "0.0000000001")
        assert _ledger_calls(ledger) == before

        with pytest.raises(UnknownTokenError):
            await manager.mint_tokens(Keypair.generate().public_id, 1)

    asyncio.run(scenario())


def test_mint_roundtrip_exact_for_each_precision(manager, ledger, wallet):
    async def scenario():
        for decimals in (0, 2, 6, 9):
            rec = (await manager.create_token(f"T{decimals}", decimals=decimals)).record
            amount = Decimal(123456789) / (Decimal(10) ** decimals)
            result = await manager.mint_tokens(rec.mint, amount)
            assert result.base_units == 123456789
            assert not result.degraded
            assert result.record.balance == amount
            assert result.record.supply == amount
            assert ledger.token_balance(wallet.public_id, rec.mint) == 123456789

    asyncio.run(scenario())


def test_mint_insufficient_fee_balance(manager, ledger):
    async def scenario():
        created = await manager.create_token("Gold")
        ledger.lamports[created.authority] = 0
        with pytest.raises(InsufficientFeeBalanceError) as exc:
            await manager.mint_tokens(created.record.mint, 1)
        assert isinstance(exc.value.__cause__, LedgerError)

    asyncio.run(scenario())


def test_mint_regenerates_lost_authority(manager, ledger, storage, wallet):
    async def scenario():
        rec = (await manager.create_token("Gold")).record
        await manager.mint_tokens(rec.mint, 100)
        original = manager.vault.retrieve(rec.mint)

        # another device: same registry, no key
        del storage.keys[rec.mint]
        other = TokenLifecycleManager(ledger, KeyVault(storage), TokenRegistry(storage), wallet=wallet)
        assert other.state_of(rec.mint) == TokenState.ACTIVE_AUTHORITY_LOST

        result = await other.mint_tokens(rec.mint, 50)
        assert result.authority_recovered
        assert result.degraded
        assert isinstance(result.warnings[0], AuthorityLostError)
        assert result.authority != original.public_id
        assert other.vault.retrieve(rec.mint).public_id == result.authority
        assert other.state_of(rec.mint) == TokenState.ACTIVE_AUTHORITY_RECOVERED
        assert result.record.balance == 150
        assert result.record.supply == 150

        # recovered key is used from now on, without another regeneration
        again = await other.mint_tokens(rec.mint, 1)
        assert not again.authority_recovered
        assert again.authority == result.authority
        assert other.state_of(rec.mint) == TokenState.ACTIVE_AUTHORITY_RECOVERED

    asyncio.run(scenario())


def test_regenerated_authority_rejected_by_strict_ledger(wallet, storage):
    ledger = LocalLedger(strict_authority=True)
    ledger.fund(wallet.public_id, LAMPORTS_PER_SOL)
    manager = TokenLifecycleManager(ledger, KeyVault(storage), TokenRegistry(storage), wallet=wallet)

    async def scenario():
        rec = (await manager.create_token("Gold")).record
        del storage.keys[rec.mint]
        with pytest.raises(LedgerError) as exc:
            await manager.mint_tokens(rec.mint, 1)
        assert exc.value.code == LedgerError.AUTHORITY_MISMATCH

    asyncio.run(scenario())


def test_transfer_tokens(manager, ledger, wallet):
    recipient = Keypair.generate().public_id

    async def scenario():
        created = await manager.create_token("Gold")
        mint = created.record.mint
        await manager.mint_tokens(mint, 100)
        result = await manager.transfer_tokens(mint, recipient, 40)
        assert result.record.balance == 60
        assert result.record.supply == 100
        assert result.payer == created.authority
        assert ledger.token_balance(recipient, mint) == 40 * 10 ** 9
        assert ledger.calls["confirm_transaction"] >= 1

    asyncio.run(scenario())


def test_transfer_validation_before_ledger(manager, ledger):
    async def scenario():
        mint = (await manager.create_token("Gold")).record.mint
        before = _ledger_calls(ledger)
        with pytest.raises(InvalidAddressError):
            await manager.transfer_tokens(mint, "not-an-address", 1)
        with pytest.raises(InvalidAmountError):
            await manager.transfer_tokens(mint, Keypair.generate().public_id, 0)
        assert _ledger_calls(ledger) == before

    asyncio.run(scenario())


def test_transfer_insufficient_tokens(manager):
    async def scenario():
        mint = (await manager.create_token("Gold")).record.mint
        await manager.mint_tokens(mint, 10)
        with pytest.raises(InsufficientTokenBalanceError):
            await manager.transfer_tokens(mint, Keypair.generate().public_id, 20)

    asyncio.run(scenario())


def test_transfer_destination_failure(manager, ledger):
    recipient = Keypair.generate().public_id
    real = ledger.get_or_create_holding_account

    async def flaky(payer, mint, owner):
        if owner == recipient:
            raise LedgerError("TokenAccountNotFoundError", code=LedgerError.ACCOUNT_NOT_FOUND)
        return await real(payer, mint, owner)

    async def scenario():
        mint = (await manager.create_token("Gold")).record.mint
        await manager.mint_tokens(mint, 10)
        ledger.get_or_create_holding_account = flaky
        with pytest.raises(DestinationAccountError) as exc:
            await manager.transfer_tokens(mint, recipient, 1)
        assert "enough SOL" in exc.value.remedy
        assert ledger.calls["transfer"] == 0

    asyncio.run(scenario())


def test_transfer_fee_failure(manager, ledger):
    async def scenario():
        created = await manager.create_token("Gold")
        await manager.mint_tokens(created.record.mint, 10)
        ledger.lamports[created.authority] = 0
        with pytest.raises(InsufficientFeeBalanceError):
            await manager.transfer_tokens(created.record.mint, Keypair.generate().public_id, 1)

    asyncio.run(scenario())


def test_transfer_without_authority_uses_wallet_as_payer(manager, ledger, storage, wallet):
    async def scenario():
        mint = (await manager.create_token("Gold")).record.mint
        await manager.mint_tokens(mint, 10)
        del storage.keys[mint]
        result = await manager.transfer_tokens(mint, Keypair.generate().public_id, 3)
        assert result.payer == wallet.public_id
        assert result.record.balance == 7

    asyncio.run(scenario())
    assert ledger.lamports[wallet.public_id] < 2 * LAMPORTS_PER_SOL


async def _foreign_mint(ledger, decimals=6, supply=5_000_000):
    owner = Keypair.generate()
    ledger.fund(owner.public_id, LAMPORTS_PER_SOL)
    mint = await ledger.create_mint(owner, owner.public_id, None, decimals)
    acc = await ledger.get_or_create_holding_account(owner, mint, owner.public_id)
    await ledger.mint_to(owner, mint, acc.address, supply)
    return mint


def test_add_existing_token(manager, ledger):
    async def scenario():
        mint = await _foreign_mint(ledger)
        result = await manager.add_existing_token(mint, "Silver")
        assert result.added
        rec = result.record
        assert (rec.name, rec.decimals, rec.supply, rec.balance) == ("Silver", 6, Decimal(5), 0)
        assert manager.state_of(mint) == TokenState.ACTIVE_AUTHORITY_LOST

        duplicate = await manager.add_existing_token(mint, "Again")
        assert not duplicate.added
        assert duplicate.record.name == "Silver"
        assert "already" in duplicate.message

        unnamed = await manager.add_existing_token(await _foreign_mint(ledger), "")
        assert unnamed.record.name == "Token 2"

    asyncio.run(scenario())
    assert len(manager.registry) == 2


def test_add_existing_token_invalid(manager, ledger):
    async def scenario():
        with pytest.raises(InvalidAddressError):
            await manager.add_existing_token("xyz", "Bad")
        assert _ledger_calls(ledger) == 0
        with pytest.raises(InvalidAddressError):
            await manager.add_existing_token(Keypair.generate().public_id, "Missing")

    asyncio.run(scenario())
    assert len(manager.registry) == 0


def test_in_progress_flags(wallet, storage):
    ledger = LocalLedger(latency=0.01)
    ledger.fund(wallet.public_id, LAMPORTS_PER_SOL)
    manager = TokenLifecycleManager(ledger, KeyVault(storage), TokenRegistry(storage), wallet=wallet)

    async def scenario():
        task = asyncio.create_task(manager.create_token("Gold"))
        await asyncio.sleep(0.005)
        assert manager.in_progress["create"] is True
        assert manager.in_progress["mint"] is False
        await task
        assert manager.in_progress["create"] is False

    asyncio.run(scenario())


def test_after_change_hook_runs_after_mint(manager):
    calls = []

    async def hook():
        calls.append("reconciled")

    manager.after_change = hook

    async def scenario():
        mint = (await manager.create_token("Gold")).record.mint
        assert calls == []
        await manager.mint_tokens(mint, 1)
        await manager.transfer_tokens(mint, Keypair.generate().public_id, 1)

    asyncio.run(scenario())
    assert calls == ["reconciled", "reconciled"]


def test_regenerated_authority_funded_after_rate_limit(wallet, storage):
    ledger = LocalLedger(airdrop_limit=1)
    ledger.fund(wallet.public_id, LAMPORTS_PER_SOL)
    manager = TokenLifecycleManager(ledger, KeyVault(storage), TokenRegistry(storage), wallet=wallet)

    async def scenario():
        mint = (await manager.create_token("Gold")).record.mint
        await manager.mint_tokens(mint, 10)
        del storage.keys[mint]

        with pytest.raises(RateLimitError):
            await manager.mint_tokens(mint, 5)
        pending = manager.vault.retrieve(mint)
        assert pending is not None
        assert manager.state_of(mint) == TokenState.ACTIVE_AUTHORITY_LOST

        # transfers meanwhile fall back to the wallet as payer
        moved = await manager.transfer_tokens(mint, Keypair.generate().public_id, 1)
        assert moved.payer == wallet.public_id

        ledger.airdrop_limit = None
        result = await manager.mint_tokens(mint, 5)
        assert result.authority == pending.public_id
        assert result.authority_recovered and result.degraded
        assert result.record.balance == 14
        assert manager.state_of(mint) == TokenState.ACTIVE_AUTHORITY_RECOVERED

        again = await manager.mint_tokens(mint, 1)
        assert not again.authority_recovered

    asyncio.run(scenario())
    assert ledger.calls["request_funding"] == 3


def test_create_failure_after_mint_leaves_no_stale_state(manager, ledger):
    ledger.fail_next("get_or_create_holding_account", LedgerError("node busy", code=LedgerError.UNAVAILABLE))

    async def scenario():
        with pytest.raises(LedgerError):
            await manager.create_token("Gold")
        (mint,) = ledger.mints
        assert manager.vault.retrieve(mint) is not None
        assert manager.state_of(mint) == TokenState.UNINITIALIZED

        added = await manager.add_existing_token(mint, "Gold")
        assert added.added
        assert manager.state_of(mint) == TokenState.ACTIVE_AUTHORITY_KNOWN
        assert (await manager.mint_tokens(mint, 2)).record.balance == 2

    asyncio.run(scenario())


def _trace_token_calls(ledger, locks, mint, events):
    """Record ledger calls touching `mint`, and whether its lock was held at the time."""
    def wrap(name, real):
        async def traced(*args):
            label = name
            if name == "get_or_create_holding_account":
                label += ":wallet" if isinstance(args[0], WalletIdentity) else ":authority"
            events.append((label, locks.locked(mint)))
            return await real(*args)
        return traced

    for name in ("get_or_create_holding_account", "mint_to", "get_mint_info", "get_account_info"):
        setattr(ledger, name, wrap(name, getattr(ledger, name)))


def test_reconcile_and_mint_on_same_token_do_not_interleave(wallet, storage):
    ledger = LocalLedger(latency=0.002)
    ledger.fund(wallet.public_id, LAMPORTS_PER_SOL)
    manager = TokenLifecycleManager(ledger, KeyVault(storage), TokenRegistry(storage), wallet=wallet)
    reconciler = BalanceReconciler(ledger, manager.registry, locks=manager.locks,
                                   wallet_provider=lambda: manager.wallet)
    events = []

    async def scenario():
        mint = (await manager.create_token("Gold")).record.mint
        await manager.mint_tokens(mint, 10)
        _trace_token_calls(ledger, manager.locks, mint, events)
        await asyncio.gather(reconciler.run_once(), manager.mint_tokens(mint, 5))
        assert not manager.locks.locked(mint)
        return mint

    mint = asyncio.run(scenario())

    minting = ["get_or_create_holding_account:authority", "mint_to", "get_mint_info", "get_account_info"]
    reconciling = ["get_or_create_holding_account:wallet", "get_mint_info", "get_account_info"]
    labels = [label for label, _ in events]
    assert labels in (minting + reconciling, reconciling + minting)
    assert all(held for _, held in events)

    rec = manager.registry.get(mint)
    assert rec.balance == Decimal(ledger.token_balance(wallet.public_id, mint)) / 10 ** 9 == 15
    assert rec.supply == Decimal(ledger.mints[mint].supply) / 10 ** 9 == 15

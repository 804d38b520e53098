import pytest

from mintdesk_core.constants import LAMPORTS_PER_SOL
from mintdesk_core.crypto import Keypair, WalletIdentity
from mintdesk_core.ledger import LocalLedger
from mintdesk_core.lifecycle import TokenLifecycleManager
from mintdesk_core.registry import TokenRegistry
from mintdesk_core.storage import InMemoryStorage
from mintdesk_core.vault import KeyVault


@pytest.fixture
def wallet():
    return WalletIdentity(Keypair.generate().public_id)


@pytest.fixture
def ledger(wallet):
    led = LocalLedger()
    led.fund(wallet.public_id, 2 * LAMPORTS_PER_SOL)
    return led


@pytest.fixture
def storage():
    return InMemoryStorage()


@pytest.fixture
def manager(ledger, storage, wallet):
    return TokenLifecycleManager(ledger, KeyVault(storage), TokenRegistry(storage), wallet=wallet)

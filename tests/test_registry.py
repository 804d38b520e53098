from decimal import Decimal

from mintdesk_core.crypto import Keypair
from mintdesk_core.registry import TokenRegistry
from mintdesk_core.storage import InMemoryStorage, SQLiteStorage, TokenRecord


def _record(name="Gold", **kw):
    return TokenRecord(mint=Keypair.generate().public_id, name=name, decimals=9, **kw)


def test_add_rejects_duplicates():
    reg = TokenRegistry(InMemoryStorage())
    rec = _record()
    assert reg.add(rec) is True
    assert reg.add(rec.copy(name="Other")) is False
    assert len(reg) == 1
    assert reg.get(rec.mint).name == "Gold"


def test_timestamps_strictly_increase():
    reg = TokenRegistry(InMemoryStorage())
    records = [_record(name=f"T{i}") for i in range(5)]
    for rec in records:
        reg.add(rec)
    stamps = [reg.get(r.mint).timestamp for r in records]
    assert stamps == sorted(stamps)
    assert len(set(stamps)) == len(stamps)
    assert [r.name for r in reg.snapshot()] == ["T4", "T3", "T2", "T1", "T0"]


def test_snapshot_is_detached():
    reg = TokenRegistry(InMemoryStorage())
    rec = _record()
    reg.add(rec)
    snap = reg.snapshot()
    snap[0].balance = Decimal("500")
    assert reg.get(rec.mint).balance == 0


def test_write_through_and_reload(tmp_path):
    path = str(tmp_path / "registry.db")
    reg = TokenRegistry(SQLiteStorage(path))
    rec = _record()
    reg.add(rec)
    reg.update(rec.mint, supply=Decimal("100"), balance=Decimal("60"))
    reg.rename(rec.mint, "Gold v2")

    reloaded = TokenRegistry(SQLiteStorage(path))
    got = reloaded.get(rec.mint)
    assert (got.name, got.supply, got.balance) == ("Gold v2", Decimal("100"), Decimal("60"))
    assert reloaded.to_json() == reg.to_json()


def test_update_without_change_skips_write():
    storage = InMemoryStorage()
    reg = TokenRegistry(storage)
    rec = _record(supply=Decimal("100"))
    reg.add(rec)
    before = reg.to_json()

    writes = []
    original = storage.upsert_token
    storage.upsert_token = lambda r: (writes.append(r), original(r))
    reg.update(rec.mint, supply=Decimal("100.000"), balance=Decimal("0"))
    assert writes == []
    assert reg.to_json() == before

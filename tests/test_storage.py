# tests/test_storage.py

from decimal import Decimal

import pytest

from mintdesk_core.crypto import Keypair
from mintdesk_core.errors import StorageError
from mintdesk_core.storage import (
    InMemoryStorage,
    SigningKeyRecord,
    SQLiteStorage,
    TokenRecord,
    load_storage_provider,
)
from mintdesk_core.utils import b64e


def _token(mint=None, **kw):
    return TokenRecord(mint=mint or Keypair.generate().public_id, name="Gold", decimals=9, **kw)


def test_token_record_dict_roundtrip():
    rec = _token(supply=Decimal("100"), balance=Decimal("0.000000001"), timestamp=1700000000000)
    d = rec.to_dict()
    assert d["balance"] == "0.000000001"
    assert d["supply"] == "100"
    assert TokenRecord.from_dict(d) == rec


def test_sqlite_key_roundtrip(tmp_path):
    store = SQLiteStorage(str(tmp_path / "state.db"))
    kp = Keypair.generate()
    mint = Keypair.generate().public_id
    store.upsert_key(SigningKeyRecord.from_keypair(mint, kp))

    got = store.get_key(mint)
    assert got is not None
    assert got.to_keypair() == kp
    assert store.get_key("missing") is None


def test_sqlite_key_overwrite(tmp_path):
    store = SQLiteStorage(str(tmp_path / "state.db"))
    mint = Keypair.generate().public_id
    first, second = Keypair.generate(), Keypair.generate()
    store.upsert_key(SigningKeyRecord.from_keypair(mint, first))
    store.upsert_key(SigningKeyRecord.from_keypair(mint, second))

    assert store.get_key(mint).public_id == second.public_id
    assert len(store.list_keys()) == 1


def test_list_keys_has_no_secret(tmp_path):
    for store in (SQLiteStorage(str(tmp_path / "state.db")), InMemoryStorage()):
        kp = Keypair.generate()
        store.upsert_key(SigningKeyRecord.from_keypair("mint-a", kp))
        keys = store.list_keys()
        assert keys == [{"token_id": "mint-a", "public_id": kp.public_id, "created_at": keys[0]["created_at"]}]
        assert b64e(kp.secret) not in repr(keys)


def test_sqlite_tokens_survive_reopen(tmp_path):
    path = str(tmp_path / "nested" / "state.db")
    store = SQLiteStorage(path)
    a = _token(timestamp=2, supply=Decimal("5"))
    b = _token(timestamp=1)
    store.upsert_token(a)
    store.upsert_token(b)
    store.upsert_token(a.copy(balance=Decimal("5")))
    store.close()

    reopened = SQLiteStorage(path)
    assert [r.mint for r in reopened.list_tokens()] == [b.mint, a.mint]
    assert reopened.get_token(a.mint).balance == Decimal("5")
    assert reopened.get_token("missing") is None


def test_sqlite_schema_exists(tmp_path):
    store = SQLiteStorage(str(tmp_path / "state.db"))
    cur = store.db.execute("PRAGMA table_info(signing_keys)")
    cols = {row[1] for row in cur.fetchall()}
    assert {"token_id", "public_id", "secret_b64", "created_at"} <= cols


def test_sqlite_write_failure_raises_storage_error(tmp_path):
    store = SQLiteStorage(str(tmp_path / "state.db"))
    store.db.close()
    with pytest.raises(StorageError):
        store.upsert_key(SigningKeyRecord.from_keypair("mint-a", Keypair.generate()))


def test_memory_provider_returns_copies():
    store = InMemoryStorage()
    rec = _token()
    store.upsert_token(rec)
    got = store.get_token(rec.mint)
    got.balance = Decimal("99")
    assert store.get_token(rec.mint).balance == 0

    store.log_event("token.created", {"mint": rec.mint})
    assert store.audit == [("token.created", {"mint": rec.mint})]


def test_load_storage_provider(monkeypatch, tmp_path):
    monkeypatch.setenv("MINTDESK_STORAGE_PROVIDER", "memory")
    assert isinstance(load_storage_provider(), InMemoryStorage)

    monkeypatch.setenv("MINTDESK_STORAGE_PROVIDER", "sqlite")
    monkeypatch.setenv("MINTDESK_DB_PATH", str(tmp_path / "env.db"))
    store = load_storage_provider()
    assert isinstance(store, SQLiteStorage)
    assert store.path == str(tmp_path / "env.db")

    explicit = load_storage_provider({"storage_provider": "sqlite", "sqlite_path": str(tmp_path / "cfg.db")})
    assert explicit.path == str(tmp_path / "cfg.db")

    with pytest.raises(ValueError):
        load_storage_provider({"storage_provider": "firestore"})

from __future__ import annotations
from typing import Optional, Dict, Any, List
import json, sqlite3, os
from mintdesk_core.errors import StorageError
from mintdesk_core.logger import get_logger
from mintdesk_core.storage.provider import StorageProvider
from mintdesk_core.storage.models import SigningKeyRecord, TokenRecord
from mintdesk_core.utils import b64d, b64e, canonical_json, now_ts

log = get_logger("mintdesk.storage.sqlite")


class SQLiteStorage(StorageProvider):
    def __init__(self, path="db/mintdesk.db"):
        # If no directory, default to current working directory
        dir_path = os.path.dirname(str(path)) or "."
        os.makedirs(dir_path, exist_ok=True)
        self.path = str(path)
        self.db = sqlite3.connect(self.path, check_same_thread=False)

        self._init()

    def _init(self) -> None:
        c = self.db.cursor()

        c.execute("""CREATE TABLE IF NOT EXISTS signing_keys(
            token_id TEXT PRIMARY KEY,
            public_id TEXT NOT NULL,
            secret_b64 TEXT NOT NULL,
            created_at TEXT NOT NULL
        )""")
        c.execute("""CREATE TABLE IF NOT EXISTS tokens(
            mint TEXT PRIMARY KEY,
            record TEXT NOT NULL,
            created_ts INTEGER NOT NULL
        )""")
        c.execute("""CREATE TABLE IF NOT EXISTS audit(
            ts TEXT,
            event_type TEXT,
            payload TEXT
        )""")

        self.db.commit()

    def _write(self, sql: str, params: tuple) -> None:
        try:
            self.db.execute(sql, params)
            self.db.commit()
        except sqlite3.Error as e:
            log.error(f"[SQLITE] write failed path={self.path}: {e}")
            raise StorageError(f"Local store write failed: {e}") from e

    def upsert_key(self, rec: SigningKeyRecord) -> None:
        self._write(
            "INSERT INTO signing_keys(token_id,public_id,secret_b64,created_at) VALUES(?,?,?,?) "
            "ON CONFLICT(token_id) DO UPDATE SET public_id=excluded.public_id, "
            "secret_b64=excluded.secret_b64, created_at=excluded.created_at",
            (rec.token_id, rec.public_id, b64e(rec.secret), rec.created_at)
        )

    def get_key(self, token_id: str) -> Optional[SigningKeyRecord]:
        cur = self.db.execute(
            "SELECT token_id,public_id,secret_b64,created_at FROM signing_keys WHERE token_id=?", (token_id,)
        )
        row = cur.fetchone()
        if not row: return None
        token_id, public_id, secret_b64, created_at = row
        return SigningKeyRecord(token_id=token_id, public_id=public_id, secret=b64d(secret_b64), created_at=created_at)

    def list_keys(self) -> List[Dict[str, Any]]:
        cur = self.db.execute("SELECT token_id, public_id, created_at FROM signing_keys")
        return [
            dict(zip(["token_id", "public_id", "created_at"], r))
            for r in cur.fetchall()
        ]

    def upsert_token(self, rec: TokenRecord) -> None:
        self._write(
            "INSERT INTO tokens(mint, record, created_ts) VALUES(?,?,?) "
            "ON CONFLICT(mint) DO UPDATE SET record=excluded.record, created_ts=excluded.created_ts",
            (rec.mint, canonical_json(rec.to_dict()).decode("utf-8"), rec.timestamp)
        )

    def get_token(self, mint: str) -> Optional[TokenRecord]:
        cur = self.db.execute("SELECT record FROM tokens WHERE mint=?", (mint,))
        row = cur.fetchone()
        return TokenRecord.from_dict(json.loads(row[0])) if row else None

    def list_tokens(self) -> List[TokenRecord]:
        cur = self.db.execute("SELECT record FROM tokens ORDER BY created_ts, mint")
        return [TokenRecord.from_dict(json.loads(r[0])) for r in cur.fetchall()]

    def log_event(self, event_type: str, payload: Dict[str, Any]) -> None:
        self._write(
            "INSERT INTO audit(ts,event_type,payload) VALUES(?,?,?)",
            (now_ts(), event_type, json.dumps(payload, separators=(",", ":"), sort_keys=True))
        )

    def flush(self):
        self.db.commit()

    def close(self):
        self.db.close()

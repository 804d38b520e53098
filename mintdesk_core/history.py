"""
mintdesk_core.history
---------------------
HistoryReconstructor: rebuilds a readable transaction log for a token from
raw ledger records. Nothing here is persisted; every request re-derives the
list from the ledger.

Classification is positional on the pre/post token-balance snapshots:

    pre=0, post=1  -> Mint      (amount and recipient from post[0])
    pre=1, post=2  -> Transfer  (sender from pre[0]; recipient and amount from post[1])
    anything else  -> Unknown   (amount 0, no parties)

Each amount is scaled by the decimals reported on its own balance entry.
Other instruction shapes (burns, multi-party transfers, mints into funded
accounts) come out as Unknown.
"""

from __future__ import annotations
import asyncio
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import List, Optional

from mintdesk_core.constants import HISTORY_LIMIT
from mintdesk_core.errors import LedgerError
from mintdesk_core.ledger.ledger_base import LedgerGateway, SignatureInfo, TransactionDetail
from mintdesk_core.logger import get_logger
from mintdesk_core.utils import from_base_units, validate_address

log = get_logger("mintdesk.history")


class TransactionKind(str, Enum):
    MINT = "Mint"
    TRANSFER = "Transfer"
    UNKNOWN = "Unknown"


@dataclass(frozen=True)
class TransactionRecord:
    signature: str
    kind: TransactionKind
    amount: Decimal = Decimal(0)
    from_address: str = ""
    to_address: str = ""
    timestamp: Optional[datetime] = None

    def to_dict(self) -> dict:
        return {
            "signature": self.signature,
            "type": self.kind.value,
            "amount": format(self.amount, "f"),
            "fromAddress": self.from_address,
            "toAddress": self.to_address,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
        }


def classify(detail: TransactionDetail, fallback_time: Optional[int] = None) -> TransactionRecord:
    block_time = detail.block_time if detail.block_time is not None else fallback_time
    ts = datetime.fromtimestamp(block_time, tz=timezone.utc) if block_time is not None else None
    pre = detail.pre_token_balances
    post = detail.post_token_balances

    if pre is not None and post is not None:
        if len(pre) == 0 and len(post) == 1:
            entry = post[0]
            return TransactionRecord(
                signature=detail.signature,
                kind=TransactionKind.MINT,
                amount=from_base_units(entry.amount, entry.decimals),
                to_address=entry.owner,
                timestamp=ts,
            )
        if len(pre) == 1 and len(post) == 2:
            entry = post[1]
            return TransactionRecord(
                signature=detail.signature,
                kind=TransactionKind.TRANSFER,
                amount=from_base_units(entry.amount, entry.decimals),
                from_address=pre[0].owner,
                to_address=entry.owner,
                timestamp=ts,
            )

    return TransactionRecord(signature=detail.signature, kind=TransactionKind.UNKNOWN, timestamp=ts)


class HistoryReconstructor:
    def __init__(self, ledger: LedgerGateway, limit: int = HISTORY_LIMIT):
        self.ledger = ledger
        self.limit = limit

    async def _detail(self, sig: SignatureInfo) -> Optional[TransactionDetail]:
        try:
            return await self.ledger.get_transaction_detail(sig.signature)
        except LedgerError as e:
            log.warning(f"[HISTORY] detail unavailable signature={sig.signature}: {e}")
            return None

    async def reconstruct(self, mint: str, limit: Optional[int] = None) -> List[TransactionRecord]:
        """Most recent first. Signatures whose detail is unavailable are skipped."""
        validate_address(mint, "token address")
        signatures = await self.ledger.get_signatures_for_address(mint, self.limit if limit is None else limit)
        details = await asyncio.gather(*(self._detail(sig) for sig in signatures))

        records = []
        for sig, detail in zip(signatures, details):
            if detail is None:
                continue
            records.append(classify(detail, fallback_time=sig.block_time))
        log.info(f"[HISTORY] token={mint} signatures={len(signatures)} records={len(records)}")
        return records

"""
Re-check cached unspent notes against the remote nullifier set
"""

from dataclasses import dataclass, field
from typing import List

from log_utils import get_logger, log_performance
from oracle.crypto_oracle import CryptoOracle
from database.note_store import NoteStore

logger = get_logger(__name__)


@dataclass
class ReconciliationResult:
    checked: int = 0
    promoted: List[int] = field(default_factory=list)


class ReconciliationPass:
    def __init__(self, transport, oracle: CryptoOracle, store: NoteStore):
        self.transport = transport
        self.oracle = oracle
        self.store = store

    @log_performance(logger, "reconcile")
    async def run(self) -> ReconciliationResult:
        unspent = self.store.get_unspent()
        if not unspent:
            logger.debug("No unspent notes to reconcile")
            return ReconciliationResult()

        nullifiers = [n.nullifier for n in unspent]
        existing = await self.transport.query_existing_nullifiers(
            self.oracle.serialize_nullifiers(nullifiers)
        )

        classification = self.oracle.classify(
            [n.note for n in unspent],
            nullifiers,
            existing,
            [n.block_height for n in unspent],
            [n.psk for n in unspent],
            [n.pos for n in unspent],
        )

        # only what we read as unspent above may move
        candidates = {n.pos for n in unspent}
        spent = [n for n in classification.spent if n.pos in candidates]
        if len(spent) != len(classification.spent):
            logger.warning("Oracle reported spent notes outside the reconciled set")

        promoted = self.store.promote_to_spent([n.pos for n in spent], spent) if spent else []
        logger.info(f"Reconciled {len(unspent)} unspent notes, {len(promoted)} now spent",
                    extra={"session": self.store.session})
        return ReconciliationResult(checked=len(unspent), promoted=promoted)

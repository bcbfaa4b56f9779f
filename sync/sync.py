"""
Incremental note synchronization.

The node streams every leaf of the note tree from a position onwards. Leaves
are cut into fixed-size records, decoded and tested for ownership as they
arrive; only owned notes are kept. Once the stream ends, the nullifiers of
the owned notes are checked against the chain in a single query, the notes
are split into unspent and spent, persisted, and the cursor moves to the
highest owned position. A reconciliation pass over the whole unspent set
always follows.
"""

from dataclasses import dataclass, field
from typing import AsyncIterable, AsyncIterator, List, Optional

from config.wallet_config import WalletConfig
from database.note_store import NoteStore
from errors.exceptions import PersistenceError, TransportError, WalletError
from log_utils import get_logger, log_performance
from oracle.crypto_oracle import CryptoOracle
from sync.reconcile import ReconciliationPass, ReconciliationResult

logger = get_logger(__name__)


async def iter_records(chunks: AsyncIterable[bytes], record_size: int) -> AsyncIterator[bytes]:
    """Re-chunk a byte stream into records of exactly ``record_size`` bytes"""
    buffer = bytearray()
    async for chunk in chunks:
        buffer.extend(chunk)
        while len(buffer) >= record_size:
            yield bytes(buffer[:record_size])
            del buffer[:record_size]
    if buffer:
        raise TransportError(
            f"Leaf stream ended with a partial record of {len(buffer)} bytes",
            request_name="leaves_from_pos",
        )


@dataclass
class SyncResult:
    from_pos: int
    scanned: int = 0
    owned: int = 0
    unspent: int = 0
    spent: int = 0
    last_pos: int = 0
    reconciliation: ReconciliationResult = field(default_factory=ReconciliationResult)


class SyncEngine:
    def __init__(self, config: WalletConfig, transport, oracle: CryptoOracle, store: NoteStore,
                 reconciler: Optional[ReconciliationPass] = None):
        self.config = config
        self.transport = transport
        self.oracle = oracle
        self.store = store
        self.reconciler = reconciler or ReconciliationPass(transport, oracle, store)

    def start_position(self) -> int:
        cursor = self.store.get_cursor()
        return cursor + 1 if cursor > 0 else 0

    @log_performance(logger, "sync")
    async def run(self, seed: bytes) -> SyncResult:
        from_pos = self.start_position()
        log = logger.with_context(session=self.store.session, pos=from_pos)
        log.info("Sync started")

        notes: List[bytes] = []
        nullifiers: List[bytes] = []
        psks: List[str] = []
        block_heights: List[int] = []
        positions: List[int] = []
        max_pos = 0
        scanned = 0

        stream = self.transport.stream_leaves(self.oracle.serialize_u64(from_pos))
        try:
            async for record in iter_records(stream, self.config.LEAF_SIZE):
                scanned += 1
                leaf = self.oracle.decode_leaf(record)
                owned = self.oracle.check_ownership(seed, leaf.note)
                if not owned.owned:
                    continue

                notes.append(leaf.note)
                nullifiers.append(owned.nullifier)
                psks.append(owned.psk)
                block_heights.append(leaf.block_height)
                positions.append(leaf.pos)
                max_pos = max(max_pos, leaf.pos)
        finally:
            # release the HTTP response even when a record fails to decode
            await stream.aclose()

        result = SyncResult(from_pos=from_pos, scanned=scanned, owned=len(notes))
        log.info(f"Scanned {scanned} leaves, {len(notes)} owned")

        if notes:
            existing = await self.transport.query_existing_nullifiers(
                self.oracle.serialize_nullifiers(nullifiers)
            )
            classification = self.oracle.classify(
                notes, nullifiers, existing, block_heights, psks, positions
            )
            result.unspent = len(classification.unspent)
            result.spent = len(classification.spent)

            if classification.unspent or classification.spent:
                try:
                    self.store.upsert_batch(classification.unspent, classification.spent, max_pos)
                except PersistenceError:
                    # cached notes are still checked against the chain before failing
                    try:
                        await self.reconciler.run()
                    except WalletError as e:
                        log.warning(f"Reconciliation after failed writes also failed: {e}")
                    raise

        result.last_pos = self.store.get_cursor()
        result.reconciliation = await self.reconciler.run()
        return result

"""
Local cache of owned notes on RocksDB.

Key layout
    unspent:<pos>              -> note record (JSON)
    spent:<pos>                -> note record (JSON)
    psk:<coll>:<psk>:<pos>     -> b""   owner index per collection
    nul:<nullifier hex>        -> <pos>
    cursor:<session>           -> last synced position (ASCII int)

``<pos>`` is 8 bytes big-endian so prefix scans come back in position order.
"""

import json
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Sequence

from rocksdict import Rdict, WriteBatch

from errors.exceptions import DecodeError, PersistenceError
from log_utils import get_logger
from models.records import NoteData

logger = get_logger(__name__)

UNSPENT = b"unspent"
SPENT = b"spent"
PSK_PREFIX = b"psk:"
NULLIFIER_PREFIX = b"nul:"
CURSOR_PREFIX = b"cursor:"


def _pos_key(pos: int) -> bytes:
    return pos.to_bytes(8, "big")


def _note_key(collection: bytes, pos: int) -> bytes:
    return collection + b":" + _pos_key(pos)


def _psk_key(collection: bytes, psk: str, pos: int) -> bytes:
    return PSK_PREFIX + collection + b":" + psk.encode() + b":" + _pos_key(pos)


def _nullifier_key(nullifier: bytes) -> bytes:
    return NULLIFIER_PREFIX + nullifier.hex().encode()


@dataclass(frozen=True)
class BatchResult:
    written: int
    skipped: int = 0


class NoteStore:
    """Unspent/Spent note collections plus the per-session sync cursor"""

    def __init__(self, db, session: str):
        self.db = db
        self.session = session
        self._cursor_key = CURSOR_PREFIX + session.encode()

    # reads

    def _scan(self, prefix: bytes):
        for key, value in self.db.items(from_key=prefix):
            if not (isinstance(key, bytes) and key.startswith(prefix)):
                break
            yield key, value

    @staticmethod
    def _decode(key: bytes, raw: bytes) -> NoteData:
        try:
            return NoteData.from_record(json.loads(raw.decode()))
        except (KeyError, TypeError, ValueError) as e:
            logger.error(f"Unreadable note record under {key!r}: {e}")
            raise DecodeError(f"Corrupt note record under {key!r}: {e}") from e

    def _load(self, collection: bytes, pos: int) -> Optional[NoteData]:
        key = _note_key(collection, pos)
        raw = self.db.get(key)
        if raw is None:
            return None
        return self._decode(key, raw)

    def _collection(self, collection: bytes, psk: Optional[str]) -> List[NoteData]:
        if psk is None:
            return [self._decode(key, value) for key, value in self._scan(collection + b":")]

        notes = []
        prefix = PSK_PREFIX + collection + b":" + psk.encode() + b":"
        for key, _ in self._scan(prefix):
            pos = int.from_bytes(key[len(prefix):], "big")
            note = self._load(collection, pos)
            if note is None:
                logger.warning(f"Owner index points at missing note {pos}", extra={"pos": pos})
                continue
            notes.append(note)
        return notes

    def get_unspent(self, psk: Optional[str] = None) -> List[NoteData]:
        return self._collection(UNSPENT, psk)

    def get_spent(self, psk: Optional[str] = None) -> List[NoteData]:
        return self._collection(SPENT, psk)

    def get_all(self, psk: Optional[str] = None) -> List[NoteData]:
        return self.get_spent(psk) + self.get_unspent(psk)

    def find_by_nullifier(self, nullifier: bytes) -> Optional[NoteData]:
        raw = self.db.get(_nullifier_key(nullifier))
        if raw is None:
            return None
        pos = int.from_bytes(raw, "big")
        return self._load(SPENT, pos) or self._load(UNSPENT, pos)

    # writes

    def _put_note(self, batch: WriteBatch, collection: bytes, note: NoteData):
        batch.put(_note_key(collection, note.pos), json.dumps(note.to_record()).encode())
        batch.put(_psk_key(collection, note.psk, note.pos), b"")
        batch.put(_nullifier_key(note.nullifier), _pos_key(note.pos))

    def _delete_note(self, batch: WriteBatch, collection: bytes, note: NoteData):
        batch.delete(_note_key(collection, note.pos))
        batch.delete(_psk_key(collection, note.psk, note.pos))

    def upsert_batch(self, unspent: Sequence[NoteData], spent: Sequence[NoteData],
                     new_last_pos: Optional[int] = None) -> BatchResult:
        """Write every note as its own batch and advance the cursor.

        Rows that fail do not stop the others. If any failed, the committed
        rows stay, the cursor is left untouched and PersistenceError reports
        the count.
        """
        total = len(unspent) + len(spent)
        written = skipped = failed = 0

        for note in unspent:
            if self.db.get(_note_key(SPENT, note.pos)) is not None:
                # never resurrect a spent note
                skipped += 1
                continue
            batch = WriteBatch()
            self._put_note(batch, UNSPENT, note)
            if self._commit(batch, note.pos):
                written += 1
            else:
                failed += 1

        for note in spent:
            batch = WriteBatch()
            existing = self._load(UNSPENT, note.pos)
            if existing is not None:
                self._delete_note(batch, UNSPENT, existing)
            self._put_note(batch, SPENT, note)
            if self._commit(batch, note.pos):
                written += 1
            else:
                failed += 1

        if failed:
            logger.error(f"{failed} of {total} note writes failed; cursor not advanced",
                         extra={"session": self.session})
            raise PersistenceError(failed, total)

        if new_last_pos is not None:
            self.set_cursor(new_last_pos)

        logger.info(f"Stored {written} notes ({skipped} skipped)", extra={"session": self.session})
        return BatchResult(written=written, skipped=skipped)

    def _commit(self, batch: WriteBatch, pos: int) -> bool:
        try:
            self.db.write(batch)
            return True
        except Exception as e:
            logger.warning(f"Failed to write note {pos}: {e}", extra={"pos": pos})
            return False

    def promote_to_spent(self, positions: Iterable[int],
                         spent_records: Sequence[NoteData] = ()) -> List[int]:
        """Move notes from Unspent to Spent in one write batch.

        ``spent_records`` may carry fresher copies of the notes; positions
        without one keep the stored unspent record.
        """
        fresh: Dict[int, NoteData] = {n.pos: n for n in spent_records}
        moving = []
        for pos in positions:
            current = self._load(UNSPENT, pos)
            if current is None:
                logger.warning(f"Note {pos} is not unspent, not promoting", extra={"pos": pos})
                continue
            moving.append((current, fresh.get(pos, current)))

        if not moving:
            return []

        batch = WriteBatch()
        for current, _ in moving:
            self._delete_note(batch, UNSPENT, current)
        for _, record in moving:
            self._put_note(batch, SPENT, record)
        try:
            self.db.write(batch)
        except Exception as e:
            logger.error(f"Failed to promote {len(moving)} notes: {e}", extra={"session": self.session})
            raise PersistenceError(len(moving), len(moving)) from e

        promoted = [current.pos for current, _ in moving]
        logger.info(f"Promoted {len(promoted)} notes to spent", extra={"session": self.session})
        return promoted

    # cursor

    def get_cursor(self) -> int:
        raw = self.db.get(self._cursor_key)
        if raw is None:
            return 0
        try:
            return int(raw.decode())
        except (UnicodeDecodeError, ValueError):
            logger.warning(f"Ignoring unreadable cursor {raw!r}", extra={"session": self.session})
            return 0

    def set_cursor(self, pos: int) -> int:
        current = self.get_cursor()
        if pos <= current:
            return current
        self.db[self._cursor_key] = str(pos).encode()
        return pos

    def clear(self):
        """Drop every note, every index and this session's cursor"""
        keys = [
            key
            for prefix in (UNSPENT + b":", SPENT + b":", PSK_PREFIX, NULLIFIER_PREFIX)
            for key, _ in self._scan(prefix)
        ]
        batch = WriteBatch()
        for key in keys:
            batch.delete(key)
        batch.delete(self._cursor_key)
        try:
            self.db.write(batch)
        except Exception as e:
            logger.error(f"Failed to clear note store: {e}", extra={"session": self.session})
            raise PersistenceError(len(keys), len(keys), f"Failed to clear {len(keys)} keys") from e
        logger.info(f"Cleared {len(keys)} note store keys", extra={"session": self.session})

    def close(self):
        close = getattr(self.db, "close", None)
        if close is not None:
            close()


def open_note_store(path: str, session: str) -> NoteStore:
    try:
        db = Rdict(path)
    except Exception as e:
        logger.error(f"Failed to open note store at {path}: {e}")
        raise PersistenceError(0, 0, f"Cannot open note store at {path}: {e}") from e
    logger.info(f"Note store opened at {path}", extra={"session": session})
    return NoteStore(db, session)

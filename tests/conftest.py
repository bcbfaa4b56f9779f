# tests/conftest.py
"""
Shared fixtures for the test suite.

Key design points
─────────────────
1.  Make project-root importable so `from sync.sync import …` works no
    matter where pytest is launched.
2.  Provide a dict-backed stand-in for RocksDB so the note store never
    touches disk.
3.  Replace the node and the crypto library with scripted fakes. Leaves
    produced by `make_leaf` carry their own position, block height and
    owner byte; the fake oracle reads those back.
"""

from __future__ import annotations
import pathlib
import sys
import pytest

# ─────────────────────────────────────────────────────────────────────────────
#  Ensure the repo root is on sys.path
# ─────────────────────────────────────────────────────────────────────────────
ROOT = pathlib.Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT))                 # for `import sync`, `import wallet` …

# Only now import modules that live in the repo
from config.wallet_config import WalletConfig
from database.note_store import NoteStore
from errors.exceptions import DecodeError, TransportError
from models.records import (
    BalanceInfo, CallData, Classification, ContractCall, Crossover,
    DecodedLeaf, NoteData, Ownership, ProvenTx, SpendProofRequest, StakeInfo,
    TxData, TxStatus,
)
from oracle.crypto_oracle import CryptoOracle

LEAF_SIZE = 632
BAD_LEAF = 0xFF
NOTE_VALUE = 10_000          # base units per note
TX_HASH = "ab" * 32


# ─────────────────────────────── leaf helpers ───────────────────────────────
def make_leaf(pos: int, owner: int, height: int = 1, size: int = LEAF_SIZE) -> bytes:
    """pos (8B) || block height (8B) || owner (1B) || zero padding"""
    head = pos.to_bytes(8, "big") + height.to_bytes(8, "big") + bytes([owner])
    return head + bytes(size - len(head))


def nullifier_of(pos: int) -> bytes:
    return b"N" + pos.to_bytes(8, "big")


# ────────────────────────────── database stub ───────────────────────────────
class DummyWriteBatch:
    """Mimics RocksDB WriteBatch: collects put/delete calls in order."""
    def __init__(self, *args, **kwargs):
        self.ops: list[tuple[str, bytes, bytes | None]] = []

    def put(self, key: bytes, val: bytes):
        self.ops.append(("put", key, val))

    def delete(self, key: bytes):
        self.ops.append(("delete", key, None))


class FakeDB(dict):
    """dict with the slice of the Rdict API the note store uses."""
    def __init__(self):
        super().__init__()
        self.fail_on: set[int] = set()      # positions whose batch write blows up
        self.writes = 0
        self.closed = False

    def items(self, from_key: bytes | None = None):
        keys = sorted(k for k in self.keys() if from_key is None or k >= from_key)
        return [(k, self[k]) for k in keys]

    def write(self, batch: DummyWriteBatch):
        for op, key, _ in batch.ops:
            if key.startswith(b"unspent:") or key.startswith(b"spent:"):
                pos = int.from_bytes(key.split(b":", 1)[1], "big")
                if pos in self.fail_on:
                    raise RuntimeError(f"disk full at {pos}")
        self.writes += 1
        for op, key, val in batch.ops:
            if op == "put":
                self[key] = val
            else:
                self.pop(key, None)

    def close(self):
        self.closed = True


@pytest.fixture(autouse=True)
def _stub_write_batch(monkeypatch):
    monkeypatch.setattr("database.note_store.WriteBatch", DummyWriteBatch, raising=True)


@pytest.fixture
def fake_db():
    return FakeDB()


@pytest.fixture
def store(fake_db):
    return NoteStore(fake_db, "test-session")


@pytest.fixture
def config():
    return WalletConfig(session_id="test-session", tx_poll_interval=1.0, tx_poll_attempts=30)


# ─────────────────────────────── fake oracle ────────────────────────────────
class FakeOracle(CryptoOracle):
    """Deterministic oracle; the seed is the list of owner bytes it holds keys for."""

    def __init__(self):
        self.stake = StakeInfo(has_key=True, has_staked=False, eligibility=4320,
                               amount=None, reward=0, counter=3)
        self.built: list[dict] = []
        self.fail_prove = False

    def _psk(self, owner: int) -> str:
        return f"psk-{owner}"

    def public_spend_keys(self, seed):
        return [self._psk(b) for b in seed]

    def public_key(self, seed, index):
        return b"pk" + bytes([seed[index]])

    def serialize_u64(self, value):
        return value.to_bytes(8, "big")

    def serialize_nullifiers(self, nullifiers):
        return b"".join(nullifiers)

    def decode_leaf(self, record):
        if len(record) != LEAF_SIZE or record[16] == BAD_LEAF:
            raise DecodeError("bad leaf")
        return DecodedLeaf(
            note=bytes(record),
            pos=int.from_bytes(record[:8], "big"),
            block_height=int.from_bytes(record[8:16], "big"),
        )

    def check_ownership(self, seed, note):
        owner = note[16]
        if owner not in seed:
            return Ownership(owned=False)
        pos = int.from_bytes(note[:8], "big")
        return Ownership(owned=True, nullifier=nullifier_of(pos), psk=self._psk(owner))

    def classify(self, notes, nullifiers, existing_nullifiers, block_heights, psks, positions):
        existing = {existing_nullifiers[i:i + 9] for i in range(0, len(existing_nullifiers), 9)}
        result = Classification()
        for note, nul, height, psk, pos in zip(notes, nullifiers, block_heights, psks, positions):
            data = NoteData(note=note, psk=psk, pos=pos, nullifier=nul, block_height=height)
            (result.spent if nul in existing else result.unspent).append(data)
        return result

    def balance(self, seed, notes):
        total = NOTE_VALUE * len(notes)
        return BalanceInfo(value=total, maximum=total)

    def build_unproven_tx(self, seed, inputs, openings, output, call_data, crossover, fee,
                          gas_limit, gas_price, refund, sender_index, rng_seed):
        self.built.append({
            "inputs": list(inputs),
            "openings": list(openings),
            "output": output,
            "call_data": call_data,
            "crossover": crossover,
            "fee": fee,
            "gas_limit": gas_limit,
            "gas_price": gas_price,
            "refund": refund,
            "sender_index": sender_index,
        })
        return b"unproven"

    def unproven_tx_to_bytes(self, unproven_tx):
        return b"wire:" + unproven_tx

    def prove_tx(self, unproven_tx, proof):
        if self.fail_prove:
            raise DecodeError("proof does not fit")
        return ProvenTx(tx_bytes=b"proven:" + proof, hash=TX_HASH)

    def get_stake_info(self, stake_bytes):
        s = self.stake
        return StakeInfo(has_key=s.has_key, has_staked=s.has_staked, eligibility=s.eligibility,
                         amount=s.amount, reward=s.reward, counter=s.counter)

    def stct_proof_request(self, seed, sender_index, refund, value, gas_limit, gas_price, rng_seed):
        return SpendProofRequest(proof_input=b"stct-input", crossover="cx", blinder="bl", fee="fee")

    def stake_call_data(self, seed, staker_index, spend_proof, value, counter):
        return CallData(contract="stake", method="stake", payload={"proof": spend_proof.hex(),
                                                                  "counter": counter})

    def wfct_proof_request(self, seed, sender_index, refund, value, gas_limit, gas_price, rng_seed):
        return SpendProofRequest(proof_input=b"wfct-input", crossover="cx", blinder="bl",
                                 fee="fee", unstake_note="unote")

    def unstake_call_data(self, seed, sender_index, unstake_proof, unstake_note, counter):
        return CallData(contract="stake", method="unstake", payload=unstake_note)

    def withdraw_call_data(self, seed, sender_index, refund, counter, gas_limit, gas_price, rng_seed):
        return ContractCall(call_data=CallData(contract="stake", method="withdraw", payload=None),
                            crossover=Crossover(crossover="cx", blinder="bl", value=0), fee="fee")

    def allow_call_data(self, seed, sender_index, staker_index, refund, counter,
                        gas_limit, gas_price, rng_seed):
        return ContractCall(call_data=CallData(contract="stake", method="allow",
                                               payload=staker_index),
                            crossover=Crossover(crossover="cx", blinder="bl", value=0), fee="fee")

    def history(self, seed, index, notes, tx_data):
        return [
            TxData(amount=1.0, block_height=entry["block_height"], direction="In",
                   fee=0.0, id=tx.raw_tx)
            for entry in tx_data
            for tx in entry["txs"]
        ]

    def to_base_units(self, amount):
        return int(amount * 10)

    def from_base_units(self, value):
        return value / 10


@pytest.fixture
def oracle():
    return FakeOracle()


# ────────────────────────────── fake transport ──────────────────────────────
class FakeTransport:
    """Scripted node: every call is appended to `calls`."""

    def __init__(self):
        self.calls: list[tuple[str, object]] = []
        self.chunks: list[bytes] = []
        self.spent: set[bytes] = set()
        self.openings: dict[int, bytes] = {}
        self.statuses: list[TxStatus] = []
        self.fail_nullifiers = False
        self.fail_proof = False
        self.fail_preverify = False
        self.fail_propagate = False
        self.blocks: dict[int, list] = {}
        self.height = 0

    async def stream_leaves(self, from_pos):
        self.calls.append(("leaves_from_pos", int.from_bytes(from_pos, "big")))
        for chunk in self.chunks:
            yield chunk

    async def query_existing_nullifiers(self, nullifiers):
        self.calls.append(("existing_nullifiers", nullifiers))
        if self.fail_nullifiers:
            raise TransportError("node down", status=503, request_name="existing_nullifiers")
        wanted = [nullifiers[i:i + 9] for i in range(0, len(nullifiers), 9)]
        return b"".join(n for n in wanted if n in self.spent)

    async def fetch_opening(self, pos):
        p = int.from_bytes(pos, "big")
        self.calls.append(("opening", p))
        return self.openings.get(p, b"opening-" + str(p).encode())

    async def get_stake(self, public_key):
        self.calls.append(("get_stake", public_key))
        return b"stake-bytes"

    async def submit_proof_request(self, proof_input, request_name="prove_execute"):
        self.calls.append((request_name, proof_input))
        if self.fail_proof:
            raise TransportError("prover said no", status=500, request_name=request_name)
        return b"proof"

    async def submit_preverify(self, tx_bytes):
        self.calls.append(("preverify", tx_bytes))
        if self.fail_preverify:
            raise TransportError("bad tx", status=400, request_name="preverify")
        return 200

    async def submit_propagate(self, tx_bytes):
        self.calls.append(("propagate_tx", tx_bytes))
        if self.fail_propagate:
            raise TransportError("cannot propagate", status=500, request_name="propagate_tx")
        return 200

    async def query_tx_status(self, tx_hash):
        self.calls.append(("tx_status", tx_hash))
        if self.statuses:
            return self.statuses.pop(0)
        return TxStatus(found=True)

    async def block_transactions(self, height):
        self.calls.append(("block", height))
        return self.blocks.get(height, [])

    async def block_height(self):
        self.calls.append(("block_height", None))
        return self.height

    async def close(self):
        self.calls.append(("close", None))

    def names(self) -> list[str]:
        return [name for name, _ in self.calls]


@pytest.fixture
def transport():
    return FakeTransport()


# ─────────────────────────────── fake clock ────────────────────────────────
class RecordingSleep:
    """Awaitable replacement for asyncio.sleep that never waits."""
    def __init__(self):
        self.calls: list[float] = []

    async def __call__(self, delay):
        self.calls.append(delay)

    @property
    def elapsed(self) -> float:
        return sum(self.calls)


@pytest.fixture
def fake_sleep():
    return RecordingSleep()


# ─────────────────────────── fake aiohttp session ───────────────────────────
class FakeContent:
    def __init__(self, chunks):
        self._chunks = chunks

    async def iter_any(self):
        for chunk in self._chunks:
            yield chunk


class FakeResponse:
    def __init__(self, status=200, body=b"", chunks=None):
        self.status = status
        self._body = body
        self.content = FakeContent(chunks if chunks is not None else [body])

    async def read(self):
        return self._body

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False


class FakeSession:
    """Records every POST and answers from a queue of FakeResponse objects."""
    def __init__(self, responses=None, error=None):
        self.responses = list(responses or [])
        self.error = error
        self.requests: list[dict] = []
        self.closed = False

    def post(self, url, data=None, headers=None):
        self.requests.append({"url": url, "data": data, "headers": headers})
        if self.error is not None:
            raise self.error
        return self.responses.pop(0) if self.responses else FakeResponse()

    async def close(self):
        self.closed = True


@pytest.fixture
def fake_session():
    return FakeSession()

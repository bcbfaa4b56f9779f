"""
Records exchanged between the note store, the oracle and the pipeline
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from config.config import GAS_LIMIT, GAS_PRICE


@dataclass(frozen=True)
class NoteData:
    """A note owned by one of the wallet's keys, as kept in the local cache"""
    note: bytes
    psk: str
    pos: int
    nullifier: bytes
    block_height: int = 0

    def to_record(self) -> Dict[str, Any]:
        return {
            "pos": self.pos,
            "psk": self.psk,
            "nullifier": self.nullifier.hex(),
            "note": self.note.hex(),
            "block_height": self.block_height,
        }

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "NoteData":
        return cls(
            note=bytes.fromhex(record["note"]),
            psk=record["psk"],
            pos=int(record["pos"]),
            nullifier=bytes.fromhex(record["nullifier"]),
            block_height=int(record.get("block_height", 0)),
        )


@dataclass(frozen=True)
class DecodedLeaf:
    note: bytes
    pos: int
    block_height: int


@dataclass(frozen=True)
class Ownership:
    owned: bool
    nullifier: bytes = b""
    psk: Optional[str] = None


@dataclass
class Classification:
    unspent: List[NoteData] = field(default_factory=list)
    spent: List[NoteData] = field(default_factory=list)


@dataclass(frozen=True)
class Opening:
    pos: int
    opening: bytes


@dataclass(frozen=True)
class BalanceInfo:
    value: float
    maximum: float


@dataclass
class StakeInfo:
    has_key: bool
    has_staked: bool
    eligibility: int = 0
    amount: Optional[float] = None
    reward: float = 0
    counter: int = 0
    epoch: float = 0.0


@dataclass(frozen=True)
class ProvenTx:
    tx_bytes: bytes
    hash: str


@dataclass(frozen=True)
class TxStatus:
    found: bool
    errored: bool = False
    message: Optional[str] = None


# Crossover, blinder and fee values are produced and consumed by the oracle
# only; the wallet passes them through untouched.

@dataclass(frozen=True)
class CallData:
    contract: str
    method: str
    payload: Any


@dataclass(frozen=True)
class Crossover:
    crossover: Any
    blinder: Any
    value: int


@dataclass(frozen=True)
class SpendProofRequest:
    """Input for a contract-specific proof (stct / wfct) plus its crossover"""
    proof_input: bytes
    crossover: Any
    blinder: Any
    fee: Any
    unstake_note: Any = None


@dataclass(frozen=True)
class ContractCall:
    call_data: CallData
    crossover: Optional[Crossover] = None
    fee: Any = None


@dataclass(frozen=True)
class BlockTransaction:
    raw_tx: str
    gas_spent: int


@dataclass(frozen=True)
class TxData:
    amount: float
    block_height: int
    direction: str
    fee: float
    id: str


@dataclass(frozen=True)
class Gas:
    """Gas settings of a transaction.

    ``None``, zero or negative values fall back to the defaults.
    """
    limit: Optional[int] = None
    price: Optional[int] = None

    def __post_init__(self):
        if not self.limit or self.limit < 0:
            object.__setattr__(self, "limit", GAS_LIMIT)
        if not self.price or self.price < 0:
            object.__setattr__(self, "price", GAS_PRICE)

"""
Pydantic models for payloads coming back from the oracle and the node
"""

import json
from typing import Annotated, Any, List, Optional, Type, TypeVar, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from errors.exceptions import DecodeError
from models.records import NoteData

Byte = Annotated[int, Field(ge=0, le=255)]
ByteList = List[Byte]

M = TypeVar("M", bound=BaseModel)


class NoteRecordModel(BaseModel):
    note: ByteList
    psk: str = Field(..., min_length=1)
    pos: int = Field(..., ge=0)
    nullifier: ByteList
    block_height: int = Field(0, ge=0)

    def to_note(self) -> NoteData:
        return NoteData(
            note=bytes(self.note),
            psk=self.psk,
            pos=self.pos,
            nullifier=bytes(self.nullifier),
            block_height=self.block_height,
        )


class DecodedLeafResponse(BaseModel):
    note: ByteList
    pos: int = Field(..., ge=0)
    block_height: int = Field(0, ge=0)


class OwnershipResponse(BaseModel):
    owned: bool
    nullifier: ByteList = Field(default_factory=list)
    psk: Optional[str] = None

    @field_validator("psk")
    @classmethod
    def validate_psk(cls, v):
        if v is not None and not v:
            raise ValueError("psk must not be empty")
        return v


class ClassificationResponse(BaseModel):
    unspent_notes: List[NoteRecordModel] = Field(default_factory=list)
    spent_notes: List[NoteRecordModel] = Field(default_factory=list)


class KeysResponse(BaseModel):
    keys: List[str]


class BalanceResponse(BaseModel):
    value: int = Field(..., ge=0)
    maximum: int = Field(..., ge=0)


class StakeInfoResponse(BaseModel):
    # wallet-core spells it "eligiblity"
    model_config = ConfigDict(populate_by_name=True)

    has_key: bool = False
    has_staked: bool = False
    eligibility: int = Field(0, ge=0, alias="eligiblity")
    amount: Optional[int] = Field(None, ge=0)
    reward: int = Field(0, ge=0)
    counter: int = Field(0, ge=0)


class UnprovenTxResponse(BaseModel):
    tx: ByteList


class SerializedResponse(BaseModel):
    serialized: ByteList


class ProvenTxResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    tx_bytes: ByteList = Field(..., alias="bytes")
    hash: str = Field(..., min_length=1)


class ProofArgsResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    proof_input: ByteList = Field(..., alias="bytes")
    crossover: Any
    blinder: Any
    fee: Any
    unstake_note: Any = None


class CallDataResponse(BaseModel):
    contract: str
    method: str
    payload: Any
    crossover: Any = None
    blinder: Any = None
    fee: Any = None


class AmountResponse(BaseModel):
    value: Union[int, float]


class TxDataModel(BaseModel):
    amount: float
    block_height: int = Field(..., ge=0)
    direction: str
    fee: float
    id: str

    @field_validator("direction")
    @classmethod
    def validate_direction(cls, v):
        if v not in ("In", "Out"):
            raise ValueError('direction must be "In" or "Out"')
        return v


class HistoryResponse(BaseModel):
    history: List[TxDataModel] = Field(default_factory=list)


class TxErrModel(BaseModel):
    err: Optional[str] = None
    gasSpent: Optional[int] = None


class TxStatusResponse(BaseModel):
    """``tx`` is null until the node has indexed the transaction"""
    tx: Optional[TxErrModel] = None


class BlockTxModel(BaseModel):
    id: str
    raw: str


class BlockModel(BaseModel):
    transactions: List[BlockTxModel] = Field(default_factory=list)


class BlockResponse(BaseModel):
    block: Optional[BlockModel] = None


class BlockHeaderModel(BaseModel):
    height: int = Field(..., ge=0)


class BlockHeightModel(BaseModel):
    header: BlockHeaderModel


class BlockHeightResponse(BaseModel):
    block: BlockHeightModel


def parse_json_bytes(raw: bytes, what: str) -> Any:
    """Decode UTF-8 JSON, raising DecodeError on garbage"""
    try:
        return json.loads(bytes(raw).decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise DecodeError(f"Invalid JSON in {what}: {e}") from e


def parse_model(model: Type[M], data: Any, what: str) -> M:
    """Validate ``data`` against ``model``, raising DecodeError on mismatch"""
    try:
        return model.model_validate(data)
    except ValidationError as e:
        raise DecodeError(f"Unexpected {what} payload: {e.error_count()} validation errors") from e

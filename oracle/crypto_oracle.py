"""
Boundary to the wallet-core cryptography.

Everything that needs key material or knows the layout of notes, nullifiers
and transactions lives behind ``CryptoOracle``. Implementations must be pure:
no network access and no storage. ``JsonCallOracle`` adapts a raw FFI binding
(wasm, cffi, ...) that exposes ``call(function_name, args) -> bytes`` using
the wallet-core JSON convention, where byte strings travel as integer arrays.
"""

import abc
import json
from typing import Any, Callable, List, Optional, Sequence

from errors.exceptions import DecodeError
from log_utils import get_logger
from models.records import (
    BalanceInfo, CallData, Classification, ContractCall,
    Crossover, DecodedLeaf, NoteData, Opening, Ownership, ProvenTx,
    SpendProofRequest, StakeInfo, TxData,
)
from models.validation import (
    AmountResponse, BalanceResponse, CallDataResponse, ClassificationResponse,
    DecodedLeafResponse, HistoryResponse, KeysResponse, OwnershipResponse,
    ProofArgsResponse, ProvenTxResponse, SerializedResponse,
    StakeInfoResponse, UnprovenTxResponse, parse_json_bytes, parse_model,
)

logger = get_logger(__name__)


class CryptoOracle(abc.ABC):
    """Call contract of the cryptographic library"""

    # keys

    @abc.abstractmethod
    def public_spend_keys(self, seed: bytes) -> List[str]:
        """Public spend keys of the seed, in index order"""

    @abc.abstractmethod
    def public_key(self, seed: bytes, index: int) -> bytes:
        """Serialized public key of ``index``, used to look up stakes"""

    # serialization

    @abc.abstractmethod
    def serialize_u64(self, value: int) -> bytes:
        """Wire encoding of a position"""

    @abc.abstractmethod
    def serialize_nullifiers(self, nullifiers: Sequence[bytes]) -> bytes:
        """Wire encoding of a nullifier list"""

    # notes

    @abc.abstractmethod
    def decode_leaf(self, record: bytes) -> DecodedLeaf:
        """Decode one fixed-size leaf; raise DecodeError if it is malformed"""

    @abc.abstractmethod
    def check_ownership(self, seed: bytes, note: bytes) -> Ownership:
        """Test whether any key of ``seed`` owns ``note``"""

    @abc.abstractmethod
    def classify(
        self,
        notes: Sequence[bytes],
        nullifiers: Sequence[bytes],
        existing_nullifiers: bytes,
        block_heights: Sequence[int],
        psks: Sequence[str],
        positions: Sequence[int],
    ) -> Classification:
        """Split notes into unspent and spent given the remote nullifier set"""

    @abc.abstractmethod
    def balance(self, seed: bytes, notes: Sequence[bytes]) -> BalanceInfo:
        """Balance of the given unspent notes, in base units"""

    # transactions

    @abc.abstractmethod
    def build_unproven_tx(
        self,
        seed: bytes,
        inputs: Sequence[bytes],
        openings: Sequence[Opening],
        output: Optional[dict],
        call_data: Optional[CallData],
        crossover: Optional[Crossover],
        fee: Any,
        gas_limit: int,
        gas_price: int,
        refund: str,
        sender_index: int,
        rng_seed: bytes,
    ) -> bytes:
        """Assemble an unproven transaction spending ``inputs``"""

    @abc.abstractmethod
    def unproven_tx_to_bytes(self, unproven_tx: bytes) -> bytes:
        """Wire form of an unproven transaction, as sent to the prover"""

    @abc.abstractmethod
    def prove_tx(self, unproven_tx: bytes, proof: bytes) -> ProvenTx:
        """Attach the prover's proof and compute the transaction hash"""

    # staking

    @abc.abstractmethod
    def get_stake_info(self, stake_bytes: bytes) -> StakeInfo:
        """Decode the stake contract's answer to ``get_stake``"""

    @abc.abstractmethod
    def stct_proof_request(self, seed: bytes, sender_index: int, refund: str, value: int,
                           gas_limit: int, gas_price: int, rng_seed: bytes) -> SpendProofRequest:
        """Input for the send-to-contract-transparent proof used by stake"""

    @abc.abstractmethod
    def stake_call_data(self, seed: bytes, staker_index: int, spend_proof: bytes,
                        value: int, counter: int) -> CallData:
        """Stake contract call, given the stct proof"""

    @abc.abstractmethod
    def wfct_proof_request(self, seed: bytes, sender_index: int, refund: str, value: int,
                           gas_limit: int, gas_price: int, rng_seed: bytes) -> SpendProofRequest:
        """Input for the withdraw-from-contract-transparent proof used by unstake"""

    @abc.abstractmethod
    def unstake_call_data(self, seed: bytes, sender_index: int, unstake_proof: bytes,
                          unstake_note: Any, counter: int) -> CallData:
        """Unstake contract call, given the wfct proof"""

    @abc.abstractmethod
    def withdraw_call_data(self, seed: bytes, sender_index: int, refund: str, counter: int,
                           gas_limit: int, gas_price: int, rng_seed: bytes) -> ContractCall:
        """Reward withdrawal call with its crossover and fee"""

    @abc.abstractmethod
    def allow_call_data(self, seed: bytes, sender_index: int, staker_index: int, refund: str,
                        counter: int, gas_limit: int, gas_price: int, rng_seed: bytes) -> ContractCall:
        """Call granting ``staker_index`` permission to stake"""

    # misc

    @abc.abstractmethod
    def history(self, seed: bytes, index: int, notes: Sequence[NoteData],
                tx_data: Sequence[dict]) -> List[TxData]:
        """Fold block transactions touching ``notes`` into history entries"""

    @abc.abstractmethod
    def to_base_units(self, amount: float) -> int:
        """Convert a display amount to the ledger's integer unit"""

    @abc.abstractmethod
    def from_base_units(self, value: int) -> float:
        """Convert a ledger integer amount to display units"""


def _ints(data: bytes) -> List[int]:
    return list(bytes(data))


def _call_data_json(call_data: Optional[CallData]) -> Optional[dict]:
    if call_data is None:
        return None
    return {"contract": call_data.contract, "method": call_data.method, "payload": call_data.payload}


def _crossover_json(crossover: Optional[Crossover]) -> Optional[dict]:
    if crossover is None:
        return None
    return {"crossover": crossover.crossover, "blinder": crossover.blinder, "value": crossover.value}


class JsonCallOracle(CryptoOracle):
    """``CryptoOracle`` over a raw ``call(function_name, args) -> bytes`` binding"""

    def __init__(self, call: Callable[[str, bytes], bytes]):
        self._call = call

    def _raw(self, function: str, args: bytes) -> bytes:
        try:
            return bytes(self._call(function, args))
        except DecodeError:
            raise
        except Exception as e:
            logger.error(f"Oracle call {function} failed: {e}")
            raise DecodeError(f"Oracle call {function} failed: {e}") from e

    def _json(self, function: str, args: dict) -> Any:
        raw = self._raw(function, json.dumps(args).encode("utf-8"))
        return parse_json_bytes(raw, function)

    def _amount(self, function: str, args: dict, key: str) -> Any:
        data = self._json(function, args)
        value = data.get(key) if isinstance(data, dict) else None
        return parse_model(AmountResponse, {"value": value}, function).value

    def public_spend_keys(self, seed):
        data = self._json("public_spend_keys", {"seed": _ints(seed)})
        return parse_model(KeysResponse, data, "public_spend_keys").keys

    def public_key(self, seed, index):
        return self._raw("get_public_key_rkyv_serialized",
                         json.dumps({"seed": _ints(seed), "index": index}).encode())

    def serialize_u64(self, value):
        return self._raw("rkyv_u64", json.dumps({"value": value}).encode())

    def serialize_nullifiers(self, nullifiers):
        args = {"bytes": [_ints(n) for n in nullifiers]}
        return self._raw("rkyv_bls_scalar_array", json.dumps(args).encode())

    def decode_leaf(self, record):
        data = parse_json_bytes(self._raw("decode_leaf", bytes(record)), "decode_leaf")
        leaf = parse_model(DecodedLeafResponse, data, "decode_leaf")
        return DecodedLeaf(note=bytes(leaf.note), pos=leaf.pos, block_height=leaf.block_height)

    def check_ownership(self, seed, note):
        # seed and note are passed raw, back to back
        data = parse_json_bytes(self._raw("check_note_ownership", bytes(seed) + bytes(note)),
                                "check_note_ownership")
        owned = parse_model(OwnershipResponse, data, "check_note_ownership")
        if owned.owned and not owned.psk:
            raise DecodeError("check_note_ownership reported an owned note without a psk")
        return Ownership(owned=owned.owned, nullifier=bytes(owned.nullifier), psk=owned.psk)

    def classify(self, notes, nullifiers, existing_nullifiers, block_heights, psks, positions):
        args = {
            "notes": [_ints(n) for n in notes],
            "nullifiers_of_notes": [_ints(n) for n in nullifiers],
            "block_heights": list(block_heights),
            "existing_nullifiers": _ints(existing_nullifiers),
            "psks": list(psks),
            "positions": list(positions),
        }
        data = parse_model(ClassificationResponse, self._json("unspent_spent_notes", args),
                           "unspent_spent_notes")
        return Classification(
            unspent=[n.to_note() for n in data.unspent_notes],
            spent=[n.to_note() for n in data.spent_notes],
        )

    def balance(self, seed, notes):
        serialized = self._raw("rkyv_notes_array",
                               json.dumps({"notes": [_ints(n) for n in notes]}).encode())
        data = self._json("balance", {"seed": _ints(seed), "notes": _ints(serialized)})
        info = parse_model(BalanceResponse, data, "balance")
        return BalanceInfo(value=info.value, maximum=info.maximum)

    def build_unproven_tx(self, seed, inputs, openings, output, call_data, crossover, fee,
                          gas_limit, gas_price, refund, sender_index, rng_seed):
        serialized_openings = self._raw("rkyv_openings_array", json.dumps({
            "openings": [{"opening": _ints(o.opening), "pos": o.pos} for o in openings],
        }).encode())
        serialized_inputs = self._raw("rkyv_notes_array",
                                      json.dumps({"notes": [_ints(n) for n in inputs]}).encode())
        args = {
            "call": _call_data_json(call_data),
            "crossover": _crossover_json(crossover),
            "seed": _ints(seed),
            "fee": fee,
            "rng_seed": _ints(rng_seed),
            "inputs": _ints(serialized_inputs),
            "refund": refund,
            "output": output,
            "openings": _ints(serialized_openings),
            "sender_index": sender_index,
            "gas_limit": gas_limit,
            "gas_price": gas_price,
        }
        return bytes(parse_model(UnprovenTxResponse, self._json("execute", args), "execute").tx)

    def unproven_tx_to_bytes(self, unproven_tx):
        data = self._json("unproven_tx_to_bytes", {"bytes": _ints(unproven_tx)})
        return bytes(parse_model(SerializedResponse, data, "unproven_tx_to_bytes").serialized)

    def prove_tx(self, unproven_tx, proof):
        data = self._json("prove_tx", {"unproven_tx": _ints(unproven_tx), "proof": _ints(proof)})
        proven = parse_model(ProvenTxResponse, data, "prove_tx")
        return ProvenTx(tx_bytes=bytes(proven.tx_bytes), hash=proven.hash)

    def get_stake_info(self, stake_bytes):
        data = self._json("get_stake_info", {"stake_info": _ints(stake_bytes)})
        info = parse_model(StakeInfoResponse, data, "get_stake_info")
        return StakeInfo(
            has_key=info.has_key,
            has_staked=info.has_staked,
            eligibility=info.eligibility,
            amount=info.amount,
            reward=info.reward,
            counter=info.counter,
        )

    def _proof_request(self, function, seed, sender_index, refund, value, gas_limit, gas_price, rng_seed):
        data = self._json(function, {
            "rng_seed": _ints(rng_seed),
            "seed": _ints(seed),
            "refund": refund,
            "value": value,
            "sender_index": sender_index,
            "gas_limit": gas_limit,
            "gas_price": gas_price,
        })
        args = parse_model(ProofArgsResponse, data, function)
        return SpendProofRequest(
            proof_input=bytes(args.proof_input),
            crossover=args.crossover,
            blinder=args.blinder,
            fee=args.fee,
            unstake_note=args.unstake_note,
        )

    def _call_data(self, function, args) -> CallDataResponse:
        return parse_model(CallDataResponse, self._json(function, args), function)

    def stct_proof_request(self, seed, sender_index, refund, value, gas_limit, gas_price, rng_seed):
        return self._proof_request("get_stct_proof", seed, sender_index, refund, value,
                                   gas_limit, gas_price, rng_seed)

    def stake_call_data(self, seed, staker_index, spend_proof, value, counter):
        data = self._call_data("get_stake_call_data", {
            "staker_index": staker_index,
            "seed": _ints(seed),
            "spend_proof": _ints(spend_proof),
            "value": value,
            "counter": counter,
        })
        return CallData(contract=data.contract, method=data.method, payload=data.payload)

    def wfct_proof_request(self, seed, sender_index, refund, value, gas_limit, gas_price, rng_seed):
        return self._proof_request("get_wfct_proof", seed, sender_index, refund, value,
                                   gas_limit, gas_price, rng_seed)

    def unstake_call_data(self, seed, sender_index, unstake_proof, unstake_note, counter):
        data = self._call_data("get_unstake_call_data", {
            "sender_index": sender_index,
            "seed": _ints(seed),
            "unstake_proof": _ints(unstake_proof),
            "unstake_note": unstake_note,
            "counter": counter,
        })
        return CallData(contract=data.contract, method=data.method, payload=data.payload)

    def _contract_call(self, function, args) -> ContractCall:
        data = self._call_data(function, args)
        return ContractCall(
            call_data=CallData(contract=data.contract, method=data.method, payload=data.payload),
            crossover=Crossover(crossover=data.crossover, blinder=data.blinder, value=0),
            fee=data.fee,
        )

    def withdraw_call_data(self, seed, sender_index, refund, counter, gas_limit, gas_price, rng_seed):
        return self._contract_call("get_withdraw_call_data", {
            "rng_seed": _ints(rng_seed),
            "seed": _ints(seed),
            "refund": refund,
            "sender_index": sender_index,
            "owner_index": sender_index,
            "counter": counter,
            "gas_limit": gas_limit,
            "gas_price": gas_price,
        })

    def allow_call_data(self, seed, sender_index, staker_index, refund, counter,
                        gas_limit, gas_price, rng_seed):
        return self._contract_call("get_allow_call_data", {
            "rng_seed": _ints(rng_seed),
            "seed": _ints(seed),
            "refund": refund,
            "sender_index": sender_index,
            "owner_index": sender_index,
            "staker_index": staker_index,
            "counter": counter,
            "gas_limit": gas_limit,
            "gas_price": gas_price,
        })

    def history(self, seed, index, notes, tx_data):
        args = {
            "seed": _ints(seed),
            "index": index,
            "notes": [
                {
                    "pos": n.pos,
                    "psk": n.psk,
                    "note": _ints(n.note),
                    "nullifier": _ints(n.nullifier),
                    "block_height": n.block_height,
                }
                for n in notes
            ],
            "tx_data": [
                {
                    "block_height": entry["block_height"],
                    "txs": [{"raw_tx": tx.raw_tx, "gas_spent": tx.gas_spent} for tx in entry["txs"]],
                }
                for entry in tx_data
            ],
        }
        data = parse_model(HistoryResponse, self._json("get_history", args), "get_history")
        return [
            TxData(amount=h.amount, block_height=h.block_height, direction=h.direction,
                   fee=h.fee, id=h.id)
            for h in data.history
        ]

    def to_base_units(self, amount):
        return int(self._amount("lux_to_dusk", {"lux": amount}, "dusk"))

    def from_base_units(self, value):
        return float(self._amount("dusk_to_lux", {"dusk": value}, "lux"))



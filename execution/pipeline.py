"""
Transaction execution: collect inputs, build, prove, broadcast, confirm.

One ``ExecutionPipeline`` drives one transaction. Its ``state`` walks

    COLLECTING -> BUILDING -> REQUESTING_PROOF -> ASSEMBLING
    -> PREVERIFYING -> PROPAGATING -> AWAITING_CONFIRMATION

and ends in ACCEPTED, REJECTED, TIMED_OUT or FAILED. ``history`` keeps
every state entered, in order.
"""

import asyncio
import os
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, List, Optional

from config.wallet_config import WalletConfig
from database.note_store import NoteStore
from errors.exceptions import (
    ConfirmationTimeoutError, PreconditionError, TransactionRejectedError,
    TransportError,
)
from log_utils import get_logger, log_performance
from models.records import CallData, Crossover, Gas, Opening, ProvenTx, TxStatus
from oracle.crypto_oracle import CryptoOracle

logger = get_logger(__name__)


class PipelineState(Enum):
    COLLECTING = "collecting"
    BUILDING = "building"
    REQUESTING_PROOF = "requesting_proof"
    ASSEMBLING = "assembling"
    PREVERIFYING = "preverifying"
    PROPAGATING = "propagating"
    AWAITING_CONFIRMATION = "awaiting_confirmation"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    TIMED_OUT = "timed_out"
    FAILED = "failed"


TERMINAL_STATES = frozenset({
    PipelineState.ACCEPTED,
    PipelineState.REJECTED,
    PipelineState.TIMED_OUT,
    PipelineState.FAILED,
})


@dataclass
class TxIntent:
    """What a transaction should do, independent of the inputs that pay for it"""
    output: Optional[dict] = None
    call_data: Optional[CallData] = None
    crossover: Optional[Crossover] = None
    fee: Any = None
    gas: Gas = field(default_factory=Gas)
    rng_seed: Optional[bytes] = None


@dataclass
class PendingTransaction:
    unproven_tx: Optional[bytes] = None
    proof: Optional[bytes] = None
    proven: Optional[ProvenTx] = None


class ConfirmationPoller:
    """Poll the tx status at a fixed interval, up to ``max_attempts`` times.

    Every query is preceded by a sleep, so no answer is ever requested
    earlier than ``interval`` after submission. Setting ``cancel`` stops
    polling with ``asyncio.CancelledError``.
    """

    def __init__(self, transport, interval: float, max_attempts: int,
                 sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
                 cancel: Optional[asyncio.Event] = None):
        self.transport = transport
        self.interval = interval
        self.max_attempts = max_attempts
        self.sleep = sleep
        self.cancel = cancel

    def _check_cancelled(self, tx_hash: str):
        if self.cancel is not None and self.cancel.is_set():
            logger.info("Confirmation polling cancelled", extra={"tx_hash": tx_hash})
            raise asyncio.CancelledError()

    async def wait(self, tx_hash: str) -> TxStatus:
        for attempt in range(1, self.max_attempts + 1):
            self._check_cancelled(tx_hash)
            await self.sleep(self.interval)
            self._check_cancelled(tx_hash)

            status = await self.transport.query_tx_status(tx_hash)
            if not status.found:
                logger.debug(f"tx not indexed yet (attempt {attempt}/{self.max_attempts})",
                             extra={"tx_hash": tx_hash})
                continue
            if status.errored:
                raise TransactionRejectedError(tx_hash, status.message)
            return status

        raise ConfirmationTimeoutError(tx_hash, self.max_attempts, self.interval)


class ExecutionPipeline:
    def __init__(self, config: WalletConfig, transport, oracle: CryptoOracle, store: NoteStore,
                 sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
                 cancel: Optional[asyncio.Event] = None):
        self.config = config
        self.transport = transport
        self.oracle = oracle
        self.store = store
        self.poller = ConfirmationPoller(
            transport, config.TX_POLL_INTERVAL, config.TX_POLL_ATTEMPTS, sleep=sleep, cancel=cancel
        )
        self.state: Optional[PipelineState] = None
        self.history: List[PipelineState] = []
        self.pending = PendingTransaction()
        self._log = logger

    def _enter(self, state: PipelineState):
        self.state = state
        self.history.append(state)
        self._log.debug(f"Pipeline -> {state.value}", extra={"state": state.value})

    async def _collect(self, psk: str):
        notes = self.store.get_unspent(psk)
        openings: List[Opening] = []
        for note in notes:
            raw = await self.transport.fetch_opening(self.oracle.serialize_u64(note.pos))
            if raw:
                openings.append(Opening(pos=note.pos, opening=bytes(raw)))
            else:
                # still spent as an input; the oracle decides what to do without it
                self._log.warning(f"No opening for note {note.pos}", extra={"pos": note.pos})
        return [n.note for n in notes], openings

    @log_performance(logger, "execute")
    async def execute(self, seed: bytes, psk: str, intent: TxIntent) -> str:
        """Run the transaction to a terminal state and return its hash"""
        self._log = logger.with_context(psk=psk)
        try:
            self._enter(PipelineState.COLLECTING)
            psks = self.oracle.public_spend_keys(seed)
            if psk not in psks:
                raise PreconditionError(f"Sender {psk} does not belong to this wallet")
            sender_index = psks.index(psk)
            inputs, openings = await self._collect(psk)

            self._enter(PipelineState.BUILDING)
            self.pending.unproven_tx = self.oracle.build_unproven_tx(
                seed,
                inputs,
                openings,
                intent.output,
                intent.call_data,
                intent.crossover,
                intent.fee,
                intent.gas.limit,
                intent.gas.price,
                psk,
                sender_index,
                intent.rng_seed or os.urandom(32),
            )

            self._enter(PipelineState.REQUESTING_PROOF)
            self.pending.proof = await self.transport.submit_proof_request(
                self.oracle.unproven_tx_to_bytes(self.pending.unproven_tx)
            )

            self._enter(PipelineState.ASSEMBLING)
            proven = self.oracle.prove_tx(self.pending.unproven_tx, self.pending.proof)
            self.pending.proven = proven
            self._log = self._log.with_context(tx_hash=proven.hash)

            self._enter(PipelineState.PREVERIFYING)
            try:
                status = await self.transport.submit_preverify(proven.tx_bytes)
                self._log.info("Preverify accepted", extra={"status_code": status})
            except TransportError as e:
                self._log.warning(f"Preverify failed, propagating anyway: {e.message}",
                                  extra={"status_code": e.status})

            self._enter(PipelineState.PROPAGATING)
            status = await self.transport.submit_propagate(proven.tx_bytes)
            self._log.info("Transaction propagated", extra={"status_code": status})

            self._enter(PipelineState.AWAITING_CONFIRMATION)
            await self.poller.wait(proven.hash)
        except TransactionRejectedError as e:
            self._enter(PipelineState.REJECTED)
            self._log.error(f"Transaction rejected: {e.reason}")
            raise
        except ConfirmationTimeoutError:
            self._enter(PipelineState.TIMED_OUT)
            self._log.error("Transaction was not confirmed in time")
            raise
        except asyncio.CancelledError:
            self._enter(PipelineState.FAILED)
            raise
        except Exception as e:
            failed_in = self.state
            self._enter(PipelineState.FAILED)
            self._log.error(f"Pipeline failed in {failed_in.value if failed_in else 'start'}: {e}")
            raise

        self._enter(PipelineState.ACCEPTED)
        self._log.info("Transaction accepted")
        return proven.hash

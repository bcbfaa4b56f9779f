"""
Transaction intents for the transfer and stake contracts.

Each builder checks its preconditions, gathers what the contract call
needs (stake info, contract-specific proofs) and returns a ``TxIntent``
for ``ExecutionPipeline.execute``. Nothing here touches the note store
except to read balances.
"""

import os
from typing import List, Optional

from config.wallet_config import WalletConfig
from database.note_store import NoteStore
from errors.exceptions import PreconditionError
from log_utils import get_logger
from models.records import BalanceInfo, Crossover, Gas, StakeInfo
from oracle.crypto_oracle import CryptoOracle
from execution.pipeline import TxIntent

logger = get_logger(__name__)


class ContractBuilder:
    def __init__(self, config: WalletConfig, transport, oracle: CryptoOracle, store: NoteStore):
        self.config = config
        self.transport = transport
        self.oracle = oracle
        self.store = store

    def index_of(self, seed: bytes, psk: str, psks: Optional[List[str]] = None) -> int:
        psks = psks if psks is not None else self.oracle.public_spend_keys(seed)
        if psk not in psks:
            raise PreconditionError(f"psk {psk} not found in wallet")
        return psks.index(psk)

    def balance(self, seed: bytes, psk: str) -> BalanceInfo:
        """Spendable balance of ``psk`` in display units"""
        notes = [n.note for n in self.store.get_unspent(psk)]
        info = self.oracle.balance(seed, notes)
        return BalanceInfo(
            value=self.oracle.from_base_units(info.value),
            maximum=self.oracle.from_base_units(info.maximum),
        )

    async def stake_info(self, seed: bytes, index: int) -> StakeInfo:
        """Stake of key ``index``, amounts in base units"""
        raw = await self.transport.get_stake(self.oracle.public_key(seed, index))
        info = self.oracle.get_stake_info(raw)
        info.epoch = info.eligibility / self.config.EPOCH_BLOCKS
        return info

    def transfer(self, receiver: str, amount: float, gas: Gas) -> TxIntent:
        if amount <= 0:
            raise PreconditionError("Transfer amount must be positive")
        output = {
            "receiver": receiver,
            "note_type": "Obfuscated",
            "ref_id": 1,
            "value": self.oracle.to_base_units(amount),
        }
        return TxIntent(output=output, gas=gas)

    async def stake(self, seed: bytes, psk: str, amount: float, gas: Gas) -> TxIntent:
        min_stake = self.config.MIN_STAKE
        if amount < min_stake:
            raise PreconditionError(f"Stake amount needs to be at least {min_stake}")

        index = self.index_of(seed, psk)
        if self.balance(seed, psk).value < min_stake:
            raise PreconditionError(f"Balance needs to be at least the minimum stake of {min_stake}")

        info = await self.stake_info(seed, index)
        if info.has_staked:
            raise PreconditionError("Cannot stake if already staked")
        if not info.has_key:
            raise PreconditionError(f"psk {psk} is not allowed to stake")

        value = self.oracle.to_base_units(amount)
        rng_seed = os.urandom(32)
        request = self.oracle.stct_proof_request(
            seed, index, psk, value, gas.limit, gas.price, rng_seed
        )
        proof = await self.transport.submit_proof_request(request.proof_input, "prove_stct")
        call_data = self.oracle.stake_call_data(seed, index, proof, value, info.counter)

        logger.info(f"Stake of {amount} prepared", extra={"psk": psk})
        return TxIntent(
            call_data=call_data,
            crossover=Crossover(crossover=request.crossover, blinder=request.blinder, value=value),
            fee=request.fee,
            gas=gas,
            rng_seed=rng_seed,
        )

    async def unstake(self, seed: bytes, psk: str, gas: Gas) -> TxIntent:
        index = self.index_of(seed, psk)
        info = await self.stake_info(seed, index)
        if not info.has_staked or info.amount is None:
            raise PreconditionError("Cannot unstake if there's no stake")

        rng_seed = os.urandom(32)
        request = self.oracle.wfct_proof_request(
            seed, index, psk, info.amount, gas.limit, gas.price, rng_seed
        )
        proof = await self.transport.submit_proof_request(request.proof_input, "prove_wfct")
        call_data = self.oracle.unstake_call_data(
            seed, index, proof, request.unstake_note, info.counter
        )

        return TxIntent(
            call_data=call_data,
            crossover=Crossover(crossover=request.crossover, blinder=request.blinder, value=0),
            fee=request.fee,
            gas=gas,
            rng_seed=rng_seed,
        )

    async def withdraw_reward(self, seed: bytes, psk: str, gas: Gas) -> TxIntent:
        index = self.index_of(seed, psk)
        info = await self.stake_info(seed, index)
        if not info.has_staked or info.reward <= 0:
            raise PreconditionError("No reward to withdraw")

        rng_seed = os.urandom(32)
        call = self.oracle.withdraw_call_data(
            seed, index, psk, info.counter, gas.limit, gas.price, rng_seed
        )
        return TxIntent(call_data=call.call_data, crossover=call.crossover, fee=call.fee,
                        gas=gas, rng_seed=rng_seed)

    async def stake_allow(self, seed: bytes, psk: str, staker: str, gas: Gas) -> TxIntent:
        """Grant ``staker`` permission to stake, paid for by ``psk``"""
        psks = self.oracle.public_spend_keys(seed)
        sender_index = self.index_of(seed, psk, psks)
        staker_index = self.index_of(seed, staker, psks)

        info = await self.stake_info(seed, staker_index)
        if info.has_key:
            raise PreconditionError(f"psk {staker} is already allowed to stake")

        rng_seed = os.urandom(32)
        call = self.oracle.allow_call_data(
            seed, sender_index, staker_index, psk, info.counter, gas.limit, gas.price, rng_seed
        )
        return TxIntent(call_data=call.call_data, crossover=call.crossover, fee=call.fee,
                        gas=gas, rng_seed=rng_seed)

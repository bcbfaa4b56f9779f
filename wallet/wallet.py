"""
Wallet facade: one seed, one note store session, one node.
"""

import asyncio
from typing import Any, Awaitable, Callable, List, Optional

from config.wallet_config import WalletConfig
from database.note_store import NoteStore, open_note_store
from execution.contracts import ContractBuilder
from execution.pipeline import ExecutionPipeline, TxIntent
from log_utils import get_logger
from models.records import BalanceInfo, Gas, StakeInfo, TxData
from oracle.crypto_oracle import CryptoOracle
from sync.sync import SyncEngine, SyncResult
from transport.ledger_transport import LedgerTransport

logger = get_logger(__name__)


class Wallet:
    def __init__(self, seed: bytes, oracle: CryptoOracle, config: Optional[WalletConfig] = None,
                 transport: Optional[LedgerTransport] = None, store: Optional[NoteStore] = None,
                 sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep):
        self.seed = bytes(seed)
        self.oracle = oracle
        self.config = config or WalletConfig()
        self.transport = transport or LedgerTransport(self.config)
        self.store = store or open_note_store(self.config.NOTE_STORE_PATH, self.config.SESSION_ID)
        self.contracts = ContractBuilder(self.config, self.transport, self.oracle, self.store)
        self.last_pipeline: Optional[ExecutionPipeline] = None
        self._sleep = sleep
        self._sync_lock = asyncio.Lock()
        self.log = logger.with_context(session=self.config.SESSION_ID)

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()

    async def close(self):
        close = getattr(self.transport, "close", None)
        if close is not None:
            await close()
        self.store.close()

    # notes

    async def sync(self) -> SyncResult:
        """Bring the local note cache up to date with the chain"""
        async with self._sync_lock:
            engine = SyncEngine(self.config, self.transport, self.oracle, self.store)
            return await engine.run(self.seed)

    def get_psks(self) -> List[str]:
        return self.oracle.public_spend_keys(self.seed)

    def get_balance(self, psk: str) -> BalanceInfo:
        return self.contracts.balance(self.seed, psk)

    def reset(self):
        """Forget every cached note and restart the next sync from scratch"""
        self.store.clear()
        self.log.info("Wallet state reset")

    # transactions

    async def _execute(self, psk: str, intent: TxIntent, cancel: Optional[asyncio.Event]) -> str:
        pipeline = ExecutionPipeline(
            self.config, self.transport, self.oracle, self.store, sleep=self._sleep, cancel=cancel
        )
        self.last_pipeline = pipeline
        return await pipeline.execute(self.seed, psk, intent)

    async def transfer(self, sender: str, receiver: str, amount: float,
                       gas: Optional[Gas] = None, cancel: Optional[asyncio.Event] = None) -> str:
        self.contracts.index_of(self.seed, sender)
        intent = self.contracts.transfer(receiver, amount, gas or Gas())
        return await self._execute(sender, intent, cancel)

    async def stake(self, psk: str, amount: float, gas: Optional[Gas] = None,
                    cancel: Optional[asyncio.Event] = None) -> str:
        intent = await self.contracts.stake(self.seed, psk, amount, gas or Gas())
        return await self._execute(psk, intent, cancel)

    async def unstake(self, psk: str, gas: Optional[Gas] = None,
                      cancel: Optional[asyncio.Event] = None) -> str:
        intent = await self.contracts.unstake(self.seed, psk, gas or Gas())
        return await self._execute(psk, intent, cancel)

    async def withdraw_reward(self, psk: str, gas: Optional[Gas] = None,
                              cancel: Optional[asyncio.Event] = None) -> str:
        intent = await self.contracts.withdraw_reward(self.seed, psk, gas or Gas())
        return await self._execute(psk, intent, cancel)

    async def stake_allow(self, psk: str, staker: str, gas: Optional[Gas] = None,
                          cancel: Optional[asyncio.Event] = None) -> str:
        intent = await self.contracts.stake_allow(self.seed, psk, staker, gas or Gas())
        return await self._execute(psk, intent, cancel)

    # chain queries

    async def stake_info(self, psk: str) -> StakeInfo:
        index = self.contracts.index_of(self.seed, psk)
        info = await self.contracts.stake_info(self.seed, index)
        if info.amount:
            info.amount = self.oracle.from_base_units(info.amount)
        if info.reward:
            info.reward = self.oracle.from_base_units(info.reward)
        return info

    async def history(self, psk: str) -> List[TxData]:
        index = self.contracts.index_of(self.seed, psk)
        notes = self.store.get_all(psk)

        tx_data = []
        for height in sorted({n.block_height for n in notes}):
            txs = await self.transport.block_transactions(height)
            tx_data.append({"block_height": height, "txs": txs})

        return self.oracle.history(self.seed, index, notes, tx_data)

    async def network_block_height(self) -> int:
        return await self.transport.block_height()


def create_wallet(seed: bytes, oracle: CryptoOracle, **overrides) -> Wallet:
    """Wallet with its own settings; ``overrides`` are WalletConfig keywords"""
    return Wallet(seed, oracle, config=WalletConfig(**overrides))

"""
HTTP transport to the ledger node and the prover.

Every request is a POST of ``u32le(len(name)) || name || payload`` to
``<base>/<target_type>/<target>``. Contract queries go to target type ``1``
with the contract id as target; prover calls go to ``2/rusk`` on the prover
base URL and chain calls (propagation, GraphQL) go to ``2/Chain``.
"""

import asyncio
import struct
from contextlib import asynccontextmanager
from typing import AsyncIterator, List, Optional

import aiohttp

from config.wallet_config import WalletConfig
from errors.exceptions import TransportError
from log_utils import get_logger
from models.records import BlockTransaction, TxStatus
from models.validation import (
    BlockHeightResponse, BlockResponse, TxStatusResponse, parse_json_bytes,
    parse_model,
)

logger = get_logger(__name__)

_NAME_LEN = struct.Struct("<I")

CONTRACT_TARGET = "1"
HOST_TARGET = "2"
PROVER = "rusk"
CHAIN = "Chain"


def frame_request(name: str, payload: bytes = b"") -> bytes:
    encoded = name.encode("utf-8")
    return _NAME_LEN.pack(len(encoded)) + encoded + bytes(payload)


def _is_success(status: int) -> bool:
    return 200 <= status < 300


class LedgerTransport:
    """Named request/response and streaming calls against the node"""

    def __init__(self, config: WalletConfig, session: Optional[aiohttp.ClientSession] = None):
        self.config = config
        self._session = session
        self._owns_session = session is None

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.config.HTTP_TIMEOUT)
            )
            self._owns_session = True
        return self._session

    async def close(self):
        if self._session is not None and self._owns_session and not self._session.closed:
            await self._session.close()
        self._session = None

    def _headers(self, feeder: bool = False) -> dict:
        headers = {
            "Content-Type": "application/octet-stream",
            "Rusk-Version": self.config.RUSK_VERSION,
        }
        if feeder:
            headers["Rusk-Feeder"] = "1"
        return headers

    @staticmethod
    def _url(base: str, target_type: str, target: str) -> str:
        return f"{base.rstrip('/')}/{target_type}/{target}"

    @asynccontextmanager
    async def _open(self, base: str, target_type: str, target: str, name: str,
                    payload: bytes, feeder: bool = False):
        url = self._url(base, target_type, target)
        try:
            async with self._get_session().post(
                url, data=frame_request(name, payload), headers=self._headers(feeder)
            ) as resp:
                if not _is_success(resp.status):
                    body = await resp.read()
                    logger.warning(
                        f"{name} returned HTTP {resp.status}",
                        extra={"request_name": name, "status_code": resp.status},
                    )
                    raise TransportError(
                        f"{name} failed with status {resp.status}: {body[:200]!r}",
                        status=resp.status,
                        request_name=name,
                    )
                yield resp
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.error(f"{name} request to {url} failed: {e}", extra={"request_name": name})
            raise TransportError(f"{name} request failed: {e}", request_name=name) from e

    async def _request(self, base: str, target_type: str, target: str, name: str,
                       payload: bytes = b"") -> bytes:
        async with self._open(base, target_type, target, name, payload) as resp:
            return await resp.read()

    async def _contract(self, contract: str, name: str, payload: bytes) -> bytes:
        return await self._request(self.config.NODE_URL, CONTRACT_TARGET, contract, name, payload)

    async def stream_leaves(self, from_pos: bytes) -> AsyncIterator[bytes]:
        """Yield the body of ``leaves_from_pos`` in network-arrival chunks"""
        name = "leaves_from_pos"
        async with self._open(self.config.NODE_URL, CONTRACT_TARGET,
                              self.config.TRANSFER_CONTRACT, name, from_pos,
                              feeder=True) as resp:
            try:
                async for chunk in resp.content.iter_any():
                    if chunk:
                        yield chunk
            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                raise TransportError(f"{name} stream broke: {e}", request_name=name) from e

    async def query_existing_nullifiers(self, nullifiers: bytes) -> bytes:
        return await self._contract(self.config.TRANSFER_CONTRACT, "existing_nullifiers", nullifiers)

    async def fetch_opening(self, pos: bytes) -> bytes:
        """Merkle opening of a position; an empty body means there is none"""
        return await self._contract(self.config.TRANSFER_CONTRACT, "opening", pos)

    async def get_stake(self, public_key: bytes) -> bytes:
        return await self._contract(self.config.STAKE_CONTRACT, "get_stake", public_key)

    async def submit_proof_request(self, proof_input: bytes, request_name: str = "prove_execute") -> bytes:
        return await self._request(self.config.PROVER_URL, HOST_TARGET, PROVER, request_name, proof_input)

    async def submit_preverify(self, tx_bytes: bytes) -> int:
        async with self._open(self.config.PROVER_URL, HOST_TARGET, PROVER, "preverify", tx_bytes) as resp:
            return resp.status

    async def submit_propagate(self, tx_bytes: bytes) -> int:
        async with self._open(self.config.NODE_URL, HOST_TARGET, CHAIN, "propagate_tx", tx_bytes) as resp:
            return resp.status

    async def graphql(self, query: str) -> dict:
        raw = await self._request(self.config.NODE_URL, HOST_TARGET, CHAIN, "gql", query.encode("utf-8"))
        return parse_json_bytes(raw, "gql")

    async def query_tx_status(self, tx_hash: str) -> TxStatus:
        data = await self.graphql(f'query {{ tx(hash: "{tx_hash}") {{ err }} }}')
        status = parse_model(TxStatusResponse, data, "tx status")
        if status.tx is None:
            return TxStatus(found=False)
        if status.tx.err:
            return TxStatus(found=True, errored=True, message=status.tx.err)
        return TxStatus(found=True)

    async def block_transactions(self, height: int) -> List[BlockTransaction]:
        """Raw transactions of a block along with the gas each one spent"""
        data = await self.graphql(f"query {{ block(height: {height}) {{ transactions {{ id raw }} }} }}")
        block = parse_model(BlockResponse, data, "block").block
        if block is None:
            return []

        txs = []
        for tx in block.transactions:
            spent = await self.graphql(f'query {{ tx(hash: "{tx.id}") {{ gasSpent, err }} }}')
            status = parse_model(TxStatusResponse, spent, "tx gas")
            gas_spent = status.tx.gasSpent if status.tx and status.tx.gasSpent else 0
            txs.append(BlockTransaction(raw_tx=tx.raw, gas_spent=gas_spent))
        return txs

    async def block_height(self) -> int:
        data = await self.graphql("query { block(height: -1) { header { height } } }")
        return parse_model(BlockHeightResponse, data, "block height").block.header.height

# tests/test_transport.py
"""
Unit-tests for transport.ledger_transport against a fake aiohttp session
"""
from __future__ import annotations
import struct
import aiohttp
import pytest

from conftest import FakeResponse, FakeSession
from config.wallet_config import WalletConfig
from errors.exceptions import DecodeError, TransportError
from transport.ledger_transport import LedgerTransport, frame_request

CFG = WalletConfig(node_url="http://node:8080/", prover_url="http://prover:9000",
                   transfer_contract="aa", stake_contract="bb")


def _transport(*responses, error=None):
    session = FakeSession(responses, error=error)
    return LedgerTransport(CFG, session=session), session


def test_frame_request():
    framed = frame_request("opening", b"\x01\x02")
    assert framed[:4] == struct.pack("<I", 7)
    assert framed[4:11] == b"opening"
    assert framed[11:] == b"\x01\x02"


@pytest.mark.asyncio
async def test_contract_query_routing_and_headers():
    transport, session = _transport(FakeResponse(body=b"nulls"))

    assert await transport.query_existing_nullifiers(b"n") == b"nulls"

    req = session.requests[0]
    assert req["url"] == "http://node:8080/1/aa"
    assert req["data"] == frame_request("existing_nullifiers", b"n")
    assert req["headers"]["Content-Type"] == "application/octet-stream"
    assert req["headers"]["Rusk-Version"] == CFG.RUSK_VERSION
    assert "Rusk-Feeder" not in req["headers"]


@pytest.mark.asyncio
async def test_stake_and_prover_routing():
    transport, session = _transport()

    await transport.get_stake(b"pk")
    await transport.submit_proof_request(b"x", "prove_stct")
    await transport.submit_preverify(b"tx")
    await transport.submit_propagate(b"tx")

    urls = [r["url"] for r in session.requests]
    assert urls == [
        "http://node:8080/1/bb",
        "http://prover:9000/2/rusk",
        "http://prover:9000/2/rusk",
        "http://node:8080/2/Chain",
    ]
    assert session.requests[1]["data"] == frame_request("prove_stct", b"x")


@pytest.mark.asyncio
async def test_stream_leaves_yields_chunks():
    transport, session = _transport(FakeResponse(chunks=[b"ab", b"", b"cd"]))

    chunks = [c async for c in transport.stream_leaves(b"\x00" * 8)]

    assert chunks == [b"ab", b"cd"]
    assert session.requests[0]["headers"]["Rusk-Feeder"] == "1"


@pytest.mark.asyncio
async def test_empty_opening_is_not_an_error():
    transport, _ = _transport(FakeResponse(body=b""))
    assert await transport.fetch_opening(b"pos") == b""


@pytest.mark.asyncio
async def test_non_2xx_raises_transport_error():
    transport, _ = _transport(FakeResponse(status=500, body=b"boom"))

    with pytest.raises(TransportError) as exc:
        await transport.submit_proof_request(b"x")

    assert exc.value.status == 500
    assert exc.value.request_name == "prove_execute"
    assert exc.value.retryable


@pytest.mark.asyncio
async def test_client_errors_are_translated():
    transport, _ = _transport(error=aiohttp.ClientConnectionError("refused"))
    with pytest.raises(TransportError) as exc:
        await transport.fetch_opening(b"pos")
    assert exc.value.status is None


@pytest.mark.asyncio
async def test_tx_status():
    transport, session = _transport(
        FakeResponse(body=b'{"tx": null}'),
        FakeResponse(body=b'{"tx": {"err": null}}'),
        FakeResponse(body=b'{"tx": {"err": "nope"}}'),
    )

    pending = await transport.query_tx_status("ff")
    accepted = await transport.query_tx_status("ff")
    rejected = await transport.query_tx_status("ff")

    assert not pending.found
    assert accepted.found and not accepted.errored
    assert rejected.errored and rejected.message == "nope"
    assert session.requests[0]["data"] == frame_request("gql", b'query { tx(hash: "ff") { err } }')


@pytest.mark.asyncio
async def test_graphql_garbage_is_decode_error():
    transport, _ = _transport(FakeResponse(body=b"<html>"))
    with pytest.raises(DecodeError):
        await transport.query_tx_status("ff")


@pytest.mark.asyncio
async def test_block_transactions_and_height():
    transport, _ = _transport(
        FakeResponse(body=b'{"block": {"transactions": [{"id": "t1", "raw": "00ff"}]}}'),
        FakeResponse(body=b'{"tx": {"gasSpent": 321, "err": null}}'),
        FakeResponse(body=b'{"block": {"header": {"height": 99}}}'),
    )

    txs = await transport.block_transactions(5)
    height = await transport.block_height()

    assert [(t.raw_tx, t.gas_spent) for t in txs] == [("00ff", 321)]
    assert height == 99


@pytest.mark.asyncio
async def test_close_leaves_injected_session_alone():
    transport, session = _transport()
    await transport.close()
    assert not session.closed

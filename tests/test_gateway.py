"""
Tests for the ledger gateway: RPC normalization and web3 error mapping.
"""

import asyncio
import json
from types import SimpleNamespace
from typing import Any

import pytest
import websockets
from web3.exceptions import TransactionNotFound

from xfuel_listener.errors import GatewayUnavailable, SubmissionFailed, SubscriptionError
from xfuel_listener.gateway import (
    LogRecord,
    MockLedgerGateway,
    Receipt,
    Web3Gateway,
    WebSocketLogSubscription,
    default_ws_url,
)

TX_HASH = "0x" + "ab" * 32


async def _resolve(value: Any) -> Any:
    if isinstance(value, Exception):
        raise value
    return value


class FakeEth:
    """Stand-in for ``AsyncWeb3.eth``; awaitable properties return fresh coroutines."""

    def __init__(self, **responses: Any):
        self.responses = responses
        self.requests: list[tuple] = []

    @property
    def chain_id(self):
        return _resolve(self.responses.get("chain_id", 365))

    @property
    def gas_price(self):
        return _resolve(self.responses.get("gas_price", 4_000_000_000_000))

    def get_transaction_count(self, account: str, block: str):
        self.requests.append(("get_transaction_count", account, block))
        return _resolve(self.responses.get("nonce", 0))

    def send_raw_transaction(self, raw: bytes):
        self.requests.append(("send_raw_transaction", raw))
        return _resolve(self.responses.get("send", bytes.fromhex("ab" * 32)))

    def get_transaction_receipt(self, tx_hash: str):
        self.requests.append(("get_transaction_receipt", tx_hash))
        return _resolve(self.responses.get("receipt"))


def make_gateway(**responses: Any) -> tuple[Web3Gateway, FakeEth]:
    eth = FakeEth(**responses)
    return Web3Gateway("http://localhost:8545", w3=SimpleNamespace(eth=eth)), eth


class TestRpcNormalization:
    """Tests for Receipt and LogRecord construction from RPC payloads."""

    def test_receipt_from_hex_strings(self) -> None:
        receipt = Receipt.from_rpc({
            "status": "0x1",
            "blockNumber": "0x2a",
            "transactionHash": TX_HASH,
            "gasUsed": "0x5208",
        })

        assert receipt.succeeded
        assert receipt.block_number == 42
        assert receipt.tx_hash == TX_HASH
        assert receipt.gas_used == 21000

    def test_receipt_from_web3_types(self) -> None:
        receipt = Receipt.from_rpc({
            "status": 0,
            "blockNumber": 7,
            "transactionHash": bytes.fromhex("ab" * 32),
            "gasUsed": None,
        })

        assert not receipt.succeeded
        assert receipt.tx_hash == TX_HASH
        assert receipt.gas_used is None

    def test_log_from_subscription_payload(self) -> None:
        log = LogRecord.from_rpc({
            "address": "0x1234567890123456789012345678901234567890",
            "topics": ["0x" + "11" * 32, "0x" + "22" * 32],
            "data": "0x" + "00" * 64,
            "blockNumber": "0x10",
            "transactionHash": TX_HASH,
            "logIndex": "0x3",
        })

        assert log.topics == [bytes.fromhex("11" * 32), bytes.fromhex("22" * 32)]
        assert log.data == bytes(64)
        assert log.block_number == 16
        assert log.tx_hash == TX_HASH
        assert log.log_index == 3

    def test_log_with_missing_fields(self) -> None:
        log = LogRecord.from_rpc({"address": "0x00", "data": "0x"})

        assert log.topics == []
        assert log.data == b""
        assert log.block_number == 0
        assert log.tx_hash is None
        assert log.log_index is None

    @pytest.mark.parametrize(
        "rpc_url,expected",
        [
            ("https://eth-rpc-api-testnet.thetatoken.org/rpc", "wss://eth-rpc-api-testnet.thetatoken.org/rpc"),
            ("http://localhost:8545", "ws://localhost:8545"),
            ("ws://localhost:8546", "ws://localhost:8546"),
        ],
    )
    def test_default_ws_url(self, rpc_url: str, expected: str) -> None:
        assert default_ws_url(rpc_url) == expected


class TestWeb3Gateway:
    """Tests for Web3Gateway error mapping."""

    def test_explicit_ws_url(self) -> None:
        gateway = Web3Gateway(
            "http://localhost:8545",
            ws_url="ws://localhost:9999",
            w3=SimpleNamespace(eth=FakeEth()),
        )
        assert gateway.ws_url == "ws://localhost:9999"

    @pytest.mark.asyncio
    async def test_chain_id_and_fee(self) -> None:
        gateway, _ = make_gateway(chain_id=361, gas_price=5)

        assert await gateway.get_chain_id() == 361
        assert await gateway.suggest_fee_price() == 5

    @pytest.mark.asyncio
    async def test_nonce_uses_pending_block(self) -> None:
        gateway, eth = make_gateway(nonce=11)

        assert await gateway.get_next_nonce("0xabc") == 11
        assert eth.requests == [("get_transaction_count", "0xabc", "pending")]

    @pytest.mark.asyncio
    async def test_transport_error_is_gateway_unavailable(self) -> None:
        gateway, _ = make_gateway(nonce=ConnectionError("connection refused"))

        with pytest.raises(GatewayUnavailable, match="connection refused") as exc_info:
            await gateway.get_next_nonce("0xabc")
        assert exc_info.value.retryable

    @pytest.mark.asyncio
    async def test_fee_error_is_gateway_unavailable(self) -> None:
        gateway, _ = make_gateway(gas_price=TimeoutError("timed out"))

        with pytest.raises(GatewayUnavailable):
            await gateway.suggest_fee_price()

    @pytest.mark.asyncio
    async def test_broadcast_returns_hex_hash(self) -> None:
        gateway, eth = make_gateway()

        assert await gateway.broadcast(b"\x01\x02") == TX_HASH
        assert eth.requests == [("send_raw_transaction", b"\x01\x02")]

    @pytest.mark.asyncio
    async def test_broadcast_rejection_is_submission_failed(self) -> None:
        gateway, _ = make_gateway(send=ValueError("nonce too low"))

        with pytest.raises(SubmissionFailed, match="nonce too low"):
            await gateway.broadcast(b"\x01")

    @pytest.mark.asyncio
    async def test_unknown_receipt_is_none(self) -> None:
        gateway, _ = make_gateway(receipt=TransactionNotFound("not found"))

        assert await gateway.get_receipt(TX_HASH) is None

    @pytest.mark.asyncio
    async def test_receipt_found(self) -> None:
        gateway, _ = make_gateway(
            receipt={"status": 1, "blockNumber": 5, "transactionHash": TX_HASH, "gasUsed": 50_000}
        )

        receipt = await gateway.get_receipt(TX_HASH)

        assert receipt == Receipt(status=1, block_number=5, tx_hash=TX_HASH, gas_used=50_000)

    @pytest.mark.asyncio
    async def test_receipt_transport_error(self) -> None:
        gateway, _ = make_gateway(receipt=ConnectionError("reset"))

        with pytest.raises(GatewayUnavailable):
            await gateway.get_receipt(TX_HASH)


class TestMockLedgerGateway:
    """Tests for the in-memory gateway."""

    @pytest.mark.asyncio
    async def test_broadcast_advances_nonce(self) -> None:
        gateway = MockLedgerGateway(nonce=3)

        first = await gateway.broadcast(b"\x01")
        second = await gateway.broadcast(b"\x02")

        assert first != second
        assert await gateway.get_next_nonce("0xabc") == 5
        assert gateway.calls == ["broadcast", "broadcast", "get_next_nonce"]

    @pytest.mark.asyncio
    async def test_configured_failure(self) -> None:
        gateway = MockLedgerGateway(failures={"get_chain_id": GatewayUnavailable("down")})

        with pytest.raises(GatewayUnavailable):
            await gateway.get_chain_id()
        assert gateway.calls == ["get_chain_id"]


class FakeWebSocket:
    """Websocket double: ``recv`` answers the subscribe request, iteration replays messages."""

    def __init__(self, response: str = '{"jsonrpc":"2.0","id":1,"result":"0xsub"}', messages: Any = ()):
        self.response = response
        self.messages = list(messages)
        self.sent: list[dict] = []
        self.closed = False

    async def send(self, message: str) -> None:
        self.sent.append(json.loads(message))

    async def recv(self) -> str:
        return self.response

    async def close(self) -> None:
        self.closed = True

    async def __aiter__(self):
        for message in self.messages:
            yield message


def notification(result: dict, subscription: str = "0xsub") -> str:
    return json.dumps({
        "jsonrpc": "2.0",
        "method": "eth_subscription",
        "params": {"subscription": subscription, "result": result},
    })


def rpc_log(block: str = "0x1") -> dict:
    return {
        "address": "0x1234567890123456789012345678901234567890",
        "topics": ["0x" + "11" * 32],
        "data": "0x",
        "blockNumber": block,
        "transactionHash": TX_HASH,
        "logIndex": "0x0",
    }


def reader_for(*messages: str) -> WebSocketLogSubscription:
    subscription = WebSocketLogSubscription("ws://localhost:8546", "0x1234567890123456789012345678901234567890")
    subscription.subscription_id = "0xsub"
    subscription._ws = FakeWebSocket(messages=messages)
    return subscription


class TestWebSocketLogSubscription:
    """Tests for the websocket log reader and the subscribe handshake."""

    @pytest.mark.asyncio
    async def test_bad_log_discarded_and_next_delivered(self) -> None:
        bad = rpc_log()
        bad["topics"] = ["0xzz"]
        subscription = reader_for(notification(bad), notification(rpc_log(block="0x2")))

        await subscription._read()

        log = await asyncio.wait_for(subscription.next_log(), timeout=1.0)
        assert log.block_number == 2
        error = await asyncio.wait_for(subscription.next_error(), timeout=1.0)
        assert isinstance(error, ConnectionError)

    @pytest.mark.asyncio
    async def test_non_json_message_skipped(self) -> None:
        subscription = reader_for("not json", notification(rpc_log(block="0x3")))

        await subscription._read()

        log = await asyncio.wait_for(subscription.next_log(), timeout=1.0)
        assert log.block_number == 3

    @pytest.mark.asyncio
    async def test_remote_close_pushes_error(self) -> None:
        subscription = reader_for()

        await subscription._read()

        error = await asyncio.wait_for(subscription.next_error(), timeout=1.0)
        assert "closed by remote" in str(error)

    @pytest.mark.asyncio
    async def test_other_subscription_ignored(self) -> None:
        subscription = reader_for(
            notification(rpc_log(block="0x4"), subscription="0xother"),
            notification(rpc_log(block="0x5")),
        )

        await subscription._read()

        log = await asyncio.wait_for(subscription.next_log(), timeout=1.0)
        assert log.block_number == 5
        with pytest.raises(asyncio.TimeoutError):
            await asyncio.wait_for(subscription.next_log(), timeout=0.05)

    @pytest.mark.asyncio
    async def test_open_and_release(self, monkeypatch: pytest.MonkeyPatch) -> None:
        ws = FakeWebSocket()

        async def connect(url: str) -> FakeWebSocket:
            return ws

        monkeypatch.setattr(websockets, "connect", connect)
        subscription = WebSocketLogSubscription("ws://localhost:8546", "0x1234567890123456789012345678901234567890")

        await subscription.open()
        await subscription.unsubscribe()
        await subscription.unsubscribe()

        assert subscription.subscription_id == "0xsub"
        assert ws.sent[0]["method"] == "eth_subscribe"
        assert ws.sent[0]["params"][0] == "logs"
        assert ws.sent[-1] == {"jsonrpc": "2.0", "id": 2, "method": "eth_unsubscribe", "params": ["0xsub"]}
        assert ws.closed
        assert subscription.unsubscribe_calls == 2

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "response",
        ["<html>bad gateway</html>", '{"jsonrpc":"2.0","id":1,"error":{"code":-32601}}', "[1, 2]"],
    )
    async def test_rejected_subscribe(self, monkeypatch: pytest.MonkeyPatch, response: str) -> None:
        ws = FakeWebSocket(response=response)

        async def connect(url: str) -> FakeWebSocket:
            return ws

        monkeypatch.setattr(websockets, "connect", connect)
        subscription = WebSocketLogSubscription("ws://localhost:8546", "0x1234567890123456789012345678901234567890")

        with pytest.raises(SubscriptionError):
            await subscription.open()
        assert ws.closed

"""
Ledger gateway: the narrow set of node capabilities the listener needs.

``Web3Gateway`` talks to a real node (JSON-RPC over HTTP for requests,
``eth_subscribe`` over a websocket for logs). ``MockLedgerGateway`` keeps
everything in memory for tests and dry runs.
"""

import asyncio
import json
from dataclasses import dataclass, field
from typing import Any, Optional, Protocol

import structlog
import websockets
from web3 import AsyncHTTPProvider, AsyncWeb3, Web3
from web3.exceptions import TransactionNotFound

from .errors import GatewayUnavailable, SubmissionFailed, SubscriptionError

logger = structlog.get_logger()

SUBSCRIBE_TIMEOUT_SECONDS = 15.0


def _to_bytes(value: Any) -> bytes:
    if isinstance(value, (bytes, bytearray)):
        return bytes(value)
    text = str(value)
    if text.startswith(("0x", "0X")):
        text = text[2:]
    return bytes.fromhex(text)


def _to_int(value: Any) -> int:
    if isinstance(value, str):
        return int(value, 16) if value.startswith(("0x", "0X")) else int(value)
    return int(value)


def _to_hex(value: Any) -> str:
    return "0x" + _to_bytes(value).hex()


@dataclass(frozen=True)
class Receipt:
    """Confirmation record of a mined transaction."""

    status: int
    block_number: int
    tx_hash: str
    gas_used: Optional[int] = None

    @property
    def succeeded(self) -> bool:
        return self.status == 1

    @classmethod
    def from_rpc(cls, receipt: Any) -> "Receipt":
        return cls(
            status=_to_int(receipt["status"]),
            block_number=_to_int(receipt["blockNumber"]),
            tx_hash=_to_hex(receipt["transactionHash"]),
            gas_used=_to_int(receipt["gasUsed"]) if receipt.get("gasUsed") is not None else None,
        )


@dataclass(frozen=True)
class LogRecord:
    """Raw log as delivered by a subscription."""

    address: str
    topics: list[bytes]
    data: bytes
    block_number: int
    tx_hash: Optional[str] = None
    log_index: Optional[int] = None

    @classmethod
    def from_rpc(cls, log: Any) -> "LogRecord":
        """Normalize a JSON-RPC log object (hex strings or bytes)."""
        tx_hash = log.get("transactionHash")
        log_index = log.get("logIndex")
        return cls(
            address=str(log.get("address", "")),
            topics=[_to_bytes(t) for t in log.get("topics", [])],
            data=_to_bytes(log.get("data") or b""),
            block_number=_to_int(log.get("blockNumber") or 0),
            tx_hash=_to_hex(tx_hash) if tx_hash else None,
            log_index=_to_int(log_index) if log_index is not None else None,
        )


class LogSubscription:
    """
    Open log subscription: a log stream plus an error stream.

    Producers call ``push_log`` / ``push_error``; the consumer awaits
    ``next_log`` / ``next_error``. ``unsubscribe`` releases the underlying
    channel and is safe to call more than once.
    """

    def __init__(self) -> None:
        self._logs: asyncio.Queue[LogRecord] = asyncio.Queue()
        self._errors: asyncio.Queue[BaseException] = asyncio.Queue()
        self.closed = False
        self.unsubscribe_calls = 0

    def push_log(self, log: LogRecord) -> None:
        self._logs.put_nowait(log)

    def push_error(self, error: BaseException) -> None:
        self._errors.put_nowait(error)

    async def next_log(self) -> LogRecord:
        return await self._logs.get()

    async def next_error(self) -> BaseException:
        return await self._errors.get()

    async def unsubscribe(self) -> None:
        self.unsubscribe_calls += 1
        if self.closed:
            return
        self.closed = True
        await self._release()

    async def _release(self) -> None:
        """Hook for transports that hold a connection."""


class WebSocketLogSubscription(LogSubscription):
    """``eth_subscribe("logs")`` over a websocket connection."""

    def __init__(self, ws_url: str, address: str):
        super().__init__()
        self.ws_url = ws_url
        self.address = address
        self.subscription_id: Optional[str] = None
        self._ws: Any = None
        self._reader: Optional[asyncio.Task[None]] = None

    async def open(self) -> "WebSocketLogSubscription":
        """Connect, subscribe and start delivering logs."""
        try:
            self._ws = await websockets.connect(self.ws_url)
            await self._ws.send(json.dumps({
                "jsonrpc": "2.0",
                "id": 1,
                "method": "eth_subscribe",
                "params": ["logs", {"address": self.address}],
            }))
            response = json.loads(
                await asyncio.wait_for(self._ws.recv(), timeout=SUBSCRIBE_TIMEOUT_SECONDS)
            )
        except (
            OSError,
            asyncio.TimeoutError,
            json.JSONDecodeError,
            websockets.exceptions.WebSocketException,
        ) as e:
            await self._close_socket()
            raise SubscriptionError(f"failed to subscribe to logs: {e}") from e

        if not isinstance(response, dict) or "error" in response:
            await self._close_socket()
            reason = response.get("error") if isinstance(response, dict) else response
            raise SubscriptionError(f"failed to subscribe to logs: {reason}")

        self.subscription_id = response.get("result")
        self._reader = asyncio.create_task(self._read())

        logger.info(
            "log_subscription_opened",
            ws_url=self.ws_url,
            address=self.address,
            subscription_id=self.subscription_id,
        )
        return self

    async def _read(self) -> None:
        try:
            async for raw in self._ws:
                try:
                    message = json.loads(raw)
                except json.JSONDecodeError as e:
                    logger.warning("log_subscription_bad_message", error=str(e))
                    continue
                if not isinstance(message, dict) or message.get("method") != "eth_subscription":
                    continue
                params = message.get("params", {})
                if params.get("subscription") != self.subscription_id:
                    continue
                try:
                    log = LogRecord.from_rpc(params.get("result") or {})
                except (ValueError, TypeError, AttributeError) as e:
                    logger.warning("log_subscription_bad_log", error=str(e))
                    continue
                self.push_log(log)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.push_error(e)
            return
        self.push_error(ConnectionError("websocket closed by remote"))

    async def _release(self) -> None:
        if self._reader is not None:
            self._reader.cancel()
        if self._ws is not None and self.subscription_id is not None:
            try:
                await self._ws.send(json.dumps({
                    "jsonrpc": "2.0",
                    "id": 2,
                    "method": "eth_unsubscribe",
                    "params": [self.subscription_id],
                }))
            except websockets.exceptions.WebSocketException as e:
                logger.debug("log_unsubscribe_failed", error=str(e))
        await self._close_socket()
        logger.info("log_subscription_closed", subscription_id=self.subscription_id)

    async def _close_socket(self) -> None:
        if self._ws is not None:
            await self._ws.close()
            self._ws = None


class LedgerGateway(Protocol):
    """Node capabilities consumed by the relay and the monitor."""

    async def get_chain_id(self) -> int: ...

    async def get_next_nonce(self, account: str) -> int: ...

    async def suggest_fee_price(self) -> int: ...

    async def broadcast(self, raw_transaction: bytes) -> str: ...

    async def get_receipt(self, tx_hash: str) -> Optional[Receipt]: ...

    async def subscribe_logs(self, address: str) -> LogSubscription: ...


def default_ws_url(rpc_url: str) -> str:
    """Derive a websocket endpoint from an HTTP RPC URL."""
    if rpc_url.startswith("https://"):
        return "wss://" + rpc_url[len("https://"):]
    if rpc_url.startswith("http://"):
        return "ws://" + rpc_url[len("http://"):]
    return rpc_url


class Web3Gateway:
    """Ledger gateway backed by a JSON-RPC node."""

    def __init__(self, rpc_url: str, ws_url: Optional[str] = None, w3: Any = None):
        self.rpc_url = rpc_url
        self.ws_url = ws_url or default_ws_url(rpc_url)
        self.w3 = w3 or AsyncWeb3(AsyncHTTPProvider(rpc_url))

        logger.info("gateway_initialized", rpc_url=rpc_url, ws_url=self.ws_url)

    async def get_chain_id(self) -> int:
        try:
            return await self.w3.eth.chain_id
        except Exception as e:
            raise GatewayUnavailable(f"failed to get chain ID: {e}") from e

    async def get_next_nonce(self, account: str) -> int:
        try:
            return await self.w3.eth.get_transaction_count(account, "pending")
        except Exception as e:
            raise GatewayUnavailable(f"failed to get nonce: {e}") from e

    async def suggest_fee_price(self) -> int:
        try:
            return await self.w3.eth.gas_price
        except Exception as e:
            raise GatewayUnavailable(f"failed to get gas price: {e}") from e

    async def broadcast(self, raw_transaction: bytes) -> str:
        try:
            tx_hash = await self.w3.eth.send_raw_transaction(raw_transaction)
        except Exception as e:
            raise SubmissionFailed(f"failed to send transaction: {e}") from e
        return _to_hex(tx_hash)

    async def get_receipt(self, tx_hash: str) -> Optional[Receipt]:
        try:
            receipt = await self.w3.eth.get_transaction_receipt(tx_hash)
        except TransactionNotFound:
            return None
        except Exception as e:
            raise GatewayUnavailable(f"failed to get receipt: {e}") from e
        return Receipt.from_rpc(receipt)

    async def subscribe_logs(self, address: str) -> LogSubscription:
        subscription = WebSocketLogSubscription(self.ws_url, Web3.to_checksum_address(address))
        return await subscription.open()


@dataclass
class MockLedgerGateway:
    """
    In-memory gateway for tests and dry runs.

    Every call is appended to ``calls``. Set an entry of ``failures``
    (keyed by method name) to make that method raise.
    """

    chain_id: int = 365  # Theta testnet
    nonce: int = 0
    gas_price: int = 4_000_000_000_000
    receipt_status: Optional[int] = 1
    block_number: int = 1
    failures: dict[str, Exception] = field(default_factory=dict)
    calls: list[str] = field(default_factory=list)
    broadcasts: list[bytes] = field(default_factory=list)
    subscriptions: list[LogSubscription] = field(default_factory=list)

    def _record(self, method: str) -> None:
        self.calls.append(method)
        if method in self.failures:
            raise self.failures[method]

    async def get_chain_id(self) -> int:
        self._record("get_chain_id")
        return self.chain_id

    async def get_next_nonce(self, account: str) -> int:
        self._record("get_next_nonce")
        return self.nonce

    async def suggest_fee_price(self) -> int:
        self._record("suggest_fee_price")
        return self.gas_price

    async def broadcast(self, raw_transaction: bytes) -> str:
        self._record("broadcast")
        self.broadcasts.append(raw_transaction)
        self.nonce += 1
        return _to_hex(Web3.keccak(primitive=raw_transaction))

    async def get_receipt(self, tx_hash: str) -> Optional[Receipt]:
        self._record("get_receipt")
        if self.receipt_status is None:
            return None
        return Receipt(
            status=self.receipt_status,
            block_number=self.block_number,
            tx_hash=tx_hash,
            gas_used=21_000,
        )

    async def subscribe_logs(self, address: str) -> LogSubscription:
        self._record("subscribe_logs")
        subscription = LogSubscription()
        self.subscriptions.append(subscription)
        return subscription

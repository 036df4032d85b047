"""
Event monitor for ``GPUProofProcessed``.

Subscribes to every log of the router and decodes the ones shaped like
``GPUProofProcessed``: three indexed topics (listener, proofHash, user) after
the signature topic, and ``(amount, targetLST)`` in the data payload.
"""

import asyncio
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import aclosing
from dataclasses import dataclass
from enum import Enum
from typing import Optional

import structlog
from web3 import Web3

from .abi import GPU_PROOF_PROCESSED, RouterCodec
from .errors import MalformedLog, RelayError, SubscriptionError
from .gateway import LedgerGateway, LogRecord, LogSubscription

logger = structlog.get_logger()

MIN_TOPICS = 4  # signature + 3 indexed fields


class MonitorState(str, Enum):
    SUBSCRIBING = "subscribing"
    LISTENING = "listening"
    TERMINATED = "terminated"


class Termination(str, Enum):
    CANCELLED = "cancelled"
    SUBSCRIPTION_ERROR = "subscription_error"


@dataclass(frozen=True)
class DecodedEvent:
    """A decoded ``GPUProofProcessed`` event."""

    listener: str
    proof_hash: bytes
    user: str
    amount: int
    target_lst: str
    block_number: int
    tx_hash: Optional[str] = None
    log_index: Optional[int] = None


def _topic_address(topic: bytes) -> str:
    return Web3.to_checksum_address(topic[-20:])


def decode_log(log: LogRecord, codec: RouterCodec) -> DecodedEvent:
    """
    Decode a raw log into a ``DecodedEvent``.

    Raises:
        MalformedLog: too few topics, bad topic width or undecodable data
    """
    if len(log.topics) < MIN_TOPICS:
        raise MalformedLog(f"insufficient topics: {len(log.topics)}")
    if any(len(topic) != 32 for topic in log.topics[1:MIN_TOPICS]):
        raise MalformedLog("indexed topics must be 32 bytes")

    fields = codec.decode_event_data(GPU_PROOF_PROCESSED, log.data)

    return DecodedEvent(
        listener=_topic_address(log.topics[1]),
        proof_hash=log.topics[2],
        user=_topic_address(log.topics[3]),
        amount=fields["amount"],
        target_lst=fields["targetLST"],
        block_number=log.block_number,
        tx_hash=log.tx_hash,
        log_index=log.log_index,
    )


class EventMonitor:
    """
    Long-running subscriber for router events.

    A monitor instance is single-use: once terminated (stop signal or
    subscription failure) build a new one to listen again.
    """

    def __init__(
        self,
        gateway: LedgerGateway,
        router_address: str,
        codec: Optional[RouterCodec] = None,
        stop_event: Optional[asyncio.Event] = None,
    ):
        self.gateway = gateway
        self.router_address = router_address
        self.codec = codec or RouterCodec()
        self.state = MonitorState.SUBSCRIBING
        self.termination: Optional[Termination] = None
        self.discarded = 0
        self._stop = stop_event or asyncio.Event()
        self._subscription: Optional[LogSubscription] = None
        self._started = False

    def stop(self) -> None:
        """Ask the monitor to terminate cleanly."""
        self._stop.set()

    async def events(self) -> AsyncIterator[DecodedEvent]:
        """
        Yield decoded events until stopped.

        Finishes normally on a stop signal. Raises ``SubscriptionError``
        when the subscription cannot be opened or reports an error.
        """
        if self._started:
            raise RuntimeError("event monitor already used; create a new one")
        self._started = True

        try:
            self._subscription = await self.gateway.subscribe_logs(self.router_address)
        except RelayError as e:
            self._terminate(Termination.SUBSCRIPTION_ERROR)
            if isinstance(e, SubscriptionError):
                raise
            raise SubscriptionError(f"failed to subscribe to logs: {e}") from e

        self.state = MonitorState.LISTENING
        logger.info("listening_for_events", router=self.router_address, event_name=GPU_PROOF_PROCESSED)

        subscription = self._subscription
        log_task = asyncio.ensure_future(subscription.next_log())
        error_task = asyncio.ensure_future(subscription.next_error())
        stop_task = asyncio.ensure_future(self._stop.wait())

        try:
            while True:
                await asyncio.wait(
                    {log_task, error_task, stop_task},
                    return_when=asyncio.FIRST_COMPLETED,
                )

                if stop_task.done():
                    self._terminate(Termination.CANCELLED)
                    return

                if error_task.done():
                    self._terminate(Termination.SUBSCRIPTION_ERROR)
                    error = error_task.result()
                    raise SubscriptionError(f"subscription error: {error}") from error

                log = log_task.result()
                log_task = asyncio.ensure_future(subscription.next_log())

                try:
                    event = decode_log(log, self.codec)
                except MalformedLog as e:
                    self.discarded += 1
                    logger.warning(
                        "event_log_discarded",
                        reason=e.message,
                        block=log.block_number,
                        tx_hash=log.tx_hash,
                    )
                    continue

                yield event
        finally:
            for task in (log_task, error_task, stop_task):
                task.cancel()
            if self.state is not MonitorState.TERMINATED:
                self._terminate(Termination.CANCELLED)
            await self._release()

    async def run(
        self,
        handler: Optional[Callable[[DecodedEvent], Awaitable[None] | None]] = None,
    ) -> Termination:
        """
        Consume events until stopped, passing each one to ``handler``.

        Returns the termination reason on a clean stop; a subscription
        failure raises ``SubscriptionError``.
        """
        async with aclosing(self.events()) as events:
            async for event in events:
                if handler is None:
                    log_event(event)
                    continue
                result = handler(event)
                if asyncio.iscoroutine(result):
                    await result
        return self.termination or Termination.CANCELLED

    def _terminate(self, reason: Termination) -> None:
        self.state = MonitorState.TERMINATED
        self.termination = reason
        logger.info("event_monitor_terminated", reason=reason.value)

    async def _release(self) -> None:
        subscription, self._subscription = self._subscription, None
        if subscription is not None:
            await subscription.unsubscribe()


def log_event(event: DecodedEvent) -> None:
    """Default handler: one structured log line per event."""
    logger.info(
        "gpu_proof_processed",
        listener=event.listener,
        proof_hash="0x" + event.proof_hash.hex(),
        user=event.user,
        amount=str(event.amount),
        target_lst=event.target_lst,
        block=event.block_number,
        tx_hash=event.tx_hash,
    )

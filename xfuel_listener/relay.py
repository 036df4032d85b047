"""
Proof relay: digest, build, broadcast and wait for confirmation.
"""

import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import Optional

import structlog

from .builder import SignedTransaction, TransactionBuilder
from .errors import ExecutionReverted, GatewayUnavailable, RelayError
from .gateway import LedgerGateway, Receipt
from .proof import ProofRecord, digest

logger = structlog.get_logger()

DEFAULT_RECEIPT_TIMEOUT = 120.0
DEFAULT_POLL_INTERVAL = 2.0


class OutcomeKind(str, Enum):
    """Terminal classification of one relay attempt."""

    CONFIRMED = "confirmed"
    UNCONFIRMED = "unconfirmed"
    EXECUTION_REVERTED = "execution_reverted"
    SUBMISSION_FAILED = "submission_failed"
    INVALID_AMOUNT = "invalid_amount"
    GATEWAY_UNAVAILABLE = "gateway_unavailable"
    ENCODING_ERROR = "encoding_error"
    SIGNING_ERROR = "signing_error"


@dataclass(frozen=True)
class RelayOutcome:
    """Result of relaying a proof."""

    kind: OutcomeKind
    proof_hash: Optional[bytes] = None
    tx_hash: Optional[str] = None
    block_number: Optional[int] = None
    gas_used: Optional[int] = None
    error: Optional[RelayError] = None

    @property
    def confirmed(self) -> bool:
        return self.kind is OutcomeKind.CONFIRMED

    @property
    def retryable(self) -> bool:
        """Whether resubmitting the same proof may succeed."""
        return self.error is not None and self.error.retryable

    def raise_for_status(self) -> None:
        """Raise the classified error. Confirmed and unconfirmed outcomes pass."""
        if self.error is not None:
            raise self.error

    @classmethod
    def failed(cls, error: RelayError, proof_hash: Optional[bytes] = None,
               tx_hash: Optional[str] = None) -> "RelayOutcome":
        return cls(kind=OutcomeKind(error.kind), proof_hash=proof_hash, tx_hash=tx_hash, error=error)


class ProofRelay:
    """
    Relays GPU proofs to the XFUELRouter.

    One ``submit`` call sends at most one transaction. Nothing is retried:
    the outcome says whether a retry makes sense. Concurrent calls for the
    same sender race on the pending nonce and must be serialized by the caller.
    """

    def __init__(
        self,
        gateway: LedgerGateway,
        builder: TransactionBuilder,
        private_key: str,
        receipt_timeout: float = DEFAULT_RECEIPT_TIMEOUT,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
    ):
        self.gateway = gateway
        self.builder = builder
        self.private_key = private_key
        self.receipt_timeout = receipt_timeout
        self.poll_interval = poll_interval

    async def submit(self, proof: ProofRecord) -> RelayOutcome:
        """Relay one proof and classify the result."""
        proof_hash = digest(proof)

        logger.info(
            "proof_received",
            proof_hash="0x" + proof_hash.hex(),
            gpu_id=proof.gpu_id,
            task_id=proof.task_id,
            user=proof.user,
            reward=proof.reward,
            target_lst=proof.target_lst,
        )

        try:
            tx = await self.builder.build(
                proof_hash=proof_hash,
                beneficiary=proof.user,
                amount=proof.reward,
                target_lst=proof.target_lst,
                private_key=self.private_key,
            )
        except RelayError as e:
            logger.error("proof_build_error", proof_hash="0x" + proof_hash.hex(), error=str(e))
            return RelayOutcome.failed(e, proof_hash=proof_hash)

        try:
            await self.gateway.broadcast(tx.raw_transaction)
        except RelayError as e:
            logger.error("proof_submission_error", tx_hash=tx.tx_hash, error=str(e))
            return RelayOutcome.failed(e, proof_hash=proof_hash, tx_hash=tx.tx_hash)

        logger.info(
            "proof_tx_sent",
            tx_hash=tx.tx_hash,
            proof_hash="0x" + proof_hash.hex(),
            user=proof.user,
            amount=proof.reward,
            target_lst=proof.target_lst,
            nonce=tx.nonce,
        )

        receipt = await self.wait_for_receipt(tx)

        if receipt is None:
            logger.warning("proof_tx_unconfirmed", tx_hash=tx.tx_hash, timeout=self.receipt_timeout)
            return RelayOutcome(kind=OutcomeKind.UNCONFIRMED, proof_hash=proof_hash, tx_hash=tx.tx_hash)

        if not receipt.succeeded:
            logger.error("proof_tx_reverted", tx_hash=tx.tx_hash, block=receipt.block_number)
            error = ExecutionReverted(
                "transaction failed", tx_hash=tx.tx_hash, block_number=receipt.block_number
            )
            return RelayOutcome(
                kind=OutcomeKind.EXECUTION_REVERTED,
                proof_hash=proof_hash,
                tx_hash=tx.tx_hash,
                block_number=receipt.block_number,
                gas_used=receipt.gas_used,
                error=error,
            )

        logger.info(
            "proof_tx_confirmed",
            tx_hash=tx.tx_hash,
            block=receipt.block_number,
            gas_used=receipt.gas_used,
        )
        return RelayOutcome(
            kind=OutcomeKind.CONFIRMED,
            proof_hash=proof_hash,
            tx_hash=tx.tx_hash,
            block_number=receipt.block_number,
            gas_used=receipt.gas_used,
        )

    async def wait_for_receipt(self, tx: SignedTransaction) -> Optional[Receipt]:
        """Poll for a receipt until one appears or the timeout elapses."""
        try:
            return await asyncio.wait_for(self._poll_receipt(tx.tx_hash), timeout=self.receipt_timeout)
        except asyncio.TimeoutError:
            return None

    async def _poll_receipt(self, tx_hash: str) -> Receipt:
        while True:
            try:
                receipt = await self.gateway.get_receipt(tx_hash)
            except GatewayUnavailable as e:
                logger.warning("receipt_poll_error", tx_hash=tx_hash, error=str(e))
                receipt = None
            if receipt is not None:
                return receipt
            await asyncio.sleep(self.poll_interval)

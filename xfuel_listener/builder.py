"""
Signed transaction construction for ``processGPUProof``.
"""

import re
from dataclasses import dataclass
from typing import Optional

import structlog
from eth_account import Account
from eth_utils import ValidationError
from web3 import Web3

from .abi import PROCESS_GPU_PROOF, RouterCodec
from .errors import EncodingError, InvalidAmount, SigningError
from .gateway import LedgerGateway

logger = structlog.get_logger()

# Static ceiling on gas units; execution cost above it is the contract's concern.
DEFAULT_GAS_LIMIT = 300_000

_DECIMAL_INT = re.compile(r"[0-9]+", re.ASCII)


@dataclass(frozen=True)
class SignedTransaction:
    """A fully signed envelope, ready for one broadcast."""

    sender: str
    to: str
    value: int
    gas: int
    gas_price: int
    nonce: int
    chain_id: int
    data: bytes
    raw_transaction: bytes
    tx_hash: str


def parse_amount(amount: str) -> int:
    """
    Parse a base-10 non-negative integer of arbitrary size.

    Raises:
        InvalidAmount: anything other than ASCII digits
    """
    if not isinstance(amount, str) or not _DECIMAL_INT.fullmatch(amount):
        raise InvalidAmount(f"invalid reward amount: {amount!r}")
    return int(amount)


class TransactionBuilder:
    """Builds signed router calls using nonce and fee data from the gateway."""

    def __init__(
        self,
        gateway: LedgerGateway,
        router_address: str,
        codec: Optional[RouterCodec] = None,
        gas_limit: int = DEFAULT_GAS_LIMIT,
    ):
        self.gateway = gateway
        self.router_address = Web3.to_checksum_address(router_address)
        self.codec = codec or RouterCodec()
        self.gas_limit = gas_limit
        self._chain_id: Optional[int] = None

    async def chain_id(self) -> int:
        """Chain ID of the connected network (fetched once)."""
        if self._chain_id is None:
            self._chain_id = await self.gateway.get_chain_id()
        return self._chain_id

    async def build(
        self,
        proof_hash: bytes,
        beneficiary: str,
        amount: str,
        target_lst: str,
        private_key: str,
    ) -> SignedTransaction:
        """
        Build and sign a ``processGPUProof(proofHash, user, amount, targetLST)`` call.

        Raises:
            InvalidAmount: before any gateway call
            SigningError: bad private key or signing failure
            GatewayUnavailable: nonce, fee or chain ID lookup failed
            EncodingError: arguments rejected by the call schema
        """
        value = parse_amount(amount)

        try:
            account = Account.from_key(private_key)
        except (ValueError, TypeError, ValidationError) as e:
            raise SigningError(f"invalid private key: {e}") from e

        nonce = await self.gateway.get_next_nonce(account.address)
        gas_price = await self.gateway.suggest_fee_price()

        try:
            user = Web3.to_checksum_address(beneficiary)
        except (ValueError, TypeError) as e:
            raise EncodingError(f"invalid beneficiary address {beneficiary!r}") from e

        data = self.codec.encode_call(PROCESS_GPU_PROOF, [proof_hash, user, value, target_lst])
        chain_id = await self.chain_id()

        tx = {
            "chainId": chain_id,
            "nonce": nonce,
            "to": self.router_address,
            "value": 0,
            "gas": self.gas_limit,
            "gasPrice": gas_price,
            "data": data,
        }

        try:
            signed = account.sign_transaction(tx)
        except (ValueError, TypeError) as e:
            raise SigningError(f"failed to sign transaction: {e}") from e

        tx_hash = "0x" + bytes(signed.hash).hex()
        logger.debug(
            "proof_tx_built",
            sender=account.address,
            nonce=nonce,
            gas_price=gas_price,
            chain_id=chain_id,
            tx_hash=tx_hash,
        )

        return SignedTransaction(
            sender=account.address,
            to=self.router_address,
            value=0,
            gas=self.gas_limit,
            gas_price=gas_price,
            nonce=nonce,
            chain_id=chain_id,
            data=data,
            raw_transaction=bytes(signed.raw_transaction),
            tx_hash=tx_hash,
        )

"""
Shared fixtures: an in-memory ledger, a funded operator key and a sample proof.
"""

import pytest
from eth_account import Account

from xfuel_listener.builder import TransactionBuilder
from xfuel_listener.gateway import MockLedgerGateway
from xfuel_listener.proof import ProofRecord
from xfuel_listener.relay import ProofRelay

# Well-known test key; never holds real funds.
OPERATOR_KEY = "0x4c0883a69102937d6231471b5dbb6204fe5129617082792ae468d01a3f362318"
ROUTER_ADDRESS = "0x1234567890123456789012345678901234567890"
USER_ADDRESS = "0x0000000000000000000000000000000000abcdef"


@pytest.fixture
def operator_address() -> str:
    return Account.from_key(OPERATOR_KEY).address


@pytest.fixture
def gateway() -> MockLedgerGateway:
    return MockLedgerGateway(chain_id=365, nonce=7, gas_price=4_000_000_000_000, block_number=42)


@pytest.fixture
def builder(gateway: MockLedgerGateway) -> TransactionBuilder:
    return TransactionBuilder(gateway, ROUTER_ADDRESS)


@pytest.fixture
def relay(gateway: MockLedgerGateway, builder: TransactionBuilder) -> ProofRelay:
    return ProofRelay(gateway, builder, OPERATOR_KEY, receipt_timeout=0.2, poll_interval=0.01)


@pytest.fixture
def proof() -> ProofRecord:
    return ProofRecord(
        gpu_id="gpu-12345",
        task_id="task-67890",
        reward="1000000000000000000",
        timestamp=1_700_000_000,
        user=USER_ADDRESS,
        target_lst="stkXPRT",
    )

"""
XFUEL GPU Proof Listener

Relays off-chain GPU work proofs to the XFUELRouter contract as
``processGPUProof`` calls, and watches the router for
``GPUProofProcessed`` events.

Usage:
    # Relay one mock proof (testing)
    xfuel-listener simulate

    # Watch router events
    xfuel-listener listen

    # Hash a proof without submitting it
    xfuel-listener digest proof.json
"""

__version__ = "0.1.0"

from .abi import ROUTER_ABI, RouterCodec
from .builder import SignedTransaction, TransactionBuilder
from .config import ListenerConfig, Settings
from .errors import (
    EncodingError,
    ExecutionReverted,
    GatewayUnavailable,
    InvalidAmount,
    MalformedLog,
    RelayError,
    SigningError,
    SubmissionFailed,
    SubscriptionError,
)
from .gateway import LedgerGateway, LogRecord, LogSubscription, MockLedgerGateway, Receipt, Web3Gateway
from .monitor import DecodedEvent, EventMonitor, MonitorState, Termination
from .proof import ProofRecord, digest
from .relay import OutcomeKind, ProofRelay, RelayOutcome

__all__ = [
    "__version__",
    "ROUTER_ABI",
    "RouterCodec",
    "SignedTransaction",
    "TransactionBuilder",
    "ListenerConfig",
    "Settings",
    "RelayError",
    "InvalidAmount",
    "GatewayUnavailable",
    "EncodingError",
    "SigningError",
    "SubmissionFailed",
    "ExecutionReverted",
    "SubscriptionError",
    "MalformedLog",
    "LedgerGateway",
    "LogRecord",
    "LogSubscription",
    "MockLedgerGateway",
    "Receipt",
    "Web3Gateway",
    "DecodedEvent",
    "EventMonitor",
    "MonitorState",
    "Termination",
    "ProofRecord",
    "digest",
    "OutcomeKind",
    "ProofRelay",
    "RelayOutcome",
]

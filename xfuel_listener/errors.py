"""
Error taxonomy for the proof relay and the event monitor.

Every error carries a ``kind`` so callers can tell transport failures
(retryable) from contract-level reverts (not retryable without new inputs).
Timeouts are not errors: see ``OutcomeKind.UNCONFIRMED`` in ``relay``.
"""


class RelayError(Exception):
    """Base class for all relay and monitor errors."""

    kind = "relay_error"
    retryable = False

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)

    def __str__(self) -> str:
        return f"{self.kind}: {self.message}"


class InvalidAmount(RelayError):
    """Reward amount is not a base-10 non-negative integer."""

    kind = "invalid_amount"


class GatewayUnavailable(RelayError):
    """Transport or node failure while querying the ledger."""

    kind = "gateway_unavailable"
    retryable = True


class EncodingError(RelayError):
    """Call arguments rejected by the router call schema."""

    kind = "encoding_error"


class SigningError(RelayError):
    """Private key could not be used to sign the envelope."""

    kind = "signing_error"


class SubmissionFailed(RelayError):
    """Node rejected the signed transaction at broadcast."""

    kind = "submission_failed"
    retryable = True


class ExecutionReverted(RelayError):
    """Transaction was mined but the contract rejected the call."""

    kind = "execution_reverted"

    def __init__(self, message: str, tx_hash: str | None = None, block_number: int | None = None):
        super().__init__(message)
        self.tx_hash = tx_hash
        self.block_number = block_number


class SubscriptionError(RelayError):
    """Log subscription failed. Fatal to the monitor instance."""

    kind = "subscription_error"
    retryable = True


class MalformedLog(RelayError):
    """A single log could not be decoded. Discarded by the monitor."""

    kind = "malformed_log"

"""
GPU proof records and their content hash.

The proof hash is keccak-256 over a compact JSON rendering of the record
with a fixed key order. The rendering follows Go's ``encoding/json`` output
(HTML-sensitive characters escaped) so hashes computed here match the ones
produced by the Go listener for the same record.
"""

import json

from pydantic import BaseModel, ConfigDict, Field
from web3 import Web3

# Serialized key order. Never reorder: it is part of the hash.
CANONICAL_FIELDS = ("gpuId", "taskId", "reward", "timestamp", "user", "targetLST")

_GO_ESCAPES = {ch: "\\u%04x" % ord(ch) for ch in ("<", ">", "&", chr(0x2028), chr(0x2029))}


class ProofRecord(BaseModel):
    """Off-chain GPU work proof as received from the compute layer."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    gpu_id: str = Field(alias="gpuId")
    task_id: str = Field(alias="taskId")
    reward: str  # decimal integer, wei
    timestamp: int
    user: str  # beneficiary EVM address
    target_lst: str = Field(alias="targetLST")


def canonical_bytes(proof: ProofRecord) -> bytes:
    """Render a proof as canonical UTF-8 JSON bytes."""
    values = proof.model_dump(by_alias=True)
    ordered = {key: values[key] for key in CANONICAL_FIELDS}
    text = json.dumps(ordered, separators=(",", ":"), ensure_ascii=False)
    for ch, escaped in _GO_ESCAPES.items():
        text = text.replace(ch, escaped)
    return text.encode("utf-8")


def digest(proof: ProofRecord) -> bytes:
    """
    Compute the 32-byte content hash of a proof.

    Returns:
        keccak-256 of ``canonical_bytes(proof)``
    """
    return bytes(Web3.keccak(primitive=canonical_bytes(proof)))

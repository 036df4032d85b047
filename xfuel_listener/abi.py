"""
XFUELRouter call schema and codec.

Only the two entries the listener touches are declared: the
``processGPUProof`` entry point and the ``GPUProofProcessed`` event.
"""

from typing import Any

from eth_abi import decode, encode
from eth_abi.exceptions import DecodingError, EncodingError as AbiEncodingError
from web3 import Web3

from .errors import EncodingError, MalformedLog

PROCESS_GPU_PROOF = "processGPUProof"
GPU_PROOF_PROCESSED = "GPUProofProcessed"

# XFUELRouter ABI (minimal for processGPUProof)
ROUTER_ABI = [
    {
        "inputs": [
            {"internalType": "bytes32", "name": "proofHash", "type": "bytes32"},
            {"internalType": "address", "name": "user", "type": "address"},
            {"internalType": "uint256", "name": "amount", "type": "uint256"},
            {"internalType": "string", "name": "targetLST", "type": "string"},
        ],
        "name": PROCESS_GPU_PROOF,
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function",
    },
    {
        "anonymous": False,
        "inputs": [
            {"indexed": True, "internalType": "address", "name": "listener", "type": "address"},
            {"indexed": True, "internalType": "bytes32", "name": "proofHash", "type": "bytes32"},
            {"indexed": True, "internalType": "address", "name": "user", "type": "address"},
            {"indexed": False, "internalType": "uint256", "name": "amount", "type": "uint256"},
            {"indexed": False, "internalType": "string", "name": "targetLST", "type": "string"},
        ],
        "name": GPU_PROOF_PROCESSED,
        "type": "event",
    },
]


def _signature(entry: dict[str, Any]) -> str:
    types = ",".join(arg["type"] for arg in entry["inputs"])
    return f"{entry['name']}({types})"


class RouterCodec:
    """Encodes router calls and decodes router event payloads."""

    def __init__(self, abi: list[dict[str, Any]] = ROUTER_ABI):
        self.functions = {e["name"]: e for e in abi if e["type"] == "function"}
        self.events = {e["name"]: e for e in abi if e["type"] == "event"}

    def selector(self, name: str) -> bytes:
        """4-byte function selector."""
        return bytes(Web3.keccak(text=_signature(self.functions[name])))[:4]

    def event_topic(self, name: str) -> bytes:
        """Topic 0 of an event (keccak of its signature)."""
        return bytes(Web3.keccak(text=_signature(self.events[name])))

    def encode_call(self, name: str, args: list[Any]) -> bytes:
        """
        Encode a function call as transaction data.

        Raises:
            EncodingError: unknown function, wrong arity or argument types
        """
        entry = self.functions.get(name)
        if entry is None:
            raise EncodingError(f"unknown function {name}")

        types = [arg["type"] for arg in entry["inputs"]]
        if len(args) != len(types):
            raise EncodingError(f"{name} expects {len(types)} arguments, got {len(args)}")

        try:
            return self.selector(name) + encode(types, list(args))
        except (AbiEncodingError, TypeError, ValueError) as e:
            raise EncodingError(f"cannot encode {name}: {e}") from e

    def decode_call(self, name: str, payload: bytes) -> dict[str, Any]:
        """Decode transaction data produced by ``encode_call``."""
        entry = self.functions[name]
        if payload[:4] != self.selector(name):
            raise EncodingError(f"payload is not a {name} call")

        names = [arg["name"] for arg in entry["inputs"]]
        types = [arg["type"] for arg in entry["inputs"]]
        try:
            values = decode(types, payload[4:])
        except (DecodingError, ValueError) as e:
            raise EncodingError(f"cannot decode {name}: {e}") from e
        return {
            arg_name: Web3.to_checksum_address(value) if arg_type == "address" else value
            for arg_name, arg_type, value in zip(names, types, values)
        }

    def decode_event_data(self, name: str, data: bytes) -> dict[str, Any]:
        """
        Decode the non-indexed fields of an event from the log data.

        Raises:
            MalformedLog: data does not match the event's non-indexed types
        """
        entry = self.events[name]
        fields = [arg for arg in entry["inputs"] if not arg["indexed"]]
        try:
            values = decode([arg["type"] for arg in fields], data)
        except (DecodingError, ValueError) as e:
            raise MalformedLog(f"cannot decode {name} data: {e}") from e
        return dict(zip((arg["name"] for arg in fields), values))

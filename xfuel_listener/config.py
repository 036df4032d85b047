"""
Configuration management for the XFUEL GPU proof listener.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict
from web3 import Web3

from .builder import DEFAULT_GAS_LIMIT
from .gateway import default_ws_url
from .relay import DEFAULT_POLL_INTERVAL, DEFAULT_RECEIPT_TIMEOUT


class Settings(BaseSettings):
    """Environment-based settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # EVM Network
    rpc_url: str = Field(
        default="https://eth-rpc-api-testnet.thetatoken.org/rpc",
        description="JSON-RPC endpoint (Theta testnet)",
    )
    ws_url: str = Field(
        default="",
        description="Websocket endpoint for log subscriptions (derived from RPC_URL if empty)",
    )
    private_key: str = Field(default="", description="Operator private key, 0x prefix optional")

    # Contract
    router_address: str = Field(default="", description="XFUELRouter contract address")

    # Relay
    gas_limit: int = DEFAULT_GAS_LIMIT
    receipt_timeout_seconds: float = DEFAULT_RECEIPT_TIMEOUT
    receipt_poll_interval_seconds: float = DEFAULT_POLL_INTERVAL

    # Run a single mock proof instead of listening
    simulate: bool = False


@dataclass
class ListenerConfig:
    """Full listener configuration."""

    settings: Settings

    @classmethod
    def from_env(cls, env_path: Optional[Path] = None) -> "ListenerConfig":
        """Load configuration from environment."""
        settings = Settings(_env_file=env_path) if env_path else Settings()
        return cls(settings=settings)

    @property
    def ws_url(self) -> str:
        return self.settings.ws_url or default_ws_url(self.settings.rpc_url)

    def validate(self, require_private_key: bool = True) -> None:
        """
        Check the values required to run.

        Raises:
            ValueError: missing router address or private key, or a malformed router address
        """
        missing = []
        if not self.settings.router_address:
            missing.append("ROUTER_ADDRESS")
        if require_private_key and not self.settings.private_key:
            missing.append("PRIVATE_KEY")
        if missing:
            raise ValueError(f"{', '.join(missing)} environment variable is required")
        if not Web3.is_address(self.settings.router_address):
            raise ValueError(f"ROUTER_ADDRESS is not a valid address: {self.settings.router_address}")

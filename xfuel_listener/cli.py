"""
CLI entry point for the XFUEL GPU proof listener.
"""

import asyncio
import json
import signal
import time
from pathlib import Path
from typing import Optional

import structlog
import typer
from eth_account import Account
from eth_utils import ValidationError as KeyValidationError
from pydantic import ValidationError

from .builder import TransactionBuilder
from .config import ListenerConfig
from .errors import SigningError, SubscriptionError
from .gateway import Web3Gateway
from .monitor import EventMonitor
from .proof import ProofRecord, canonical_bytes, digest as proof_digest
from .relay import ProofRelay, RelayOutcome

# Configure structlog
structlog.configure(
    processors=[
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.dev.ConsoleRenderer(),
    ]
)

app = typer.Typer(
    name="xfuel-listener",
    help="XFUEL GPU proof listener node",
    add_completion=False,
)


def _load_config(config_path: Optional[Path], require_private_key: bool = True) -> ListenerConfig:
    config = ListenerConfig.from_env(config_path)
    try:
        config.validate(require_private_key=require_private_key)
    except ValueError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=1)
    return config


def _gateway(config: ListenerConfig) -> Web3Gateway:
    return Web3Gateway(config.settings.rpc_url, ws_url=config.ws_url)


def mock_proof(user: str) -> ProofRecord:
    """The demo proof used by simulation mode."""
    return ProofRecord(
        gpu_id="gpu-12345",
        task_id="task-67890",
        reward="1000000000000000000",  # 1 TFUEL
        timestamp=int(time.time()),
        user=user,
        target_lst="stkXPRT",
    )


def _echo_outcome(outcome: RelayOutcome) -> None:
    if outcome.confirmed:
        typer.echo(f"✓ Confirmed in block {outcome.block_number}: {outcome.tx_hash}")
    elif outcome.error is None:
        typer.echo(f"… Not confirmed yet ({outcome.kind.value}): {outcome.tx_hash}")
    else:
        typer.echo(f"✗ Failed ({outcome.kind.value}): {outcome.error.message}")


async def _simulate(config: ListenerConfig) -> RelayOutcome:
    settings = config.settings
    gateway = _gateway(config)
    builder = TransactionBuilder(gateway, settings.router_address, gas_limit=settings.gas_limit)
    relay = ProofRelay(
        gateway,
        builder,
        private_key=settings.private_key,
        receipt_timeout=settings.receipt_timeout_seconds,
        poll_interval=settings.receipt_poll_interval_seconds,
    )

    try:
        operator = Account.from_key(settings.private_key).address
    except (ValueError, KeyValidationError) as e:
        return RelayOutcome.failed(SigningError(f"invalid private key: {e}"))

    # The operator is its own beneficiary in simulation mode
    proof = mock_proof(operator)
    typer.echo("Mock GPU proof:")
    typer.echo(f"  GPU ID: {proof.gpu_id}")
    typer.echo(f"  Task ID: {proof.task_id}")
    typer.echo(f"  Reward: {proof.reward} TFUEL")
    typer.echo(f"  User: {proof.user}")
    typer.echo(f"  Target LST: {proof.target_lst}")

    return await relay.submit(proof)


async def _listen(config: ListenerConfig) -> None:
    monitor = EventMonitor(_gateway(config), config.settings.router_address)

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, monitor.stop)
        except NotImplementedError:
            # not available on Windows event loops
            pass

    reason = await monitor.run()
    typer.echo(f"Listener stopped ({reason.value}), {monitor.discarded} logs discarded")


@app.command()
def simulate(
    config_path: Optional[Path] = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to .env configuration file",
    ),
) -> None:
    """
    Relay one mock GPU proof to the router and wait for confirmation.
    """
    config = _load_config(config_path)
    typer.echo("Running simulation mode...")

    outcome = asyncio.run(_simulate(config))
    _echo_outcome(outcome)

    if outcome.error is not None:
        raise typer.Exit(code=1)


@app.command()
def listen(
    config_path: Optional[Path] = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to .env configuration file",
    ),
) -> None:
    """
    Listen for GPUProofProcessed events until interrupted.
    """
    config = _load_config(config_path, require_private_key=False)
    typer.echo("Listening for GPUProofProcessed events. Press Ctrl+C to stop.")

    try:
        asyncio.run(_listen(config))
    except SubscriptionError as e:
        typer.echo(f"Event listener error: {e}", err=True)
        raise typer.Exit(code=1)


@app.command()
def run(
    config_path: Optional[Path] = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to .env configuration file",
    ),
) -> None:
    """
    Simulate when SIMULATE=true, otherwise listen for events.
    """
    config = ListenerConfig.from_env(config_path)
    if config.settings.simulate:
        simulate(config_path)
    else:
        listen(config_path)


@app.command()
def digest(
    proof_file: Path = typer.Argument(..., help="JSON file with a GPU proof", exists=True),
    show_canonical: bool = typer.Option(False, "--canonical", help="Also print the hashed bytes"),
) -> None:
    """
    Print the content hash of a GPU proof.
    """
    try:
        proof = ProofRecord.model_validate(json.loads(proof_file.read_text(encoding="utf-8")))
    except (json.JSONDecodeError, ValidationError) as e:
        typer.echo(f"Error: invalid proof file {proof_file}: {e}", err=True)
        raise typer.Exit(code=1)
    if show_canonical:
        typer.echo(canonical_bytes(proof).decode("utf-8"))
    typer.echo("0x" + proof_digest(proof).hex())


@app.command()
def version() -> None:
    """Show the listener version."""
    from xfuel_listener import __version__
    typer.echo(f"xfuel-listener v{__version__}")


def main() -> None:
    """Main entry point."""
    app()


if __name__ == "__main__":
    main()

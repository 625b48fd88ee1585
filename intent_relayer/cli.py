"""
Command-line interface for the intent relayer.
"""
import logging
from decimal import Decimal
from typing import Optional

import typer
from web3 import Web3

from .config import CONFIG_ENV_VAR, RelayConfig, load_config
from .director import RelayDirector
from .exceptions import ChainConnectionError, ChainError, ConfigError
from .version import __version__

logger = logging.getLogger(__name__)

LOW_BALANCE_THRESHOLD = Web3.to_wei(Decimal("0.01"), "ether")

EXIT_CONFIG_ERROR = 2
EXIT_CONNECTION_ERROR = 1

app = typer.Typer(
    name="intent-relayer",
    help="Cross-chain intent relay: watch, attest, submit, finalize.",
    no_args_is_help=True,
)

ConfigOption = typer.Option(
    None, "--config", "-c", envvar=CONFIG_ENV_VAR, help="Path to the relay TOML configuration"
)
LogLevelOption = typer.Option(
    "INFO", "--log-level", envvar="RELAYER_LOG_LEVEL", help="Logging level (DEBUG, INFO, WARNING, ERROR)"
)


def setup_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _load(config_path: Optional[str]) -> RelayConfig:
    try:
        return load_config(config_path)
    except ConfigError as e:
        typer.echo(f"Configuration error: {e}", err=True)
        raise typer.Exit(code=EXIT_CONFIG_ERROR)


def _director(config: RelayConfig) -> RelayDirector:
    try:
        return RelayDirector.from_config(config)
    except ConfigError as e:
        typer.echo(f"Configuration error: {e}", err=True)
        raise typer.Exit(code=EXIT_CONFIG_ERROR)


@app.command()
def run(
    config: Optional[str] = ConfigOption,
    log_level: str = LogLevelOption,
):
    """Run the relay daemon until SIGINT/SIGTERM."""
    setup_logging(log_level)
    logger.info(f"intent-relayer {__version__}")
    director = _director(_load(config))
    try:
        director.preflight()
    except ChainConnectionError as e:
        typer.echo(f"RPC check failed: {e}", err=True)
        raise typer.Exit(code=EXIT_CONNECTION_ERROR)
    director.run_forever()


@app.command()
def backlog(
    config: Optional[str] = ConfigOption,
    direction: Optional[str] = typer.Option(
        None, "--direction", "-d", help="Direction to reconcile, as SOURCE->DESTINATION"
    ),
    dry_run: bool = typer.Option(False, "--dry-run", help="List records without resubmitting"),
    log_level: str = LogLevelOption,
):
    """Run one backlog reconciliation pass over PENDING ledger records."""
    setup_logging(log_level)
    relay_config = _load(config)
    director = _director(relay_config)

    direction_name = direction or relay_config.backlog.direction
    if not direction_name:
        if len(relay_config.directions) != 1:
            typer.echo("Several directions are configured: pass --direction SOURCE->DESTINATION", err=True)
            raise typer.Exit(code=EXIT_CONFIG_ERROR)
        direction_name = relay_config.directions[0].name

    try:
        reconciler = director.backlog_reconciler(direction_name)
    except ConfigError as e:
        typer.echo(f"Configuration error: {e}", err=True)
        raise typer.Exit(code=EXIT_CONFIG_ERROR)

    summary = reconciler.run_once(dry_run=dry_run)
    if dry_run:
        for tx_id in summary.would_submit:
            typer.echo(f"would resubmit: {tx_id}")
    typer.echo(
        f"Backlog {direction_name}: total={summary.total} processed={summary.processed} "
        f"completed={summary.completed} failed={summary.failed} "
        f"skipped={summary.skipped} errors={summary.errors}"
    )


@app.command()
def status(
    config: Optional[str] = ConfigOption,
    log_level: str = typer.Option("WARNING", "--log-level", envvar="RELAYER_LOG_LEVEL"),
):
    """Show signer addresses, chain heads, balances, watermarks and outstanding mints."""
    setup_logging(log_level)
    relay_config = _load(config)
    director = _director(relay_config)

    typer.echo(f"TSS signer:       {director.tss_signer.address}")
    typer.echo(f"Finalizer signer: {director.finalizer_signer.address}")

    signers = {director.tss_signer.address, director.finalizer_signer.address}
    for name, client in director.clients.items():
        typer.echo(f"\n[{name}] chain id {relay_config.chain(name).chain_id}")
        try:
            typer.echo(f"  head block: {client.get_block_number()}")
            for address in sorted(signers):
                balance = client.get_balance(address)
                line = f"  balance {address}: {Web3.from_wei(balance, 'ether')}"
                if balance < LOW_BALANCE_THRESHOLD:
                    line += "  WARNING: low balance, fund this account for gas"
                typer.echo(line)
        except ChainError as e:
            typer.echo(f"  unreachable: {e}")

    typer.echo("\nWatermarks:")
    watermarks = director.state.watermarks()
    for direction in relay_config.directions:
        typer.echo(f"  {direction.name}: {watermarks.get(direction.name, 'not started')}")

    typer.echo("\nOutstanding mints:")
    for chain_config in relay_config.destination_chains():
        hashes = director.state.outstanding_mints(chain_config.name)
        typer.echo(f"  {chain_config.name}: {len(hashes)}")
        for msg_hash in hashes:
            typer.echo(f"    {msg_hash}")


@app.command("check-config")
def check_config(
    config: Optional[str] = ConfigOption,
):
    """Load and validate the configuration, exiting 0 if it is valid."""
    relay_config = _load(config)
    for direction in relay_config.directions:
        state = "enabled" if direction.enabled else "disabled"
        typer.echo(
            f"{direction.name}: {direction.required_confirmations} confirmations, "
            f"poll every {direction.poll_interval}s ({state})"
        )
    typer.echo("Configuration OK")


@app.command()
def version():
    """Print the package version."""
    typer.echo(__version__)


def main():
    app()


if __name__ == "__main__":
    main()

"""
CLI entry point for the auto-sweep service.
"""

import logging
import signal
import threading
from functools import partial
from pathlib import Path
from typing import Optional

import structlog
import typer
import uvicorn

from .config import Settings, load_settings
from .errors import AutoSweepError
from .service import AutoSweepService, qualifies

logger = structlog.get_logger()

app = typer.Typer(
    name="autosweep-service",
    help="Auto-sweep service for burner wallet deposits",
    add_completion=False,
)

ConfigOption = typer.Option(
    None,
    "--config",
    "-c",
    help="Path to .env configuration file",
)


def configure_logging(level: str = "INFO", json_logs: bool = False) -> None:
    """Configure structlog: console output for humans, JSON for log shipping."""
    renderer = (
        structlog.processors.JSONRenderer()
        if json_logs
        else structlog.dev.ConsoleRenderer()
    )
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.getLevelName(level.upper())
        ),
        cache_logger_on_first_use=False,
    )


def _load(config_path: Optional[Path], json_logs: bool = False) -> Settings:
    settings = load_settings(config_path)
    configure_logging(settings.log_level, json_logs or settings.json_logs)
    return settings


def _fail(error: Exception) -> None:
    typer.echo(f"Error: {error}", err=True)
    raise typer.Exit(code=1)


def _serve_in_background(
    service: AutoSweepService, settings: Settings
) -> tuple[uvicorn.Server, threading.Thread]:
    """Serve the registration API from a daemon thread of this process."""
    from .api import create_app

    server = uvicorn.Server(
        uvicorn.Config(
            create_app(service, api_token=settings.api_token),
            host=settings.api_host,
            port=settings.api_port,
            log_level="warning",
        )
    )
    thread = threading.Thread(target=server.run, name="autosweep-api", daemon=True)
    thread.start()
    logger.info("api_started", host=settings.api_host, port=settings.api_port)
    return server, thread


def _stop_background_server(
    server: uvicorn.Server, thread: threading.Thread, timeout: float = 10.0
) -> None:
    """Ask the API server to exit and wait for in-flight requests."""
    server.should_exit = True
    thread.join(timeout)
    if thread.is_alive():
        logger.warning("api_stop_timeout", timeout_seconds=timeout)
    else:
        logger.info("api_stopped")


JsonLogsOption = typer.Option(
    False,
    "--json-logs",
    help="Render logs as JSON (overrides JSON_LOGS)",
)


@app.command()
def run(
    config_path: Optional[Path] = ConfigOption,
    once: bool = typer.Option(
        False,
        "--once",
        help="Run one cycle and exit (useful for testing)",
    ),
    api: bool = typer.Option(
        False,
        "--api/--no-api",
        help="Also serve the registration API",
    ),
    json_logs: bool = JsonLogsOption,
) -> None:
    """
    Start the service: watch registered wallets and sweep deposits.
    """
    settings = _load(config_path, json_logs)
    service = AutoSweepService(settings)

    if once:
        typer.echo("Running in single-shot mode...")
        try:
            service.start()
            report = service.run_once()
        except AutoSweepError as e:
            _fail(e)
        finally:
            service.close()

        for outcome in report.outcomes:
            if outcome.success:
                typer.echo(f"✓ Swept {outcome.wallet}: {outcome.tx_hash}")
            else:
                typer.echo(f"✗ Failed {outcome.wallet}: {outcome.error}")
        typer.echo(
            f"Scanned {len(report.scanned)} wallets, "
            f"{len(report.candidates)} qualified, "
            f"{sum(1 for o in report.outcomes if o.success)} swept"
        )
        return

    stop_event = threading.Event()

    def _handle_signal(signum: int, frame: object) -> None:
        logger.info("signal_received", signal=signal.Signals(signum).name)
        stop_event.set()

    signal.signal(signal.SIGINT, _handle_signal)
    signal.signal(signal.SIGTERM, _handle_signal)

    stop_api = None
    if api:
        server, thread = _serve_in_background(service, settings)
        stop_api = partial(_stop_background_server, server, thread)

    typer.echo("Running in continuous mode. Press Ctrl+C to stop.")
    service.run(stop_event, before_close=stop_api)


@app.command()
def serve(
    config_path: Optional[Path] = ConfigOption,
    json_logs: bool = JsonLogsOption,
) -> None:
    """
    Serve the registration API only (no polling).
    """
    from .api import create_app

    settings = _load(config_path, json_logs)
    service = AutoSweepService(settings)
    try:
        uvicorn.run(
            create_app(service, api_token=settings.api_token),
            host=settings.api_host,
            port=settings.api_port,
        )
    finally:
        service.close()


@app.command("add-wallet")
def add_wallet(
    address: str = typer.Argument(..., help="Burner wallet address"),
    owner: str = typer.Argument(..., help="Owner address receiving swept funds"),
    salt: str = typer.Argument(..., help="Deployment salt (hex)"),
    config_path: Optional[Path] = ConfigOption,
) -> None:
    """
    Register a wallet for monitoring.
    """
    service = AutoSweepService(_load(config_path))
    try:
        wallet = service.add_wallet(address, owner, salt)
    except AutoSweepError as e:
        _fail(e)
    finally:
        service.close()
    typer.echo(f"Monitoring {wallet.address} -> {wallet.owner}")


@app.command("remove-wallet")
def remove_wallet(
    address: str = typer.Argument(..., help="Burner wallet address"),
    config_path: Optional[Path] = ConfigOption,
) -> None:
    """
    Stop monitoring a wallet.
    """
    service = AutoSweepService(_load(config_path))
    try:
        service.remove_wallet(address)
    except AutoSweepError as e:
        _fail(e)
    finally:
        service.close()
    typer.echo(f"Removed {address}")


@app.command()
def history(
    address: str = typer.Argument(..., help="Burner wallet address"),
    config_path: Optional[Path] = ConfigOption,
) -> None:
    """
    Show sweep history for a wallet.
    """
    from .chain import format_token_amount

    service = AutoSweepService(_load(config_path))
    try:
        records = service.get_wallet_history(address)
    except AutoSweepError as e:
        _fail(e)
    finally:
        service.close()

    if not records:
        typer.echo("No sweeps recorded.")
        return

    for record in records:
        typer.echo(f"  TX: {record.tx_hash}")
        typer.echo(f"  Amount: {record.amount} ({format_token_amount(int(record.amount))} tokens)")
        typer.echo(f"  Recipient: {record.recipient}")
        typer.echo(f"  Timestamp: {record.timestamp}")
        typer.echo("")


@app.command()
def wallets(
    owner: str = typer.Argument(..., help="Owner address"),
    config_path: Optional[Path] = ConfigOption,
) -> None:
    """
    List wallets registered for an owner.
    """
    service = AutoSweepService(_load(config_path))
    try:
        owned = service.get_owner_wallets(owner)
    except AutoSweepError as e:
        _fail(e)
    finally:
        service.close()

    if not owned:
        typer.echo("No wallets registered.")
        return

    for wallet in owned:
        typer.echo(f"  {wallet.address}  salt={wallet.salt}  sweeps={wallet.sweep_count}")


@app.command()
def stats(config_path: Optional[Path] = ConfigOption) -> None:
    """
    Show wallet and sweep totals.
    """
    service = AutoSweepService(_load(config_path))
    try:
        result = service.get_stats()
    except AutoSweepError as e:
        _fail(e)
    finally:
        service.close()
    typer.echo(f"Total wallets: {result.total_wallets}")
    typer.echo(f"Total sweeps: {result.total_sweeps}")


@app.command()
def balance(
    address: str = typer.Argument(..., help="Address to check"),
    config_path: Optional[Path] = ConfigOption,
) -> None:
    """
    Check a wallet's token balance (without sweeping).
    """
    from .chain import ChainReader, format_token_amount

    settings = _load(config_path)
    try:
        reader = ChainReader(settings.rpc_url, settings.token_address, timeout=settings.rpc_timeout_seconds)
    except ValueError as e:
        _fail(e)

    decimals = reader.get_token_decimals()
    amount = reader.get_token_balance(address)

    typer.echo(f"Token: {settings.token_address}")
    typer.echo(f"Balance: {amount} ({format_token_amount(amount, decimals)} tokens)")
    typer.echo(f"Sweep threshold: {settings.min_balance_to_sweep}")
    typer.echo(f"Would sweep: {'yes' if qualifies(amount, settings.min_balance_to_sweep) else 'no'}")


@app.command()
def version() -> None:
    """Show the service version."""
    from autosweep_service import __version__
    typer.echo(f"autosweep-service v{__version__}")


def main() -> None:
    """Main entry point."""
    app()


if __name__ == "__main__":
    main()

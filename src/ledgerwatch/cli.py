"""LedgerWatch CLI."""

import asyncio
import logging

import click

from ledgerwatch.app import LedgerWatchApp
from ledgerwatch.constants import LOG_FORMAT


@click.group()
def cli():
    """LedgerWatch Command Line Interface."""
    pass


@cli.command()
@click.option(
    "--config",
    type=click.Path(exists=True),
    default="config/config.yaml",
    help="Path to configuration file",
)
@click.option("--address", help="Wallet address to watch (overrides config)")
def run(config, address):
    """Stream ledger events and keep chain state fresh."""
    try:
        app = LedgerWatchApp(config_path=config, address=address)
        asyncio.run(app.run())
    except KeyboardInterrupt:
        pass
    except Exception as e:
        click.echo(f"Fatal error: {e}", err=True)
        import traceback

        traceback.print_exc()


@cli.command()
@click.option(
    "--config",
    type=click.Path(exists=True),
    default="config/config.yaml",
    help="Path to configuration file",
)
@click.option("--address", help="Also show this wallet's balances and total value")
def prices(config, address):
    """Fetch chain data once and print the USD price table."""
    logging.basicConfig(level=logging.WARNING, format=LOG_FORMAT)

    async def _fetch():
        app = LedgerWatchApp(config_path=config, address=address)
        await app.initialize()
        try:
            await app.state.refresh_all()
        finally:
            await app.client.close()
        return app.state

    state = asyncio.run(_fetch())

    if not state.prices:
        click.echo("No prices available.")
        return

    click.echo(f"{'DENOM':<70} {'USD':>18} {'24H %':>8}")
    for denom, price in sorted(state.prices.items()):
        click.echo(f"{denom:<70} {price:>18.8f} {state.price_change(denom):>8.2f}")

    if address:
        click.echo(f"\nWallet {address}")
        for balance in state.balances.values():
            click.echo(f"  {balance.denom}: {balance.amount}")
        click.echo(f"Total USD value: {state.total_usd_value():.2f}")


@cli.command()
@click.option(
    "--config",
    type=click.Path(exists=True),
    default="config/config.yaml",
    help="Path to configuration file",
)
def smoke_test(config):
    """Run a smoke test (load config, build components and exit)."""
    try:
        app = LedgerWatchApp(config_path=config)
        asyncio.run(app.initialize())
        click.echo("Smoke test passed: Components initialized successfully.")
    except Exception as e:
        click.echo(f"Smoke test failed: {e}", err=True)
        raise SystemExit(1)


if __name__ == "__main__":
    cli()

# Alias for __main__.py
main = cli

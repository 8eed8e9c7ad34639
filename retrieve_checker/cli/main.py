"""Command line interface for the retrieval checker.

Commands:
- ``check``: verify one CID against one storage provider and explain failures
- ``multiaddr``: translate a multiaddr to the HTTP URL used for retrievals
- ``run``: run the dispute-processing service
- ``config``: print the effective configuration
"""

from __future__ import annotations

import asyncio
import contextlib
import importlib
import inspect
import json
import logging
import signal
from typing import Any

import aiohttp
import click
from rich.console import Console
from rich.table import Table

from retrieve_checker import __version__
from retrieve_checker.checker import RetrievalChecker
from retrieve_checker.config.config import get_config, init_config
from retrieve_checker.models import Config, RetrievalStats, RetrievalTask
from retrieve_checker.multiaddr import multiaddr_to_http_url
from retrieve_checker.retrieval import get_retrieval_url
from retrieve_checker.service import CheckerService, Collaborators
from retrieve_checker.utils.exceptions import CheckerError, ConfigurationError, MultiaddrError

logger = logging.getLogger(__name__)

LASSIE_INSTALL_URL = "https://github.com/filecoin-project/lassie?tab=readme-ov-file#installation"


def _lassie_command(protocol: str, address: str, cid: str) -> str:
    return (
        f"lassie fetch -o /dev/null -vv --dag-scope block --protocols {protocol} "
        f"--providers {json.dumps(address)} {cid}"
    )


def retrieval_hints(stats: RetrievalStats, cid: str) -> list[str]:
    """Return instructions for reproducing a failed retrieval by hand."""
    if not stats.provider_address or stats.status_code == 200:
        return []

    lines = ["The retrieval failed."]
    if stats.protocol == "graphsync":
        lines += [
            "You can get more details by running Lassie manually:",
            "  " + _lassie_command("graphsync", stats.provider_address, cid),
            f"How to install Lassie: {LASSIE_INSTALL_URL}",
        ]
    elif stats.protocol == "http":
        try:
            url = get_retrieval_url("http", stats.provider_address, cid)
        except MultiaddrError as e:
            lines.append(
                f"The provider address {json.dumps(stats.provider_address)} "
                f"cannot be converted to a URL: {e}"
            )
            return lines
        lines += [
            "You can get more details by requesting the following URL yourself:",
            f"  {url}",
            "E.g. using `curl`:",
            f"  curl -i {json.dumps(url)}",
            "You can also test the retrieval using Lassie:",
            "  " + _lassie_command("http", stats.provider_address, cid),
            f"How to install Lassie: {LASSIE_INSTALL_URL}",
        ]
    return lines


def load_factory(target: str) -> Any:
    """Import ``module:attribute`` and return the attribute."""
    module_name, sep, attr = target.partition(":")
    if not sep or not module_name or not attr:
        msg = f'Expected "module:factory", got "{target}"'
        raise click.BadParameter(msg)
    try:
        module = importlib.import_module(module_name)
    except ImportError as e:
        msg = f"Cannot import {module_name}: {e}"
        raise click.BadParameter(msg) from e
    try:
        return getattr(module, attr)
    except AttributeError as e:
        msg = f"{module_name} has no attribute {attr}"
        raise click.BadParameter(msg) from e


async def build_collaborators(factory: Any, session: aiohttp.ClientSession, config: Config) -> Collaborators:
    """Call a collaborator factory (sync or async) and check what it returned."""
    result = factory(session, config)
    if inspect.isawaitable(result):
        result = await result
    if not isinstance(result, Collaborators):
        msg = f"Collaborator factory must return Collaborators, got {type(result).__name__}"
        raise ConfigurationError(msg)
    return result


def _print_stats(console: Console, stats: RetrievalStats) -> None:
    table = Table(title="Measurement")
    table.add_column("Field", style="cyan")
    table.add_column("Value", style="green")
    for key, value in stats.as_measurement().items():
        table.add_row(key, "" if value is None else str(value))
    console.print(table)


async def _run_check(
    config: Config,
    task: RetrievalTask,
    peer_id: str | None = None,
    collaborators: str | None = None,
) -> RetrievalStats:
    async with aiohttp.ClientSession() as session:
        contract = None
        if collaborators:
            wired = await build_collaborators(load_factory(collaborators), session, config)
            contract = wired.contract

        resolve_peer_id = None
        if peer_id:

            async def resolve_peer_id(_miner_id: str) -> str:
                return peer_id

        checker = RetrievalChecker.from_config(
            session,
            config,
            contract=contract,
            resolve_peer_id=resolve_peer_id,
        )
        return await checker.execute_check(task)


async def _run_service(config: Config, collaborators: str) -> None:
    async with aiohttp.ClientSession() as session:
        wired = await build_collaborators(load_factory(collaborators), session, config)
        checker = RetrievalChecker.from_config(session, config, contract=wired.contract)
        service = CheckerService(checker, wired.source, wired.reporter, wired.host, config.queue)

        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            # Not available on Windows event loops
            with contextlib.suppress(NotImplementedError):
                loop.add_signal_handler(sig, lambda: asyncio.create_task(service.stop()))

        try:
            await service.run()
        finally:
            await service.stop()


@click.group()
@click.option(
    "--config",
    "-c",
    type=click.Path(exists=True),
    help="Configuration file path",
)
@click.option(
    "--verbose",
    "-v",
    count=True,
    help="Lower the configured log level one step per flag",
)
@click.version_option(__version__, prog_name="rcheck")
@click.pass_context
def cli(ctx, config, verbose):
    """Rcheck - Filecoin retrieval checker."""
    ctx.ensure_object(dict)
    try:
        config_manager = init_config(config, verbose)
    except ConfigurationError as e:
        raise click.ClickException(str(e)) from e

    ctx.obj["config_manager"] = config_manager
    ctx.obj["console"] = Console()


@cli.command()
@click.argument("cid")
@click.argument("miner_id")
@click.option("--peer-id", help="Skip peer id resolution and use this peer id")
@click.option(
    "--collaborators",
    help="module:factory returning Collaborators (needed for the contract peer id source)",
)
@click.option("--json", "as_json", is_flag=True, help="Print the measurement as JSON")
@click.pass_context
def check(ctx, cid, miner_id, peer_id, collaborators, as_json):
    """Check whether CID can be retrieved from storage provider MINER_ID."""
    console: Console = ctx.obj["console"]
    task = RetrievalTask(id="manual-check", cid=cid, miner_id=miner_id)
    try:
        stats = asyncio.run(_run_check(get_config(), task, peer_id, collaborators))
    except CheckerError as e:
        cause = f" ({e.__cause__})" if e.__cause__ is not None else ""
        raise click.ClickException(f"{e}{cause}") from e

    if as_json:
        click.echo(json.dumps(stats.as_measurement(), indent=2))
    else:
        _print_stats(console, stats)
    for line in retrieval_hints(stats, cid):
        console.print(line, markup=False, highlight=False)


@cli.command("multiaddr")
@click.argument("address")
def multiaddr_cmd(address):
    """Print the HTTP URL for a provider multiaddr."""
    try:
        click.echo(multiaddr_to_http_url(address))
    except MultiaddrError as e:
        raise click.ClickException(f"{e} (code {e.code})") from e


@cli.command()
@click.option(
    "--collaborators",
    required=True,
    help="module:factory returning Collaborators (dispute source, reporter, host)",
)
def run(collaborators):
    """Run the dispute-processing service until interrupted."""
    try:
        asyncio.run(_run_service(get_config(), collaborators))
    except CheckerError as e:
        raise click.ClickException(str(e)) from e
    except KeyboardInterrupt:
        logger.info("Interrupted")


@cli.command("config")
@click.option("--format", "fmt", type=click.Choice(["toml", "json"]), default="toml")
@click.option("--show-secrets", is_flag=True, help="Do not mask the RPC auth token")
@click.pass_context
def show_config(ctx, fmt, show_secrets):
    """Print the effective configuration."""
    click.echo(ctx.obj["config_manager"].export(fmt, include_secrets=show_secrets))


def main():
    """Main CLI entry point."""
    cli()


if __name__ == "__main__":
    main()

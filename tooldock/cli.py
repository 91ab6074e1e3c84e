"""CLI for ToolDock - launch tool servers, list their tools and call them."""

from __future__ import annotations

import asyncio
import json
import logging
import os
import shutil
import uuid
from pathlib import Path

import click

from tooldock import __version__
from tooldock.config import DEFAULT_CONFIG_FILE, ConfigError, OrchestratorConfig, load_config
from tooldock.orchestrator import Orchestrator
from tooldock.schemas import InvocationRequest
from tooldock.state import JsonFileStateStore, PersistenceError

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def _configure_logging(verbose: bool, debug: bool) -> None:
    if debug or os.environ.get("TOOLDOCK_DEBUG") or os.environ.get("DEBUG"):
        level = logging.DEBUG
    elif verbose:
        level = logging.INFO
    else:
        level = logging.WARNING
    logging.basicConfig(level=level, format=LOG_FORMAT)


def _load(ctx: click.Context) -> OrchestratorConfig:
    try:
        return load_config(ctx.obj["config_path"])
    except ConfigError as e:
        raise click.ClickException(str(e)) from e


@click.group()
@click.version_option(version=__version__, prog_name="tooldock")
@click.option(
    "--config", "-c",
    "config_path",
    default=None,
    type=click.Path(dir_okay=False),
    help=f"Config file (defaults to ./{DEFAULT_CONFIG_FILE})",
)
@click.option("--verbose", "-v", is_flag=True, help="Log progress")
@click.option("--debug", is_flag=True, help="Log everything, including server output")
@click.pass_context
def main(ctx: click.Context, config_path: str | None, verbose: bool, debug: bool) -> None:
    """ToolDock - orchestrate HTTP tool servers for an agent.

    Launches the servers listed in the config, rejoins servers left running
    by a previous run, and exposes their tools under `<server>.<tool>` names.
    """
    _configure_logging(verbose, debug)
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path


@main.command()
@click.option("--raw", is_flag=True, help="Output function declarations as JSON")
@click.pass_context
def tools(ctx: click.Context, raw: bool) -> None:
    """List the tools of every configured server.

    \b
    Example:
        tooldock tools
        tooldock --config servers.json tools --raw
    """
    config = _load(ctx)

    async def run() -> None:
        async with Orchestrator(config) as orchestrator:
            if raw:
                click.echo(json.dumps(orchestrator.function_declarations(), indent=2))
                return

            catalog = orchestrator.tools()
            if not catalog:
                click.echo("No tools available.")
                return
            click.echo(f"Found {len(catalog)} tools:\n")
            for descriptor in catalog:
                click.echo(f"  {descriptor.qualified_name}  {descriptor.description}")

    asyncio.run(run())


@main.command()
@click.argument("name")
@click.argument("arguments", default="{}")
@click.option("--id", "call_id", default=None, help="Correlation id (defaults to a random one)")
@click.pass_context
def call(ctx: click.Context, name: str, arguments: str, call_id: str | None) -> None:
    """Call a tool by its qualified name.

    \b
    Example:
        tooldock call example.echo '{"text": "hello"}'
    """
    config = _load(ctx)
    request = InvocationRequest(
        id=call_id or f"call-{uuid.uuid4().hex[:12]}",
        qualified_name=name,
        argument_payload=arguments,
    )

    async def run():
        async with Orchestrator(config) as orchestrator:
            return await orchestrator.invoke(request)

    result = asyncio.run(run())
    click.echo(json.dumps(result.model_dump(mode="json"), indent=2))
    if not result.ok:
        ctx.exit(1)


@main.command()
@click.pass_context
def status(ctx: click.Context) -> None:
    """Show servers recorded in the state file and whether they respond."""
    config = _load(ctx)
    store = JsonFileStateStore(config.state_file)
    try:
        servers = store.load()
    except PersistenceError as e:
        raise click.ClickException(str(e)) from e

    if not servers:
        click.echo("No servers recorded.")
        return

    async def probe_all() -> list[bool]:
        orchestrator = Orchestrator(config, store=store)
        try:
            return await asyncio.gather(*(
                orchestrator.http.client_for(entry.url).probe(config.readiness.path)
                for entry in servers.values()
            ))
        finally:
            await orchestrator.aclose()

    reachable = asyncio.run(probe_all())
    click.echo("Recorded servers:")
    for (name, entry), alive in zip(servers.items(), reachable):
        click.echo(f"  - {name}: {entry.url} ({'up' if alive else 'down'})")


@main.command()
@click.confirmation_option(prompt="Are you sure you want to forget all recorded servers?")
@click.pass_context
def reset(ctx: click.Context) -> None:
    """Reset the state file to an empty record set."""
    config = _load(ctx)
    try:
        JsonFileStateStore(config.state_file).clear()
    except PersistenceError as e:
        raise click.ClickException(str(e)) from e
    click.echo(f"Cleared {config.state_file}")


@main.command()
@click.option("--name", default="example", help="Server name to add")
@click.pass_context
def init(ctx: click.Context, name: str) -> None:
    """Add the example tool server to the config file.

    \b
    Example:
        tooldock init
        tooldock tools
    """
    config_path = Path(ctx.obj["config_path"] or Path.cwd() / DEFAULT_CONFIG_FILE)
    tooldock_executable = shutil.which("tooldock") or "tooldock"

    if config_path.exists():
        try:
            config = json.loads(config_path.read_text())
        except json.JSONDecodeError:
            config = {"mcpServers": {}}
    else:
        config = {"mcpServers": {}}

    if not isinstance(config, dict):
        config = {"mcpServers": {}}
    if not isinstance(config.get("mcpServers"), dict):
        config["mcpServers"] = {}

    if name in config["mcpServers"]:
        click.echo(f"{config_path.name} already has a '{name}' server, skipping...")
        return

    config["mcpServers"][name] = {
        "command": tooldock_executable,
        "args": ["serve-example"],
    }
    config_path.write_text(json.dumps(config, indent=2) + "\n")
    click.echo(f"Added '{name}' server to {config_path.name}")


@main.command(name="serve-example")
@click.option("--port", default=8000, help="Port to run the server on")
@click.option("--host", default="127.0.0.1", help="Host to bind to")
def serve_example(port: int, host: str) -> None:
    """Run the example tool server (echo, add)."""
    import uvicorn

    from tooldock.example_server import create_example_app

    click.echo(f"Starting example tool server on {host}:{port}")
    uvicorn.run(create_example_app(), host=host, port=port, log_level="info")


if __name__ == "__main__":
    main()

"""CLI application for Storefront Realtime.

Provides commands for:
- serve: Start the realtime server
- validate: Validate configuration
- init-config: Write an example configuration
- listen: Connect as a client and print incoming events
- notifications: Show the local notification cache
- token: Mint a JWT for testing
"""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import TYPE_CHECKING, Annotated, Any

import typer
from rich.console import Console
from rich.table import Table

from storefront_realtime import __version__
from storefront_realtime.adapters.client.cache import NotificationCache
from storefront_realtime.adapters.client.manager import ConnectionManager
from storefront_realtime.adapters.persistence.storage import TOKEN_KEY, ClientStorage
from storefront_realtime.adapters.server.security.jwt import ROLE_USER, TokenService
from storefront_realtime.config.loader import (
    ConfigurationError,
    generate_example_config,
    load_config,
)
from storefront_realtime.config.schema import ClientType
from storefront_realtime.domain.model.events import LIFECYCLE_KINDS, EventKind
from storefront_realtime.main import run_server
from storefront_realtime.observability.logging import setup_logging

if TYPE_CHECKING:
    from storefront_realtime.config.schema import RealtimeConfig


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        typer.echo(f"storefront-realtime {__version__}")
        raise typer.Exit()


app = typer.Typer(
    name="storefront-realtime",
    help="Storefront Realtime - event fan-out for storefront clients and admin dashboards",
    add_completion=False,
)


@app.callback()
def main(
    version: Annotated[
        bool,
        typer.Option(
            "--version",
            "-V",
            callback=version_callback,
            is_eager=True,
            help="Show version and exit",
        ),
    ] = False,
) -> None:
    """Storefront Realtime CLI."""
    pass


console = Console()

ConfigOption = Annotated[
    Path | None,
    typer.Option(
        "--config",
        "-c",
        help="Path to configuration YAML file (defaults are used when omitted)",
        exists=True,
        dir_okay=False,
    ),
]


def _load(config: Path | None) -> RealtimeConfig:
    try:
        return load_config(config)
    except ConfigurationError as e:
        console.print("[bold red]Configuration error:[/bold red]")
        console.print(str(e))
        raise typer.Exit(code=1) from e


@app.command()
def serve(
    config: ConfigOption = None,
    override: Annotated[
        Path | None,
        typer.Option(
            "--override",
            "-o",
            help="Path to override configuration file",
            exists=True,
        ),
    ] = None,
) -> None:
    """Start the realtime server.

    Runs until interrupted (Ctrl+C) or SIGTERM is received.
    """
    console.print("[bold green]Starting Storefront Realtime[/bold green]")
    if config:
        console.print(f"Configuration: {config}")

    try:
        asyncio.run(run_server(config, override))
    except KeyboardInterrupt:
        console.print("\n[yellow]Shutdown requested[/yellow]")
    except ConfigurationError as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        raise typer.Exit(code=1) from e


@app.command()
def validate(
    config: Annotated[
        Path,
        typer.Argument(
            help="Path to configuration YAML file",
            exists=True,
        ),
    ],
) -> None:
    """Validate a configuration file."""
    console.print(f"[bold]Validating:[/bold] {config}")

    try:
        realtime_config = load_config(config)
    except ConfigurationError as e:
        console.print("[bold red]Validation failed:[/bold red]")
        console.print(str(e))
        raise typer.Exit(code=1) from e

    console.print("[bold green]Configuration valid![/bold green]")
    console.print(f"  Client URL: {realtime_config.client.base_url}{realtime_config.client.path}")
    console.print(f"  Transports: {', '.join(t.value for t in realtime_config.client.transports)}")
    console.print(f"  Server: {realtime_config.server.host}:{realtime_config.server.port}")


@app.command("init-config")
def init_config(
    output: Annotated[
        Path | None,
        typer.Option(
            "--output",
            "-o",
            help="Output file path (prints to stdout when omitted)",
        ),
    ] = None,
) -> None:
    """Generate an example configuration file."""
    example_yaml = generate_example_config()
    if output is None:
        typer.echo(example_yaml)
        return

    output.write_text(example_yaml)
    console.print(f"[bold green]Example configuration written:[/bold green] {output}")
    console.print("\nSet ACCESS_TOKEN_SECRET, edit the file, then run:")
    console.print(f"  [cyan]storefront-realtime validate {output}[/cyan]")
    console.print(f"  [cyan]storefront-realtime serve --config {output}[/cyan]")


@app.command()
def listen(
    config: ConfigOption = None,
    token: Annotated[
        str | None,
        typer.Option("--token", "-t", help="Access token (defaults to the stored userToken)"),
    ] = None,
    admin: Annotated[
        bool,
        typer.Option("--admin", help="Connect as an admin session"),
    ] = False,
    duration: Annotated[
        float,
        typer.Option("--duration", "-d", help="Seconds to listen (0 = until interrupted)"),
    ] = 0.0,
) -> None:
    """Connect to the realtime server and print incoming events."""
    realtime_config = _load(config)
    setup_logging(realtime_config.logging.level, realtime_config.logging.format.value, role="client")
    client_config = realtime_config.client
    if admin:
        client_config = client_config.model_copy(update={"client_type": ClientType.ADMIN})

    async def run_listener() -> None:
        storage = ClientStorage(client_config.storage_path)
        await storage.initialize()
        manager = ConnectionManager(client_config, storage)

        def printer(event_type: str) -> Any:
            def handler(*args: Any) -> None:
                body = json.dumps(args[0], default=str) if args else ""
                console.print(f"[cyan]{event_type}[/cyan] {body}")

            return handler

        for kind in EventKind:
            if kind is not EventKind.UNRECOGNIZED:
                manager.on(kind, printer(kind.value))

        try:
            await manager.connect(token)
            status = manager.get_connection_status()
            style = "green" if status.connected else "red"
            console.print(f"[{style}]Status:[/{style}] {status.as_dict()}")
            if duration > 0:
                await asyncio.sleep(duration)
            else:
                await asyncio.Event().wait()
        finally:
            await manager.aclose()
            await storage.close()

    console.print(f"[bold]Listening on[/bold] {client_config.base_url}{client_config.path}")
    console.print(f"[dim]Lifecycle events: {', '.join(sorted(k.value for k in LIFECYCLE_KINDS))}[/dim]")
    try:
        asyncio.run(run_listener())
    except KeyboardInterrupt:
        console.print("\n[yellow]Stopped[/yellow]")


@app.command()
def notifications(
    config: ConfigOption = None,
    limit: Annotated[
        int,
        typer.Option("--limit", "-n", help="Maximum rows to show"),
    ] = 20,
    clear: Annotated[
        bool,
        typer.Option("--clear", help="Clear the cache after showing it"),
    ] = False,
) -> None:
    """Show notifications cached by the local client."""
    realtime_config = _load(config)
    client_config = realtime_config.client

    async def show() -> None:
        storage = ClientStorage(client_config.storage_path)
        await storage.initialize()
        cache = NotificationCache(
            storage,
            capacity=client_config.cache.capacity,
            key=client_config.cache.key,
        )
        try:
            items = await cache.get_all()
            unread = sum(1 for n in items if not n.read)

            table = Table(title=f"Notifications ({len(items)} cached, {unread} unread)")
            table.add_column("Received", style="dim")
            table.add_column("Type", style="cyan")
            table.add_column("Title", style="magenta")
            table.add_column("Message")
            table.add_column("Read")

            for item in items[:limit]:
                table.add_row(
                    item.timestamp.strftime("%Y-%m-%d %H:%M:%S"),
                    item.type,
                    item.title,
                    item.message,
                    "yes" if item.read else "[bold]no[/bold]",
                )
            console.print(table)

            if clear:
                await cache.clear()
                console.print("[yellow]Notification cache cleared[/yellow]")
        finally:
            await storage.close()

    asyncio.run(show())


@app.command()
def token(
    user_id: Annotated[str, typer.Argument(help="User id (token subject)")],
    role: Annotated[
        str,
        typer.Option("--role", "-r", help="Role claim (user or admin)"),
    ] = ROLE_USER,
    email: Annotated[
        str | None,
        typer.Option("--email", "-e", help="Email claim"),
    ] = None,
    config: ConfigOption = None,
    store: Annotated[
        bool,
        typer.Option("--store", help="Save as the local client's userToken"),
    ] = False,
) -> None:
    """Mint an access token signed with the server secret.

    The secret is read from the configuration or ACCESS_TOKEN_SECRET.
    """
    realtime_config = _load(config)
    secret = realtime_config.server.jwt_secret
    if not secret:
        console.print("[bold red]No JWT secret:[/bold red] set server.jwt_secret or ACCESS_TOKEN_SECRET")
        raise typer.Exit(code=1)

    service = TokenService(
        secret=secret,
        algorithm=realtime_config.server.jwt_algorithm,
        expiry_minutes=realtime_config.server.jwt_expiry_minutes,
    )
    access_token = service.create_access_token(user_id, role=role, email=email)
    typer.echo(access_token)

    if store:

        async def save() -> None:
            storage = ClientStorage(realtime_config.client.storage_path)
            await storage.initialize()
            try:
                await storage.set_item(TOKEN_KEY, access_token)
            finally:
                await storage.close()

        asyncio.run(save())
        console.print(f"[green]Stored as {TOKEN_KEY}[/green]", highlight=False)


@app.command()
def version() -> None:
    """Show version information."""
    console.print(f"Storefront Realtime version [bold]{__version__}[/bold]")

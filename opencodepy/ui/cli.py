"""Main CLI entry point."""

import logging
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from opencodepy.core.client import Client
from opencodepy.core.configs import (
    DEFAULT_HOSTNAME,
    DEFAULT_PORT,
    ClientOptions,
    ServerOptions,
    get_client_options,
    load_raw_config,
)
from opencodepy.core.errors import OpencodeError
from opencodepy.core.streaming import StreamOptions
from opencodepy.core.types import MessageWithParts, Part, TextPart
from opencodepy.server.supervisor import Server
from opencodepy.ui.output import UIManager

app = typer.Typer(
    add_completion=False,
    no_args_is_help=True,
    help="opencodepy - client and supervisor for opencode servers.",
)

console = Console()
ui = UIManager()


# ============================================================================
# Shared setup
# ============================================================================

def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s [%(levelname)s] %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def _load_options(url: Optional[str]) -> ClientOptions:
    """Load config, applying a --url override. Exits on error."""
    try:
        options = get_client_options(load_raw_config())
    except ValueError as e:
        typer.echo(f"Error loading configuration: {e}", err=True)
        raise typer.Exit(1)
    if url:
        options.base_url = url
    return options


def _connect(url: Optional[str]) -> Client:
    """Connect to the configured server, or spawn one. Exits on error."""
    options = _load_options(url)
    try:
        return Client(options)
    except OpencodeError as e:
        typer.echo(f"Error connecting to server: {e}", err=True)
        raise typer.Exit(1)


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    _configure_logging(verbose)


# ============================================================================
# Commands
# ============================================================================

@app.command()
def serve(
    port: int = typer.Option(DEFAULT_PORT, "--port", "-p", help="Port to listen on (0 = any)"),
    hostname: str = typer.Option(DEFAULT_HOSTNAME, "--hostname", help="Interface to bind"),
    mdns: bool = typer.Option(False, "--mdns", help="Advertise the server via mDNS"),
) -> None:
    """
    Spawn an opencode server and keep it running until Ctrl-C.

    Example: opencodepy serve --port 0
    """
    options = _load_options(None)
    username, password = options.basic_auth or (None, None)
    server_options = ServerOptions(
        opencode_binary=options.opencode_path,
        hostname=hostname,
        port=port,
        mdns=mdns,
        username=username,
        password=password,
        working_directory=options.directory,
        startup_timeout=options.startup_timeout_ms / 1000.0,
    )

    try:
        server = Server.spawn(server_options)
    except OpencodeError as e:
        typer.echo(f"Error starting server: {e}", err=True)
        raise typer.Exit(1)

    with server:
        ui.success(f"Server listening on {server.url} (pid {server.pid})")
        ui.dim("Press Ctrl-C to stop.")
        try:
            exit_code = server.wait()
        except KeyboardInterrupt:
            ui.info("Stopping server...")
            return
    typer.echo(f"Server exited with code {exit_code}", err=True)
    raise typer.Exit(exit_code or 1)


@app.command()
def health(
    url: Optional[str] = typer.Option(None, "--url", "-u", help="Server URL"),
) -> None:
    """Print the server's health and version."""
    with _connect(url) as client:
        try:
            info = client.health()
        except OpencodeError as e:
            typer.echo(f"Error: {e}", err=True)
            raise typer.Exit(1)
    if info.healthy:
        ui.success(f"healthy (version {info.version or 'unknown'})")
    else:
        ui.error(f"unhealthy (version {info.version or 'unknown'})")
        raise typer.Exit(1)


@app.command()
def sessions(
    url: Optional[str] = typer.Option(None, "--url", "-u", help="Server URL"),
) -> None:
    """List the sessions on the server."""
    with _connect(url) as client:
        try:
            items = client.list_sessions()
        except OpencodeError as e:
            typer.echo(f"Error: {e}", err=True)
            raise typer.Exit(1)

    if not items:
        console.print("[yellow]No sessions[/yellow]")
        return

    table = Table(title="Sessions")
    table.add_column("ID", style="cyan")
    table.add_column("Title")
    table.add_column("Directory", style="dim")
    for item in items:
        table.add_row(item.id, item.title, item.directory)
    console.print(table)


@app.command()
def events(
    url: Optional[str] = typer.Option(None, "--url", "-u", help="Server URL"),
) -> None:
    """Print server events as they arrive, until Ctrl-C."""
    with _connect(url) as client:
        stream = client.subscribe_events()
        try:
            for event in stream:
                ui.event(event)
        except KeyboardInterrupt:
            stream.close()
            return
    if stream.error:
        typer.echo(f"Event stream closed: {stream.error}", err=True)
        raise typer.Exit(1)


@app.command()
def chat(
    prompt: str = typer.Argument(..., help="Prompt to send"),
    url: Optional[str] = typer.Option(None, "--url", "-u", help="Server URL"),
    session_id: Optional[str] = typer.Option(None, "--session", "-s", help="Existing session id"),
    provider: Optional[str] = typer.Option(None, "--provider", help="Provider id"),
    model: Optional[str] = typer.Option(None, "--model", "-m", help="Model id"),
) -> None:
    """
    Send a prompt and print the reply as it is generated.

    Example: opencodepy chat "explain the build system" --provider anthropic
    """
    streamed = []
    errors = []

    def on_part(part: Part) -> None:
        if isinstance(part, TextPart) and part.is_delta:
            streamed.append(part.text)
            ui.print_text(part.text)

    def on_complete(message: MessageWithParts) -> None:
        if not streamed:
            ui.print_text(message.text())
        ui.print_text("\n")

    with _connect(url) as client:
        try:
            if session_id:
                session = client.get_session(session_id)
            else:
                session = client.create_session(prompt[:50])
            ui.dim(f"[session {session.id}]")
            session.send_streaming(
                prompt,
                StreamOptions(on_part=on_part, on_complete=on_complete, on_error=errors.append),
                provider,
                model,
            )
        except OpencodeError as e:
            errors.append(str(e))

    if errors:
        typer.echo(f"Error: {errors[0]}", err=True)
        raise typer.Exit(1)


def run() -> None:
    """Entry point for console script mapping."""
    app()


if __name__ == "__main__":
    run()

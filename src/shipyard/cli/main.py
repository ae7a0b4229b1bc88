"""Main CLI application - ties all subcommands together.

This is the entry point for the shipyard CLI.
"""

from typing import Annotated

import typer

from shipyard.cli.builds import app as builds_app
from shipyard.cli.common import NEON_CYAN, console, create_panel
from shipyard.cli.keys import app as keys_app
from shipyard.cli.tokens import app as token_app

app = typer.Typer(
    name="shipyard",
    help="Shipyard - build-and-deploy orchestration core",
    add_completion=False,
    no_args_is_help=True,
)

app.add_typer(keys_app, name="keys")
app.add_typer(token_app, name="token")
app.add_typer(builds_app, name="builds")


@app.command()
def serve(
    host: Annotated[str | None, typer.Option("--host", "-h", help="Host to bind to")] = None,
    port: Annotated[int | None, typer.Option("--port", "-p", help="Port to listen on")] = None,
    reload: Annotated[bool, typer.Option("--reload", help="Reload on code changes")] = False,
) -> None:
    """Start the API server.

    Examples:
        shipyard serve                 # Default: settings host/port
        shipyard serve -p 8080         # Custom port
        shipyard serve -h 0.0.0.0      # Listen on all interfaces
    """
    import uvicorn

    from shipyard.config import settings
    from shipyard.logging import configure_logging

    configure_logging(level=settings.log_level)
    console.print(
        create_panel(
            f"Environment: {settings.environment}\nPublic URL: {settings.public_url}",
            title="Shipyard",
        )
    )
    try:
        uvicorn.run(
            "shipyard.api.app:create_app",
            factory=True,
            host=host or settings.server_host,
            port=port or settings.server_port,
            reload=reload,
            log_config=None,
        )
    except KeyboardInterrupt:
        console.print(f"\n[{NEON_CYAN}]Shutting down...[/{NEON_CYAN}]")


@app.command()
def version() -> None:
    """Show version information."""
    from shipyard import __version__

    console.print(f"shipyard {__version__}")


def main() -> None:
    """Main entry point."""
    app()


if __name__ == "__main__":
    main()

"""Signing keypair CLI commands."""

import json
from typing import Annotated

import typer

from shipyard.cli.common import console, create_table, info, run_async, success

app = typer.Typer(
    name="keys",
    help="Signing keypair management",
    no_args_is_help=True,
)


@app.command("init")
def init_keys() -> None:
    """Load the signing keypair, generating it on first run."""

    @run_async
    async def _init() -> None:
        from shipyard.auth.keys import SigningKeyStore
        from shipyard.db.connection import close_db, init_db

        await init_db()
        try:
            material = await SigningKeyStore().ensure_keypair()
        finally:
            await close_db()
        success(f"Signing key ready: {material.kid}")

    _init()


@app.command("rotate")
def rotate_keys(
    yes: Annotated[bool, typer.Option("--yes", "-y", help="Skip confirmation")] = False,
) -> None:
    """Retire the primary key and generate a new one.

    The previous key stays published so existing tokens keep verifying.
    Running API processes pick up the new signing key on restart.
    """
    if not yes:
        typer.confirm("Rotate the platform signing key?", abort=True)

    @run_async
    async def _rotate() -> None:
        from shipyard.auth.keys import SigningKeyStore
        from shipyard.db.connection import close_db, init_db

        await init_db()
        try:
            material = await SigningKeyStore().rotate()
        finally:
            await close_db()
        success(f"Rotated signing key, new kid: {material.kid}")

    _rotate()


@app.command("jwks")
def show_jwks(
    raw: Annotated[bool, typer.Option("--json", help="Print the raw key set")] = False,
) -> None:
    """Show the published public key set."""

    @run_async
    async def _jwks() -> None:
        from shipyard.auth.keys import SigningKeyStore
        from shipyard.db.connection import close_db, init_db

        await init_db()
        try:
            key_set = await SigningKeyStore().published_key_set()
        finally:
            await close_db()

        if raw:
            console.print_json(json.dumps(key_set))
            return
        if not key_set["keys"]:
            info("No signing keys yet; run `shipyard keys init`")
            return
        table = create_table("Published keys", "kid", "alg", "use")
        for key in key_set["keys"]:
            table.add_row(key.get("kid", ""), key.get("alg", ""), key.get("use", ""))
        console.print(table)

    _jwks()

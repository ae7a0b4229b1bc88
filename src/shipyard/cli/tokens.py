"""Token minting CLI commands."""

from datetime import timedelta
from typing import Annotated

import typer

from shipyard.cli.common import console, error, run_async

app = typer.Typer(
    name="token",
    help="Mint platform tokens",
    no_args_is_help=True,
)


@app.command("mint")
def mint_token(
    role: Annotated[str, typer.Option("--role", "-r", help="anon, service_role or runner")],
    org_slug: Annotated[str, typer.Option("--org-slug", help="Organization slug")],
    org_id: Annotated[str, typer.Option("--org-id", help="Organization id (runner only)")] = "",
    env_id: Annotated[str, typer.Option("--env-id", help="Environment id (runner only)")] = "",
    env_slug: Annotated[str, typer.Option("--env-slug", help="Environment slug (runner only)")] = "",
    ttl_seconds: Annotated[
        int, typer.Option("--ttl", help="Lifetime in seconds (0 = provisioning default)")
    ] = 0,
) -> None:
    """Mint a signed token with the active platform key."""
    from shipyard.auth.jwt import Role

    try:
        parsed_role = Role(role)
    except ValueError:
        error(f"Unknown role: {role}")
        raise typer.Exit(code=1) from None

    if parsed_role is Role.RUNNER and not (org_id and env_id and env_slug):
        error("Runner tokens need --org-id, --env-id and --env-slug")
        raise typer.Exit(code=1)

    ttl = timedelta(seconds=ttl_seconds) if ttl_seconds > 0 else None

    @run_async
    async def _mint() -> str:
        from shipyard.auth.jwt import TokenIssuer
        from shipyard.auth.keys import SigningKeyStore
        from shipyard.db.connection import close_db, init_db

        await init_db()
        try:
            store = SigningKeyStore()
            await store.ensure_keypair()
        finally:
            await close_db()

        issuer = TokenIssuer(store)
        if parsed_role is Role.ANON:
            return issuer.mint_anon(org_slug, ttl=ttl)
        if parsed_role is Role.SERVICE_ROLE:
            return issuer.mint_service_role(org_slug, ttl=ttl)
        return issuer.mint_runner(
            org_id=org_id, org_slug=org_slug, env_id=env_id, env_slug=env_slug, ttl=ttl
        )

    console.print(_mint(), soft_wrap=True)

"""Build maintenance CLI commands."""

from typing import Annotated

import typer

from shipyard.cli.common import (
    console,
    create_table,
    error,
    format_status,
    info,
    run_async,
    success,
)

app = typer.Typer(
    name="builds",
    help="Build maintenance",
    no_args_is_help=True,
)


@app.command("sweep")
def sweep_builds(
    stale_after: Annotated[
        int, typer.Option("--stale-after", help="Seconds without progress (0 = settings)")
    ] = 0,
) -> None:
    """Expire builds stuck in `building` whose job is gone (one pass)."""

    @run_async
    async def _sweep() -> int:
        from shipyard.builds.orchestrator import BuildJobOrchestrator
        from shipyard.builds.reconcile import StaleBuildSweeper
        from shipyard.db.connection import close_db, init_db

        await init_db()
        orchestrator = BuildJobOrchestrator()
        try:
            sweeper = StaleBuildSweeper(orchestrator, stale_after_seconds=stale_after or None)
            return await sweeper.sweep_once()
        finally:
            await orchestrator.close()
            await close_db()

    expired = _sweep()
    if expired:
        success(f"Expired {expired} stale build(s)")
    else:
        info("No stale builds")


@app.command("list")
def list_builds(
    app_id: Annotated[str, typer.Option("--app-id", help="App id")],
    org_id: Annotated[str, typer.Option("--org-id", help="Organization id")],
    limit: Annotated[int, typer.Option("--limit", "-n", help="Max builds to show")] = 20,
) -> None:
    """Show an app's builds, newest first."""
    from uuid import UUID

    try:
        app_uuid, org_uuid = UUID(app_id), UUID(org_id)
    except ValueError:
        error("--app-id and --org-id must be UUIDs")
        raise typer.Exit(code=1) from None

    @run_async
    async def _list() -> list:
        from shipyard.builds.lifecycle import BuildLifecycleTracker
        from shipyard.db.connection import close_db, get_session, init_db

        await init_db()
        try:
            async with get_session() as session:
                return await BuildLifecycleTracker(session).list(app_uuid, org_uuid)
        finally:
            await close_db()

    builds = _list()[:limit]
    if not builds:
        info("No builds")
        return
    table = create_table("Builds", "ID", "Status", "Source", "Updated", "Error")
    for build in builds:
        table.add_row(
            str(build.id),
            format_status(build.status),
            build.source,
            build.updated_at.isoformat(timespec="seconds"),
            build.error_message or "",
        )
    console.print(table)

"""hp activity / metrics / stats -- read the activity log and counters."""

from __future__ import annotations

import click

from hupasiya.cli.formatting import format_events, format_metrics, format_stats
from hupasiya.models.activity import ActivityKind


@click.command()
@click.argument("session", envvar="HP_SESSION")
@click.option("-n", "--limit", default=20, type=int, help="Maximum number of events to show.")
@click.option(
    "--kind",
    type=click.Choice([k.value for k in ActivityKind], case_sensitive=False),
    default=None,
    help="Only show events of this kind.",
)
@click.pass_context
def activity(ctx: click.Context, session: str, limit: int, kind: str | None) -> None:
    """Show the most recent activity events for SESSION."""
    from hupasiya.activity import ActivityRecorder
    from hupasiya.cli import _store_session

    with _store_session(ctx) as (store, console):
        events = ActivityRecorder(store).events(
            session,
            limit=limit if limit > 0 else None,
            kind=ActivityKind(kind.lower()) if kind else None,
        )
        format_events(events, console)


@click.command()
@click.argument("session", envvar="HP_SESSION")
@click.pass_context
def metrics(ctx: click.Context, session: str) -> None:
    """Show accumulated counters for SESSION."""
    from hupasiya.activity import ActivityRecorder
    from hupasiya.cli import _store_session

    with _store_session(ctx) as (store, console):
        info = store.info(session)
        format_metrics(info.name, ActivityRecorder(store).metrics(info.id), console)


@click.command()
@click.pass_context
def stats(ctx: click.Context) -> None:
    """Show totals across every session."""
    from hupasiya.activity import ActivityRecorder
    from hupasiya.cli import _store_session

    with _store_session(ctx) as (store, console):
        format_stats(ActivityRecorder(store).stats(), console)

"""hp new / list / lock / unlock / pause / activate / close / link-pr -- session lifecycle."""

from __future__ import annotations

import click

from hupasiya.cli.formatting import format_session, format_session_list
from hupasiya.models.session import ChangeRequestStatus, SessionStatus

_TERMINAL = [s.value for s in SessionStatus if s.is_terminal]


@click.command()
@click.argument("name")
@click.option(
    "-w",
    "--workspace",
    "workspace_ref",
    default=None,
    help="Workspace reference (defaults to NAME).",
)
@click.option("-p", "--parent", default=None, help="Attach under this session.")
@click.option(
    "-t",
    "--type",
    "agent_type",
    default="feature",
    show_default=True,
    help="Agent type (feature, bugfix, review, research, refactor, test, docs, shepherd, or custom).",
)
@click.option("--notes", default="", help="Free-form notes.")
@click.pass_context
def new(
    ctx: click.Context,
    name: str,
    workspace_ref: str | None,
    parent: str | None,
    agent_type: str,
    notes: str,
) -> None:
    """Register session NAME bound to an existing workspace."""
    from hupasiya.cli import _get_workspace, _store_session
    from hupasiya.sessions import SessionManager

    with _store_session(ctx) as (store, console):
        manager = SessionManager(store, _get_workspace(ctx))
        info = manager.register(
            name,
            workspace_ref or name,
            parent=parent,
            agent_type=agent_type,
            notes=notes,
        )
        format_session(info, console)


@click.command()
@click.argument("session", envvar="HP_SESSION")
@click.option("--owner", default=None, help="Lock owner (default: user@host).")
@click.pass_context
def lock(ctx: click.Context, session: str, owner: str | None) -> None:
    """Lock SESSION against cascade, gather, shepherd and tree edits."""
    from hupasiya.cli import _store_session
    from hupasiya.sessions import SessionManager

    with _store_session(ctx) as (store, console):
        info = SessionManager(store).lock(session, owner)
        console.print(f"Locked [bold]{info.name}[/bold] for {info.locked_by}")


@click.command()
@click.argument("session", envvar="HP_SESSION")
@click.option("--owner", default=None, help="Only release a lock held by this owner.")
@click.pass_context
def unlock(ctx: click.Context, session: str, owner: str | None) -> None:
    """Release the lock on SESSION."""
    from hupasiya.cli import _store_session
    from hupasiya.sessions import SessionManager

    with _store_session(ctx) as (store, console):
        if SessionManager(store).unlock(session, owner):
            console.print(f"Unlocked [bold]{session}[/bold]")
        else:
            console.print(f"[dim]{session} was not locked.[/dim]")


@click.command()
@click.argument("session", envvar="HP_SESSION")
@click.option(
    "--status",
    type=click.Choice(_TERMINAL, case_sensitive=False),
    default=SessionStatus.INTEGRATED.value,
    show_default=True,
    help="Terminal status to close into.",
)
@click.pass_context
def close(ctx: click.Context, session: str, status: str) -> None:
    """Close SESSION so it is no longer a cascade or gather target."""
    from hupasiya.cli import _store_session
    from hupasiya.sessions import SessionManager

    with _store_session(ctx) as (store, console):
        info = SessionManager(store).close(session, SessionStatus(status.lower()))
        console.print(f"Closed [bold]{info.name}[/bold] as {info.status.value}")


@click.command("link-pr")
@click.argument("session", envvar="HP_SESSION")
@click.argument("change_request")
@click.option(
    "--status",
    type=click.Choice([s.value for s in ChangeRequestStatus], case_sensitive=False),
    default=ChangeRequestStatus.OPEN.value,
    show_default=True,
)
@click.pass_context
def link_pr(ctx: click.Context, session: str, change_request: str, status: str) -> None:
    """Link SESSION to CHANGE_REQUEST (owner/repo#number)."""
    from hupasiya.cli import _store_session
    from hupasiya.sessions import SessionManager

    with _store_session(ctx) as (store, console):
        info = SessionManager(store).link_change_request(
            session, change_request, ChangeRequestStatus(status.lower())
        )
        console.print(f"Linked [bold]{info.name}[/bold] to {info.change_request_ref}")


@click.command("list")
@click.option(
    "--status",
    type=click.Choice([s.value for s in SessionStatus], case_sensitive=False),
    default=None,
    help="Only sessions in this status.",
)
@click.pass_context
def list_sessions(ctx: click.Context, status: str | None) -> None:
    """List sessions in creation order."""
    from hupasiya.cli import _store_session
    from hupasiya.sessions import SessionManager

    with _store_session(ctx) as (store, console):
        wanted = SessionStatus(status.lower()) if status else None
        format_session_list(SessionManager(store).list(wanted), store.name_of, console)


def _set_status(ctx: click.Context, session: str, status: SessionStatus) -> None:
    from hupasiya.cli import _store_session
    from hupasiya.sessions import SessionManager

    with _store_session(ctx) as (store, console):
        info = SessionManager(store).set_status(session, status)
        console.print(f"[bold]{info.name}[/bold] is {info.status.value}")


@click.command()
@click.argument("session", envvar="HP_SESSION")
@click.pass_context
def pause(ctx: click.Context, session: str) -> None:
    """Mark SESSION paused."""
    _set_status(ctx, session, SessionStatus.PAUSED)


@click.command()
@click.argument("session", envvar="HP_SESSION")
@click.pass_context
def activate(ctx: click.Context, session: str) -> None:
    """Mark SESSION active again."""
    _set_status(ctx, session, SessionStatus.ACTIVE)

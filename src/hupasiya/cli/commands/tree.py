"""hp tree / attach / detach -- show and edit the session tree."""

from __future__ import annotations

import click

from hupasiya.cli.formatting import format_tree


@click.command()
@click.argument("session", required=False)
@click.pass_context
def tree(ctx: click.Context, session: str | None) -> None:
    """Show the tree rooted at SESSION, or every root when omitted."""
    from hupasiya.cli import _store_session
    from hupasiya.tree import SessionTree

    with _store_session(ctx) as (store, console):
        session_tree = SessionTree(store)
        if session is not None:
            format_tree(session_tree.subtree(session), console)
            return
        roots = session_tree.roots()
        if not roots:
            console.print("[dim]No sessions.[/dim]")
        for root in roots:
            format_tree(session_tree.subtree(root.id), console)


@click.command()
@click.argument("parent")
@click.argument("child")
@click.pass_context
def attach(ctx: click.Context, parent: str, child: str) -> None:
    """Attach CHILD under PARENT."""
    from hupasiya.cli import _store_session
    from hupasiya.tree import SessionTree

    with _store_session(ctx) as (store, console):
        info = SessionTree(store).attach(parent, child)
        console.print(f"Attached [bold]{info.name}[/bold] under {store.name_of(info.parent_id)}")


@click.command()
@click.argument("session", envvar="HP_SESSION")
@click.option(
    "--cascade",
    "cascade_detach",
    is_flag=True,
    help="Hand active children to the former parent instead of refusing.",
)
@click.pass_context
def detach(ctx: click.Context, session: str, cascade_detach: bool) -> None:
    """Detach SESSION from its parent, making it a root."""
    from hupasiya.cli import _store_session
    from hupasiya.tree import SessionTree

    with _store_session(ctx) as (store, console):
        info = SessionTree(store).detach(session, cascade_detach=cascade_detach)
        console.print(f"Detached [bold]{info.name}[/bold]")

"""hp CLI -- terminal interface for session trees and review shepherding.

This module is NEVER imported from hupasiya/__init__.py.
It is only loaded via the ``hp`` entry point defined in pyproject.toml.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import TYPE_CHECKING

try:
    import click
except ImportError:
    raise ImportError(
        "CLI dependencies not installed. Install with: pip install hupasiya[cli]"
    ) from None

from hupasiya.cli.formatting import format_error, get_console

if TYPE_CHECKING:
    from collections.abc import Iterator

    from rich.console import Console

    from hupasiya.models.config import HupasiyaConfig
    from hupasiya.protocols import Workspace
    from hupasiya.store import SessionStore


@click.group()
@click.option(
    "--db",
    default=".hupasiya.db",
    envvar="HP_DB",
    help="Path to the session database.",
)
@click.option(
    "--workspace-command",
    default="hn",
    envvar="HP_WORKSPACE_COMMAND",
    help="Workbox CLI used to resolve and run commands in workspaces.",
)
@click.option("-v", "--verbose", is_flag=True, help="Log engine progress to stderr.")
@click.pass_context
def cli(ctx: click.Context, db: str, workspace_command: str, verbose: bool) -> None:
    """hp: orchestrate session trees across workspaces."""
    ctx.ensure_object(dict)
    ctx.obj["db_path"] = db
    ctx.obj["workspace_command"] = workspace_command
    if verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(levelname)s %(name)s: %(message)s",
        )


def _get_config(ctx: click.Context) -> HupasiyaConfig:
    from hupasiya.models.config import HupasiyaConfig

    return HupasiyaConfig(
        db_path=ctx.obj["db_path"],
        workspace_command=ctx.obj["workspace_command"],
    )


def _get_workspace(ctx: click.Context) -> Workspace:
    """The workspace collaborator. Tests inject one through ``obj``."""
    workspace = ctx.obj.get("workspace")
    if workspace is None:
        from hupasiya.workspace import HnWorkspace

        HnWorkspace.check_installed(ctx.obj["workspace_command"])
        workspace = HnWorkspace(ctx.obj["workspace_command"])
        ctx.obj["workspace"] = workspace
    return workspace


@contextmanager
def _store_session(ctx: click.Context) -> Iterator[tuple[SessionStore, Console]]:
    """Context manager that opens the store, yields (store, console), and handles cleanup.

    Ensures the store is closed on exit and formats exceptions as CLI errors.
    """
    from hupasiya.store import SessionStore

    console = get_console()
    try:
        store = SessionStore.from_config(_get_config(ctx))
        try:
            yield store, console
        finally:
            store.close()
    except SystemExit:
        raise
    except Exception as e:
        format_error(str(e), console)
        raise SystemExit(1) from None


# Register subcommands after cli group is defined
from hupasiya.cli.commands.sessions import (  # noqa: E402
    activate,
    close,
    link_pr,
    list_sessions,
    lock,
    new,
    pause,
    unlock,
)
from hupasiya.cli.commands.tree import attach, detach, tree  # noqa: E402
from hupasiya.cli.commands.merge import cascade, gather, resume  # noqa: E402
from hupasiya.cli.commands.shepherd import apply, shepherd  # noqa: E402
from hupasiya.cli.commands.activity import activity, metrics, stats  # noqa: E402

cli.add_command(new)
cli.add_command(list_sessions)
cli.add_command(tree)
cli.add_command(attach)
cli.add_command(detach)
cli.add_command(cascade)
cli.add_command(gather)
cli.add_command(resume)
cli.add_command(shepherd)
cli.add_command(apply)
cli.add_command(lock)
cli.add_command(unlock)
cli.add_command(pause)
cli.add_command(activate)
cli.add_command(close)
cli.add_command(link_pr)
cli.add_command(activity)
cli.add_command(metrics)
cli.add_command(stats)

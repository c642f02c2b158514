"""hp cascade / gather / resume -- propagate changes through the tree."""

from __future__ import annotations

import click

from hupasiya.cli.formatting import format_report
from hupasiya.models.orchestration import ConflictPolicy, GatherStrategy, ResumeChoice

_POLICIES = [p.value for p in ConflictPolicy]


def _finish(report, console) -> None:
    format_report(report, console)
    if report.failed:
        raise SystemExit(1)


@click.command()
@click.argument("session", envvar="HP_SESSION")
@click.argument("targets", nargs=-1)
@click.option("-n", "--dry-run", is_flag=True, help="Show the commands without running them.")
@click.option(
    "--conflict",
    "conflict_strategy",
    type=click.Choice(_POLICIES, case_sensitive=False),
    default=None,
    help="Conflict policy (default: prompt).",
)
@click.option("-j", "--fan-out", type=click.IntRange(min=1), default=None, help="Concurrent targets.")
@click.pass_context
def cascade(
    ctx: click.Context,
    session: str,
    targets: tuple[str, ...],
    dry_run: bool,
    conflict_strategy: str | None,
    fan_out: int | None,
) -> None:
    """Merge SESSION's changes down into its descendants (breadth-first).

    TARGETS limits the sweep to those descendants.
    """
    from hupasiya.cli import _get_config, _get_workspace, _store_session
    from hupasiya.orchestration import Orchestrator

    with _store_session(ctx) as (store, console):
        orchestrator = Orchestrator(store, _get_workspace(ctx), _get_config(ctx))
        report = orchestrator.cascade(
            session,
            list(targets) or None,
            dry_run=dry_run,
            conflict_strategy=conflict_strategy,
            fan_out=fan_out,
        )
        _finish(report, console)


@click.command()
@click.argument("session", envvar="HP_SESSION")
@click.argument("targets", nargs=-1)
@click.option(
    "-s",
    "--strategy",
    type=click.Choice([s.value for s in GatherStrategy], case_sensitive=False),
    default=None,
    help="How each child lands in its parent (default: merge).",
)
@click.option("-n", "--dry-run", is_flag=True, help="Show the commands without running them.")
@click.option(
    "--conflict",
    "conflict_strategy",
    type=click.Choice(_POLICIES, case_sensitive=False),
    default=None,
    help="Conflict policy (default: prompt).",
)
@click.option("-j", "--fan-out", type=click.IntRange(min=1), default=None, help="Concurrent targets.")
@click.pass_context
def gather(
    ctx: click.Context,
    session: str,
    targets: tuple[str, ...],
    strategy: str | None,
    dry_run: bool,
    conflict_strategy: str | None,
    fan_out: int | None,
) -> None:
    """Merge descendants' work up into SESSION (leaves first).

    Gathered children are flagged as ready to close; close them with
    ``hp close``.
    """
    from hupasiya.cli import _get_config, _get_workspace, _store_session
    from hupasiya.orchestration import Orchestrator

    with _store_session(ctx) as (store, console):
        orchestrator = Orchestrator(store, _get_workspace(ctx), _get_config(ctx))
        report = orchestrator.gather(
            session,
            list(targets) or None,
            strategy=strategy,
            dry_run=dry_run,
            conflict_strategy=conflict_strategy,
            fan_out=fan_out,
        )
        _finish(report, console)


@click.command()
@click.argument("token")
@click.argument(
    "choice",
    type=click.Choice([c.value for c in ResumeChoice], case_sensitive=False),
)
@click.option("-j", "--fan-out", type=click.IntRange(min=1), default=None, help="Concurrent targets.")
@click.pass_context
def resume(ctx: click.Context, token: str, choice: str, fan_out: int | None) -> None:
    """Continue a cascade or gather suspended on a conflict.

    CHOICE settles the conflicted target: parent_wins or child_wins force
    that side, skip leaves it unmerged, abort stops the sweep.
    """
    from hupasiya.cli import _get_config, _get_workspace, _store_session
    from hupasiya.orchestration import Orchestrator

    with _store_session(ctx) as (store, console):
        orchestrator = Orchestrator(store, _get_workspace(ctx), _get_config(ctx))
        report = orchestrator.resume(token, choice.lower(), fan_out=fan_out)
        _finish(report, console)

"""Rich formatting helpers for the hp CLI.

Provides functions that format engine reports and store snapshots for
terminal display. Rich auto-detects TTY and degrades gracefully when piped.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Callable, Iterable

from rich.console import Console
from rich.markup import escape
from rich.table import Table

from hupasiya.models.orchestration import TargetStatus
from hupasiya.models.review import CommentState

if TYPE_CHECKING:
    from hupasiya.models.activity import ActivityEvent, GlobalStats
    from hupasiya.models.orchestration import (
        CommentOutcome,
        OperationReport,
        ShepherdReport,
    )
    from hupasiya.models.session import SessionInfo, SessionMetrics

_STATUS_STYLES = {
    TargetStatus.SUCCEEDED: "green",
    TargetStatus.DRY_RUN: "cyan",
    TargetStatus.FAILED: "red",
    TargetStatus.SKIPPED: "dim",
    TargetStatus.SUSPENDED: "yellow",
    TargetStatus.PENDING: "dim",
}

_STATE_STYLES = {
    CommentState.RESOLVED: "green",
    CommentState.QUEUED: "cyan",
    CommentState.AWAITING_CLARIFICATION: "yellow",
    CommentState.ANALYSIS_FAILED: "red",
    CommentState.DISAGREED: "magenta",
}


def get_console() -> Console:
    """Create a Rich Console that auto-detects TTY for graceful pipe degradation."""
    return Console(stderr=False)


def format_error(message: str, console: Console) -> None:
    """Display an error message."""
    console.print(f"[red]Error:[/red] {escape(message)}", highlight=False)


def format_session(info: SessionInfo, console: Console) -> None:
    """Display one session's fields."""
    console.print(f"[bold]{escape(info.name)}[/bold]  [dim]{info.id[:8]}[/dim]")
    console.print(f"  Status:    {info.status.value}")
    console.print(f"  Agent:     {escape(info.agent_type)}")
    console.print(f"  Branch:    [green]{escape(info.branch)}[/green] (base {escape(info.base_branch)})")
    console.print(f"  VCS:       {info.vcs_kind.value}")
    console.print(f"  Workspace: {escape(info.workspace_ref)}")
    if info.locked_by:
        console.print(f"  Locked by: [yellow]{escape(info.locked_by)}[/yellow]")
    if info.change_request_ref:
        status = f" ({info.change_request_status.value})" if info.change_request_status else ""
        console.print(f"  Change:    {escape(info.change_request_ref)}{status}")


def format_session_list(
    sessions: list[SessionInfo],
    parent_name: Callable[[str | None], str | None],
    console: Console,
) -> None:
    """Display sessions as a table: name, status, branch, parent, lock."""
    if not sessions:
        console.print("[dim]No sessions.[/dim]")
        return

    table = Table(show_header=True, header_style="bold", box=None, pad_edge=False)
    table.add_column("Name", style="bold")
    table.add_column("Status")
    table.add_column("Branch", style="green")
    table.add_column("Parent", style="dim")
    table.add_column("Locked by", style="yellow")
    for info in sessions:
        table.add_row(
            escape(info.name),
            info.status.value,
            escape(info.branch),
            escape(parent_name(info.parent_id) or "-"),
            escape(info.locked_by or ""),
        )
    console.print(table)


def format_tree(entries: Iterable[tuple[int, SessionInfo]], console: Console) -> None:
    """Display a subtree as an indented list, root first."""
    shown = False
    for depth, info in entries:
        shown = True
        marks = []
        if info.locked_by:
            marks.append("[yellow]locked[/yellow]")
        if info.closure_candidate:
            marks.append("[cyan]ready to close[/cyan]")
        suffix = f"  {' '.join(marks)}" if marks else ""
        indent = "  " * depth + ("└─ " if depth else "")
        style = "dim" if info.is_terminal else "bold"
        console.print(
            f"{indent}[{style}]{escape(info.name)}[/{style}] "
            f"[dim]{escape(info.branch)} · {info.status.value}[/dim]{suffix}",
            highlight=False,
        )
    if not shown:
        console.print("[dim]No sessions.[/dim]")


def format_report(report: OperationReport, console: Console) -> None:
    """Display one line per target, then the totals."""
    title = report.operation.value
    if report.dry_run:
        title += " (dry run)"
    console.print(f"[bold]{title}[/bold] from {escape(report.session)}")
    if not report.results:
        console.print("[dim]Nothing to do.[/dim]")
    for result in report.results:
        style = _STATUS_STYLES.get(result.status, "")
        line = (
            f"  {escape(result.source)} -> {escape(result.session)}: "
            f"[{style}]{result.status.value}[/{style}]"
        )
        if result.forced_side:
            line += f" [dim](forced {result.forced_side})[/dim]"
        if result.status == TargetStatus.DRY_RUN and result.command:
            line += f"  [dim]{escape(result.command)}[/dim]"
        elif result.reason:
            line += f"  {escape(result.reason)}"
        console.print(line, highlight=False)
    console.print(report.summary())
    if report.suspended_token:
        console.print(
            f"[yellow]Suspended on conflict.[/yellow] Resume with: "
            f"hp resume {report.suspended_token} "
            + escape("[parent_wins|child_wins|abort|skip]"),
            highlight=False,
        )


def format_outcome(outcome: CommentOutcome, console: Console) -> None:
    style = _STATE_STYLES.get(outcome.state, "")
    line = f"  #{escape(outcome.comment_id)}: [{style}]{outcome.state.value}[/{style}]"
    if outcome.action is not None:
        line += f" [dim]({outcome.action.value})[/dim]"
    if outcome.response_posted:
        line += " [dim]replied[/dim]"
    if outcome.reason:
        line += f"  {escape(outcome.reason)}"
    console.print(line, highlight=False)


def format_shepherd_report(report: ShepherdReport, console: Console) -> None:
    """Display per-comment outcomes and the awaiting list."""
    title = f"shepherd {escape(report.change_request_ref)}"
    if report.dry_run:
        title += " (dry run)"
    console.print(f"[bold]{title}[/bold] for {escape(report.session)}")
    if not report.outcomes:
        console.print("[dim]No open comments.[/dim]")
    for outcome in report.outcomes:
        format_outcome(outcome, console)
    console.print(f"{report.resolved} resolved of {len(report.outcomes)}")
    if report.awaiting:
        console.print(
            f"[yellow]Awaiting clarification:[/yellow] {', '.join(report.awaiting)}"
        )


def format_comment_status(counts: dict[CommentState, int], console: Console) -> None:
    for state, count in counts.items():
        if count:
            console.print(f"  {state.value:<24} {count}")


def format_events(events: list[ActivityEvent], console: Console) -> None:
    """Display activity events in sequence order."""
    if not events:
        console.print("[dim]No activity.[/dim]")
        return

    table = Table(show_header=True, header_style="bold", box=None, pad_edge=False)
    table.add_column("#", justify="right", style="dim")
    table.add_column("Time", style="dim")
    table.add_column("Kind", style="cyan")
    table.add_column("Detail")
    for event in events:
        table.add_row(
            str(event.seq),
            event.created_at.strftime("%Y-%m-%d %H:%M:%S"),
            event.kind.value,
            escape(event.detail),
        )
    console.print(table)


def format_metrics(name: str, metrics: SessionMetrics, console: Console) -> None:
    console.print(f"[bold]{escape(name)}[/bold]")
    for field_name in (
        "cascades",
        "gathers",
        "merge_conflicts",
        "merge_failures",
        "shepherd_runs",
        "comments_analyzed",
        "comments_resolved",
        "responses_posted",
        "total_time_secs",
    ):
        console.print(f"  {field_name:<20} {getattr(metrics, field_name)}")
    for key, value in sorted(metrics.extra.items()):
        console.print(f"  {key:<20} {value}")


def format_stats(stats: GlobalStats, console: Console) -> None:
    """Display global totals: sessions by status, then summed counters."""
    console.print(f"[bold]{stats.total_sessions}[/bold] session(s)")
    for status, count in sorted(stats.by_status.items()):
        console.print(f"  {status:<12} {count}")
    if stats.counters:
        console.print()
        for key, value in sorted(stats.counters.items()):
            console.print(f"  {key:<20} {value}")

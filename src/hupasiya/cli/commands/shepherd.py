"""hp shepherd / apply -- triage review comments on a linked change request."""

from __future__ import annotations

import click

from hupasiya.cli.formatting import (
    format_comment_status,
    format_outcome,
    format_shepherd_report,
)
from hupasiya.models.review import CommentState, Confidence


def _get_engine(ctx: click.Context, store, token: str | None, api_key: str | None):
    """Build a ShepherdEngine. Tests inject ``provider``/``assistant`` through ``obj``."""
    from hupasiya.cli import _get_config, _get_workspace
    from hupasiya.shepherd import ShepherdEngine

    provider = ctx.obj.get("provider")
    if provider is None:
        from hupasiya.review import GitHubReviewProvider

        provider = GitHubReviewProvider(token=token)
    assistant = ctx.obj.get("assistant")
    if assistant is None:
        from hupasiya.assistant import OpenAIAssistant

        assistant = OpenAIAssistant(api_key=api_key)
    return ShepherdEngine(store, provider, assistant, _get_workspace(ctx), _get_config(ctx))


_token_option = click.option(
    "--github-token", envvar="GITHUB_TOKEN", default=None, help="GitHub API token."
)
_api_key_option = click.option(
    "--api-key", envvar="HP_OPENAI_API_KEY", default=None, help="Assistant API key."
)


@click.command()
@click.argument("session", envvar="HP_SESSION")
@click.option("--auto-apply/--no-auto-apply", default=None, help="Apply confident FIX analyses.")
@click.option(
    "--threshold",
    type=click.Choice([c.value for c in Confidence], case_sensitive=False),
    default=None,
    help="Minimum confidence for auto-apply (default: high).",
)
@click.option("-n", "--dry-run", is_flag=True, help="Analyze only; never apply or reply.")
@click.option("--comment", "comment_id", default=None, help="Only handle this comment id.")
@click.option("--status", "show_status", is_flag=True, help="Show comment state counts and exit.")
@_token_option
@_api_key_option
@click.pass_context
def shepherd(
    ctx: click.Context,
    session: str,
    auto_apply: bool | None,
    threshold: str | None,
    dry_run: bool,
    comment_id: str | None,
    show_status: bool,
    github_token: str | None,
    api_key: str | None,
) -> None:
    """Fetch, analyze and triage review comments on SESSION's change request."""
    from hupasiya.cli import _store_session

    with _store_session(ctx) as (store, console):
        if show_status:
            from hupasiya.shepherd import comment_counts

            format_comment_status(comment_counts(store, session), console)
            return
        engine = _get_engine(ctx, store, github_token, api_key)
        report = engine.run(
            session,
            auto_apply=auto_apply,
            confidence_threshold=threshold.lower() if threshold else None,
            dry_run=dry_run,
            comment_id=comment_id,
        )
        format_shepherd_report(report, console)


@click.command()
@click.argument("session", envvar="HP_SESSION")
@click.argument("comment_id")
@_token_option
@_api_key_option
@click.pass_context
def apply(
    ctx: click.Context,
    session: str,
    comment_id: str,
    github_token: str | None,
    api_key: str | None,
) -> None:
    """Apply the analyzed fix for COMMENT_ID on SESSION."""
    from hupasiya.cli import _store_session

    with _store_session(ctx) as (store, console):
        engine = _get_engine(ctx, store, github_token, api_key)
        outcome = engine.apply(session, comment_id)
        format_outcome(outcome, console)
        if outcome.state != CommentState.RESOLVED:
            raise SystemExit(1)

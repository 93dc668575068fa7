"""queue commands — inspect, add to and replay the offline review queue."""

from __future__ import annotations

import asyncio

import click
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from lazyreview_core.config import get_default_provider
from lazyreview_core.models import (
    ApprovePayload,
    CommentPayload,
    ProviderType,
    RequestChangesPayload,
    ReviewEvent,
    ReviewPayload,
)
from lazyreview_store.errors import StoreError
from lazyreview_store.models import ActionKind, ActionStatus, QueuedActionInput

console = Console()

_PROVIDER_CHOICE = click.Choice([t.value for t in ProviderType])

_KIND_STYLE = {
    ActionKind.COMMENT: "yellow",
    ActionKind.APPROVE: "green",
    ActionKind.REQUEST_CHANGES: "red",
    ActionKind.REVIEW: "cyan",
}


def _split_repo(repo: str) -> tuple[str, str]:
    """Split ``owner/name`` on the last slash so Azure's ``org/project/repo`` works too."""
    owner, sep, name = repo.rpartition("/")
    if not sep or not owner or not name:
        raise click.BadParameter(f"expected owner/name, got {repo!r}", param_hint="--repo")
    return owner, name


def _provider_type(ctx: click.Context, provider: str | None) -> str:
    if provider:
        return provider
    default = get_default_provider(ctx.obj["config"])
    return default["type"] if default else ProviderType.GITHUB.value


def _enqueue(ctx: click.Context, provider: str | None, repo: str, pr_number: int, kind: ActionKind, payload) -> None:
    owner, name = _split_repo(repo)
    action_input = QueuedActionInput(
        provider_type=_provider_type(ctx, provider),
        owner=owner,
        repo=name,
        pr_number=pr_number,
        kind=kind,
        payload=payload,
    )
    try:
        action = ctx.obj["queue"].enqueue(action_input)
    except StoreError as e:
        raise click.ClickException(str(e)) from e
    console.print(f"[green]Queued {kind.value} on {action.target}[/green] [dim]({action.id})[/dim]")


def _target_options(func):
    func = click.option(
        "--provider",
        type=_PROVIDER_CHOICE,
        default=None,
        help="Provider type. Defaults to the configured default provider.",
    )(func)
    func = click.option("--pr", "pr_number", type=int, required=True, help="Pull request number.")(func)
    func = click.option("--repo", required=True, help="Repository in owner/name format.")(func)
    return func


def _parse_inline_comment(value: str) -> CommentPayload:
    path, sep, rest = value.partition(":")
    line, sep2, body = rest.partition(":")
    if not (sep and sep2 and path and body) or not line.isdigit():
        raise click.BadParameter(f"expected PATH:LINE:BODY, got {value!r}", param_hint="--comment")
    return CommentPayload(body=body, path=path, line=int(line))


@click.group("queue")
def queue_group():
    """Inspect, add to and replay the offline review queue.

    Review actions are stored locally first and applied to the provider by
    `lazyreview queue replay`, in the order they were queued for each PR.
    """


@queue_group.command("list")
@click.option("--repo", default=None, help="Only show actions for this repository (owner/name).")
@click.option("--pr", "pr_number", type=int, default=None, help="Only show actions for this PR number.")
@click.pass_context
def list_cmd(ctx, repo: str | None, pr_number: int | None):
    """Show queued review actions, oldest first."""
    owner, name = _split_repo(repo) if repo else (None, None)
    try:
        actions = ctx.obj["queue"].list_actions(owner=owner, repo=name, pr_number=pr_number)
    except StoreError as e:
        raise click.ClickException(str(e)) from e
    if not actions:
        console.print("[yellow]The offline queue is empty.[/yellow]")
        return

    table = Table(title="Offline Queue", show_header=True, header_style="bold cyan")
    table.add_column("ID", width=8)
    table.add_column("Provider", width=11)
    table.add_column("Target", max_width=40, no_wrap=True)
    table.add_column("Action", width=16)
    table.add_column("Status", width=8)
    table.add_column("Queued At", width=20)
    table.add_column("Last Error", max_width=40)

    for action in actions:
        kind_style = _KIND_STYLE.get(action.kind, "white")
        status = action.status.value
        if action.status == ActionStatus.FAILED:
            status = f"[red]{status} ×{action.attempts}[/red]"
        table.add_row(
            action.id[:8],
            action.provider_type,
            action.target,
            f"[{kind_style}]{action.kind.value}[/{kind_style}]",
            status,
            action.enqueued_at[:19].replace("T", " "),
            escape(action.last_error or ""),
        )

    console.print(table)


@queue_group.command("comment")
@_target_options
@click.option("--body", required=True, help="Comment text (Markdown).")
@click.option("--path", default=None, help="File path for an inline comment.")
@click.option("--line", type=int, default=None, help="Line in the new file for an inline comment.")
@click.pass_context
def comment_cmd(ctx, repo: str, pr_number: int, provider: str | None, body: str, path: str | None, line: int | None):
    """Queue a general or inline comment."""
    if (path is None) != (line is None):
        raise click.UsageError("--path and --line must be given together.")
    _enqueue(ctx, provider, repo, pr_number, ActionKind.COMMENT, CommentPayload(body=body, path=path, line=line))


@queue_group.command("approve")
@_target_options
@click.option("--body", default=None, help="Optional approval message.")
@click.pass_context
def approve_cmd(ctx, repo: str, pr_number: int, provider: str | None, body: str | None):
    """Queue an approval."""
    _enqueue(ctx, provider, repo, pr_number, ActionKind.APPROVE, ApprovePayload(body=body))


@queue_group.command("request-changes")
@_target_options
@click.option("--body", default=None, help="What needs to change.")
@click.pass_context
def request_changes_cmd(ctx, repo: str, pr_number: int, provider: str | None, body: str | None):
    """Queue a request for changes."""
    _enqueue(ctx, provider, repo, pr_number, ActionKind.REQUEST_CHANGES, RequestChangesPayload(body=body))


@queue_group.command("review")
@_target_options
@click.option("--body", default="", help="Review summary.")
@click.option(
    "--event",
    type=click.Choice([e.value for e in ReviewEvent], case_sensitive=False),
    default=ReviewEvent.COMMENT.value,
    show_default=True,
    help="Review verdict.",
)
@click.option("--comment", "comments", multiple=True, help="Inline comment as PATH:LINE:BODY. Repeatable.")
@click.pass_context
def review_cmd(ctx, repo: str, pr_number: int, provider: str | None, body: str, event: str, comments: tuple[str, ...]):
    """Queue a full review with a verdict and inline comments."""
    payload = ReviewPayload(
        body=body,
        event=event.upper(),
        comments=[_parse_inline_comment(c) for c in comments],
    )
    _enqueue(ctx, provider, repo, pr_number, ActionKind.REVIEW, payload)


@queue_group.command("remove")
@click.argument("action_id")
@click.pass_context
def remove_cmd(ctx, action_id: str):
    """Drop a queued action by id (or unique id prefix)."""
    queue = ctx.obj["queue"]
    try:
        matches = [a for a in queue.list_actions() if a.id.startswith(action_id)]
    except StoreError as e:
        raise click.ClickException(str(e)) from e
    if len(matches) > 1:
        raise click.UsageError(f"ID prefix {action_id!r} is ambiguous ({len(matches)} matches).")
    if not matches:
        console.print(f"[yellow]No queued action matches {action_id}.[/yellow]")
        return
    try:
        queue.remove(matches[0].id)
    except StoreError as e:
        raise click.ClickException(str(e)) from e
    console.print(f"[green]Removed {matches[0].kind.value} on {matches[0].target}[/green]")


@queue_group.command("clear")
@click.option("--failed", "failed_only", is_flag=True, help="Only drop actions whose last replay failed.")
@click.option("--yes", "-y", is_flag=True, help="Skip the confirmation prompt.")
@click.pass_context
def clear_cmd(ctx, failed_only: bool, yes: bool):
    """Drop every queued action (or only the failed ones)."""
    queue = ctx.obj["queue"]
    status = ActionStatus.FAILED if failed_only else None
    try:
        pending = queue.count(status)
    except StoreError as e:
        raise click.ClickException(str(e)) from e
    if pending == 0:
        console.print("[yellow]Nothing to clear.[/yellow]")
        return
    if not yes:
        click.confirm(f"Discard {pending} queued action(s)?", abort=True)
    try:
        removed = queue.clear(status)
    except StoreError as e:
        raise click.ClickException(str(e)) from e
    console.print(f"[green]Removed {removed} queued action(s).[/green]")


@queue_group.command("replay")
@click.option("--repo", default=None, help="Only replay actions for this repository (owner/name).")
@click.option("--pr", "pr_number", type=int, default=None, help="Only replay actions for this PR number.")
@click.option(
    "--max-attempts",
    type=click.IntRange(min=1),
    default=None,
    help="Hold back PRs whose next action has already failed this many times.",
)
@click.pass_context
def replay_cmd(ctx, repo: str | None, pr_number: int | None, max_attempts: int | None):
    """Apply queued actions to their providers.

    Actions on the same PR run in the order they were queued. When one fails
    it is marked failed and the later actions on that PR wait for the next
    replay; other PRs carry on. Exits non-zero if anything failed.

    With --max-attempts (or queue.max_attempts in the config), a PR whose
    next action has failed that many times is held until the action is
    removed or the limit is raised.
    """
    from lazyreview_cli.providers import ProviderPool
    from lazyreview_store.replay import QueueReplayEngine

    config = ctx.obj["config"]
    owner, name = _split_repo(repo) if repo else (None, None)
    if max_attempts is None:
        max_attempts = config["queue"].get("max_attempts")
    pool = ProviderPool(config, ctx.obj.get("secret_store"))
    engine = QueueReplayEngine(
        ctx.obj["queue"],
        pool,
        max_concurrency=config["performance"].get("max_concurrency", 4),
    )

    async def _run():
        try:
            return await engine.replay(owner=owner, repo=name, pr_number=pr_number, max_attempts=max_attempts)
        finally:
            await pool.aclose()

    try:
        summary = asyncio.run(_run())
    except StoreError as e:
        raise click.ClickException(str(e)) from e

    if summary.total == 0:
        console.print("[yellow]Nothing to replay.[/yellow]")
        return

    console.print(
        f"[bold]Replay:[/bold] [green]{summary.succeeded} succeeded[/green], "
        f"[red]{summary.failed} failed[/red], [dim]{summary.skipped} skipped[/dim]"
        + (f", [yellow]{summary.held} held[/yellow]" if summary.held else "")
    )
    for error in summary.errors:
        console.print(
            f"  [red]✗[/red] {error.kind.value} on {error.owner}/{error.repo}#{error.pr_number} "
            f"(attempt {error.attempts}): {escape(error.message)}"
        )
    if summary.held:
        console.print(
            f"  [yellow]{summary.held} action(s) held after {max_attempts} failed attempt(s);[/yellow] "
            "see `lazyreview queue list`."
        )

    if summary.failed:
        ctx.exit(1)

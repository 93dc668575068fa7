"""auth commands — manage provider tokens in the secret store."""

from __future__ import annotations

import asyncio

import click
from rich.console import Console
from rich.table import Table

from lazyreview_cli.auth import mask_token, resolve_token_with_source
from lazyreview_core.config import default_host, find_provider
from lazyreview_core.models import ProviderType
from lazyreview_core.providers.factory import create_provider
from lazyreview_store.errors import StoreError
from lazyreview_store.secret_store import derive_account

console = Console()

_PROVIDER_CHOICE = click.Choice([t.value for t in ProviderType])


async def _validate(provider_type: str, token: str, host: str, base_url: str | None) -> bool:
    provider = create_provider(provider_type, token, host=host, base_url=base_url)
    try:
        return await provider.validate_token()
    finally:
        await provider.close()


def _host_for(config: dict, provider_type: str, host: str | None) -> tuple[str, dict]:
    entry = find_provider(config, provider_type) or {}
    return host or entry.get("host") or default_host(provider_type), entry


@click.group("auth")
def auth_group():
    """Store, inspect and remove provider tokens."""


@auth_group.command("login")
@click.option("--provider", "provider_type", type=_PROVIDER_CHOICE, required=True, help="Provider type.")
@click.option("--host", default=None, help="Provider host. Defaults to the configured or public host.")
@click.option("--token", default=None, help="Token to store. Prompted for (hidden) when omitted.")
@click.option("--no-verify", is_flag=True, help="Store the token without checking it against the provider.")
@click.pass_context
def login_cmd(ctx, provider_type: str, host: str | None, token: str | None, no_verify: bool):
    """Save a provider token in the OS keychain (or the encrypted file store)."""
    host, entry = _host_for(ctx.obj["config"], provider_type, host)
    if not token:
        token = click.prompt(f"{provider_type} token for {host}", hide_input=True)

    if not no_verify and not asyncio.run(_validate(provider_type, token, host, entry.get("base_url"))):
        raise click.ClickException(f"The token was rejected by {host}. Nothing was stored.")

    try:
        backend = ctx.obj["secret_store"].store_secret(derive_account(provider_type, host), token)
    except StoreError as e:
        raise click.ClickException(str(e)) from e
    console.print(f"[green]Saved {provider_type} token for {host} ({backend}).[/green]")


@auth_group.command("logout")
@click.option("--provider", "provider_type", type=_PROVIDER_CHOICE, required=True, help="Provider type.")
@click.option("--host", default=None, help="Provider host. Defaults to the configured or public host.")
@click.pass_context
def logout_cmd(ctx, provider_type: str, host: str | None):
    """Remove a stored provider token."""
    host, _ = _host_for(ctx.obj["config"], provider_type, host)
    try:
        backend = ctx.obj["secret_store"].delete_secret(derive_account(provider_type, host))
    except StoreError as e:
        raise click.ClickException(str(e)) from e
    console.print(f"[green]Removed {provider_type} token for {host} ({backend}).[/green]")


@auth_group.command("status")
@click.pass_context
def status_cmd(ctx):
    """Show which providers have a usable token and where it comes from."""
    config = ctx.obj["config"]
    entries = config.get("providers") or [
        {"type": ProviderType.GITHUB.value, "host": default_host(ProviderType.GITHUB.value)}
    ]

    table = Table(title="Provider Tokens", show_header=True, header_style="bold cyan")
    table.add_column("Provider", width=11)
    table.add_column("Host", max_width=30)
    table.add_column("Source", width=6)
    table.add_column("Token", width=12)

    for entry in entries:
        try:
            found = resolve_token_with_source(
                entry["type"], entry["host"], ctx.obj["secret_store"], token_env=entry.get("token_env")
            )
        except StoreError as e:
            raise click.ClickException(str(e)) from e
        if found:
            token, source = found
            table.add_row(entry["type"], entry["host"], source, mask_token(token))
        else:
            table.add_row(entry["type"], entry["host"], "-", "[red]missing[/red]")

    console.print(table)

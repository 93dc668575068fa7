"""CLI entry point for lazyreview.

Commands:
  queue  — list, add to, prune and replay the offline review queue
  auth   — store, inspect and remove provider tokens
"""

from __future__ import annotations

import importlib.metadata
import logging

import click
from rich.console import Console

from lazyreview_cli.commands.auth import auth_group
from lazyreview_cli.commands.queue import queue_group

console = Console()


def _build_queue(config: dict):
    """Open the profile's offline queue.

    Lives in cli.py so neither lazyreview_core nor lazyreview_store know
    about the CLI config format.
    """
    from lazyreview_core.config import get_queue_path
    from lazyreview_store.sqlite import SQLiteActionQueue

    return SQLiteActionQueue(get_queue_path(config))


def _build_secret_store(config: dict):
    from lazyreview_core.config import get_secrets_dir
    from lazyreview_store.secret_store import SecretStore

    return SecretStore(get_secrets_dir(config), backend=config["secrets"].get("backend", "auto"))


@click.group()
@click.version_option(
    version=importlib.metadata.version("lazyreview"),
    prog_name="lazyreview",
)
@click.option(
    "--config",
    "config_path",
    default=None,
    help="Path to the configuration file. Defaults to ~/.config/lazyreview/config.yaml.",
    envvar="LAZYREVIEW_CONFIG",
)
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging.")
@click.pass_context
def main(ctx: click.Context, config_path: str | None, verbose: bool):
    """Review pull requests across GitHub, GitLab, Bitbucket, Azure DevOps and Gitea."""
    from lazyreview_core.config import load_config
    from lazyreview_core.errors import ConfigError
    from lazyreview_store.errors import StoreError

    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    ctx.ensure_object(dict)

    try:
        config = load_config(config_path)
        queue = _build_queue(config)
        secret_store = _build_secret_store(config)
    except (ConfigError, StoreError) as e:
        raise click.ClickException(str(e)) from e

    ctx.obj["config"] = config
    ctx.obj["queue"] = queue
    ctx.obj["secret_store"] = secret_store
    ctx.call_on_close(queue.close)


main.add_command(queue_group)
main.add_command(auth_group)
